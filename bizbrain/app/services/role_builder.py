from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import requests

from bizbrain.app.logic.models import JDAnalysisResult, OrganizationProfile
from bizbrain.app.services.api_client import DashboardClient
from bizbrain.app.services.errors import (
    AnalysisStreamError,
    DashboardError,
    IntakeValidationError,
    ServerError,
)
from bizbrain.app.services.load_guard import LoadGuard
from bizbrain.app.services.ndjson_stream import ProgressEvent, consume_analysis_stream
from bizbrain.app.services.notices import Notice, NoticeSink, error_notice

logger = logging.getLogger(__name__)

ANALYZE_PATH = "/api/jd/analyze"
SAVE_PATH = "/api/jd/save"
SAVED_PATH = "/api/jd/saved"
DOWNLOAD_PATH = "/api/jd/download"

DEFAULT_PDF_NAME = "job-description-analysis.pdf"
DEFAULT_SERVICE_TYPE = "Job Description Analysis"
MAX_TASKS = 5
ORG_DEFAULT = "__ORG_DEFAULT__"

AUTO_SAVE_FAILED = "Your analysis is shown on the page, but it wasn't saved. You can click Save to retry."


# -------------------------------------------------
# Intake form
# -------------------------------------------------
def org_form_defaults(profile: Optional[OrganizationProfile]) -> Dict[str, str]:
    """Values the intake form is pre-filled with from the knowledge base."""
    if profile is None:
        return {
            "businessName": "",
            "businessGoal": "Growth & Scale",
            "tools": "",
            "timezone": "",
            "weeklyHours": "40",
            "englishLevel": "Excellent",
            "managementStyle": "Async",
        }
    return {
        "businessName": profile.business_name or "",
        "businessGoal": profile.primary_goal or ORG_DEFAULT,
        "tools": ", ".join(profile.tool_stack or []),
        "timezone": profile.default_time_zone or "",
        "weeklyHours": profile.default_weekly_hours or "40",
        "englishLevel": profile.default_english_level or ORG_DEFAULT,
        "managementStyle": profile.default_management_style or ORG_DEFAULT,
    }


def _resolve_placeholder(value: Any, default: str) -> str:
    if value == ORG_DEFAULT:
        return "" if default == ORG_DEFAULT else default
    return value or ""


def _to_int(value: Any, fallback: int) -> int:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return fallback


def _split_tools(raw: Any) -> List[str]:
    if isinstance(raw, (list, tuple)):
        return [str(t).strip() for t in raw if str(t).strip()]
    return [t.strip() for t in str(raw or "").split(",") if t.strip()]


def merge_tools(org_tools: List[str], role_tools: List[str]) -> List[str]:
    """Case-insensitive union, first spelling wins (org stack before role-specific)."""
    out: List[str] = []
    seen = set()
    for tool in list(org_tools) + list(role_tools):
        key = tool.lower()
        if key not in seen:
            seen.add(key)
            out.append(tool)
    return out


def resolve_form_with_profile(form: Dict[str, Any], profile: Optional[OrganizationProfile]) -> Dict[str, Any]:
    defaults = org_form_defaults(profile)
    org_tools = list(profile.tool_stack or []) if profile is not None else []

    weekly = form.get("weeklyHours")
    resolved = dict(form)
    resolved.update(
        businessName=(form.get("businessName") or "").strip() or defaults["businessName"],
        businessGoal=_resolve_placeholder(form.get("businessGoal"), defaults["businessGoal"]),
        tools=merge_tools(org_tools, _split_tools(form.get("tools"))),
        timezone=(form.get("timezone") or "").strip() or defaults["timezone"],
        weeklyHours=_to_int(weekly, 0) if weekly else _to_int(defaults["weeklyHours"], 40),
        englishLevel=_resolve_placeholder(form.get("englishLevel"), defaults["englishLevel"]),
        managementStyle=_resolve_placeholder(form.get("managementStyle"), defaults["managementStyle"]),
    )
    return resolved


def _clean(items: Any) -> List[str]:
    if not isinstance(items, (list, tuple)):
        return []
    return [str(i).strip() for i in items if i and str(i).strip()]


def to_intake_payload(resolved: Dict[str, Any]) -> Dict[str, Any]:
    tools = resolved.get("tools") or []
    return {
        "brand": {"name": (resolved.get("businessName") or "").strip()},
        "website": resolved.get("website") or "",
        "business_goal": resolved.get("businessGoal") or "",
        "outcome_90d": resolved.get("outcome90Day") or "",
        "tasks_top5": _clean(resolved.get("tasks"))[:MAX_TASKS],
        "requirements": _clean(resolved.get("requirements")),
        "weekly_hours": resolved.get("weeklyHours") or 0,
        "timezone": resolved.get("timezone") or "",
        "client_facing": resolved.get("clientFacing") == "Yes",
        "tools": tools,
        "tools_raw": ", ".join(tools),
        "english_level": resolved.get("englishLevel") or "",
        "management_style": resolved.get("managementStyle") or "",
        "reporting_expectations": resolved.get("reportingExpectations") or "",
        "security_needs": resolved.get("securityNeeds") or "",
        "deal_breakers": resolved.get("dealBreakers") or "",
        "nice_to_have_skills": resolved.get("niceToHaveSkills") or "",
        "existing_sops": resolved.get("existingSOPs") == "Yes",
        "sop_filename": resolved.get("sop_filename"),
    }


@dataclass
class SOPAttachment:
    url: str
    name: str
    type: Optional[str] = None
    key: Optional[str] = None


@dataclass
class Intake:
    form: Dict[str, Any]
    payload: Dict[str, Any]
    sop_file: Optional[SOPAttachment] = None

    @property
    def business_name(self) -> str:
        return self.form.get("businessName") or ""


def validate_intake(
    form: Dict[str, Any],
    profile: Optional[OrganizationProfile] = None,
    sop_files: Optional[List[SOPAttachment]] = None,
) -> Intake:
    """Resolve org defaults and check the form. Nothing is sent when this raises."""
    resolved = resolve_form_with_profile(form, profile)

    if not (resolved.get("businessName") or "").strip():
        raise IntakeValidationError("Company name is required")

    tasks = _clean(resolved.get("tasks"))[:MAX_TASKS]
    if not tasks:
        raise IntakeValidationError("At least one task is required")

    resolved["tasks"] = tasks
    resolved["requirements"] = _clean(resolved.get("requirements"))
    resolved["existingSOPs"] = form.get("existingSOPs") or "No"
    resolved["sop_filename"] = ", ".join(f.name for f in sop_files) if sop_files else None

    sop_file = sop_files[0] if sop_files else None
    if sop_file is not None and not (sop_file.url or "").startswith(("http://", "https://")):
        raise IntakeValidationError(
            f"Invalid SOP file URL format. Expected HTTP/HTTPS URL, got: {sop_file.url}"
        )
    return Intake(form=resolved, payload=to_intake_payload(resolved), sop_file=sop_file)


def build_analysis_request(intake: Intake) -> Dict[str, Any]:
    body: Dict[str, Any] = {"intake_json": intake.payload}
    if intake.sop_file is not None:
        body.update(
            sopFileUrl=intake.sop_file.url,
            sopFileName=intake.sop_file.name,
            sopFileType=intake.sop_file.type,
            sopFileKey=intake.sop_file.key,
        )
    return body


# -------------------------------------------------
# Analysis
# -------------------------------------------------
def analysis_error_from_response(r: requests.Response) -> ServerError:
    message = "Analysis failed"
    user_message = "An error occurred during analysis"
    try:
        payload = r.json()
    except ValueError:
        payload = None

    if isinstance(payload, dict):
        if payload.get("userMessage"):
            user_message = payload["userMessage"]
            message = payload.get("error") or payload.get("details") or message
        elif payload.get("error"):
            message = payload["error"]
    return ServerError(message, user_message, status=r.status_code)


def analyze(
    client: DashboardClient,
    intake: Intake,
    on_progress: Optional[Callable[[ProgressEvent], None]] = None,
) -> Tuple[JDAnalysisResult, Dict[str, Any]]:
    """
    Run the streamed analysis. Returns the analysis and the raw result payload
    (which also carries knowledge-base provenance used when saving).
    """
    r = client.post_stream(ANALYZE_PATH, build_analysis_request(intake))
    try:
        if not r.ok:
            raise analysis_error_from_response(r)
        try:
            data = consume_analysis_stream(r.iter_content(chunk_size=None), on_progress)
        except requests.RequestException as e:
            logger.error("Analysis stream interrupted: %s", e)
            raise AnalysisStreamError(str(e), "Connection lost while the analysis was running.") from e
    finally:
        r.close()

    if not isinstance(data, dict):
        raise AnalysisStreamError("Failed to process analysis results")
    return JDAnalysisResult.from_api(data), data


def analysis_title(business_name: str, result: JDAnalysisResult) -> str:
    service_type = (result.preview or {}).get("service_type")
    if not service_type:
        service_type = ((result.full_package or {}).get("service_structure") or {}).get("service_type")
    return f"{business_name or 'Analysis'} - {service_type or DEFAULT_SERVICE_TYPE}"


@dataclass
class KnowledgeBaseProvenance:
    organization_id: Optional[str] = None
    used_knowledge_base_version: Optional[int] = None
    knowledge_base_snapshot: Optional[Dict[str, Any]] = None
    contributed_insights: Optional[Any] = None

    @classmethod
    def from_result(cls, data: Dict[str, Any]) -> "KnowledgeBaseProvenance":
        kb = data.get("knowledgeBase") or {}
        return cls(
            organization_id=kb.get("organizationId"),
            used_knowledge_base_version=kb.get("version"),
            knowledge_base_snapshot=kb.get("snapshot"),
            contributed_insights=data.get("extractedInsights"),
        )

    @classmethod
    def from_saved(cls, saved: Dict[str, Any]) -> "KnowledgeBaseProvenance":
        return cls(
            organization_id=saved.get("organizationId"),
            used_knowledge_base_version=saved.get("usedKnowledgeBaseVersion"),
            knowledge_base_snapshot=saved.get("knowledgeBaseSnapshot"),
            contributed_insights=saved.get("contributedInsights"),
        )


def save_analysis(
    client: DashboardClient,
    title: str,
    intake_data: Dict[str, Any],
    result: JDAnalysisResult,
    provenance: Optional[KnowledgeBaseProvenance] = None,
    is_finalized: bool = False,
) -> Optional[str]:
    """POST /api/jd/save. Returns the saved id, or None when the save failed (logged)."""
    kb = provenance or KnowledgeBaseProvenance()
    payload = {
        "title": title,
        "intakeData": intake_data,
        "analysis": result.model_dump(),
        "isFinalized": is_finalized,
        "organizationId": kb.organization_id,
        "usedKnowledgeBaseVersion": kb.used_knowledge_base_version,
        "knowledgeBaseSnapshot": kb.knowledge_base_snapshot,
        "contributedInsights": kb.contributed_insights,
    }
    try:
        res = client.post_json(SAVE_PATH, payload)
    except DashboardError as e:
        logger.error("Error saving analysis: %s", e.message)
        return None

    if not res.ok:
        logger.error("Failed to save analysis: %s", res.get("error") or res.status)
        return None
    saved = res.get("savedAnalysis") or {}
    logger.info("Analysis saved: %s", saved.get("id"))
    return saved.get("id")


@dataclass
class SavedAnalysis:
    id: str
    analysis: JDAnalysisResult
    intake_data: Optional[Dict[str, Any]] = None
    provenance: KnowledgeBaseProvenance = field(default_factory=KnowledgeBaseProvenance)

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "SavedAnalysis":
        return cls(
            id=raw.get("id"),
            analysis=JDAnalysisResult.from_api(raw.get("analysis") or {}),
            intake_data=raw.get("intakeData"),
            provenance=KnowledgeBaseProvenance.from_saved(raw),
        )


def _saved_analyses(client: DashboardClient, limit: int, failure: str) -> List[Dict[str, Any]]:
    res = client.get_json(SAVED_PATH, params={"page": 1, "limit": limit})
    if not res.ok:
        raise ServerError(failure, status=res.status)
    data = res.get("data") or {}
    if not res.get("success") or not isinstance(data, dict):
        return []
    return list(data.get("analyses") or [])


def load_saved_analysis(client: DashboardClient, analysis_id: Optional[str] = None) -> Optional[SavedAnalysis]:
    """A specific saved analysis, or the latest one. ``None`` means nothing saved yet."""
    if analysis_id:
        analyses = _saved_analyses(client, 100, "Failed to fetch analyses")
        match = next((a for a in analyses if a.get("id") == analysis_id), None)
        if match is None:
            raise ServerError("Analysis not found", status=404)
        return SavedAnalysis.from_api(match)

    analyses = _saved_analyses(client, 1, "Failed to fetch saved analyses")
    if not analyses:
        return None
    return SavedAnalysis.from_api(analyses[0])


def download_analysis_pdf(client: DashboardClient, result: JDAnalysisResult) -> Tuple[str, bytes]:
    filename, content = client.post_binary(DOWNLOAD_PATH, result.model_dump(), "Failed to download PDF")
    return filename or DEFAULT_PDF_NAME, content


# -------------------------------------------------
# Page controller
# -------------------------------------------------
class RoleBuilderController:
    def __init__(self, client: DashboardClient, notify: NoticeSink, guard: Optional[LoadGuard] = None):
        self.client = client
        self.notify = notify
        self.guard = guard or LoadGuard("role-builder")

        self.result: Optional[JDAnalysisResult] = None
        self.intake_data: Optional[Dict[str, Any]] = None
        self.provenance = KnowledgeBaseProvenance()
        self.saved_analysis_id: Optional[str] = None

        self.is_processing = False
        self.is_loading_latest = False
        self.is_downloading = False
        self.current_stage = ""
        self.analysis_error: Optional[str] = None
        self.has_no_saved_analyses = False

    def submit(
        self,
        form: Dict[str, Any],
        profile: Optional[OrganizationProfile] = None,
        sop_files: Optional[List[SOPAttachment]] = None,
        on_progress: Optional[Callable[[ProgressEvent], None]] = None,
    ) -> bool:
        if self.is_processing:
            logger.debug("Analysis already running; ignoring submit")
            return False

        self.analysis_error = None
        self.is_processing = True

        def progress(event: ProgressEvent) -> None:
            self.current_stage = event.stage
            if on_progress is not None:
                on_progress(event)

        try:
            intake = validate_intake(form, profile, sop_files)
            result, raw = analyze(self.client, intake, progress)
        except DashboardError as e:
            self.analysis_error = e.display_message
            self.notify(error_notice("Analysis failed", e))
            return False
        finally:
            self.is_processing = False
            self.current_stage = ""

        self.result = result
        self.intake_data = intake.form
        self.provenance = KnowledgeBaseProvenance.from_result(raw)
        self.has_no_saved_analyses = False

        saved_id = save_analysis(
            self.client,
            analysis_title(intake.business_name, result),
            intake.form,
            result,
            self.provenance,
        )
        if saved_id:
            self.saved_analysis_id = saved_id
        else:
            self.notify(Notice("error", "Auto-save failed", AUTO_SAVE_FAILED))
        return True

    def save(self) -> bool:
        if self.result is None or self.intake_data is None:
            logger.error("No analysis to save")
            return False
        saved_id = save_analysis(
            self.client,
            analysis_title(self.intake_data.get("businessName") or "", self.result),
            self.intake_data,
            self.result,
            self.provenance,
        )
        if saved_id:
            self.saved_analysis_id = saved_id
            self.notify(Notice("success", "Analysis saved"))
            return True
        self.notify(Notice("error", "Failed to save analysis. Please try again."))
        return False

    def load_latest(self, user_id: Optional[str], analysis_id: Optional[str] = None) -> bool:
        # an explicit analysis id always loads
        if not analysis_id and not self.guard.should_load(user_id):
            return False

        self.guard.begin(user_id)
        self.is_loading_latest = True
        try:
            saved = load_saved_analysis(self.client, analysis_id)
        except DashboardError as e:
            logger.error("Error loading analysis: %s", e.message)
            self.has_no_saved_analyses = True
            return False
        finally:
            # attempted counts as loaded; a failed fetch is not retried automatically
            self.guard.finish()
            self.is_loading_latest = False

        if saved is None:
            self.has_no_saved_analyses = True
            return False

        self.result = saved.analysis
        self.intake_data = saved.intake_data
        self.saved_analysis_id = saved.id
        self.provenance = saved.provenance
        self.has_no_saved_analyses = False
        return True

    def download_pdf(self) -> Optional[Tuple[str, bytes]]:
        if self.result is None or self.is_downloading:
            return None
        self.is_downloading = True
        try:
            return download_analysis_pdf(self.client, self.result)
        except DashboardError as e:
            logger.error("Download error: %s", e.message)
            self.notify(error_notice("Failed to download job description. Please try again.", e))
            return None
        finally:
            self.is_downloading = False
