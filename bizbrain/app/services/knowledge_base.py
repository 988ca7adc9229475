from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Tuple

from bizbrain.app.logic.models import (
    NOT_ANALYZED,
    Analyzed,
    CompletionAnalysis,
    DashboardSummary,
    KnowledgeDocument,
    OrganizationProfile,
    QualityAnalysis,
    QualityState,
)
from bizbrain.app.logic.readiness import build_dashboard_summary
from bizbrain.app.services.api_client import DashboardClient
from bizbrain.app.services.errors import DashboardError, ServerError, parse_payload
from bizbrain.app.services.load_guard import LoadGuard
from bizbrain.app.services.notices import Notice, NoticeSink, error_notice

logger = logging.getLogger(__name__)

KB_PATH = "/api/organization-knowledge-base"
QUALITY_PATH = "/api/organization-knowledge-base/analyze-quality"
DOCUMENTS_PATH = "/api/organization-knowledge-base/documents"

IN_FLIGHT_STATUSES = ("PENDING", "PROCESSING")

SaveOutcome = Literal["created", "completed", "updated"]


@dataclass
class KnowledgeBaseSnapshot:
    profile: Optional[OrganizationProfile] = None
    completion: Optional[CompletionAnalysis] = None
    quality: QualityState = NOT_ANALYZED
    documents: List[KnowledgeDocument] = field(default_factory=list)

    @property
    def profile_exists(self) -> bool:
        return self.profile is not None

    @property
    def required_fields_complete(self) -> bool:
        return bool(self.profile and self.profile.required_fields_complete)


@dataclass
class SaveResult:
    profile: Optional[OrganizationProfile]
    completion: Optional[CompletionAnalysis]
    outcome: SaveOutcome


# -------------------------------------------------
# Endpoint calls
# -------------------------------------------------
def _documents(raw: Any) -> List[KnowledgeDocument]:
    if not isinstance(raw, list):
        return []
    return [parse_payload(KnowledgeDocument, d, "Failed to fetch documents.") for d in raw if isinstance(d, dict)]


def load_knowledge_base(client: DashboardClient) -> KnowledgeBaseSnapshot:
    failure = "Failed to load organization profile"
    res = client.get_json(KB_PATH)
    if not res.success or not isinstance(res.data, dict):
        raise ServerError(res.error_message(failure), status=res.status)

    profile = res.get("organizationProfile")
    completion = res.get("completionAnalysis")
    quality = res.get("qualityAnalysis")
    return KnowledgeBaseSnapshot(
        profile=parse_payload(OrganizationProfile, profile, failure) if profile else None,
        completion=parse_payload(CompletionAnalysis, completion, failure) if completion else None,
        quality=Analyzed(parse_payload(QualityAnalysis, quality, failure)) if quality else NOT_ANALYZED,
        documents=_documents(res.get("documents")),
    )


def fetch_quality_analysis(client: DashboardClient) -> QualityState:
    """Cached analysis, if the server has one. Missing analysis is not an error."""
    try:
        res = client.get_json(QUALITY_PATH)
    except DashboardError as e:
        logger.warning("Could not load quality analysis: %s", e.message)
        return NOT_ANALYZED

    quality = res.get("qualityAnalysis")
    if not res.success or not quality:
        return NOT_ANALYZED
    try:
        analysis = parse_payload(QualityAnalysis, quality, "Failed to load quality analysis")
    except ServerError as e:
        logger.warning("Could not load quality analysis: %s", e.message)
        return NOT_ANALYZED
    return Analyzed(analysis, cached=bool(res.get("cached")))


def analyze_quality(client: DashboardClient) -> Tuple[QualityAnalysis, bool]:
    res = client.post_json(QUALITY_PATH)
    quality = res.get("qualityAnalysis")
    if not res.success or not quality:
        raise ServerError(res.error_message("Failed to analyze quality"), status=res.status)
    return parse_payload(QualityAnalysis, quality, "Failed to analyze quality"), bool(res.get("cached"))


def prepare_profile_payload(
    form_data: Dict[str, Any],
    proof_files: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    payload = dict(form_data)
    if proof_files:
        payload["proofFiles"] = [
            {"url": f.get("url"), "name": f.get("name"), "key": f.get("key"), "type": f.get("type")}
            for f in proof_files
        ]
    elif payload.get("proofFiles") in (None, ""):
        payload.pop("proofFiles", None)
    return payload


def save_profile(
    client: DashboardClient,
    form_data: Dict[str, Any],
    proof_files: Optional[List[Dict[str, Any]]] = None,
    previous: Optional[OrganizationProfile] = None,
) -> SaveResult:
    res = client.post_json(KB_PATH, prepare_profile_payload(form_data, proof_files))
    if not res.success:
        raise ServerError(res.error_message("Failed to save profile"), status=res.status)

    raw_profile = res.get("organizationProfile")
    raw_completion = res.get("completionAnalysis")
    failure = "Failed to save profile"
    profile = parse_payload(OrganizationProfile, raw_profile, failure) if raw_profile else None
    completion = parse_payload(CompletionAnalysis, raw_completion, failure) if raw_completion else None

    was_complete = bool(previous and previous.required_fields_complete)
    now_complete = bool(profile and profile.required_fields_complete)
    if previous is None:
        outcome: SaveOutcome = "created"
    elif now_complete and not was_complete:
        outcome = "completed"
    else:
        outcome = "updated"
    return SaveResult(profile=profile, completion=completion, outcome=outcome)


def list_documents(client: DashboardClient) -> List[KnowledgeDocument]:
    res = client.get_json(DOCUMENTS_PATH)
    if not res.success:
        raise ServerError(res.error_message("Failed to fetch documents."), status=res.status)
    return _documents(res.get("documents"))


def pending_documents(documents: List[KnowledgeDocument]) -> List[KnowledgeDocument]:
    return [d for d in documents if d.extraction_status in IN_FLIGHT_STATUSES]


# -------------------------------------------------
# Page controller
# -------------------------------------------------
SAVE_NOTICES = {
    "created": ("Organization profile created successfully!", "Your profile has been saved and is ready to use."),
    "completed": ("Profile updated successfully!", "All required fields are now complete."),
    "updated": ("Profile updated successfully!", "Your changes have been saved."),
}


class KnowledgeBaseController:
    """
    State behind the Knowledge Base page.

    Errors never leave the controller: each operation turns a ``DashboardError`` into a
    notice (and ``self.error`` for load failures) and returns False.
    """

    def __init__(self, client: DashboardClient, notify: NoticeSink, guard: Optional[LoadGuard] = None):
        self.client = client
        self.notify = notify
        self.guard = guard or LoadGuard("knowledge-base")
        self.snapshot = KnowledgeBaseSnapshot()
        self.is_loading = False
        self.is_saving = False
        self.is_analyzing_quality = False
        self.error: Optional[str] = None
        self._user_id: Optional[str] = None
        self._was_complete: Optional[bool] = None

    @property
    def summary(self) -> DashboardSummary:
        s = self.snapshot
        return build_dashboard_summary(s.profile_exists, s.completion, s.quality)

    def load(self, user_id: Optional[str] = None, force: bool = False) -> bool:
        if not self.guard.should_load(user_id, force):
            return False

        same_user = user_id == self.guard.for_user_id
        if not same_user:
            self.snapshot = KnowledgeBaseSnapshot()
            self._was_complete = None

        self._user_id = user_id
        self.guard.begin(user_id)
        self.is_loading = True
        self.error = None
        try:
            snapshot = load_knowledge_base(self.client)
            if not isinstance(snapshot.quality, Analyzed):
                if isinstance(self.snapshot.quality, Analyzed):
                    snapshot.quality = self.snapshot.quality
                elif snapshot.profile_exists:
                    snapshot.quality = fetch_quality_analysis(self.client)
            self.snapshot = snapshot
            self.guard.finish()
        except DashboardError as e:
            logger.error("Error loading organization profile: %s", e.message)
            self.error = e.display_message
            self.guard.fail()
            return False
        finally:
            self.is_loading = False

        self._check_completion_transition()
        return True

    def _check_completion_transition(self) -> None:
        if not self.snapshot.profile_exists:
            return
        now = self.snapshot.required_fields_complete
        if self._was_complete is not None and now and not self._was_complete:
            self.notify(
                Notice(
                    "success",
                    "🎉 Profile Complete!",
                    "All required fields have been filled. Your organization profile is now complete!",
                    duration=5,
                )
            )
        self._was_complete = now

    def run_quality_analysis(self) -> bool:
        if self.is_analyzing_quality:
            logger.debug("Quality analysis already running; ignoring")
            return False

        self.is_analyzing_quality = True
        try:
            quality, cached = analyze_quality(self.client)
            self.snapshot.quality = Analyzed(quality, cached=cached)
            # completion readiness picks up the new quality scores server-side
            self.load(self._user_id, force=True)
            self.notify(
                Notice(
                    "success",
                    "Quality analysis completed!",
                    "Returned cached analysis from less than 24 hours ago."
                    if cached
                    else "Your knowledge base quality has been analyzed.",
                )
            )
            return True
        except DashboardError as e:
            logger.error("Error analyzing quality: %s", e.message)
            self.notify(error_notice("Failed to analyze quality", e))
            return False
        finally:
            self.is_analyzing_quality = False

    def save(self, form_data: Dict[str, Any], proof_files: Optional[List[Dict[str, Any]]] = None) -> bool:
        if self.is_saving:
            return False

        self.is_saving = True
        try:
            result = save_profile(self.client, form_data, proof_files, previous=self.snapshot.profile)
            if result.completion is not None:
                self.snapshot.completion = result.completion
            self.load(self._user_id, force=True)
            title, description = SAVE_NOTICES[result.outcome]
            self.notify(Notice("success", title, description))
            return True
        except DashboardError as e:
            logger.error("Error saving profile: %s", e.message)
            self.notify(error_notice("Failed to save profile", e))
            return False
        finally:
            self.is_saving = False

    def refresh_documents(self) -> List[KnowledgeDocument]:
        try:
            self.snapshot.documents = list_documents(self.client)
        except DashboardError as e:
            logger.warning("Error fetching documents: %s", e.message)
            self.notify(error_notice("Failed to load documents", e))
        return self.snapshot.documents
