from __future__ import annotations

import html
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

from bizbrain.app.logic.models import GeneratedSOP, ReviewSuggestion, SOPMetadata
from bizbrain.app.services.api_client import DashboardClient
from bizbrain.app.services.draft_store import DraftStore, SOPDraft
from bizbrain.app.services.errors import ContentUnavailable, DashboardError, ServerError, parse_payload
from bizbrain.app.services.load_guard import LoadGuard
from bizbrain.app.services.notices import Notice, NoticeSink, error_notice

logger = logging.getLogger(__name__)

GENERATE_PATH = "/api/sop/generate"
UPDATE_PATH = "/api/sop/update"
SAVED_PATH = "/api/sop/saved"
REVIEW_PATH = "/api/sop/review"
DOWNLOAD_PATH = "/api/sop/download"

NO_HTML_MESSAGE = "No HTML content received from server"

# fields the generate endpoint requires when saving a chat-built SOP
SAVE_FORM_DEFAULTS = {
    "processOverview": "Generated from chat",
    "primaryRole": "Process Performer",
    "mainSteps": "See SOP content",
    "toolsUsed": "See SOP content",
    "frequency": "As-needed",
    "trigger": "Manual initiation",
    "successCriteria": "Process completed successfully",
}


# -------------------------------------------------
# Content helpers
# -------------------------------------------------
def normalize_content(content: Any) -> Tuple[str, Optional[str]]:
    """
    Saved SOP content is either a legacy markdown string or ``{markdown, html}``.
    Returns ``(markdown, html)``.
    """
    if isinstance(content, str):
        return content, None
    if isinstance(content, dict):
        return content.get("markdown") or "", content.get("html") or None
    return "", None


def display_html(sop: GeneratedSOP) -> str:
    if sop.html and sop.html.strip():
        return sop.html
    if sop.markdown and sop.markdown.strip():
        return f"<pre>{html.escape(sop.markdown, quote=False)}</pre>"
    raise ContentUnavailable("SOP content not available")


def pdf_filename(title: str) -> str:
    return re.sub(r"[^a-zA-Z0-9]", "_", title or "SOP") + ".pdf"


def sop_from_saved(raw: Dict[str, Any]) -> GeneratedSOP:
    """Build a ``GeneratedSOP`` from a row of ``/api/sop/saved`` or ``/api/sop/{id}``."""
    markdown, html_content = normalize_content(raw.get("content"))
    metadata = raw.get("metadata") or {}
    return GeneratedSOP(
        markdown=markdown,
        html=html_content,
        sop_id=raw.get("id"),
        root_sop_id=raw.get("rootSOPId"),
        version_number=raw.get("versionNumber") or 1,
        is_current_version=bool(raw.get("isCurrentVersion", True)),
        is_draft=bool(raw.get("isDraft", False)),
        metadata=SOPMetadata(
            title=raw.get("title") or "SOP",
            generated_at=raw.get("createdAt"),
            tokens=metadata.get("tokens") or {},
            organization_profile_used=bool(metadata.get("organizationProfileUsed")),
            version_number=raw.get("versionNumber"),
        ),
    )


# -------------------------------------------------
# Endpoint calls
# -------------------------------------------------
def _post_generate(client: DashboardClient, body: Dict[str, Any], failure: str) -> Dict[str, Any]:
    res = client.post_json(GENERATE_PATH, body)
    if not res.success or not isinstance(res.data, dict):
        raise ServerError(res.error_message(failure), status=res.status)
    return res.data


def generate_sop(
    client: DashboardClient,
    form: Dict[str, Any],
    save_as_draft: bool = False,
    existing: Optional[GeneratedSOP] = None,
) -> GeneratedSOP:
    """
    Plain generation, or (``save_as_draft``) persist ``existing`` as a draft version.
    Draft saves must come back with HTML.
    """
    if not save_as_draft:
        data = _post_generate(client, form, "Failed to generate SOP")
        return GeneratedSOP(
            markdown=data.get("sop") or "",
            html=data.get("sopHtml") or None,
            sop_id=data.get("sopId"),
            is_draft=bool(data.get("isDraft", True)),
            metadata=parse_payload(SOPMetadata, data.get("metadata") or {}, "Failed to generate SOP"),
        )

    body: Dict[str, Any] = {**SAVE_FORM_DEFAULTS, **form, "saveAsDraft": True}
    body.setdefault("sopTitle", (existing.metadata.title if existing else None) or "SOP")
    if existing is not None:
        body["existingSOPHtml"] = existing.html
        if existing.sop_id:
            body["sopId"] = existing.sop_id

    data = _post_generate(client, body, "Failed to save SOP as draft")
    if not data.get("sopHtml"):
        raise ContentUnavailable(NO_HTML_MESSAGE)

    metadata = parse_payload(SOPMetadata, data.get("metadata") or {}, "Failed to save SOP as draft")
    base = existing or GeneratedSOP(metadata=metadata)
    return base.model_copy(
        update={
            "html": data["sopHtml"],
            "sop_id": data.get("sopId"),
            "version_number": metadata.version_number or base.version_number,
            "is_current_version": False,
            "is_draft": True,
            "metadata": metadata,
        }
    )


def publish_sop(client: DashboardClient, form: Dict[str, Any], existing: GeneratedSOP) -> GeneratedSOP:
    body: Dict[str, Any] = {**SAVE_FORM_DEFAULTS, **form, "saveAndPublish": True}
    body.setdefault("sopTitle", existing.metadata.title or "SOP")
    body["existingSOPHtml"] = existing.html

    data = _post_generate(client, body, "Failed to save and publish SOP")
    if not data.get("sopHtml"):
        raise ContentUnavailable(NO_HTML_MESSAGE)

    metadata = parse_payload(SOPMetadata, data.get("metadata") or {}, "Failed to save and publish SOP")
    return existing.model_copy(
        update={
            "html": data["sopHtml"],
            "sop_id": data.get("sopId"),
            "version_number": metadata.version_number or 1,
            "is_current_version": True,
            "is_draft": False,
            "metadata": metadata,
        }
    )


def update_sop(
    client: DashboardClient,
    sop: GeneratedSOP,
    content: str,
    review_with_ai: bool = False,
) -> Tuple[GeneratedSOP, Optional[int]]:
    """Save edited markdown as a new version. Returns the updated SOP and its version number."""
    if not sop.sop_id:
        raise ServerError("SOP ID not found. Please regenerate the SOP.")

    res = client.post_json(
        UPDATE_PATH,
        {"sopId": sop.sop_id, "sopContent": content, "reviewWithAI": review_with_ai},
    )
    saved = res.get("sop")
    if not res.success or not isinstance(saved, dict):
        raise ServerError(res.error_message("Failed to save SOP modifications"), status=res.status)

    markdown, html_content = normalize_content(saved.get("content"))
    logger.info("Updated SOP %s (markdown=%d chars, html=%s)", saved.get("id"), len(markdown), bool(html_content))
    updated = sop.model_copy(update={"markdown": markdown, "html": html_content, "sop_id": saved.get("id")})
    return updated, saved.get("version")


def review_sop(client: DashboardClient, content: str) -> List[ReviewSuggestion]:
    res = client.post_json(REVIEW_PATH, {"sopContent": content})
    if not res.ok:
        raise ServerError("AI review failed", status=res.status)
    return [parse_payload(ReviewSuggestion, s, "AI review failed") for s in (res.get("suggestions") or [])]


def apply_suggestion(content: str, suggestion: ReviewSuggestion) -> str:
    if not suggestion.original:
        return content
    return content.replace(suggestion.original, suggestion.suggested, 1)


def load_latest_sop(client: DashboardClient) -> Optional[GeneratedSOP]:
    res = client.get_json(SAVED_PATH, params={"page": 1, "limit": 1})
    if not res.ok:
        raise ServerError("Failed to fetch saved SOPs", status=res.status)
    data = res.get("data") or {}
    sops = data.get("sops") if isinstance(data, dict) else None
    if not res.get("success") or not sops:
        return None
    return sop_from_saved(sops[0])


def download_sop_pdf(client: DashboardClient, sop: GeneratedSOP) -> Tuple[str, bytes]:
    filename, content = client.post_binary(
        DOWNLOAD_PATH,
        {"sopContent": sop.markdown, "title": sop.metadata.title},
        "Failed to generate PDF",
    )
    return filename or pdf_filename(sop.metadata.title), content


# -------------------------------------------------
# Page controller
# -------------------------------------------------
class SOPBuilderController:
    def __init__(
        self,
        client: DashboardClient,
        notify: NoticeSink,
        drafts: Optional[DraftStore] = None,
        guard: Optional[LoadGuard] = None,
    ):
        self.client = client
        self.notify = notify
        self.drafts = drafts
        self.guard = guard or LoadGuard("sop-builder")

        self.sop: Optional[GeneratedSOP] = None
        self.form_data: Dict[str, Any] = {}
        self.suggestions: List[ReviewSuggestion] = []
        self.user_id: Optional[str] = None

        self.is_processing = False
        self.is_submitting = False
        self.is_reviewing = False
        self.is_downloading = False
        self.is_loading_latest = False
        self.has_no_saved_sops = False
        self.error: Optional[str] = None

    def generate(self, form: Dict[str, Any]) -> bool:
        if self.is_processing:
            return False
        self.is_processing = True
        self.error = None
        try:
            self.sop = generate_sop(self.client, form)
        except DashboardError as e:
            logger.error("SOP generation error: %s", e.message)
            self.error = e.display_message
            self.notify(error_notice("Failed to generate SOP", e))
            return False
        finally:
            self.is_processing = False

        self.form_data = dict(form)
        self.has_no_saved_sops = False
        self.notify(
            Notice(
                "success",
                "SOP generated successfully!",
                f'Your SOP "{self.sop.metadata.title}" has been created.',
            )
        )
        return True

    def save_draft(self) -> bool:
        if self.sop is None:
            self.notify(Notice("error", "No SOP to save"))
            return False
        if self.is_submitting:
            return False
        self.is_submitting = True
        try:
            self.sop = generate_sop(self.client, self.form_data, save_as_draft=True, existing=self.sop)
        except DashboardError as e:
            logger.error("Error saving SOP as draft: %s", e.message)
            self.notify(error_notice("Failed to save draft", e))
            return False
        finally:
            self.is_submitting = False

        self.remember_draft()
        self.notify(
            Notice(
                "success",
                "SOP saved as draft",
                "Your SOP has been saved. You can publish it later or continue editing.",
            )
        )
        return True

    def publish(self) -> bool:
        if self.sop is None:
            self.notify(Notice("error", "No SOP to save"))
            return False
        if self.is_submitting:
            return False
        self.is_submitting = True
        try:
            self.sop = publish_sop(self.client, self.form_data, self.sop)
        except DashboardError as e:
            logger.error("Error saving and publishing SOP: %s", e.message)
            self.notify(error_notice("Failed to save SOP", e))
            return False
        finally:
            self.is_submitting = False

        self.forget_draft()
        self.notify(Notice("success", "SOP saved and published", "Your SOP has been saved and is now the current version."))
        return True

    def save_modifications(self, content: str, review_with_ai: bool = False) -> str:
        """
        Returns ``"saved"``, ``"review"`` (suggestions are waiting in ``self.suggestions``)
        or ``"failed"``.
        """
        if self.is_submitting or self.is_reviewing:
            return "failed"
        if review_with_ai:
            self.is_reviewing = True
            try:
                suggestions = review_sop(self.client, content)
            except DashboardError as e:
                logger.warning("AI review failed, saving anyway: %s", e.message)
                self.notify(Notice("warning", "AI review unavailable", "Proceeding with save. You can still submit your changes."))
                suggestions = []
            finally:
                self.is_reviewing = False

            if suggestions:
                self.suggestions = suggestions
                self.notify(
                    Notice("info", "AI review complete", f"Found {len(suggestions)} suggestion(s). Review them below.")
                )
                return "review"

        return "saved" if self._save(content, review_with_ai) else "failed"

    def _save(self, content: str, review_with_ai: bool) -> bool:
        if self.sop is None:
            self.notify(Notice("error", "Failed to save modifications", "SOP ID not found. Please regenerate the SOP."))
            return False
        if self.is_submitting:
            return False
        self.is_submitting = True
        try:
            self.sop, version = update_sop(self.client, self.sop, content, review_with_ai)
        except DashboardError as e:
            logger.error("Error saving SOP modifications: %s", e.message)
            self.notify(error_notice("Failed to save modifications", e))
            return False
        finally:
            self.is_submitting = False

        self.suggestions = []
        self.notify(
            Notice("success", "SOP modifications saved!", f"Your changes have been saved successfully (version {version}).")
        )
        return True

    def accept_suggestion(self, content: str, index: int) -> str:
        if not 0 <= index < len(self.suggestions):
            logger.debug("Suggestion %d is no longer pending", index)
            return content
        suggestion = self.suggestions.pop(index)
        self.notify(Notice("success", "Suggestion applied"))
        return apply_suggestion(content, suggestion)

    def accept_all_suggestions(self, content: str) -> str:
        for suggestion in self.suggestions:
            content = apply_suggestion(content, suggestion)
        self.suggestions = []
        self.notify(Notice("success", "All suggestions applied"))
        return content

    def load_latest(self, user_id: Optional[str]) -> bool:
        self.user_id = user_id
        if self.sop is not None or self.is_loading_latest:
            return False
        if not self.guard.should_load(user_id):
            return False

        self.guard.begin(user_id)
        self.is_loading_latest = True
        try:
            latest = load_latest_sop(self.client)
        except DashboardError as e:
            logger.error("Error loading latest SOP: %s", e.message)
            self.has_no_saved_sops = True
            return False
        finally:
            self.guard.finish()
            self.is_loading_latest = False

        if latest is None:
            self.has_no_saved_sops = True
            return False
        self.sop = latest
        self.has_no_saved_sops = False
        return True

    def download_pdf(self) -> Optional[Tuple[str, bytes]]:
        if self.sop is None or self.is_downloading:
            return None
        self.is_downloading = True
        try:
            out = download_sop_pdf(self.client, self.sop)
        except DashboardError as e:
            logger.error("Download error: %s", e.message)
            self.notify(error_notice("Failed to download PDF", e))
            return None
        finally:
            self.is_downloading = False
        self.notify(Notice("success", "PDF downloaded successfully!"))
        return out

    # -------------------------------------------------
    # Local drafts
    # -------------------------------------------------
    def remember_draft(self) -> None:
        if self.drafts is None or self.user_id is None or self.sop is None:
            return
        self.drafts.save_draft(self.user_id, self.sop, self.form_data)

    def forget_draft(self) -> None:
        if self.drafts is None or self.user_id is None:
            return
        self.drafts.clear_draft(self.user_id)

    def pending_draft(self) -> Optional[SOPDraft]:
        if self.drafts is None or self.user_id is None or self.sop is not None:
            return None
        return self.drafts.get_draft(self.user_id)

    def restore_draft(self) -> bool:
        draft = self.pending_draft()
        if draft is None:
            return False
        self.sop = draft.sop
        self.form_data = dict(draft.form_data)
        self.notify(Notice("info", "Draft restored", "Your unsaved SOP draft has been restored."))
        return True
