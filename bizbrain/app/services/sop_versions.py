"""
SOP version history.

The server owns which version is current. Nothing here flips ``is_current_version``
locally; after a restore the list is always fetched again. Every failure leaves the
previous ``versions`` / ``selected_version_id`` / ``sop`` untouched.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from bizbrain.app.logic.models import GeneratedSOP, SOPVersion, VersionAuthor
from bizbrain.app.services.api_client import DashboardClient
from bizbrain.app.services.errors import ContentUnavailable, DashboardError, ServerError, parse_payload
from bizbrain.app.services.notices import Notice, NoticeSink, error_notice
from bizbrain.app.services.sop_builder import SAVED_PATH, sop_from_saved

logger = logging.getLogger(__name__)

ALL_VERSIONS_LIMIT = 1000


def fetch_versions(client: DashboardClient, sop_id: str) -> List[SOPVersion]:
    res = client.get_json(f"/api/sop/{sop_id}/versions")
    if not res.ok:
        raise ServerError(res.get("error") or "Failed to fetch versions", status=res.status)
    versions = res.get("versions")
    if not res.get("success") or not versions:
        return []
    return [parse_payload(SOPVersion, v, "Failed to fetch versions") for v in versions]


def _find_version_row(client: DashboardClient, version_id: str) -> Optional[Dict[str, Any]]:
    res = client.get_json(f"/api/sop/{version_id}")
    if not res.ok:
        logger.debug("Direct fetch of SOP %s failed (%s); scanning all versions", version_id, res.status)
        res = client.get_json(
            SAVED_PATH,
            params={"page": 1, "limit": ALL_VERSIONS_LIMIT, "includeAllVersions": "true"},
        )
    if not res.ok:
        raise ServerError("Failed to fetch SOP", status=res.status)
    if not res.get("success"):
        return None

    if res.get("sop"):
        return res.get("sop")
    data = res.get("data") or {}
    for row in (data.get("sops") or []) if isinstance(data, dict) else []:
        if row.get("id") == version_id:
            return row
    return None


def fetch_version(client: DashboardClient, version_id: str) -> GeneratedSOP:
    row = _find_version_row(client, version_id)
    if row is None:
        raise ServerError("SOP version not found", status=404)

    content = row.get("content")
    if not isinstance(content, dict) or not content.get("html"):
        raise ContentUnavailable("SOP content not available")

    sop = sop_from_saved(row)
    return sop.model_copy(update={"is_draft": False})


def synthetic_version(sop: GeneratedSOP, author: Optional[VersionAuthor] = None) -> SOPVersion:
    """Single stand-in entry for SOPs whose history can't be fetched."""
    return SOPVersion(
        id=sop.sop_id,
        version_number=sop.version_number or 1,
        is_current_version=True,
        created_by=author or VersionAuthor(),
        created_at=sop.metadata.generated_at,
        version_created_at=sop.metadata.generated_at,
    )


class SOPVersionManager:
    def __init__(
        self,
        client: DashboardClient,
        notify: NoticeSink,
        sop: Optional[GeneratedSOP] = None,
        author: Optional[VersionAuthor] = None,
    ):
        self.client = client
        self.notify = notify
        self.sop = sop
        self.author = author
        self.versions: List[SOPVersion] = []
        self.selected_version_id: Optional[str] = None
        self.is_loading_versions = False
        self.is_restoring = False

    def _fall_back_to_current(self) -> None:
        if self.sop is None or not self.sop.sop_id:
            return
        self.versions = [synthetic_version(self.sop, self.author)]
        self.selected_version_id = self.sop.sop_id

    def load_versions(self, sop_id: str) -> List[SOPVersion]:
        self.is_loading_versions = True
        try:
            versions = fetch_versions(self.client, sop_id)
        except DashboardError as e:
            logger.error("Error loading versions: %s", e.message)
            versions = []
        finally:
            self.is_loading_versions = False

        if not versions:
            self._fall_back_to_current()
            return self.versions

        self.versions = versions
        if not self.selected_version_id:
            current = next((v for v in versions if v.is_current_version), versions[0])
            self.selected_version_id = current.id
        return self.versions

    def load_version(self, version_id: str) -> bool:
        try:
            sop = fetch_version(self.client, version_id)
        except DashboardError as e:
            logger.error("Error loading version %s: %s", version_id, e.message)
            self.notify(error_notice("Failed to load version", e))
            return False

        self.sop = sop
        self.selected_version_id = version_id
        return True

    def restore_version(self, version_id: str) -> bool:
        if self.is_restoring:
            return False

        self.is_restoring = True
        root_id = (self.sop.root_sop_id or self.sop.sop_id) if self.sop is not None else None
        try:
            res = self.client.post_json(f"/api/sop/{version_id}/restore")
            if not res.ok:
                raise ServerError("Failed to restore version", status=res.status)
            if not res.get("success"):
                return False

            self.notify(
                Notice(
                    "success",
                    "Version restored successfully!",
                    res.get("message") or "The version has been restored as the current version.",
                )
            )

            restored_id = (res.get("sop") or {}).get("id")
            if restored_id:
                self.load_version(restored_id)
                self.load_versions(root_id or restored_id)
            elif root_id:
                self.load_versions(root_id)
                current = next((v for v in self.versions if v.is_current_version), None)
                if current is not None:
                    self.load_version(current.id)
            return True
        except DashboardError as e:
            logger.error("Error restoring version: %s", e.message)
            self.notify(error_notice("Failed to restore version", e))
            return False
        finally:
            self.is_restoring = False
