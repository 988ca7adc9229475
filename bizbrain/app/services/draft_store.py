from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from bizbrain.app.config import DRAFT_DB_PATH
from bizbrain.app.logic.models import GeneratedSOP

logger = logging.getLogger(__name__)


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class SOPDraft:
    user_id: str
    sop: GeneratedSOP
    form_data: Dict[str, Any]
    updated_at: str


class DraftStore:
    """
    Unsaved SOP drafts, one per user, in a local SQLite file.
    Survives page reloads and Streamlit restarts.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path or DRAFT_DB_PATH)
        self.init_db()

    def connect(self) -> sqlite3.Connection:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def init_db(self) -> None:
        conn = self.connect()
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS sop_drafts (
              user_id TEXT PRIMARY KEY,
              sop_json TEXT NOT NULL,
              form_json TEXT NOT NULL,
              is_draft INTEGER NOT NULL,
              updated_at TEXT NOT NULL
            );
            """
        )
        conn.commit()
        conn.close()

    def _fetchone(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
        conn = self.connect()
        try:
            return conn.execute(sql, params).fetchone()
        finally:
            conn.close()

    def _execute(self, sql: str, params: Tuple[Any, ...] = ()) -> None:
        conn = self.connect()
        try:
            conn.execute(sql, params)
            conn.commit()
        finally:
            conn.close()

    def save_draft(self, user_id: str, sop: GeneratedSOP, form_data: Optional[Dict[str, Any]] = None) -> None:
        self._execute(
            "INSERT INTO sop_drafts (user_id, sop_json, form_json, is_draft, updated_at) VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(user_id) DO UPDATE SET sop_json=excluded.sop_json, form_json=excluded.form_json, "
            "is_draft=excluded.is_draft, updated_at=excluded.updated_at",
            (
                user_id,
                sop.model_dump_json(by_alias=True),
                json.dumps(form_data or {}, ensure_ascii=False),
                1 if sop.is_draft else 0,
                _utc_now_iso(),
            ),
        )
        logger.debug("Stored SOP draft for user %s", user_id)

    def get_draft(self, user_id: str) -> Optional[SOPDraft]:
        """Only rows flagged as drafts count; a published SOP is not offered for restore."""
        row = self._fetchone(
            "SELECT user_id, sop_json, form_json, updated_at FROM sop_drafts WHERE user_id=? AND is_draft=1",
            (user_id,),
        )
        if not row:
            return None
        try:
            sop = GeneratedSOP.model_validate_json(row["sop_json"])
            form = json.loads(row["form_json"])
        except ValueError as e:
            logger.warning("Discarding unreadable SOP draft for user %s: %s", user_id, e)
            self.clear_draft(user_id)
            return None
        return SOPDraft(user_id=row["user_id"], sop=sop, form_data=form, updated_at=row["updated_at"])

    def clear_draft(self, user_id: str) -> None:
        self._execute("DELETE FROM sop_drafts WHERE user_id=?", (user_id,))
