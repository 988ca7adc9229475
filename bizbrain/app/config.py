from __future__ import annotations

import os
from pathlib import Path


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


# Dashboard API (the web app routes under /api/...)
API_BASE = os.getenv("BIZBRAIN_API_BASE_URL", "http://localhost:3000").rstrip("/")
ACCESS_TOKEN = os.getenv("BIZBRAIN_ACCESS_TOKEN", "")
# keys per-user page loads and local drafts
USER_ID = os.getenv("BIZBRAIN_USER_ID", "local")

HTTP_TIMEOUT = _int_env("BIZBRAIN_HTTP_TIMEOUT", 30)
# JD analysis streams progress for several minutes before the result arrives
STREAM_TIMEOUT = _int_env("BIZBRAIN_STREAM_TIMEOUT", 300)

LOG_LEVEL = os.getenv("BIZBRAIN_LOG_LEVEL", "INFO").upper()

# Locally, it resolves to <repo>/data/drafts.db
DRAFT_DB_PATH = Path(
    os.getenv(
        "BIZBRAIN_DRAFT_DB_PATH",
        str(Path(__file__).resolve().parents[2] / "data" / "drafts.db"),
    )
)

APP_BRAND = "Business Brain"
APP_VERSION = "0.4.0"
