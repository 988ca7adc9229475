from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from bizbrain.app.api.insights_routes import router as insights_router
from bizbrain.app.config import APP_BRAND, APP_VERSION
from bizbrain.app.logging_config import configure_logging

logger = logging.getLogger(__name__)

# -------------------------------------------------
# FastAPI app
# -------------------------------------------------
app = FastAPI(title=f"{APP_BRAND} Insights API", version=APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(insights_router, prefix="/insights", tags=["insights"])


@app.on_event("startup")
def _startup() -> None:
    configure_logging()
    logger.info("%s insights API %s started", APP_BRAND, APP_VERSION)


@app.get("/health")
def health() -> dict:
    return {"ok": True, "version": APP_VERSION}
