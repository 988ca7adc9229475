from __future__ import annotations

import logging
from typing import Optional

from bizbrain.app.config import LOG_LEVEL

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """
    Install one stream handler on the ``bizbrain`` logger.
    Safe to call on every Streamlit rerun.
    """
    root = logging.getLogger("bizbrain")
    root.setLevel((level or LOG_LEVEL).upper())
    if any(getattr(h, "_bizbrain", False) for h in root.handlers):
        return

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._bizbrain = True  # type: ignore[attr-defined]
    root.addHandler(handler)
    root.propagate = False
