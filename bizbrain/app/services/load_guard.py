from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal, Optional

logger = logging.getLogger(__name__)

LoadStatus = Literal["idle", "loading", "loaded"]


@dataclass
class LoadGuard:
    """
    Fetch-once-per-user state machine.

        idle --begin--> loading --finish--> loaded
                          |--fail--> idle

    A different user id always triggers a fresh load; ``force`` bypasses the guard.
    """

    name: str = "loader"
    status: LoadStatus = "idle"
    for_user_id: Optional[str] = None

    def should_load(self, user_id: Optional[str], force: bool = False) -> bool:
        if force:
            return True
        if user_id != self.for_user_id:
            return True
        return self.status == "idle"

    def begin(self, user_id: Optional[str]) -> None:
        self.status = "loading"
        self.for_user_id = user_id
        logger.debug("%s: loading for user %s", self.name, user_id)

    def finish(self) -> None:
        self.status = "loaded"

    def fail(self) -> None:
        self.status = "idle"

    def reset(self) -> None:
        self.status = "idle"
        self.for_user_id = None
