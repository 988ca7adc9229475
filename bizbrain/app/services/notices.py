from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Literal, Optional

from bizbrain.app.services.errors import DashboardError, RateLimitExceeded

NoticeLevel = Literal["success", "info", "warning", "error"]

DEFAULT_DURATION = 4


@dataclass(frozen=True)
class Notice:
    level: NoticeLevel
    title: str
    description: str = ""
    duration: int = DEFAULT_DURATION


NoticeSink = Callable[[Notice], None]


class NoticeLog:
    """Collects notices; the Streamlit page drains it after each action."""

    def __init__(self) -> None:
        self.items: List[Notice] = []

    def __call__(self, notice: Notice) -> None:
        self.items.append(notice)

    def drain(self) -> List[Notice]:
        out, self.items = self.items, []
        return out


def error_notice(title: str, err: DashboardError, description: Optional[str] = None) -> Notice:
    if isinstance(err, RateLimitExceeded):
        return Notice("error", "Rate limit exceeded", err.display_message, RateLimitExceeded.duration)
    return Notice("error", title, description if description is not None else err.display_message)
