from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

if TYPE_CHECKING:
    from bizbrain.app.services.rate_limit import RateLimitInfo

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

CONNECTION_ISSUE_MESSAGE = "Connection issue. Please check your network and try again."


class DashboardError(Exception):
    """
    Base for everything an operation boundary turns into a toast.

    ``message`` is the internal/log message; ``user_message`` (when present) is what the
    person sees.
    """

    def __init__(self, message: str, user_message: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.user_message = user_message

    @property
    def display_message(self) -> str:
        return self.user_message or self.message


class IntakeValidationError(DashboardError):
    """Raised before any request is made."""


class RateLimitExceeded(DashboardError):
    duration = 10

    def __init__(self, info: "RateLimitInfo", user_message: Optional[str] = None):
        super().__init__(info.message, user_message)
        self.info = info


class ConnectionIssue(DashboardError):
    def __init__(self, message: str = CONNECTION_ISSUE_MESSAGE):
        super().__init__(message, CONNECTION_ISSUE_MESSAGE)


class ServerError(DashboardError):
    def __init__(self, message: str, user_message: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message, user_message)
        self.status = status


def parse_payload(model: Type[M], raw: Any, failure: str) -> M:
    """Validate a server payload; a malformed one surfaces as ``ServerError(failure)``."""
    try:
        return model.model_validate(raw)
    except ValidationError as e:
        logger.warning("Malformed %s payload: %s", model.__name__, e)
        raise ServerError(f"{failure}: malformed {model.__name__}", failure) from e


class AnalysisStreamError(DashboardError):
    pass


class ContentUnavailable(DashboardError):
    pass
