from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

import requests

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "Rate limit exceeded. Please try again later."
SERVICE_UNAVAILABLE_CODE = "RATE_LIMIT_SERVICE_UNAVAILABLE"
SERVICE_UNAVAILABLE_MESSAGE = "Rate limiting service is temporarily unavailable. Please try again later."
NOTICE_DURATION = 10


@dataclass
class RateLimitInfo:
    message: str = DEFAULT_MESSAGE
    limit_type: str = "limit"  # user | organization | ip | limit
    retry_after: Optional[int] = None  # seconds
    reset_at: Optional[str] = None  # ISO timestamp
    remaining: Optional[int] = None
    limit: Optional[int] = None
    reset: Optional[int] = None  # unix seconds


def is_rate_limit_error(response: requests.Response) -> bool:
    return response.status_code == 429


def _json_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return None


def is_rate_limit_service_unavailable(response: requests.Response) -> bool:
    """503 from the rate limiter itself, as opposed to any other unavailable upstream."""
    if response.status_code != 503:
        return False
    data = _json_body(response)
    return isinstance(data, dict) and data.get("error") == SERVICE_UNAVAILABLE_CODE


def get_service_unavailable_message(response: requests.Response) -> str:
    data = _json_body(response)
    message = data.get("message") if isinstance(data, dict) else None
    return message or SERVICE_UNAVAILABLE_MESSAGE


def _header_int(headers: Mapping[str, str], name: str) -> Optional[int]:
    raw = headers.get(name)
    if not raw:
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        return None


def get_rate_limit_info(headers: Mapping[str, str]) -> dict:
    return {
        "limit": _header_int(headers, "X-RateLimit-Limit"),
        "remaining": _header_int(headers, "X-RateLimit-Remaining"),
        "reset": _header_int(headers, "X-RateLimit-Reset"),
    }


def _retry_from_reset(reset: Optional[int], now: float) -> Optional[int]:
    if reset is None:
        return None
    return max(0, reset - int(now))


def parse_rate_limit_error(response: requests.Response, now: Optional[float] = None) -> RateLimitInfo:
    now = time.time() if now is None else now
    headers = get_rate_limit_info(response.headers)

    data = _json_body(response)
    if not isinstance(data, dict):
        logger.debug("Rate limit response had no JSON body; using headers only")
        return RateLimitInfo(retry_after=_retry_from_reset(headers["reset"], now), **headers)

    retry_after = data.get("retryAfter")
    if not retry_after:
        retry_after = _retry_from_reset(headers["reset"], now)

    return RateLimitInfo(
        message=data.get("message") or DEFAULT_MESSAGE,
        limit_type=data.get("limitType") or "limit",
        retry_after=retry_after,
        reset_at=data.get("resetAt"),
        **headers,
    )


def format_retry_time(retry_after: Optional[int]) -> str:
    if not retry_after or retry_after <= 0:
        return "now"
    minutes, seconds = divmod(int(retry_after), 60)
    if minutes > 0:
        return f"{minutes}m {seconds}s" if seconds > 0 else f"{minutes}m"
    return f"{seconds}s"


def format_reset_time(reset_at: Optional[str], now: Optional[datetime] = None) -> str:
    if not reset_at:
        return "soon"
    try:
        reset = datetime.fromisoformat(reset_at.replace("Z", "+00:00"))
    except ValueError:
        return "soon"
    if reset.tzinfo is None:
        reset = reset.replace(tzinfo=timezone.utc)

    now = now or datetime.now(timezone.utc)
    diff_mins = int((reset - now).total_seconds() // 60)

    if diff_mins < 1:
        return "in less than a minute"
    if diff_mins == 1:
        return "in 1 minute"
    if diff_mins < 60:
        return f"in {diff_mins} minutes"
    hours = diff_mins // 60
    return "in 1 hour" if hours == 1 else f"in {hours} hours"


def get_rate_limit_error_message(info: RateLimitInfo, now: Optional[datetime] = None) -> str:
    message = info.message
    if info.retry_after:
        message += f" Please try again {format_retry_time(info.retry_after)}."
    elif info.reset_at:
        message += f" Please try again {format_reset_time(info.reset_at, now)}."
    return message
