from __future__ import annotations

import logging
import re
from typing import Any, Dict, Mapping, Optional, Tuple

import requests

from bizbrain.app.config import ACCESS_TOKEN, API_BASE, HTTP_TIMEOUT, STREAM_TIMEOUT
from bizbrain.app.services.errors import ConnectionIssue, RateLimitExceeded, ServerError
from bizbrain.app.services.rate_limit import (
    get_rate_limit_error_message,
    get_service_unavailable_message,
    is_rate_limit_error,
    is_rate_limit_service_unavailable,
    parse_rate_limit_error,
)

logger = logging.getLogger(__name__)

AUTH_COOKIE = "accessToken"

_FILENAME_RE = re.compile(r'filename\*?=(?:UTF-8\'\')?"?([^";]+)"?', re.IGNORECASE)


class ApiResponse:
    def __init__(
        self,
        ok: bool,
        data: Any = None,
        status: Optional[int] = None,
        text: Optional[str] = None,
        headers: Optional[Mapping[str, str]] = None,
    ):
        self.ok = ok
        self.data = data
        self.status = status
        self.text = text
        self.headers = headers or {}

    def get(self, key: str, default: Any = None) -> Any:
        if isinstance(self.data, dict):
            return self.data.get(key, default)
        return default

    @property
    def success(self) -> bool:
        """HTTP ok and the body did not report ``success: false``."""
        return self.ok and self.get("success", True) is not False

    def error_message(self, fallback: str) -> str:
        return self.get("message") or self.get("error") or fallback


def filename_from_disposition(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    m = _FILENAME_RE.search(header)
    if not m:
        return None
    name = m.group(1).strip()
    return name or None


def _json_or_none(r: requests.Response) -> Any:
    if not r.content:
        return None
    try:
        return r.json()
    except ValueError:
        return None


class DashboardClient:
    """
    Thin wrapper over the dashboard's JSON endpoints.

    Auth travels in the ``accessToken`` cookie, the same way the web app sends it.
    Transport failures become ``ConnectionIssue``; a 429 on any POST becomes
    ``RateLimitExceeded`` before the body is looked at.
    """

    def __init__(
        self,
        base_url: str = API_BASE,
        access_token: str = ACCESS_TOKEN,
        session: Optional[requests.Session] = None,
        timeout: int = HTTP_TIMEOUT,
        stream_timeout: int = STREAM_TIMEOUT,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.stream_timeout = stream_timeout
        if access_token:
            self.session.cookies.set(AUTH_COOKIE, access_token)

    # -------------------------------------------------
    # URL + headers
    # -------------------------------------------------
    def url(self, path: str) -> str:
        p = (path or "").strip()
        if not p.startswith("/"):
            p = "/" + p
        return self.base_url + p

    @staticmethod
    def headers() -> Dict[str, str]:
        return {"Content-Type": "application/json", "Accept": "application/json"}

    # -------------------------------------------------
    # Requests
    # -------------------------------------------------
    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        kwargs.setdefault("timeout", self.timeout)
        try:
            return self.session.request(method, self.url(path), headers=self.headers(), **kwargs)
        except requests.RequestException as e:
            logger.error("%s %s failed: %s", method, path, e)
            raise ConnectionIssue(str(e)) from e

    @staticmethod
    def _raise_for_rate_limit(r: requests.Response) -> None:
        if is_rate_limit_error(r):
            info = parse_rate_limit_error(r)
            logger.warning("Rate limited (%s): %s", info.limit_type, info.message)
            raise RateLimitExceeded(info, get_rate_limit_error_message(info))
        if is_rate_limit_service_unavailable(r):
            message = get_service_unavailable_message(r)
            logger.warning("Rate limiting service unavailable: %s", message)
            raise ServerError(message, status=503)

    @staticmethod
    def _wrap(r: requests.Response) -> ApiResponse:
        return ApiResponse(r.ok, _json_or_none(r), r.status_code, r.text, r.headers)

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> ApiResponse:
        r = self._send("GET", path, params=params)
        if not r.ok:
            logger.debug("GET %s -> %s", path, r.status_code)
        return self._wrap(r)

    def post_json(self, path: str, payload: Optional[Dict[str, Any]] = None) -> ApiResponse:
        r = self._send("POST", path, json=(payload or {}))
        self._raise_for_rate_limit(r)
        if not r.ok:
            logger.debug("POST %s -> %s", path, r.status_code)
        return self._wrap(r)

    def post_stream(self, path: str, payload: Optional[Dict[str, Any]] = None) -> requests.Response:
        """Raw streaming response; the caller owns closing it."""
        r = self._send("POST", path, json=(payload or {}), stream=True, timeout=self.stream_timeout)
        self._raise_for_rate_limit(r)
        return r

    def post_binary(
        self,
        path: str,
        payload: Optional[Dict[str, Any]] = None,
        fallback_message: str = "Failed to download PDF",
    ) -> Tuple[Optional[str], bytes]:
        r = self._send("POST", path, json=(payload or {}))
        self._raise_for_rate_limit(r)
        if not r.ok:
            data = _json_or_none(r)
            message = fallback_message
            if isinstance(data, dict):
                message = data.get("error") or data.get("message") or fallback_message
            raise ServerError(message, status=r.status_code)
        return filename_from_disposition(r.headers.get("Content-Disposition")), r.content
