from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlparse

import pytest
import requests
from requests.cookies import RequestsCookieJar
from requests.structures import CaseInsensitiveDict

from bizbrain.app.services.api_client import DashboardClient
from bizbrain.app.services.notices import NoticeLog

BASE_URL = "http://dashboard.test"


class FakeResponse:
    def __init__(
        self,
        status: int = 200,
        json_data: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Dict[str, str]] = None,
        chunks: Optional[Iterable[bytes]] = None,
    ):
        self.status_code = status
        self.headers = CaseInsensitiveDict(headers or {})
        if content is None:
            content = json.dumps(json_data).encode("utf-8") if json_data is not None else b""
        self.content = content
        self._chunks = list(chunks) if chunks is not None else None
        self.closed = False

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.content.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.content.decode("utf-8"))

    def iter_content(self, chunk_size: Optional[int] = None):
        if self._chunks is not None:
            yield from self._chunks
        else:
            yield self.content

    def close(self) -> None:
        self.closed = True


def ndjson(*events: Dict[str, Any]) -> bytes:
    return "".join(json.dumps(e) + "\n" for e in events).encode("utf-8")


class FakeSession:
    """
    Routes ``(METHOD, path)`` to queued responses. The last queued response for a
    route is reused; an ``Exception`` instance is raised instead of returned.
    """

    def __init__(self) -> None:
        self.cookies = RequestsCookieJar()
        self.routes: Dict[Tuple[str, str], List[Any]] = {}
        self.calls: List[Dict[str, Any]] = []

    def add(self, method: str, path: str, *responses: Any) -> "FakeSession":
        self.routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        path = urlparse(url).path
        self.calls.append({"method": method, "path": path, **kwargs})
        queue = self.routes.get((method.upper(), path))
        if not queue:
            raise AssertionError(f"unexpected request {method} {path}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def calls_to(self, method: str, path: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["method"] == method and c["path"] == path]


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(session: FakeSession) -> DashboardClient:
    return DashboardClient(base_url=BASE_URL, access_token="token-123", session=session)


@pytest.fixture
def notices() -> NoticeLog:
    return NoticeLog()


@pytest.fixture
def connection_error() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")


# -------------------------------------------------
# Payload builders (camelCase, as the server sends them)
# -------------------------------------------------
def tier(filled: int, total: int, percentage: Optional[int] = None, missing: Iterable[str] = ()) -> Dict[str, Any]:
    fields = [{"name": name, "label": name.title(), "filled": False} for name in missing]
    return {
        "percentage": percentage if percentage is not None else int(100 * filled / total) if total else 0,
        "complete": filled == total,
        "totalFields": total,
        "filledFields": filled,
        "fields": fields,
    }


def completion_payload(
    overall: int = 70,
    essentials: Optional[Dict[str, Any]] = None,
    recommendations: Optional[List[Dict[str, Any]]] = None,
    tool_readiness: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "overallScore": overall,
        "tierStatus": {
            "tier1_essential": essentials or tier(5, 5, 100),
            "tier2_context": tier(2, 4, 50, missing=["customerJourney", "coreOffer"]),
            "tier3_intelligence": tier(0, 3, 0),
        },
        "toolReadiness": tool_readiness or {},
        "recommendations": recommendations or [],
        "missingCriticalFields": [],
    }


def quality_payload(
    overall: int = 65,
    tool_impact: Optional[Dict[str, int]] = None,
    recommendations: Optional[List[Dict[str, Any]]] = None,
) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "overallScore": overall,
        "fieldAnalysis": {},
        "crossFieldCoherence": {"score": 70, "issues": [], "strengths": []},
        "topRecommendations": recommendations or [],
        "analyzedAt": "2026-01-05T10:00:00Z",
    }
    if tool_impact is not None:
        payload["toolImpact"] = {k: {"qualityScore": v, "blockers": [], "enhancers": []} for k, v in tool_impact.items()}
    return payload


def completion_rec(message: str, fields: Iterable[str] = (), priority: str = "medium") -> Dict[str, Any]:
    return {"priority": priority, "category": "context", "message": message, "fields": list(fields), "benefit": ""}


def quality_rec(message: str, field: Optional[str] = None, priority: str = "high") -> Dict[str, Any]:
    rec: Dict[str, Any] = {"priority": priority, "message": message, "impact": "better answers"}
    if field is not None:
        rec["field"] = field
    return rec
