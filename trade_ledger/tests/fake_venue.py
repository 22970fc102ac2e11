"""In-memory stand-in for an aiohttp session, routed by URL path.

Each route value is one of:
- a JSON-serialisable payload (answered with HTTP 200)
- a FakeResponse (status and body as given)
- an exception instance (raised from ``request``, as aiohttp does)
- a callable taking the decoded query params and returning any of the above
"""

import asyncio
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qsl, urlsplit

from trade_ledger.core.models import Credential, Venue
from trade_ledger.exchanges.client import SignedClient

NOW_MS = 1_704_067_200_000          # 2024-01-01T00:00:00Z
DAY_MS = 24 * 60 * 60 * 1000


@dataclass
class RecordedCall:
    method: str
    url: str
    path: str
    params: Dict[str, str]
    headers: Dict[str, str] = field(default_factory=dict)


class FakeResponse:
    def __init__(self, status: int, body: Any = None, raw: Optional[str] = None, delay: float = 0.0):
        self.status = status
        self._text = raw if raw is not None else ("" if body is None else json.dumps(body))
        self.delay = delay
        self.finished = False

    async def text(self) -> str:
        if self.delay:
            await asyncio.sleep(self.delay)
        self.finished = True
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False


class FakeSession:
    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.calls: List[RecordedCall] = []
        self.closed = False

    def request(self, method, url, headers=None, timeout=None):
        parts = urlsplit(url)
        params = dict(parse_qsl(parts.query))
        self.calls.append(RecordedCall(method, url, parts.path, params, dict(headers or {})))

        route = self.routes.get(parts.path)
        if route is None:
            return FakeResponse(404, {"code": -1, "msg": f"no route for {parts.path}"})
        if callable(route):
            route = route(params)
        if isinstance(route, BaseException):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(200, route)

    def calls_to(self, path: str) -> List[RecordedCall]:
        return [c for c in self.calls if c.path == path]

    async def close(self):
        self.closed = True


def make_client(
    venue: Venue = Venue.BINANCE,
    routes: Optional[Dict[str, Any]] = None,
    *,
    now_ms: int = NOW_MS,
    api_key: str = "test-key",
    api_secret: str = "test-secret",
) -> tuple:
    """A SignedClient wired to a FakeSession; returns (client, session)."""
    session = FakeSession(routes)
    clock: Callable[[], int] = lambda: now_ms
    client = SignedClient(Credential(venue, api_key, api_secret), session=session, clock=clock)
    return client, session


def bybit_ok(rows: List[dict], cursor: str = "") -> dict:
    return {"retCode": 0, "retMsg": "OK", "result": {"list": rows, "nextPageCursor": cursor}}
