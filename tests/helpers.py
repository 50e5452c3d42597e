"""
Test helpers: response factories and fakes for the HTTP layer.
"""

import json
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

import httpx

BASE_URL = "https://api.test/v1"
HTTP_DATE = "Wed, 01 May 2024 12:00:00 GMT"
CAPTURED_AT = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

Handler = Callable[[httpx.Request], Any]

# ==============================================================================
# Response Helpers
# ==============================================================================


def make_response(
    status: int = 200,
    body: Any = None,
    *,
    date: str | None = HTTP_DATE,
    age: int | None = None,
    etag: str | None = None,
    content_type: str | None = "application/json; charset=utf-8",
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Build an API response with the usual metadata headers."""
    all_headers: dict[str, str] = {}
    if content_type is not None:
        all_headers["Content-Type"] = content_type
    if date is not None:
        all_headers["Date"] = date
    if age is not None:
        all_headers["Age"] = str(age)
    if etag is not None:
        all_headers["ETag"] = etag
    all_headers.update(headers or {})
    content = b"" if body is None else json.dumps(body).encode()
    return httpx.Response(status, headers=all_headers, content=content)


def single(entity: dict[str, Any]) -> dict[str, Any]:
    """Envelope of a single-entity response."""
    return {"page": 1, "per_page": 1, "total_results": 1, "results": [entity]}


class FakeApi:
    """
    Route table behind an httpx.MockTransport.

    Each path holds a queue of responses (or handlers taking the request);
    the last entry keeps answering once the queue is drained. Every request
    is recorded.
    """

    def __init__(self) -> None:
        self.routes: dict[str, list[httpx.Response | Handler]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, path: str, *responses: httpx.Response | Handler) -> None:
        self.routes.setdefault(path, []).extend(responses)

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if self._path(r) == path]

    @staticmethod
    def _path(request: httpx.Request) -> str:
        return request.url.path.removeprefix("/v1")

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get(self._path(request))
        if not queue:
            return make_response(404, {"error": "Not found", "status": 404})

        entry = queue.pop(0) if len(queue) > 1 else queue[0]
        if callable(entry):
            result = entry(request)
            if not isinstance(result, httpx.Response):
                result = await result
            return result
        # Fresh copy so a repeated entry can be served more than once
        return httpx.Response(entry.status_code, headers=entry.headers, content=entry.content)


class FakeSleep:
    """Records requested delays instead of waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
