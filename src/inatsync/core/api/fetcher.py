"""
Conditional HTTP fetcher with rate-limit retry.

Performs one GET exchange against the API while honouring the local cache:
the prior snapshot's timestamp and etag are sent as ``If-Modified-Since`` and
``If-None-Match``, a 304 is reported as a cache hit, and 429 responses are
retried after the server's ``Retry-After`` delay for as long as the server
keeps limiting.

Example:
    >>> import asyncio
    >>> from inatsync.core.api.fetcher import ConditionalFetcher, create_client
    >>> from inatsync.core.config import load_config
    >>>
    >>> async def main() -> None:
    ...     async with create_client(load_config()) as client:
    ...         fetcher = ConditionalFetcher(client)
    ...         result = await fetcher.fetch("/users/kueda")
    ...         if result is None:
    ...             print("unchanged")
    ...         else:
    ...             print(result.header.captured_at, result.envelope.single()["id"])
    >>>
    >>> asyncio.run(main())

Outcomes:
    - 304: ``None`` (keep the cached copy)
    - 429: sleep ``Retry-After`` seconds (default 60) and retry, indefinitely
    - other non-2xx: StatusError
    - 2xx: content type, Date/Age/ETag and envelope are validated, then a
      FetchResult is returned
"""

import asyncio
import json
import logging
import math
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from email.utils import format_datetime, parsedate_to_datetime
from typing import Any

import httpx
from pydantic import ValidationError

from inatsync.core.api.models import CacheHeader, Envelope, FetchResult
from inatsync.core.config.models import SyncConfig
from inatsync.core.exceptions import (
    ContentTypeError,
    ProtocolError,
    ResponseError,
    StatusError,
    TransportError,
)

logger = logging.getLogger(__name__)

JSON_MEDIA_TYPE = "application/json"
UTF8_CHARSET = "charset=utf-8"
DEFAULT_RETRY_AFTER = 60.0

# Injectable so tests can run the rate-limit loop without waiting
Sleep = Callable[[float], Awaitable[None]]


def create_client(config: SyncConfig) -> httpx.AsyncClient:
    """
    Build the shared async HTTP client for a sync run.

    Args:
        config: Loaded sync configuration

    Returns:
        AsyncClient rooted at the configured API URL that always asks for JSON
    """
    return httpx.AsyncClient(
        base_url=config.api_url,
        headers={"Accept": JSON_MEDIA_TYPE, "User-Agent": config.user_agent},
        timeout=config.timeout,
        follow_redirects=True,
    )


def conditional_headers(cached: CacheHeader | None) -> dict[str, str]:
    """Build If-Modified-Since / If-None-Match from a prior snapshot header."""
    if cached is None:
        return {}
    headers = {"If-Modified-Since": format_datetime(cached.captured_at, usegmt=True)}
    if cached.etag is not None:
        headers["If-None-Match"] = cached.etag
    return headers


def parse_retry_after(value: str | None, default: float = DEFAULT_RETRY_AFTER) -> float:
    """
    Parse a Retry-After header given in seconds.

    Args:
        value: Raw header value, or None when absent
        default: Delay used when the header is absent or unparseable

    Returns:
        Delay in seconds
    """
    if value is None:
        return default
    try:
        delay = float(value.strip())
    except ValueError:
        return default
    if not math.isfinite(delay) or delay < 0:
        return default
    return delay


def ensure_json(response: httpx.Response) -> None:
    """
    Check that the response is ``application/json``.

    A single ``charset=utf-8`` parameter is allowed; anything else is fatal.

    Raises:
        ProtocolError: If the Content-Type header is missing
        ContentTypeError: If the media type or parameters differ
    """
    raw = response.headers.get("content-type")
    if raw is None:
        raise ProtocolError("missing header: content-type")

    content_type = raw.strip().lower()
    parts = [part.strip() for part in content_type.split(";")]
    if parts[0] != JSON_MEDIA_TYPE or len(parts) > 2:
        raise ContentTypeError(content_type)
    if len(parts) == 2 and parts[1].replace(" ", "") != UTF8_CHARSET:
        raise ContentTypeError(content_type)


def extract_header(response: httpx.Response) -> CacheHeader:
    """
    Derive the snapshot header from response metadata.

    The true resource time is the Date header minus the Age header (when a
    cache in between reports one).

    Raises:
        ProtocolError: If Date is missing or Date/Age are malformed
    """
    date_value = response.headers.get("date")
    if date_value is None:
        raise ProtocolError("missing header: date")
    try:
        captured_at = parsedate_to_datetime(date_value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"bad date header: {date_value}") from e

    age_value = response.headers.get("age")
    if age_value is not None:
        try:
            age = int(age_value.strip())
        except ValueError as e:
            raise ProtocolError(f"bad integer header age: {age_value}") from e
        if age < 0:
            raise ProtocolError(f"bad integer header range age: {age_value}")
        captured_at -= timedelta(seconds=age)

    return CacheHeader(captured_at=captured_at, etag=response.headers.get("etag"))


def extract_error(response: httpx.Response) -> str:
    """Pull the server's error message out of a failed response."""
    text = response.text
    try:
        data = json.loads(text)
    except ValueError:
        return text
    if isinstance(data, dict) and data.get("error") is not None:
        error = data["error"]
        return error if isinstance(error, str) else str(error)
    return text


def ensure_ok(envelope: Envelope) -> None:
    """
    Reject error envelopes that arrived with a success status.

    Raises:
        ResponseError: If the envelope has a non-2xx status or an error
    """
    if envelope.status is not None:
        try:
            code: int | None = int(envelope.status)
        except (TypeError, ValueError):
            code = None
        if code is not None and not 200 <= code < 300:
            raise ResponseError(envelope.error_message or "", status=code)

    if envelope.error is not None:
        raise ResponseError(envelope.error_message or "")


class ConditionalFetcher:
    """
    One conditional GET exchange, with rate-limit retry.

    The fetcher holds no per-request state, so one instance is shared by all
    concurrent tasks of a run.

    Attributes:
        client: Shared httpx.AsyncClient
        retry_after_default: Delay used when a 429 has no usable Retry-After
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        sleep: Sleep = asyncio.sleep,
        retry_after_default: float = DEFAULT_RETRY_AFTER,
    ) -> None:
        """
        Initialize the fetcher.

        Args:
            client: Shared async HTTP client (base URL already set)
            sleep: Coroutine used to wait out rate limiting
            retry_after_default: Fallback delay in seconds
        """
        self.client = client
        self.retry_after_default = retry_after_default
        self._sleep = sleep

    async def fetch(
        self,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        cached: CacheHeader | None = None,
    ) -> FetchResult | None:
        """
        Fetch ``path``, conditionally on a prior snapshot.

        Args:
            path: Endpoint path relative to the API base URL
            params: Query parameters
            cached: Header of the cached snapshot, if any

        Returns:
            FetchResult on a fresh response, None when the server says the
            cached copy is still current

        Raises:
            TransportError: If the request cannot be sent
            StatusError: On any non-success status other than 304/429
            ContentTypeError: If the body is not JSON
            ResponseError: If the envelope reports an error
            ProtocolError: On malformed headers or body
        """
        headers = conditional_headers(cached)
        attempt = 0

        while True:
            response = await self._send(path, params, headers)

            if response.status_code == httpx.codes.NOT_MODIFIED:
                logger.debug("%s: not modified", path)
                return None

            if response.status_code == httpx.codes.TOO_MANY_REQUESTS:
                attempt += 1
                delay = parse_retry_after(
                    response.headers.get("retry-after"), self.retry_after_default
                )
                logger.warning(
                    "%s: rate limited, retrying in %.1fs (attempt %d)", path, delay, attempt
                )
                await self._sleep(delay)
                continue

            if not response.is_success:
                raise StatusError(response.status_code, extract_error(response), url=path)

            return self._parse(path, response)

    async def _send(
        self, path: str, params: Mapping[str, Any] | None, headers: dict[str, str]
    ) -> httpx.Response:
        try:
            return await self.client.get(path, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise TransportError(f"request failed: {e}", url=path) from e

    def _parse(self, path: str, response: httpx.Response) -> FetchResult:
        ensure_json(response)
        header = extract_header(response)

        try:
            data = json.loads(response.content)
        except ValueError as e:
            raise ProtocolError(f"failed to decode response data: {e}", url=path) from e
        if not isinstance(data, dict):
            raise ProtocolError("response envelope is not an object", url=path)

        try:
            envelope = Envelope.model_validate(data)
        except ValidationError as e:
            raise ProtocolError(f"malformed response envelope: {e}", url=path) from e

        ensure_ok(envelope)
        return FetchResult(header=header, envelope=envelope)


__all__ = [
    "ConditionalFetcher",
    "Sleep",
    "create_client",
    "conditional_headers",
    "parse_retry_after",
    "ensure_json",
    "extract_header",
    "extract_error",
    "ensure_ok",
]
