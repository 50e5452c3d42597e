"""
API data models.

Pydantic models for the response envelope returned by the remote API and
for the cache header attached to every cached snapshot.

Example:
    >>> from datetime import datetime, timezone
    >>> from inatsync.core.api.models import CacheHeader, Envelope
    >>>
    >>> header = CacheHeader(date=datetime(2024, 5, 1, tzinfo=timezone.utc), etag='W/"abc"')
    >>> header.to_document()
    {'date': '2024-05-01T00:00:00+00:00', 'etag': 'W/"abc"'}
    >>>
    >>> page = Envelope.model_validate(
    ...     {"page": 1, "per_page": 200, "total_results": 2, "results": [{"id": 3}, {"id": 9}]}
    ... )
    >>> page.ids()
    [3, 9]
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from inatsync.core.exceptions import ProtocolError


class CacheHeader(BaseModel):
    """
    Snapshot metadata stored as the first document of every cache file.

    ``captured_at`` is the true resource time (Date header minus Age) and is
    serialized under the ``date`` key. The etag is optional; listing and
    batch snapshots never carry one.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    captured_at: datetime = Field(..., alias="date", description="True resource time (UTC)")
    etag: str | None = Field(default=None, description="Entity tag returned with the snapshot")

    @field_validator("captured_at")
    @classmethod
    def normalize_timezone(cls, v: datetime) -> datetime:
        """Store every timestamp as an aware UTC datetime."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v.astimezone(timezone.utc)

    def without_etag(self) -> "CacheHeader":
        """Return a copy with the etag dropped."""
        return self.model_copy(update={"etag": None})

    def to_document(self) -> dict[str, str]:
        """Serialize to the ``{date, etag?}`` header document."""
        doc = {"date": self.captured_at.isoformat()}
        if self.etag is not None:
            doc["etag"] = self.etag
        return doc


class Envelope(BaseModel):
    """
    Top-level JSON wrapper returned by the API.

    Success shape: ``{page, per_page, total_results, results}``.
    Failure shape: ``{status, error}``.
    """

    model_config = ConfigDict(extra="ignore")

    page: int | None = None
    per_page: int | None = None
    total_results: int | None = None
    results: list[Any] | None = None

    status: int | str | None = None
    error: Any = None

    @property
    def error_message(self) -> str | None:
        """Embedded error as text, if any."""
        if self.error is None:
            return None
        if isinstance(self.error, str):
            return self.error
        return str(self.error)

    def expect_results(self) -> list[Any]:
        """Return ``results`` or raise when the envelope carries none."""
        if self.results is None:
            raise ProtocolError("no results")
        return self.results

    def paging(self) -> tuple[int, int, int]:
        """
        Return ``(page, per_page, total_results)``.

        Raises:
            ProtocolError: If any of the paging fields is missing
        """
        page, per_page, total = self.page, self.per_page, self.total_results
        if page is None:
            raise ProtocolError("missing: page")
        if per_page is None:
            raise ProtocolError("missing: per_page")
        if total is None:
            raise ProtocolError("missing: total_results")
        return page, per_page, total

    def is_last_page(self) -> bool:
        """
        Check whether this page is the final one.

        The page is last when ``page * per_page >= total_results``.

        Raises:
            ProtocolError: If any of the paging fields is missing
        """
        page, per_page, total = self.paging()
        return page * per_page >= total

    def single(self) -> dict[str, Any]:
        """
        Return the only result of a single-entity response.

        Raises:
            ProtocolError: If paging fields say otherwise or results are empty
        """
        for name in ("page", "per_page", "total_results"):
            value = getattr(self, name)
            if value is not None and value != 1:
                raise ProtocolError(f"expected {name}: 1; got: {value}")

        results = self.expect_results()
        if not results:
            raise ProtocolError("empty results array")
        first = results[0]
        if not isinstance(first, dict):
            raise ProtocolError("result is not an object")
        return first

    def ids(self) -> list[int]:
        """
        Return the ``id`` of every result, in order.

        Raises:
            ProtocolError: If a result has no integer id
        """
        ids: list[int] = []
        for item in self.expect_results():
            if not isinstance(item, dict) or "id" not in item:
                raise ProtocolError("missing id")
            value = item["id"]
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise ProtocolError(f"id is not an unsigned integer: {value!r}")
            ids.append(value)
        return ids


@dataclass(frozen=True)
class FetchResult:
    """Metadata and envelope of a successful (non-304) exchange."""

    header: CacheHeader
    envelope: Envelope


__all__ = ["CacheHeader", "Envelope", "FetchResult"]
