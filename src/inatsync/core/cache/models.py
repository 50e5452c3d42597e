"""
Cache data models.

Defines the entity kinds the cache knows about, the in-memory form of a
cached file, and the per-owner id listing used to resume pagination.
"""

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, Field, StrictInt, field_validator

from inatsync.core.api.models import CacheHeader

# One cache subdirectory and one normalization table per kind
ENTITY_KINDS: tuple[str, ...] = (
    "applications",
    "comments",
    "conservation_statuses",
    "controlled_term_labels",
    "controlled_terms",
    "faves",
    "flags",
    "identifications",
    "observation_field_values",
    "observation_fields",
    "observation_photos",
    "observations",
    "photos",
    "project_admins",
    "project_observations",
    "projects",
    "quality_metrics",
    "taxa",
    "taxon_changes",
    "users",
    "votes",
)


@dataclass(frozen=True)
class CachedEntry:
    """Both documents of a cache file."""

    header: CacheHeader
    data: Any


class IdListingCache(BaseModel):
    """
    Cached id listing of one owner.

    Attributes:
        header: Metadata of the final page of the last enumeration (no etag)
        ids: Every id seen so far, strictly ascending
    """

    header: CacheHeader
    ids: list[StrictInt] = Field(default_factory=list)

    @field_validator("ids")
    @classmethod
    def ensure_strictly_ascending(cls, v: list[int]) -> list[int]:
        """Reject negative, duplicate or out-of-order ids."""
        if v and v[0] < 0:
            raise ValueError(f"negative id: {v[0]}")
        for prev, cur in zip(v, v[1:]):
            if cur <= prev:
                raise ValueError(f"ids not strictly ascending at {prev}, {cur}")
        return v

    @property
    def last_id(self) -> int | None:
        """Highest id in the listing, if any."""
        return self.ids[-1] if self.ids else None
