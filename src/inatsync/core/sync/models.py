"""
Sync result models.

BatchOutcome is what the concurrent orchestrator hands back for one batch;
SyncReport summarizes a whole run for the CLI.
"""

from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, Field

from inatsync.core.api.models import CacheHeader


@dataclass(frozen=True)
class FetchedEntity:
    """A freshly fetched entity and the header it was cached with."""

    header: CacheHeader
    data: dict[str, Any]


@dataclass
class BatchOutcome:
    """
    Result of one concurrent batch.

    Every requested id ends up in exactly one of ``fetched``, ``unchanged``,
    ``cancelled`` or ``failed``. ``error`` is the first fatal error the
    collector saw; completed work is kept even when it is set.
    """

    fetched: dict[int, FetchedEntity] = field(default_factory=dict)
    unchanged: list[int] = field(default_factory=list)
    cancelled: list[int] = field(default_factory=list)
    failed: dict[int, BaseException] = field(default_factory=dict)
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        """True when no task failed."""
        return self.error is None

    def raise_for_error(self) -> None:
        """Re-raise the first fatal error, if any."""
        if self.error is not None:
            raise self.error


class SyncReport(BaseModel):
    """
    Summary of one sync run.

    Attributes:
        owner_id: Numeric id of the synced user
        login: Login the run was started with
        listed: Number of ids known after enumeration
        fetched: Entities that changed and were re-fetched
        unchanged: Entities confirmed current by a 304
        written: Files written per kind by normalization
    """

    owner_id: int
    login: str
    listed: int = Field(default=0, description="Ids known after enumeration")
    fetched: int = Field(default=0, description="Entities re-fetched")
    unchanged: int = Field(default=0, description="Entities confirmed current")
    written: dict[str, int] = Field(
        default_factory=dict,
        description="Files written per kind by normalization",
    )

    @property
    def total_written(self) -> int:
        """Files written across all kinds."""
        return sum(self.written.values())
