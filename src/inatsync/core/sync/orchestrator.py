"""
Bounded-concurrency batch fetching.

Fetches a batch of known ids in parallel: one asyncio task per id, a shared
semaphore bounding in-flight requests, and a single queue on which every task
reports its outcome to one collector. The first fatal error sets a shared
cancellation event; tasks that have not started, or are still waiting for a
permit, give up. Requests already in flight are left to finish, and work that
completed is never rolled back.

Example:
    >>> orchestrator = ConcurrentSyncOrchestrator(fetcher, store, max_workers=4)
    >>> outcome = await orchestrator.sync_batch([101, 102, 103])
    >>> outcome.raise_for_error()
    >>> sorted(outcome.fetched)
    [101, 103]
"""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum

from inatsync.core.api.fetcher import ConditionalFetcher
from inatsync.core.cache.store import CacheStore
from inatsync.core.exceptions import ConcurrencyError, ProtocolError
from inatsync.core.sync.models import BatchOutcome, FetchedEntity

logger = logging.getLogger(__name__)


class ItemStatus(str, Enum):
    """How a single id of a batch ended."""

    FETCHED = "fetched"
    UNCHANGED = "unchanged"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemReport:
    """Message sent by a worker task to the collector."""

    entity_id: int
    status: ItemStatus
    entity: FetchedEntity | None = None
    error: BaseException | None = None


class ConcurrentSyncOrchestrator:
    """
    Fetch batches of ids with a fixed worker budget and first-error cancellation.

    Each task runs its own conditional fetch cycle: it reads the id's cached
    header, fetches ``/<kind>/<id>``, writes the new snapshot on a cache miss
    and does nothing on a hit. Ids are distinct, so no two tasks ever write the
    same cache file.

    Attributes:
        kind: Entity kind (endpoint and cache subdirectory)
        max_workers: Size of the permit pool
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        store: CacheStore,
        *,
        max_workers: int = 4,
        kind: str = "observations",
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            fetcher: Shared conditional fetcher
            store: Cache store written by the tasks
            max_workers: Maximum concurrent in-flight requests
            kind: Entity kind to fetch
        """
        if max_workers < 1:
            raise ValueError("max_workers must be positive")
        self.fetcher = fetcher
        self.store = store
        self.max_workers = max_workers
        self.kind = kind

    def endpoint(self, entity_id: int) -> str:
        """API path of a single entity."""
        return f"/{self.kind}/{entity_id}"

    async def sync_batch(self, ids: Sequence[int]) -> BatchOutcome:
        """
        Fetch every id of a batch concurrently.

        Args:
            ids: Ids to refresh (duplicates are dropped)

        Returns:
            BatchOutcome; its ``error`` is the first fatal error observed, or
            None when every task completed or was skipped without failure
        """
        outcome = BatchOutcome()
        unique = list(dict.fromkeys(ids))
        if not unique:
            return outcome

        permits = asyncio.Semaphore(self.max_workers)
        cancel = asyncio.Event()
        channel: asyncio.Queue[ItemReport] = asyncio.Queue()

        tasks = [
            asyncio.create_task(
                self._run(entity_id, permits, cancel, channel),
                name=f"sync-{self.kind}-{entity_id}",
            )
            for entity_id in unique
        ]
        try:
            await self._collect(len(tasks), cancel, channel, outcome)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(
            "Batch of %d %s: %d fetched, %d unchanged, %d cancelled, %d failed",
            len(unique),
            self.kind,
            len(outcome.fetched),
            len(outcome.unchanged),
            len(outcome.cancelled),
            len(outcome.failed),
        )
        return outcome

    async def _collect(
        self,
        expected: int,
        cancel: asyncio.Event,
        channel: "asyncio.Queue[ItemReport]",
        outcome: BatchOutcome,
    ) -> None:
        for _ in range(expected):
            report = await channel.get()

            if report.status is ItemStatus.FETCHED:
                assert report.entity is not None
                outcome.fetched[report.entity_id] = report.entity
            elif report.status is ItemStatus.UNCHANGED:
                outcome.unchanged.append(report.entity_id)
            elif report.status is ItemStatus.CANCELLED:
                outcome.cancelled.append(report.entity_id)
            else:
                assert report.error is not None
                outcome.failed[report.entity_id] = report.error
                if outcome.error is None:
                    outcome.error = report.error
                    cancel.set()
                    logger.warning(
                        "%s %s failed, cancelling the rest of the batch: %s",
                        self.kind,
                        report.entity_id,
                        report.error,
                    )

    async def _run(
        self,
        entity_id: int,
        permits: asyncio.Semaphore,
        cancel: asyncio.Event,
        channel: "asyncio.Queue[ItemReport]",
    ) -> None:
        # Replaced on every normal exit; survives only if the task is torn down
        report = ItemReport(
            entity_id,
            ItemStatus.FAILED,
            error=ConcurrencyError(
                f"{self.kind} {entity_id}: worker exited without a result",
                entity_id=entity_id,
            ),
        )
        try:
            report = await self._sync_one(entity_id, permits, cancel)
        except Exception as e:
            report = ItemReport(entity_id, ItemStatus.FAILED, error=e)
        finally:
            channel.put_nowait(report)

    async def _sync_one(
        self, entity_id: int, permits: asyncio.Semaphore, cancel: asyncio.Event
    ) -> ItemReport:
        if cancel.is_set():
            return ItemReport(entity_id, ItemStatus.CANCELLED)

        async with permits:
            if cancel.is_set():
                return ItemReport(entity_id, ItemStatus.CANCELLED)

            cached = self.store.read_header(self.kind, entity_id)
            result = await self.fetcher.fetch(self.endpoint(entity_id), cached=cached)
            if result is None:
                logger.debug("%s %s unchanged", self.kind, entity_id)
                return ItemReport(entity_id, ItemStatus.UNCHANGED)

            entity = result.envelope.single()
            if entity.get("id") != entity_id:
                raise ProtocolError(
                    f"asked for {self.kind} {entity_id}, got {entity.get('id')!r}",
                    entity_id=entity_id,
                )

            self.store.write_entity(self.kind, entity_id, result.header, entity)
            logger.debug("%s %s fetched", self.kind, entity_id)
            return ItemReport(
                entity_id,
                ItemStatus.FETCHED,
                entity=FetchedEntity(header=result.header, data=entity),
            )
