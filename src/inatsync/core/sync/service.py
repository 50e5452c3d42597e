"""
Top-level sync run.

Resolves an owner login to its numeric id, enumerates the owner's
observation ids, refreshes them batch by batch with the concurrent
orchestrator, and normalizes every batch that brought fresh data.

Flow:
    sync_user(login)          -> users/<id>.yaml + users/<login>.yaml alias
    PageCursor.collect(id)    -> users/<id>.observations.yaml
    for each batch of ids:
        orchestrator.sync_batch(batch)   -> observations/<id>.yaml
        Normalizer(fetched).run().flush  -> <kind>/<id>.yaml

Example:
    >>> async with create_client(config) as client:
    ...     service = SyncService.from_config(config, client)
    ...     report = await service.sync_owner("kueda")
"""

import asyncio
import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import TypeVar

import httpx

from inatsync.core.api.fetcher import ConditionalFetcher, Sleep
from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.store import CacheStore
from inatsync.core.config.models import SyncConfig
from inatsync.core.exceptions import ProtocolError
from inatsync.core.normalize.normalizer import Normalizer
from inatsync.core.sync.cursor import PageCursor
from inatsync.core.sync.models import FetchedEntity, SyncReport
from inatsync.core.sync.orchestrator import ConcurrentSyncOrchestrator

logger = logging.getLogger(__name__)

T = TypeVar("T")

USERS_KIND = "users"


def chunked(items: Sequence[T], size: int) -> Iterator[list[T]]:
    """Split ``items`` into consecutive lists of at most ``size``."""
    if size < 1:
        raise ValueError("size must be positive")
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def batch_header(fetched: Mapping[int, FetchedEntity]) -> CacheHeader:
    """
    Shared metadata for the entities derived from one batch.

    Uses the earliest snapshot time of the batch so a later conditional
    request never claims more freshness than the oldest response had. Etags
    belong to single responses and are dropped.
    """
    if not fetched:
        raise ValueError("empty batch has no header")
    oldest = min((entity.header for entity in fetched.values()), key=lambda h: h.captured_at)
    return oldest.without_etag()


class SyncService:
    """
    Mirrors one owner's records into the local cache.

    Attributes:
        fetcher: Shared conditional fetcher
        store: Local cache
        cursor: Id enumeration
        orchestrator: Concurrent batch fetcher
        batch_size: Ids per batch
    """

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        store: CacheStore,
        *,
        per_page: int = 200,
        batch_size: int = 20,
        max_workers: int = 4,
    ) -> None:
        self.fetcher = fetcher
        self.store = store
        self.batch_size = batch_size
        self.cursor = PageCursor(fetcher, store, per_page=per_page)
        self.orchestrator = ConcurrentSyncOrchestrator(
            fetcher, store, max_workers=max_workers
        )

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        client: httpx.AsyncClient,
        *,
        sleep: Sleep = asyncio.sleep,
    ) -> "SyncService":
        """
        Build a service from loaded configuration.

        Args:
            config: Sync configuration
            client: Open async HTTP client
            sleep: Override for the rate-limit wait (tests)
        """
        fetcher = ConditionalFetcher(
            client, sleep=sleep, retry_after_default=config.retry_after_default
        )
        return cls(
            fetcher,
            CacheStore(config.data_dir),
            per_page=config.per_page,
            batch_size=config.batch_size,
            max_workers=config.max_workers,
        )

    async def sync_user(self, login: str) -> int:
        """
        Refresh the owner record and return the owner's numeric id.

        The cached copy is found through the login alias. On a cache hit the
        cached id is returned; otherwise the user file and alias are written.

        Raises:
            ProtocolError: If the response lacks an id or login
            CacheCorruptionError: If the cached user file is broken
        """
        cached = self.store.read_entity_id(USERS_KIND, login)
        result = await self.fetcher.fetch(
            f"/users/{login}",
            cached=cached[0] if cached else None,
        )
        if result is None:
            if cached is None:
                raise ProtocolError("not modified without a cached copy", login=login)
            logger.info("User %s unchanged (id %s)", login, cached[1])
            return cached[1]

        body = result.envelope.single()
        user_id = body.get("id")
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 0:
            raise ProtocolError("user id not found", login=login)
        user_login = body.get("login")
        if not isinstance(user_login, str) or not user_login:
            raise ProtocolError("user login not found", login=login)

        self.store.write_entity(USERS_KIND, user_id, result.header, body)
        self.store.link_alias(USERS_KIND, user_login, user_id)
        logger.info("User %s synced (id %s)", login, user_id)
        return user_id

    async def sync_owner(self, login: str) -> SyncReport:
        """
        Run a full sync for one owner.

        Batches run one after another. The first batch that reports an error
        stops the run once its completed items are normalized, and the error
        propagates. Batches already normalized stay cached.

        Args:
            login: Owner login

        Returns:
            SyncReport for the run
        """
        self.store.ensure_layout()
        owner_id = await self.sync_user(login)

        ids = await self.cursor.collect(owner_id)
        report = SyncReport(owner_id=owner_id, login=login, listed=len(ids))

        for number, batch in enumerate(chunked(ids, self.batch_size), start=1):
            outcome = await self.orchestrator.sync_batch(batch)

            report.fetched += len(outcome.fetched)
            report.unchanged += len(outcome.unchanged)
            # Completed items of a failed batch are normalized before it raises
            if outcome.fetched:
                written = self.normalize(outcome.fetched)
                for kind, count in written.items():
                    report.written[kind] = report.written.get(kind, 0) + count
                logger.debug("Batch %d normalized: %s", number, written)

            outcome.raise_for_error()

        return report

    def normalize(self, fetched: Mapping[int, FetchedEntity]) -> dict[str, int]:
        """
        Decompose one batch of fetched observations and flush the tables.

        If normalization fails, the batch's observation files are removed so
        the next run fetches them again instead of revalidating them.

        Raises:
            MalformedEntityError: If an embedded object cannot be normalized
        """
        normalizer = Normalizer({eid: entity.data for eid, entity in fetched.items()})
        try:
            normalizer.run()
            return normalizer.flush(
                self.store,
                batch_header(fetched),
                root_headers={eid: entity.header for eid, entity in fetched.items()},
            )
        except BaseException:
            for eid in fetched:
                self.store.remove_entity(self.orchestrator.kind, eid)
            logger.warning("Discarded %d un-normalized %s", len(fetched), self.orchestrator.kind)
            raise
