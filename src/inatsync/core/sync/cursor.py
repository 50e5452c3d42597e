"""
Keyset pagination over an owner's observation ids.

Ids are requested in ascending order and filtered with ``id_above`` set to
the last id already known, so concurrent inserts on the server never shift
pages the way offset pagination does. The listing is resumed from the cached
id list, and every request carries ``If-Modified-Since`` from the cached
snapshot so an unchanged remote set costs one round trip.

Remote deletions are not detected: the cached listing is a superset that can
keep ids the server no longer has.
"""

import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass

from inatsync.core.api.fetcher import ConditionalFetcher
from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.models import IdListingCache
from inatsync.core.cache.store import CacheStore
from inatsync.core.exceptions import ProtocolError

logger = logging.getLogger(__name__)

MAX_IDS_PER_PAGE = 200


@dataclass(frozen=True)
class IdPage:
    """One page of ids as returned by the API."""

    number: int
    id_above: int | None
    ids: list[int]
    header: CacheHeader
    is_last: bool


def check_page_order(ids: list[int], id_above: int | None) -> None:
    """
    Verify a page is strictly ascending and above the requested cursor.

    Raises:
        ProtocolError: If any id is not greater than its predecessor
    """
    floor = id_above
    for entity_id in ids:
        if floor is not None and entity_id <= floor:
            raise ProtocolError(
                f"page not ascending: {entity_id} after {floor}",
                id_above=id_above,
            )
        floor = entity_id


class PageCursor:
    """
    Sequential id enumeration for one owner.

    Each page depends on the last id of the previous one, so there is no
    parallelism here.

    Example:
        >>> cursor = PageCursor(fetcher, store)
        >>> ids = await cursor.collect(owner_id=42)
    """

    ENDPOINT = "/observations"

    def __init__(
        self,
        fetcher: ConditionalFetcher,
        store: CacheStore,
        *,
        per_page: int = MAX_IDS_PER_PAGE,
    ) -> None:
        """
        Initialize the cursor.

        Args:
            fetcher: Shared conditional fetcher
            store: Cache store holding the id listing
            per_page: Page size cap sent to the API
        """
        if per_page < 1:
            raise ValueError("per_page must be positive")
        self.fetcher = fetcher
        self.store = store
        self.per_page = per_page

    def params(self, owner_id: int, id_above: int | None) -> dict[str, str]:
        """Query parameters for the page after ``id_above``."""
        params = {
            # keep sorted
            "only_id": "true",
            "order": "asc",
            "order_by": "id",
            "per_page": str(self.per_page),
            "user_id": str(owner_id),
        }
        if id_above is not None:
            params["id_above"] = str(id_above)
        return params

    async def iter_pages(
        self,
        owner_id: int,
        *,
        after: int | None = None,
        since: CacheHeader | None = None,
    ) -> AsyncIterator[IdPage]:
        """
        Yield pages of ids above ``after`` until the last page.

        Stops early, without yielding, when the server answers 304.

        Args:
            owner_id: Owner whose ids are listed
            after: Highest id already known
            since: Cached snapshot header used for If-Modified-Since

        Raises:
            ProtocolError: If a page is out of order, lacks paging fields, or
                is empty before the last page
        """
        id_above = after
        while True:
            result = await self.fetcher.fetch(
                self.ENDPOINT,
                params=self.params(owner_id, id_above),
                cached=since,
            )
            if result is None:
                logger.debug("Id listing of %s unchanged above %s", owner_id, id_above)
                return

            envelope = result.envelope
            ids = envelope.ids()
            check_page_order(ids, id_above)
            number, _, total = envelope.paging()
            is_last = envelope.is_last_page()

            yield IdPage(
                number=number,
                id_above=id_above,
                ids=ids,
                header=result.header,
                is_last=is_last,
            )

            if is_last:
                return
            if not ids:
                raise ProtocolError(
                    "empty page before the last page",
                    page=number,
                    total_results=total,
                )
            id_above = ids[-1]

    async def collect(self, owner_id: int) -> list[int]:
        """
        Return every known id of an owner, ascending, and persist the listing.

        Starts from the cached listing. The listing file is rewritten only if
        at least one fresh page arrived; it keeps the metadata of the most
        recent page with the etag dropped, since listing etags never validate
        per-item fetches.

        Args:
            owner_id: Owner whose ids are listed

        Returns:
            Merged ascending id list
        """
        cached = self.store.read_id_listing(owner_id)
        ids = list(cached.ids) if cached else []
        since = cached.header.without_etag() if cached else None

        after = cached.last_id if cached else None

        latest: CacheHeader | None = None
        pages = 0
        async for page in self.iter_pages(owner_id, after=after, since=since):
            ids.extend(page.ids)
            latest = page.header
            pages += 1
            logger.debug(
                "Page %d of owner %s: %d ids above %s",
                page.number,
                owner_id,
                len(page.ids),
                page.id_above,
            )

        if latest is None:
            logger.info("Id listing of owner %s unchanged (%d ids)", owner_id, len(ids))
            return ids

        self.store.write_id_listing(
            owner_id, IdListingCache(header=latest.without_etag(), ids=ids)
        )
        logger.info("Listed %d ids of owner %s in %d page(s)", len(ids), owner_id, pages)
        return ids
