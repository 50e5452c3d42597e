"""
Decomposition of nested observations into flat per-kind tables.

A Normalizer is created for one batch of freshly fetched observations, runs
the declared pass graph over them, flushes every non-empty table to the
cache, and is then discarded.

Example:
    >>> normalizer = Normalizer({obs["id"]: obs for obs in batch})
    >>> tables = normalizer.run()
    >>> tables["users"][7]
    {'id': 7, 'login': 'x'}
    >>> normalizer.flush(store, header)
    {'observations': 1, 'users': 1}
"""

import logging
from collections import deque
from collections.abc import Mapping, Sequence

from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.store import CacheStore
from inatsync.core.exceptions import MalformedEntityError
from inatsync.core.normalize.pipeline import (
    EXECUTION_ORDER,
    ROOT_KIND,
    Extraction,
    PassGroup,
    validate_pipeline,
)
from inatsync.core.normalize.tables import (
    Entity,
    EntityTables,
    extract_array,
    extract_object,
)

logger = logging.getLogger(__name__)


def _extract(holder: Entity, extraction: Extraction) -> list[tuple[int, Entity]]:
    if extraction.many:
        return extract_array(holder, extraction.field)
    found = extract_object(holder, extraction.field)
    return [found] if found else []


def _holders(parent: Entity, within: str | None) -> list[Entity]:
    """Objects of ``parent`` that carry the extracted field."""
    if within is None:
        return [parent]
    items = parent.get(within)
    if items is None:
        return []
    if not isinstance(items, list):
        raise MalformedEntityError(f"{within}: not an array", field=within)
    for item in items:
        if not isinstance(item, dict):
            raise MalformedEntityError(f"{within} item: not an object", field=within)
    return items


class Normalizer:
    """
    Runs the extraction passes over one batch.

    Attributes:
        tables: Per-kind tables, seeded with the batch's observations
    """

    def __init__(
        self,
        observations: Mapping[int, Entity],
        *,
        pipeline: Sequence[PassGroup] | None = None,
    ) -> None:
        """
        Seed the tables with a batch of observations.

        Args:
            observations: Fetched observations keyed by id; they are
                rewritten in place
            pipeline: Pass graph to run (defaults to the built-in one)
        """
        self.groups = EXECUTION_ORDER if pipeline is None else validate_pipeline(pipeline)
        self.tables = EntityTables()
        for eid, observation in observations.items():
            self.tables.put(ROOT_KIND, eid, observation)

    def run(self) -> EntityTables:
        """
        Apply every pass group in order.

        Returns:
            The populated tables

        Raises:
            MalformedEntityError: If an embedded object lacks a numeric id
        """
        for group in self.groups:
            extracted = sum(self._apply(extraction) for extraction in group.extractions)
            logger.debug("Pass %s extracted %d objects", group.name, extracted)
        logger.debug("Normalized batch into %s", self.tables.counts())
        return self.tables

    def _apply(self, extraction: Extraction) -> int:
        if extraction.self_referential:
            return self._expand(extraction)

        target = self.tables[extraction.target]
        count = 0
        for parent in list(self.tables[extraction.source].values()):
            for holder in _holders(parent, extraction.within):
                for eid, obj in _extract(holder, extraction):
                    target[eid] = obj
                    count += 1
        return count

    def _expand(self, extraction: Extraction) -> int:
        # Newly added entries may embed further levels of the same kind
        table = self.tables[extraction.source]
        pending = deque(table.values())
        count = 0
        while pending:
            parent = pending.popleft()
            for eid, obj in _extract(parent, extraction):
                table[eid] = obj
                pending.append(obj)
                count += 1
        return count

    def flush(
        self,
        store: CacheStore,
        header: CacheHeader,
        root_headers: Mapping[int, CacheHeader] | None = None,
    ) -> dict[str, int]:
        """
        Write every non-empty table to the cache.

        Args:
            store: Destination cache
            header: Shared metadata of the batch, used for derived entities
            root_headers: Per-observation headers from their own fetches

        Returns:
            Files written per kind
        """
        written: dict[str, int] = {}
        for kind, table in self.tables.non_empty().items():
            own = root_headers if kind == ROOT_KIND else None
            written[kind] = store.write_table(kind, table, header, own)
        return written
