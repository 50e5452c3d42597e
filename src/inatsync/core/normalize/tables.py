"""
Entity tables and the two extraction primitives.

An embedded object is moved out of its parent into the table of its kind,
keyed by its own id, and the parent keeps only the id. Arrays of embedded
objects become ordered id lists. Redundant ``<field>_id`` / ``<field>_ids``
convenience fields are dropped at the same time.

Example:
    >>> obs = {"id": 1, "user": {"id": 7, "login": "x"}, "user_id": 7}
    >>> extract_object(obs, "user")
    (7, {'id': 7, 'login': 'x'})
    >>> obs
    {'id': 1, 'user': 7}
"""

from collections.abc import Iterable
from typing import Any

from inatsync.core.cache.models import ENTITY_KINDS
from inatsync.core.exceptions import MalformedEntityError

Entity = dict[str, Any]
EntityTable = dict[int, Entity]


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def entity_id(obj: Entity, field: str) -> int:
    """
    Return the numeric id of an embedded object.

    Raises:
        MalformedEntityError: If the id is missing or not an unsigned integer
    """
    if "id" not in obj:
        raise MalformedEntityError(f"{field}: missing id", field=field)
    value = obj["id"]
    if not _is_int(value) or value < 0:
        raise MalformedEntityError(f"{field}: id is not an unsigned integer", field=field)
    return value


def extract_object(parent: Entity, field: str) -> tuple[int, Entity] | None:
    """
    Move an embedded object out of ``parent[field]``.

    Absent, null and already-scalar id values are left alone.

    Returns:
        ``(id, object)`` when something was extracted, otherwise None

    Raises:
        MalformedEntityError: If the field holds something other than an
            object or an id, or the object has no usable id
    """
    value = parent.get(field)
    if value is None or _is_int(value):
        return None
    if not isinstance(value, dict):
        raise MalformedEntityError(f"{field}: not an object", field=field)

    eid = entity_id(value, field)
    parent[field] = eid
    parent.pop(f"{field}_id", None)
    return eid, value


def extract_array(parent: Entity, field: str) -> list[tuple[int, Entity]]:
    """
    Move an array of embedded objects out of ``parent[field]``.

    The field is replaced by the ids in their original order. An absent or
    null field, or one that already holds only ids, yields nothing.

    Returns:
        ``(id, object)`` pairs in array order

    Raises:
        MalformedEntityError: If the field is not an array, or an item is
            not an object with a usable id
    """
    value = parent.get(field)
    if value is None:
        return []
    if not isinstance(value, list):
        raise MalformedEntityError(f"{field}: not an array", field=field)
    if value and all(_is_int(item) for item in value):
        return []

    extracted: list[tuple[int, Entity]] = []
    for item in value:
        if not isinstance(item, dict):
            raise MalformedEntityError(f"{field} item: not an object", field=field)
        extracted.append((entity_id(item, f"{field} item"), item))

    parent[field] = [eid for eid, _ in extracted]
    parent.pop(f"{field}_ids", None)
    return extracted


class EntityTables:
    """
    One id-keyed table per entity kind.

    Collisions resolve last-write-wins. Self-references are stored as ids
    into these tables, never as live object references.
    """

    def __init__(self, kinds: Iterable[str] = ENTITY_KINDS) -> None:
        self._tables: dict[str, EntityTable] = {kind: {} for kind in kinds}

    def __getitem__(self, kind: str) -> EntityTable:
        return self._tables[kind]

    def __contains__(self, kind: object) -> bool:
        return kind in self._tables

    def put(self, kind: str, eid: int, entity: Entity) -> None:
        self._tables[kind][eid] = entity

    def non_empty(self) -> dict[str, EntityTable]:
        """Tables holding at least one entity, by kind."""
        return {kind: table for kind, table in self._tables.items() if table}

    def counts(self) -> dict[str, int]:
        return {kind: len(table) for kind, table in self.non_empty().items()}
