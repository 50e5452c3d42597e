"""
Per-entity file cache.

Every cached entity lives in its own file, ``<data_dir>/<kind>/<id>.yaml``,
made of two YAML documents separated by a ``---`` line: the snapshot header
(``{date, etag?}``) and the entity itself. Writes go to a temporary file in
the same directory and are renamed into place, so a reader never sees a
half-written file.

Layout:
    <data_dir>/
        observations/123.yaml
        users/42.yaml
        users/42.observations.yaml   # id listing of owner 42
        users/kueda.yaml -> 42.yaml  # login alias
        taxa/...

Example:
    >>> store = CacheStore(Path("~/.local/share/inatsync").expanduser())
    >>> store.ensure_layout()
    >>> header = store.read_header("observations", 123)
"""

import logging
import os
import tempfile
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from inatsync.core.api.models import CacheHeader
from inatsync.core.cache.models import ENTITY_KINDS, CachedEntry, IdListingCache
from inatsync.core.exceptions import CacheCorruptionError

logger = logging.getLogger(__name__)

DOCUMENT_SEPARATOR = "---\n"


def _dump(data: Any) -> str:
    return yaml.safe_dump(
        data,
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


class CacheStore:
    """
    Storage layer for the per-entity cache.

    Work is partitioned by id, so concurrent writers never target the same
    file and atomic whole-file replacement needs no extra locking.
    """

    SUFFIX = ".yaml"
    OWNER_KIND = "users"

    def __init__(self, data_dir: Path) -> None:
        """
        Initialize store with a cache root directory.

        Args:
            data_dir: Root directory holding one subdirectory per kind
        """
        self.data_dir = Path(data_dir)

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    def kind_dir(self, kind: str) -> Path:
        """Directory holding every cached entity of ``kind``."""
        return self.data_dir / kind

    def entity_path(self, kind: str, name: int | str) -> Path:
        """Cache file of one entity (``name`` is an id or an alias)."""
        return self.kind_dir(kind) / f"{name}{self.SUFFIX}"

    def listing_path(self, owner_id: int) -> Path:
        """Cache file holding the id listing of ``owner_id``."""
        return self.kind_dir(self.OWNER_KIND) / f"{owner_id}.observations{self.SUFFIX}"

    def ensure_layout(self, kinds: Iterable[str] = ENTITY_KINDS) -> None:
        """Create the per-kind directories."""
        for kind in kinds:
            self.kind_dir(kind).mkdir(parents=True, exist_ok=True)

    def entity_ids(self, kind: str) -> list[int]:
        """Ids of the cached entities of ``kind``, ascending (aliases and listings excluded)."""
        directory = self.kind_dir(kind)
        if not directory.is_dir():
            return []
        return sorted(
            int(path.stem)
            for path in directory.iterdir()
            if path.suffix == self.SUFFIX and path.stem.isdigit() and not path.is_symlink()
        )

    def aliases(self, kind: str) -> dict[str, int]:
        """Alias names of ``kind`` mapped to the id they point at."""
        directory = self.kind_dir(kind)
        if not directory.is_dir():
            return {}
        found: dict[str, int] = {}
        for path in sorted(directory.iterdir()):
            if path.suffix != self.SUFFIX or not path.is_symlink():
                continue
            target = os.readlink(path)
            stem = target[: -len(self.SUFFIX)] if target.endswith(self.SUFFIX) else ""
            if stem.isdigit():
                found[path.stem] = int(stem)
        return found

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read(self, path: Path) -> CachedEntry | None:
        """
        Read both documents of a cache file.

        Args:
            path: Cache file to read

        Returns:
            CachedEntry, or None if the file does not exist

        Raises:
            CacheCorruptionError: If the file is not two YAML documents with a
                valid header
        """
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

        try:
            documents = list(yaml.safe_load_all(text))
        except yaml.YAMLError as e:
            raise CacheCorruptionError(path, f"invalid YAML: {e}") from e

        if not documents:
            raise CacheCorruptionError(path, "contains no document")
        if len(documents) < 2:
            raise CacheCorruptionError(path, "contains only one document")

        raw_header = documents[0]
        if not isinstance(raw_header, Mapping):
            raise CacheCorruptionError(path, "header is not a mapping")
        try:
            header = CacheHeader.model_validate(dict(raw_header))
        except ValidationError as e:
            raise CacheCorruptionError(path, f"invalid header: {e}") from e

        return CachedEntry(header=header, data=documents[1])

    def read_entity(self, kind: str, name: int | str) -> CachedEntry | None:
        """
        Read a cached entity and check it carries a numeric id.

        Raises:
            CacheCorruptionError: If the file is corrupt or lacks an id
        """
        path = self.entity_path(kind, name)
        entry = self.read(path)
        if entry is None:
            return None
        if not isinstance(entry.data, Mapping):
            raise CacheCorruptionError(path, "entity is not a mapping")
        entity_id = entry.data.get("id")
        if entity_id is None:
            raise CacheCorruptionError(path, "missing id")
        if isinstance(entity_id, bool) or not isinstance(entity_id, int):
            raise CacheCorruptionError(path, "id is not an integer")
        return entry

    def read_header(self, kind: str, entity_id: int) -> CacheHeader | None:
        """Snapshot header of a cached entity, or None when not cached."""
        entry = self.read_entity(kind, entity_id)
        return entry.header if entry else None

    def read_entity_id(self, kind: str, name: int | str) -> tuple[CacheHeader, int] | None:
        """Header and id of a cached entity, usually looked up by alias."""
        entry = self.read_entity(kind, name)
        if entry is None:
            return None
        return entry.header, entry.data["id"]

    def read_id_listing(self, owner_id: int) -> IdListingCache | None:
        """
        Read the cached id listing of an owner.

        Raises:
            CacheCorruptionError: If the listing is not an ascending id list
        """
        path = self.listing_path(owner_id)
        entry = self.read(path)
        if entry is None:
            return None
        if not isinstance(entry.data, list):
            raise CacheCorruptionError(path, "id listing is not a sequence")
        try:
            return IdListingCache(header=entry.header, ids=entry.data)
        except ValidationError as e:
            raise CacheCorruptionError(path, f"invalid id listing: {e}") from e

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def write(self, path: Path, header: CacheHeader, data: Any) -> Path:
        """
        Atomically write a two-document cache file.

        Args:
            path: Destination file (its directory is created if needed)
            header: Snapshot header
            data: Entity mapping or id list

        Returns:
            Path to the written file
        """
        content = _dump(header.to_document()) + DOCUMENT_SEPARATOR + _dump(data)
        path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            mode="w",
            encoding="utf-8",
            dir=path.parent,
            prefix=f".{path.stem}.",
            suffix=".tmp",
            delete=False,
        ) as tmp:
            tmp_path = Path(tmp.name)
            try:
                tmp.write(content)
                tmp.flush()
            except BaseException:
                tmp.close()
                tmp_path.unlink(missing_ok=True)
                raise

        tmp_path.replace(path)
        return path

    def write_entity(
        self, kind: str, entity_id: int, header: CacheHeader, data: Mapping[str, Any]
    ) -> Path:
        """Write one entity to ``<kind>/<id>.yaml``."""
        return self.write(self.entity_path(kind, entity_id), header, dict(data))

    def write_table(
        self,
        kind: str,
        table: Mapping[int, Mapping[str, Any]],
        header: CacheHeader,
        headers: Mapping[int, CacheHeader] | None = None,
    ) -> int:
        """
        Write every entity of a table.

        Args:
            kind: Entity kind (subdirectory)
            table: Entities keyed by id
            header: Header used for every entity
            headers: Per-id headers taking precedence over ``header``

        Returns:
            Number of files written
        """
        for entity_id, data in table.items():
            own = headers.get(entity_id, header) if headers else header
            self.write_entity(kind, entity_id, own, data)
        if table:
            logger.debug("Wrote %d %s", len(table), kind)
        return len(table)

    def write_id_listing(self, owner_id: int, listing: IdListingCache) -> Path:
        """Persist the id listing of an owner."""
        return self.write(self.listing_path(owner_id), listing.header, listing.ids)

    def remove_entity(self, kind: str, entity_id: int) -> bool:
        """
        Delete a cached entity so the next run fetches it unconditionally.

        Returns:
            True if a file was removed
        """
        path = self.entity_path(kind, entity_id)
        if not path.is_file() or path.is_symlink():
            return False
        path.unlink()
        logger.debug("Removed %s", path)
        return True

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------

    def link_alias(self, kind: str, alias: str, entity_id: int) -> Path:
        """
        Point ``<kind>/<alias>.yaml`` at ``<kind>/<id>.yaml``.

        Other aliases pointing at the same id (e.g. a previous login) are
        removed, and an alias pointing at another id is repointed.

        Raises:
            CacheCorruptionError: If the alias path is a regular file
        """
        directory = self.kind_dir(kind)
        target = f"{entity_id}{self.SUFFIX}"
        link = directory / f"{alias}{self.SUFFIX}"
        directory.mkdir(parents=True, exist_ok=True)

        for entry in directory.iterdir():
            if entry.is_symlink() and entry.name != link.name:
                if os.readlink(entry) == target:
                    logger.info("Removing stale alias %s -> %s", entry.name, target)
                    entry.unlink()

        if link.is_symlink():
            if os.readlink(link) == target:
                return link
            link.unlink()
        elif link.exists():
            raise CacheCorruptionError(link, "alias is a regular file")

        link.symlink_to(target)
        logger.debug("Linked alias %s -> %s", link.name, target)
        return link
