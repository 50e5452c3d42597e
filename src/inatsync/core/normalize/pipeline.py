"""
Declared dependency graph of normalization passes.

Extractions are grouped into passes. A pass may only read a table once every
pass that writes to that table has run, because later passes scan objects
that only exist after earlier ones populated their tables. The graph below
states those dependencies explicitly and ``validate_pipeline`` checks them at
import time, so reordering a pass cannot silently drop extractions.

Self-referential extractions (taxon ancestors, controlled term values) read
and write the same table. They extend it through a worklist and are the only
extraction of their pass touching that table.

Pass order:
    observations -> references -> expansions -> media -> flags -> users

Users come last: almost every earlier pass surfaces new objects that embed a
user.
"""

from collections.abc import Sequence
from dataclasses import dataclass

from inatsync.core.cache.models import ENTITY_KINDS

ROOT_KIND = "observations"


class PipelineError(ValueError):
    """Raised when a pass graph violates its ordering rules."""


@dataclass(frozen=True)
class Extraction:
    """
    Move ``field`` of every ``source`` entity into the ``target`` table.

    Attributes:
        source: Table scanned
        field: Field holding the embedded object (or array when ``many``)
        target: Table receiving the extracted objects
        many: Field holds an array of objects
        within: Inline array of the source whose items hold ``field``;
            the items themselves stay embedded
    """

    source: str
    field: str
    target: str
    many: bool = False
    within: str | None = None

    @property
    def self_referential(self) -> bool:
        return self.source == self.target and self.within is None

    def describe(self) -> str:
        if self.within:
            path = f"{self.source}.{self.within}[].{self.field}"
        else:
            path = f"{self.source}.{self.field}"
        return f"{path}{'[]' if self.many else ''} -> {self.target}"


@dataclass(frozen=True)
class PassGroup:
    """A set of extractions that may run in any order among themselves."""

    name: str
    requires: tuple[str, ...]
    extractions: tuple[Extraction, ...]

    @property
    def reads(self) -> set[str]:
        return {e.source for e in self.extractions}

    @property
    def writes(self) -> set[str]:
        return {e.target for e in self.extractions}


def _one(source: str, field: str, target: str, within: str | None = None) -> Extraction:
    return Extraction(source, field, target, many=False, within=within)


def _many(source: str, field: str, target: str, within: str | None = None) -> Extraction:
    return Extraction(source, field, target, many=True, within=within)


PIPELINE: tuple[PassGroup, ...] = (
    PassGroup(
        name="observations",
        requires=(),
        extractions=(
            _one(ROOT_KIND, "controlled_attribute", "controlled_terms", within="annotations"),
            _one(ROOT_KIND, "controlled_value", "controlled_terms", within="annotations"),
            _many(ROOT_KIND, "votes", "votes", within="annotations"),
            _one(ROOT_KIND, "application", "applications"),
            _many(ROOT_KIND, "comments", "comments"),
            _many(ROOT_KIND, "faves", "faves"),
            _many(ROOT_KIND, "identifications", "identifications"),
            _many(ROOT_KIND, "non_owner_ids", "identifications"),
            _many(ROOT_KIND, "ofvs", "observation_field_values"),
            _many(ROOT_KIND, "observation_photos", "observation_photos"),
            _many(ROOT_KIND, "project_observations", "project_observations"),
            _many(ROOT_KIND, "quality_metrics", "quality_metrics"),
            _many(ROOT_KIND, "votes", "votes"),
        ),
    ),
    PassGroup(
        name="references",
        requires=("observations",),
        extractions=(
            _one(ROOT_KIND, "taxon", "taxa"),
            _one(ROOT_KIND, "community_taxon", "taxa"),
            _one("identifications", "taxon", "taxa"),
            _one("identifications", "previous_observation_taxon", "taxa"),
            _one("identifications", "taxon_change", "taxon_changes"),
            _one("observation_field_values", "observation_field", "observation_fields"),
            _one("project_observations", "project", "projects"),
            _many("controlled_terms", "values", "controlled_terms"),
        ),
    ),
    PassGroup(
        name="expansions",
        requires=("references",),
        extractions=(
            _many("taxa", "ancestors", "taxa"),
            _many("controlled_terms", "labels", "controlled_term_labels"),
            _many("projects", "admins", "project_admins"),
        ),
    ),
    PassGroup(
        name="media",
        requires=("expansions",),
        extractions=(
            _one("taxa", "conservation_status", "conservation_statuses"),
            _one("taxa", "default_photo", "photos"),
            _one("observation_photos", "photo", "photos"),
            _many(ROOT_KIND, "photos", "photos"),
        ),
    ),
    PassGroup(
        name="flags",
        requires=("media",),
        extractions=(
            _many("comments", "flags", "flags"),
            _many("identifications", "flags", "flags"),
            _many(ROOT_KIND, "flags", "flags"),
            _many("photos", "flags", "flags"),
            _many("projects", "flags", "flags"),
        ),
    ),
    PassGroup(
        name="users",
        requires=("flags",),
        extractions=(
            _one("comments", "user", "users"),
            _one("faves", "user", "users"),
            _one("identifications", "user", "users"),
            _one("observation_field_values", "user", "users"),
            _one(ROOT_KIND, "user", "users"),
            _one(ROOT_KIND, "user", "users", within="annotations"),
            _one("project_observations", "user", "users"),
            _one("quality_metrics", "user", "users"),
            _one("votes", "user", "users"),
        ),
    ),
)


def _ancestors(name: str, by_name: dict[str, PassGroup]) -> set[str]:
    seen: set[str] = set()
    stack = list(by_name[name].requires)
    while stack:
        current = stack.pop()
        if current not in seen:
            seen.add(current)
            stack.extend(by_name[current].requires)
    return seen


def validate_pipeline(
    groups: Sequence[PassGroup],
    kinds: Sequence[str] = ENTITY_KINDS,
) -> tuple[PassGroup, ...]:
    """
    Check a pass graph and return it in execution order.

    Rules:
        - group names are unique and every table named is a known kind;
        - a group only requires groups declared before it (so declaration
          order is a topological order and cycles are impossible);
        - every group writing a table read by group G is a transitive
          requirement of G, except a self-referential extraction, which must
          be the only extraction of G touching its table.

    Raises:
        PipelineError: On the first violated rule
    """
    by_name: dict[str, PassGroup] = {}
    for group in groups:
        if group.name in by_name:
            raise PipelineError(f"duplicate pass group: {group.name}")
        for required in group.requires:
            if required not in by_name:
                raise PipelineError(
                    f"{group.name} requires {required}, which is not declared before it"
                )
        for extraction in group.extractions:
            for table in (extraction.source, extraction.target):
                if table not in kinds:
                    raise PipelineError(f"{extraction.describe()}: unknown kind {table}")
        by_name[group.name] = group

    writers: dict[str, set[str]] = {}
    for group in groups:
        for extraction in group.extractions:
            writers.setdefault(extraction.target, set()).add(group.name)

    for group in groups:
        upstream = _ancestors(group.name, by_name)
        for extraction in group.extractions:
            for writer in writers.get(extraction.source, set()):
                if writer == group.name:
                    touching = [
                        e
                        for e in group.extractions
                        if extraction.source in (e.source, e.target)
                    ]
                    if extraction.self_referential and touching == [extraction]:
                        continue
                    raise PipelineError(
                        f"{group.name}: {extraction.describe()} reads a table "
                        f"written in the same pass"
                    )
                if writer not in upstream:
                    raise PipelineError(
                        f"{group.name}: {extraction.describe()} runs before "
                        f"pass {writer} populates {extraction.source}"
                    )

    return tuple(groups)


# Fail at import time if the declared graph is inconsistent
EXECUTION_ORDER = validate_pipeline(PIPELINE)
