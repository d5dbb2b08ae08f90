# hmohunter/domain/merge.py
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .parsing import is_empty
from .types import BLOCK_TYPES, EnrichmentBlock


def _build_field_rules() -> dict[str, type[EnrichmentBlock]]:
    rules: dict[str, type[EnrichmentBlock]] = {}
    for block in BLOCK_TYPES:
        for name in block.field_names():
            rules[name] = block
    return rules


# field name -> category block carrying its rule set.
# Fields with no category (core identity/location) are fill-if-empty only.
FIELD_RULES: dict[str, type[EnrichmentBlock]] = _build_field_rules()

REFRESHABLE_FIELDS: frozenset[str] = frozenset().union(*(b.refreshable for b in BLOCK_TYPES))
DERIVED_FIELDS: frozenset[str] = frozenset().union(*(b.derived for b in BLOCK_TYPES))


@dataclass(frozen=True)
class MergeConflict:
    field: str
    existing: Any
    incoming: Any
    existing_source: str | None
    incoming_source: str


@dataclass
class MergeResult:
    patch: dict[str, Any] = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)
    conflicts: list[MergeConflict] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.patch


def source_rank(authority: tuple[str, ...], source: str | None) -> int:
    """Higher is stronger; sources outside the authority list rank 0."""
    if not source or source not in authority:
        return 0
    return len(authority) - authority.index(source)


def _read(existing: Any, name: str) -> Any:
    if isinstance(existing, Mapping):
        return existing.get(name)
    return getattr(existing, name, None)


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, (list, tuple)) and isinstance(b, (list, tuple)):
        return list(a) == list(b)
    return a == b


def merge(
    existing: Any,
    incoming: Mapping[str, Any],
    *,
    incoming_source: str,
    field_sources: Mapping[str, str] | None = None,
    force_update: bool = False,
) -> MergeResult:
    """
    Decide which incoming fields to write onto an existing record.

    existing       stored row (ORM object or mapping); only read
    incoming       flat field -> value mapping from one source
    field_sources  provenance of the existing values (field -> source)

    Returns a sparse patch. A populated existing value is never replaced by an
    empty one, whatever the category.
    """
    provenance = field_sources or {}
    result = MergeResult()

    for name, new in incoming.items():
        if is_empty(new):
            continue

        old = _read(existing, name)
        if not is_empty(old) and _same(old, new):
            continue

        rule = FIELD_RULES.get(name)
        write = False

        if is_empty(old):
            write = True
        elif name in REFRESHABLE_FIELDS:
            write = True
        elif name in DERIVED_FIELDS and force_update:
            write = True
        elif rule is not None:
            existing_source = provenance.get(name)
            if existing_source == incoming_source and name not in DERIVED_FIELDS:
                # a source revising its own value (licence expired, price change)
                write = True
            else:
                incoming_rank = source_rank(rule.authority, incoming_source)
                existing_rank = source_rank(rule.authority, existing_source)
                write = incoming_rank > 0 and incoming_rank > existing_rank

        if write:
            result.patch[name] = new
            result.sources[name] = incoming_source
        else:
            result.conflicts.append(
                MergeConflict(
                    field=name,
                    existing=old,
                    incoming=new,
                    existing_source=provenance.get(name),
                    incoming_source=incoming_source,
                )
            )

    return result
