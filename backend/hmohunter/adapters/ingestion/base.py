# hmohunter/adapters/ingestion/base.py
from __future__ import annotations

import dataclasses
from typing import Any, Protocol

from ...domain.parsing import is_empty
from ...domain.types import BLOCK_TYPES, EnrichmentBlock, ListingPatch, PropertyListing, Tracking


class SourceFetchError(RuntimeError):
    """A source could not produce its listings (upstream down, auth, garbage)."""

    def __init__(self, source: str, message: str) -> None:
        super().__init__(f"{source}: {message}")
        self.source = source


class SourceAdapter(Protocol):
    """
    Produces full listings from one upstream.

    enabled is False when the adapter is missing its configuration (API key,
    base URL); the orchestrator then skips it without calling fetch().
    """

    name: str

    @property
    def enabled(self) -> bool: ...

    async def fetch(self) -> list[PropertyListing]:
        raise NotImplementedError


class EnrichmentAdapter(Protocol):
    """Adds fields to an existing listing; returns an empty patch when it has nothing."""

    name: str

    @property
    def enabled(self) -> bool: ...

    async def enrich(self, listing: PropertyListing) -> ListingPatch:
        raise NotImplementedError


def block_from_payload(kind: type[EnrichmentBlock], payload: dict[str, Any]) -> EnrichmentBlock | None:
    """
    Build one enrichment block from the keys of a canonical payload that
    match its field names. None when nothing in the payload applies.
    """
    values: dict[str, Any] = {}
    for f in dataclasses.fields(kind):  # type: ignore[arg-type]
        v = payload.get(f.name)
        if is_empty(v):
            continue
        if isinstance(v, list):
            v = tuple(v)
        values[f.name] = v
    if not values:
        return None
    return kind(**values)


def blocks_from_payload(payload: dict[str, Any]) -> tuple[EnrichmentBlock, ...]:
    # Tracking is owned by the pipeline, never by a source.
    out = []
    for kind in BLOCK_TYPES:
        if kind is Tracking:
            continue
        block = block_from_payload(kind, payload)
        if block is not None:
            out.append(block)
    return tuple(out)
