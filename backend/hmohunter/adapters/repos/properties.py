# hmohunter/adapters/repos/properties.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.address import normalize_postcode
from ...models import Property, PropertySourceRef

log = logging.getLogger(__name__)

# Identity columns the pipeline owns; a patch never writes these directly.
_PROTECTED = frozenset({"id", "source_name", "external_id", "field_sources", "created_at", "updated_at"})


@dataclass(frozen=True)
class CandidateFilter:
    postcode: str
    exclude_stale: bool = False
    limit: int = 200


@dataclass
class PropertyPatch:
    """
    Sparse write for one property.

    property_id None creates a row. sources (field -> source) is merged into
    the row's field_sources; (source_name, external_id) is always recorded as
    a source reference of the row.
    """

    source_name: str
    external_id: str
    fields: dict[str, Any] = field(default_factory=dict)
    sources: dict[str, str] = field(default_factory=dict)
    property_id: int | None = None


@dataclass(frozen=True)
class UpsertResult:
    property_id: int
    created: bool


class PropertyRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, property_id: int) -> Property | None:
        return await self.session.get(Property, property_id)

    async def find_by_external_id(self, source_name: str, external_id: str) -> Property | None:
        q = (
            select(Property)
            .join(PropertySourceRef, PropertySourceRef.property_id == Property.id)
            .where(
                PropertySourceRef.source_name == source_name,
                PropertySourceRef.external_id == str(external_id),
            )
        )
        return (await self.session.execute(q)).scalars().first()

    async def find_by_uprn(self, uprn: str) -> Property | None:
        q = select(Property).where(Property.uprn == str(uprn)).order_by(Property.id.asc())
        return (await self.session.execute(q)).scalars().first()

    async def find_candidates(self, flt: CandidateFilter) -> list[Property]:
        """Rows sharing the postcode, oldest first (the matcher keeps the earliest on ties)."""
        q = select(Property).where(Property.postcode == normalize_postcode(flt.postcode))
        if flt.exclude_stale:
            q = q.where(Property.is_stale.is_(False))
        q = q.order_by(Property.id.asc()).limit(int(flt.limit))
        return list((await self.session.execute(q)).scalars().all())

    async def upsert(self, patch: PropertyPatch) -> UpsertResult:
        created = patch.property_id is None

        if created:
            prop = Property(
                source_name=patch.source_name,
                external_id=str(patch.external_id),
                field_sources=dict(patch.sources),
            )
            self._apply(prop, patch.fields)
            self.session.add(prop)
            await self.session.flush()
        else:
            prop = await self.get(int(patch.property_id))  # type: ignore[arg-type]
            if prop is None:
                raise LookupError(f"property {patch.property_id} vanished before update")
            self._apply(prop, patch.fields)
            if patch.sources:
                # reassign: plain JSON columns do not track in-place mutation
                prop.field_sources = {**(prop.field_sources or {}), **patch.sources}

        await self._ensure_source_ref(prop.id, patch.source_name, str(patch.external_id))
        await self.session.flush()
        return UpsertResult(property_id=prop.id, created=created)

    async def needing_enrichment(self, limit: int = 100) -> list[Property]:
        """Non-stale rows that no enrichment adapter has touched yet."""
        q = (
            select(Property)
            .where(Property.is_stale.is_(False))
            .where(Property.last_enriched_at.is_(None))
            .order_by(Property.id.asc())
            .limit(int(limit))
        )
        return list((await self.session.execute(q)).scalars().all())

    async def mark_stale(self, older_than: datetime, *, now: datetime | None = None) -> int:
        """Flag rows not seen since older_than. Returns how many were flagged."""
        stmt = (
            update(Property)
            .where(Property.is_stale.is_(False))
            .where(Property.last_seen_at.is_not(None))
            .where(Property.last_seen_at < older_than)
            .values(is_stale=True, stale_marked_at=now or datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        res = await self.session.execute(stmt)
        return int(res.rowcount or 0)

    # -------------------------
    # internals
    # -------------------------

    def _apply(self, prop: Property, fields: dict[str, Any]) -> None:
        for name, value in fields.items():
            if name in _PROTECTED or not hasattr(Property, name):
                log.debug("properties: ignoring unknown field %s", name)
                continue
            setattr(prop, name, value)

    async def _ensure_source_ref(self, property_id: int, source_name: str, external_id: str) -> None:
        q = select(PropertySourceRef).where(
            PropertySourceRef.source_name == source_name,
            PropertySourceRef.external_id == external_id,
        )
        ref = (await self.session.execute(q)).scalars().first()
        if ref is None:
            self.session.add(
                PropertySourceRef(property_id=property_id, source_name=source_name, external_id=external_id)
            )
        elif ref.property_id != property_id:
            log.info(
                "properties: %s/%s moved from property %s to %s",
                source_name,
                external_id,
                ref.property_id,
                property_id,
            )
            ref.property_id = property_id
