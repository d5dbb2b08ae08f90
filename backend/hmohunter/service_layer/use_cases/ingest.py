# hmohunter/service_layer/use_cases/ingest.py
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Sequence

from ...adapters.geocoding.resolver import GeocodeResolver
from ...adapters.ingestion.base import EnrichmentAdapter, SourceAdapter
from ...adapters.repos.properties import CandidateFilter, PropertyPatch, PropertyRepository, UpsertResult
from ...domain.address import normalize_postcode
from ...domain.matching import Matcher
from ...domain.merge import merge
from ...domain.types import CORE_FIELDS, ListingType, PropertyListing, Tracking
from ...models import Property
from ..unit_of_work import UnitOfWork

log = logging.getLogger(__name__)


class SourceStatus(str, enum.Enum):
    completed = "completed"
    failed = "failed"
    skipped = "skipped"


class RecordStage(str, enum.Enum):
    matching = "matching"
    geocoding = "geocoding"
    merging = "merging"
    persisting = "persisting"


@dataclass(frozen=True)
class IngestionOptions:
    record_delay_s: float = 0.3
    max_errors: int = 50
    concurrent_sources: bool = False
    enrich_batch_size: int = 100
    stale_after_days: int = 7

    @classmethod
    def from_settings(cls, settings: Any) -> "IngestionOptions":
        return cls(
            record_delay_s=float(settings.INGEST_RECORD_DELAY_S),
            max_errors=int(settings.INGEST_MAX_ERRORS),
            concurrent_sources=bool(settings.INGEST_CONCURRENT_SOURCES),
            enrich_batch_size=int(settings.ENRICH_BATCH_SIZE),
            stale_after_days=int(settings.STALE_AFTER_DAYS),
        )


@dataclass
class IngestionRunResult:
    source: str
    status: SourceStatus = SourceStatus.completed
    total: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    errors_dropped: int = 0
    skip_reasons: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    matched_by: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    geocoded: int = 0
    geocode_failed: int = 0
    conflicts: int = 0
    duration_ms: int = 0
    started_at: datetime = field(default_factory=datetime.utcnow)
    max_errors: int = field(default=50, repr=False)

    def add_error(self, message: str) -> None:
        if len(self.errors) < self.max_errors:
            self.errors.append(message)
        else:
            self.errors_dropped += 1

    def skip(self, reason: str) -> None:
        self.skipped += 1
        self.skip_reasons[reason] += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "status": self.status.value,
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": list(self.errors),
            "errors_dropped": self.errors_dropped,
            "skip_reasons": dict(self.skip_reasons),
            "matched_by": dict(self.matched_by),
            "geocoded": self.geocoded,
            "geocode_failed": self.geocode_failed,
            "conflicts": self.conflicts,
            "duration_ms": self.duration_ms,
            "started_at": self.started_at.isoformat(),
        }


@dataclass
class IngestionReport:
    results: list[IngestionRunResult] = field(default_factory=list)
    error: str | None = None
    enriched: int = 0
    marked_stale: int = 0
    phase_errors: list[str] = field(default_factory=list)
    geocode_stats: dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.error is None

    def totals(self) -> dict[str, int]:
        return {
            "total": sum(r.total for r in self.results),
            "created": sum(r.created for r in self.results),
            "updated": sum(r.updated for r in self.results),
            "skipped": sum(r.skipped for r in self.results),
            "errors": sum(len(r.errors) + r.errors_dropped for r in self.results),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": self.error,
            "totals": self.totals(),
            "results": [r.to_dict() for r in self.results],
            "enriched": self.enriched,
            "marked_stale": self.marked_stale,
            "phase_errors": list(self.phase_errors),
            "geocode": dict(self.geocode_stats),
        }


@dataclass
class _Progress:
    stage: RecordStage = RecordStage.matching


def _row_values(row: Property) -> dict[str, Any]:
    """Detached snapshot of a row; survives a rollback expiring the instance."""
    return {c.key: getattr(row, c.key) for c in Property.__table__.columns}


def _listing_from_values(values: dict[str, Any]) -> PropertyListing:
    core = {name: values.get(name) for name in CORE_FIELDS}
    try:
        core["listing_type"] = ListingType(core.get("listing_type") or ListingType.rent.value)
    except ValueError:
        core["listing_type"] = ListingType.rent
    return PropertyListing(
        source_name=values["source_name"],
        external_id=values["external_id"],
        **core,
    )


class IngestionOrchestrator:
    """
    Runs every source through match -> geocode -> merge -> persist.

    A source failing, a record failing, or an enrichment adapter failing
    never stops the others; run_ingestion() always returns a report.
    """

    def __init__(
        self,
        sources: Sequence[SourceAdapter],
        *,
        uow_factory: Callable[[], UnitOfWork],
        geocoder: GeocodeResolver | None = None,
        matcher: Matcher | None = None,
        enrichers: Sequence[EnrichmentAdapter] = (),
        options: IngestionOptions | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.sources = list(sources)
        self.uow_factory = uow_factory
        self.geocoder = geocoder
        self.matcher = matcher or Matcher()
        self.enrichers = list(enrichers)
        self.options = options or IngestionOptions()
        self._clock = clock
        self._sleep = sleep

    def source_names(self) -> list[str]:
        return [s.name for s in self.sources]

    async def run_ingestion(self, source_name: str | None = None) -> IngestionReport:
        try:
            if source_name is None:
                selected = self.sources
            else:
                selected = [s for s in self.sources if s.name == source_name]
                if not selected:
                    return IngestionReport(
                        error=f"Unknown source {source_name!r}. Configured: {self.source_names()}"
                    )

            if self.options.concurrent_sources and len(selected) > 1:
                results = list(await asyncio.gather(*(self._run_source(s) for s in selected)))
            else:
                results = [await self._run_source(s) for s in selected]

            report = IngestionReport(results=results)

            # housekeeping only after a full run
            if source_name is None:
                await self._enrichment_phase(report)
                await self._stale_phase(report)

            if self.geocoder is not None:
                report.geocode_stats = {
                    **self.geocoder.stats.snapshot(),
                    "cache": self.geocoder.cache.stats.snapshot(),
                }
            return report
        except Exception as e:
            log.exception("ingestion run failed")
            return IngestionReport(error=str(e) or type(e).__name__)

    # -------------------------
    # Per source
    # -------------------------

    async def _run_source(self, adapter: SourceAdapter) -> IngestionRunResult:
        result = IngestionRunResult(source=adapter.name, max_errors=self.options.max_errors)
        t0 = time.monotonic()
        try:
            await self._ingest_source(adapter, result)
        except Exception as e:
            # session/connection trouble outside any single record
            result.status = SourceStatus.failed
            result.add_error(f"{adapter.name}: {e}")
            log.exception("ingest %s: aborted", adapter.name)
        finally:
            result.duration_ms = int((time.monotonic() - t0) * 1000)
            log.info(
                "ingest %s: status=%s total=%d created=%d updated=%d skipped=%d errors=%d duration_ms=%d",
                adapter.name,
                result.status.value,
                result.total,
                result.created,
                result.updated,
                result.skipped,
                len(result.errors) + result.errors_dropped,
                result.duration_ms,
            )
        return result

    async def _ingest_source(self, adapter: SourceAdapter, result: IngestionRunResult) -> None:
        if not adapter.enabled:
            result.status = SourceStatus.skipped
            result.skip_reasons["source_disabled"] += 1
            log.info("ingest %s: disabled (missing configuration), skipping", adapter.name)
            return

        try:
            listings = await adapter.fetch()
        except Exception as e:
            result.status = SourceStatus.failed
            result.add_error(f"fetching: {e}")
            log.warning("ingest %s: fetch failed: %s", adapter.name, e)
            return

        if not listings:
            result.status = SourceStatus.failed
            result.add_error("fetching: source returned no listings")
            return

        result.total = len(listings)
        seen: set[tuple[str, str]] = set()

        async with self.uow_factory() as uow:
            for i, listing in enumerate(listings):
                if i and self.options.record_delay_s > 0:
                    await self._sleep(self.options.record_delay_s)

                if not (listing.address or "").strip() or not (listing.postcode or "").strip():
                    result.skip("missing_core")
                    continue

                key = (listing.source_name, str(listing.external_id))
                if key in seen:
                    result.skip("duplicate_in_run")
                    continue
                seen.add(key)

                progress = _Progress()
                try:
                    outcome = await self._process_record(uow.properties, listing, result, progress)
                    await uow.commit()
                except Exception as e:
                    await uow.rollback()
                    result.add_error(f"{listing.external_id} [{progress.stage.value}]: {e}")
                    log.warning(
                        "ingest %s: record %s failed at %s: %s",
                        adapter.name,
                        listing.external_id,
                        progress.stage.value,
                        e,
                    )
                    continue

                if outcome.created:
                    result.created += 1
                else:
                    result.updated += 1

    async def _process_record(
        self,
        repo: PropertyRepository,
        listing: PropertyListing,
        result: IngestionRunResult,
        progress: _Progress,
    ) -> UpsertResult:
        progress.stage = RecordStage.matching
        listing = dataclasses.replace(listing, postcode=normalize_postcode(listing.postcode))
        row, matched_by = await self._find_existing(repo, listing)
        if matched_by:
            result.matched_by[matched_by] += 1

        progress.stage = RecordStage.geocoding
        row_has_coords = row is not None and row.latitude is not None and row.longitude is not None
        if listing.coordinate is None and not row_has_coords and self.geocoder is not None:
            coord = await self.geocoder.resolve(listing.address, listing.postcode)
            if coord is not None:
                listing = listing.with_coordinate(coord)
                result.geocoded += 1
            else:
                result.geocode_failed += 1

        progress.stage = RecordStage.merging
        now = self._clock()
        incoming = {**listing.to_fields(), **Tracking(last_seen_at=now, last_synced=now, is_stale=False).fields()}

        if row is None:
            patch = PropertyPatch(
                source_name=listing.source_name,
                external_id=str(listing.external_id),
                fields=incoming,
                sources={name: listing.source_name for name in incoming},
            )
        else:
            merged = merge(
                row,
                incoming,
                incoming_source=listing.source_name,
                field_sources=row.field_sources or {},
            )
            result.conflicts += len(merged.conflicts)
            for c in merged.conflicts:
                log.debug(
                    "merge conflict on property %s field %s: kept %r (%s), ignored %r (%s)",
                    row.id,
                    c.field,
                    c.existing,
                    c.existing_source,
                    c.incoming,
                    c.incoming_source,
                )
            patch = PropertyPatch(
                source_name=listing.source_name,
                external_id=str(listing.external_id),
                fields=merged.patch,
                sources=merged.sources,
                property_id=row.id,
            )

        progress.stage = RecordStage.persisting
        return await repo.upsert(patch)

    async def _find_existing(
        self, repo: PropertyRepository, listing: PropertyListing
    ) -> tuple[Property | None, str | None]:
        row = await repo.find_by_external_id(listing.source_name, str(listing.external_id))
        if row is not None:
            return row, "external_id"

        if listing.uprn:
            row = await repo.find_by_uprn(listing.uprn)
            if row is not None:
                return row, "uprn"

        candidates = await repo.find_candidates(CandidateFilter(postcode=listing.postcode))
        best = self.matcher.best_match(listing, candidates)
        if best is not None:
            log.debug("matched %s/%s to property %s (%s)", listing.source_name, listing.external_id, best.candidate.id, best.signals)
            return best.candidate, "fuzzy"
        return None, None

    # -------------------------
    # Housekeeping
    # -------------------------

    async def _enrichment_phase(self, report: IngestionReport) -> None:
        enrichers = [e for e in self.enrichers if e.enabled]
        if not enrichers:
            return

        try:
            async with self.uow_factory() as uow:
                rows = await uow.properties.needing_enrichment(self.options.enrich_batch_size)
                snapshots = [_row_values(r) for r in rows]

                for values in snapshots:
                    if await self._enrich_one(uow, enrichers, values, report):
                        report.enriched += 1
        except Exception as e:
            log.exception("enrichment phase failed")
            report.phase_errors.append(f"enrichment: {e}")

    async def _enrich_one(
        self,
        uow: UnitOfWork,
        enrichers: list[EnrichmentAdapter],
        values: dict[str, Any],
        report: IngestionReport,
    ) -> bool:
        listing = _listing_from_values(values)
        current = dict(values)
        provenance = dict(values.get("field_sources") or {})
        fields: dict[str, Any] = {}
        sources: dict[str, str] = {}

        for enricher in enrichers:
            try:
                lp = await enricher.enrich(listing)
            except Exception as e:
                log.warning("enrich %s: property %s failed: %s", enricher.name, values["id"], e)
                continue
            if lp.is_empty():
                continue
            merged = merge(current, lp.fields, incoming_source=lp.source, field_sources=provenance)
            current.update(merged.patch)
            provenance.update(merged.sources)
            fields.update(merged.patch)
            sources.update(merged.sources)

        touched = bool(fields)
        fields.update(Tracking(last_enriched_at=self._clock()).fields())

        try:
            await uow.properties.upsert(
                PropertyPatch(
                    source_name=values["source_name"],
                    external_id=values["external_id"],
                    fields=fields,
                    sources=sources,
                    property_id=values["id"],
                )
            )
            await uow.commit()
        except Exception as e:
            await uow.rollback()
            report.phase_errors.append(f"enrichment: property {values['id']}: {e}")
            log.warning("enrich: property %s not saved: %s", values["id"], e)
            return False
        return touched

    async def _stale_phase(self, report: IngestionReport) -> None:
        now = self._clock()
        cutoff = now - timedelta(days=self.options.stale_after_days)
        try:
            async with self.uow_factory() as uow:
                report.marked_stale = await uow.properties.mark_stale(cutoff, now=now)
                await uow.commit()
        except Exception as e:
            log.exception("stale marking failed")
            report.phase_errors.append(f"stale: {e}")
            return
        if report.marked_stale:
            log.info("marked %d properties stale (not seen since %s)", report.marked_stale, cutoff.isoformat())
