# hmohunter/service_layer/sources.py
from __future__ import annotations

import logging
from typing import Any, Callable

from ..adapters.enrichment.street_data import StreetDataEnricher
from ..adapters.geocoding.cache import GeocodeCache
from ..adapters.geocoding.resolver import GeocodeResolver
from ..adapters.ingestion.base import EnrichmentAdapter, SourceAdapter
from ..adapters.ingestion.propertydata_hmo import PropertyDataHmoSource
from ..adapters.ingestion.stub_json import StubJsonSource
from ..domain.matching import MatchConfig, Matcher
from .unit_of_work import SqlAlchemyUnitOfWork, UnitOfWork
from .use_cases.ingest import IngestionOptions, IngestionOrchestrator

log = logging.getLogger(__name__)

SOURCE_BUILDERS: dict[str, Callable[[Any], SourceAdapter]] = {
    "propertydata_hmo": PropertyDataHmoSource.from_settings,
    "stub_json": StubJsonSource.from_settings,
}

# Run in this order during the enrichment phase.
ENRICHER_BUILDERS: dict[str, Callable[[Any], EnrichmentAdapter]] = {
    "street_data": StreetDataEnricher.from_settings,
}

# One geocoder per process: its rate limiters and cache must be shared by
# every run, including concurrent ones.
_GEOCODER: GeocodeResolver | None = None


def configured_source_names(settings: Any) -> list[str]:
    return [s.strip() for s in (settings.INGESTION_SOURCES or "").split(",") if s.strip()]


def build_sources(settings: Any) -> list[SourceAdapter]:
    out: list[SourceAdapter] = []
    for name in configured_source_names(settings):
        builder = SOURCE_BUILDERS.get(name)
        if builder is None:
            log.warning("INGESTION_SOURCES: unknown source %r ignored. Known: %s", name, sorted(SOURCE_BUILDERS))
            continue
        out.append(builder(settings))
    return out


def build_enrichers(settings: Any) -> list[EnrichmentAdapter]:
    return [builder(settings) for builder in ENRICHER_BUILDERS.values()]


def get_geocoder(settings: Any) -> GeocodeResolver:
    global _GEOCODER
    if _GEOCODER is None:
        _GEOCODER = GeocodeResolver.from_settings(settings, cache=GeocodeCache())
    return _GEOCODER


def build_orchestrator(
    settings: Any,
    *,
    uow_factory: Callable[[], UnitOfWork] | None = None,
) -> IngestionOrchestrator:
    return IngestionOrchestrator(
        build_sources(settings),
        uow_factory=uow_factory or SqlAlchemyUnitOfWork,
        geocoder=get_geocoder(settings),
        matcher=Matcher(MatchConfig.from_settings(settings)),
        enrichers=build_enrichers(settings),
        options=IngestionOptions.from_settings(settings),
    )
