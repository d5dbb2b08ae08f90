from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from hmohunter.adapters.geocoding.resolver import GeocodeResolver
from hmohunter.adapters.ingestion.base import SourceFetchError
from hmohunter.adapters.repos.properties import PropertyPatch, PropertyRepository
from hmohunter.domain.types import Coordinate, ListingDetails, Licensing
from hmohunter.models import Property
from hmohunter.service_layer.unit_of_work import SqlAlchemyUnitOfWork
from hmohunter.service_layer.use_cases.ingest import IngestionOptions, IngestionOrchestrator, SourceStatus

from fakes import FakeEnricher, FakePostcodes, FakeSearch, FakeSource, listing

NOW = datetime(2025, 3, 1, 12, 0, 0)


def _orchestrator(sources, uow_factory, *, search=None, postcodes=None, **kw):
    options = kw.pop("options", IngestionOptions(record_delay_s=0))
    geocoder = GeocodeResolver(search or FakeSearch(), postcodes or FakePostcodes())
    return IngestionOrchestrator(
        sources,
        uow_factory=uow_factory,
        geocoder=geocoder,
        options=options,
        clock=lambda: NOW,
        **kw,
    )


async def _all_properties(async_session_maker) -> list[Property]:
    async with async_session_maker() as session:
        return list((await session.execute(select(Property).order_by(Property.id))).scalars().all())


@pytest.mark.asyncio
async def test_failing_source_does_not_stop_the_others(uow_factory, async_session_maker):
    s1 = FakeSource("zoopla", [listing("zoopla", "z1", "12 Elm Road"), listing("zoopla", "z2", "47 Hornsey Road")])
    s2 = FakeSource("rightmove", error=SourceFetchError("rightmove", "HTTP 503"))
    s3 = FakeSource("propertydata_hmo", [listing("propertydata_hmo", "L1", "3 Park Terrace", "E2 9PL")])

    report = await _orchestrator([s1, s2, s3], uow_factory).run_ingestion()

    assert report.success
    assert [r.status for r in report.results] == [SourceStatus.completed, SourceStatus.failed, SourceStatus.completed]
    assert report.results[0].created == 2
    assert report.results[2].created == 1
    assert "HTTP 503" in report.results[1].errors[0]
    assert report.totals()["created"] == 3
    assert len(await _all_properties(async_session_maker)) == 3


@pytest.mark.asyncio
async def test_same_house_from_two_sources_is_merged(uow_factory, async_session_maker):
    zoopla = FakeSource(
        "zoopla",
        [
            listing(
                "zoopla",
                "z-100",
                "12 Elm Road",
                bedrooms=5,
                enrichments=(ListingDetails(title="5 bed HMO", price_pcm=3850.0),),
            )
        ],
    )
    register = FakeSource(
        "propertydata_hmo",
        [
            listing(
                "propertydata_hmo",
                "HMO/1",
                "Flat 1, 12 Elm Rd",
                postcode="N76PA",
                bedrooms=5,
                enrichments=(Licensing(licence_id="HMO/1", licence_status="active", max_occupants=6),),
            )
        ],
    )

    report = await _orchestrator([zoopla, register], uow_factory).run_ingestion()

    rows = await _all_properties(async_session_maker)
    assert len(rows) == 1
    row = rows[0]
    assert row.address == "12 Elm Road"
    assert row.price_pcm == 3850.0
    assert row.licence_id == "HMO/1"
    assert row.max_occupants == 6
    assert row.field_sources["address"] == "zoopla"
    assert row.field_sources["licence_id"] == "propertydata_hmo"

    second = report.results[1]
    assert (second.created, second.updated) == (0, 1)
    assert second.matched_by == {"fuzzy": 1}
    assert second.conflicts >= 1  # address kept


@pytest.mark.asyncio
async def test_rerun_matches_by_external_id(uow_factory, async_session_maker):
    src = FakeSource("zoopla", [listing("zoopla", "z1", bedrooms=3)])
    orch = _orchestrator([src], uow_factory)

    await orch.run_ingestion()
    report = await orch.run_ingestion()

    assert report.results[0].updated == 1
    assert report.results[0].matched_by == {"external_id": 1}
    assert len(await _all_properties(async_session_maker)) == 1


@pytest.mark.asyncio
async def test_uprn_match_beats_fuzzy(uow_factory, async_session_maker):
    a = FakeSource("zoopla", [listing("zoopla", "z1", "Old Dairy, Mill Lane", uprn="100021")])
    b = FakeSource("land_registry", [listing("land_registry", "T1", "The Old Dairy", uprn="100021")])

    report = await _orchestrator([a, b], uow_factory).run_ingestion()

    assert report.results[1].matched_by == {"uprn": 1}
    assert len(await _all_properties(async_session_maker)) == 1


@pytest.mark.asyncio
async def test_geocodes_only_when_coordinates_are_missing(uow_factory, async_session_maker):
    search = FakeSearch({"12 Elm Road, N7 6PA, United Kingdom": Coordinate(51.55, -0.11)})
    src = FakeSource(
        "zoopla",
        [
            listing("zoopla", "z1", "12 Elm Road"),
            listing("zoopla", "z2", "47 Hornsey Road", latitude=51.556, longitude=-0.116),
        ],
    )

    report = await _orchestrator([src], uow_factory, search=search).run_ingestion()

    assert search.calls == ["12 Elm Road, N7 6PA, United Kingdom"]
    assert report.results[0].geocoded == 1
    rows = await _all_properties(async_session_maker)
    assert (rows[0].latitude, rows[0].longitude) == (51.55, -0.11)
    assert (rows[1].latitude, rows[1].longitude) == (51.556, -0.116)


@pytest.mark.asyncio
async def test_missing_core_and_duplicates_are_skipped_with_reasons(uow_factory):
    src = FakeSource(
        "zoopla",
        [
            listing("zoopla", "z1"),
            listing("zoopla", "z1"),
            listing("zoopla", "z2", address=""),
            listing("zoopla", "z3", postcode=" "),
        ],
    )

    res = (await _orchestrator([src], uow_factory).run_ingestion()).results[0]

    assert res.total == 4
    assert res.created == 1
    assert res.skipped == 3
    assert res.skip_reasons == {"duplicate_in_run": 1, "missing_core": 2}


@pytest.mark.asyncio
async def test_disabled_and_empty_sources(uow_factory):
    disabled = FakeSource("searchland", enabled=False)
    empty = FakeSource("rightmove", [])

    report = await _orchestrator([disabled, empty], uow_factory).run_ingestion()

    assert report.results[0].status == SourceStatus.skipped
    assert disabled.fetch_calls == 0
    assert report.results[1].status == SourceStatus.failed
    assert report.success


class FlakyRepository(PropertyRepository):
    async def upsert(self, patch: PropertyPatch):
        if patch.external_id.startswith("boom"):
            raise RuntimeError("disk full")
        return await super().upsert(patch)


class FlakyUnitOfWork(SqlAlchemyUnitOfWork):
    async def __aenter__(self):
        await super().__aenter__()
        self.properties = FlakyRepository(self.session)
        return self


@pytest.mark.asyncio
async def test_persistence_failure_is_isolated_to_the_record(async_session_maker):
    src = FakeSource(
        "zoopla",
        [
            listing("zoopla", "ok-1", "1 Elm Road"),
            listing("zoopla", "boom-1", "2 Elm Road"),
            listing("zoopla", "ok-2", "3 Elm Road"),
        ],
    )

    report = await _orchestrator([src], lambda: FlakyUnitOfWork(async_session_maker)).run_ingestion()

    res = report.results[0]
    assert res.status == SourceStatus.completed
    assert res.created == 2
    assert res.errors == ["boom-1 [persisting]: disk full"]
    assert len(await _all_properties(async_session_maker)) == 2


@pytest.mark.asyncio
async def test_error_list_is_bounded(async_session_maker):
    src = FakeSource("zoopla", [listing("zoopla", f"boom-{i}", f"{i} Elm Road") for i in range(1, 6)])
    orch = _orchestrator(
        [src],
        lambda: FlakyUnitOfWork(async_session_maker),
        options=IngestionOptions(record_delay_s=0, max_errors=2),
    )

    res = (await orch.run_ingestion()).results[0]

    assert len(res.errors) == 2
    assert res.errors_dropped == 3


@pytest.mark.asyncio
async def test_delay_between_records(uow_factory):
    sleeps: list[float] = []

    async def fake_sleep(s: float) -> None:
        sleeps.append(s)

    src = FakeSource("zoopla", [listing("zoopla", f"z{i}", f"{i} Elm Road") for i in range(1, 4)])
    orch = _orchestrator([src], uow_factory, options=IngestionOptions(record_delay_s=0.3), sleep=fake_sleep)

    await orch.run_ingestion()

    assert sleeps == [0.3, 0.3]


@pytest.mark.asyncio
async def test_unknown_source_filter_reports_error(uow_factory):
    report = await _orchestrator([FakeSource("zoopla")], uow_factory).run_ingestion("nope")
    assert not report.success
    assert report.results == []
    assert report.to_dict()["totals"]["created"] == 0


@pytest.mark.asyncio
async def test_session_failure_fails_only_that_source(uow_factory):
    def broken_uow():
        raise RuntimeError("database is locked")

    src = FakeSource("zoopla", [listing("zoopla", "z1")])
    report = await _orchestrator([src], broken_uow).run_ingestion(source_name="zoopla")

    assert report.success
    assert report.results[0].status == SourceStatus.failed
    assert "database is locked" in report.results[0].errors[0]


@pytest.mark.asyncio
async def test_enrichment_phase_merges_and_survives_adapter_errors(uow_factory, async_session_maker):
    src = FakeSource("zoopla", [listing("zoopla", "z1"), listing("zoopla", "z2", "47 Hornsey Road")])
    broken = FakeEnricher("patma", error=RuntimeError("quota"))
    street = FakeEnricher("street_data", {"estimated_value": 450_000.0, "rental_yield": 5.2})

    report = await _orchestrator([src], uow_factory, enrichers=[broken, street]).run_ingestion()

    assert report.enriched == 2
    assert broken.seen == ["z1", "z2"]
    for row in await _all_properties(async_session_maker):
        assert row.estimated_value == 450_000.0
        assert row.field_sources["estimated_value"] == "street_data"
        assert row.last_enriched_at == NOW


@pytest.mark.asyncio
async def test_filtered_run_skips_housekeeping(uow_factory):
    street = FakeEnricher("street_data", {"estimated_value": 1.0})
    src = FakeSource("zoopla", [listing("zoopla", "z1")])

    report = await _orchestrator([src], uow_factory, enrichers=[street]).run_ingestion(source_name="zoopla")

    assert street.seen == []
    assert report.enriched == 0


@pytest.mark.asyncio
async def test_properties_not_seen_for_a_week_are_marked_stale(uow_factory, async_session_maker):
    async with async_session_maker() as session:
        repo = PropertyRepository(session)
        await repo.upsert(
            PropertyPatch(
                source_name="zoopla",
                external_id="old",
                fields={"address": "1 Old Road", "postcode": "E8 1EJ", "last_seen_at": NOW - timedelta(days=10)},
            )
        )
        await session.commit()

    src = FakeSource("zoopla", [listing("zoopla", "fresh")])
    report = await _orchestrator([src], uow_factory).run_ingestion()

    assert report.marked_stale == 1
    rows = {r.external_id: r for r in await _all_properties(async_session_maker)}
    assert rows["old"].is_stale is True
    assert rows["old"].stale_marked_at == NOW
    assert rows["fresh"].is_stale is False
    assert rows["fresh"].last_seen_at == NOW


@pytest.mark.asyncio
async def test_rerun_stores_the_sources_fresh_values(uow_factory, async_session_maker):
    def register(status: str, price: float) -> FakeSource:
        return FakeSource(
            "propertydata_hmo",
            [
                listing(
                    "propertydata_hmo",
                    "L1",
                    enrichments=(
                        Licensing(licence_id="L1", licence_status=status),
                        ListingDetails(price_pcm=price),
                    ),
                )
            ],
        )

    await _orchestrator([register("active", 900.0)], uow_factory).run_ingestion()
    report = await _orchestrator([register("expired", 1200.0)], uow_factory).run_ingestion()

    res = report.results[0]
    assert res.matched_by == {"external_id": 1}
    assert res.conflicts == 0
    (row,) = await _all_properties(async_session_maker)
    assert row.licence_status == "expired"
    assert row.price_pcm == 1200.0
