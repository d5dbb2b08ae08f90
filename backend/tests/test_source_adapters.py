import json

import httpx
import pytest

from hmohunter.adapters.clients.http_resilience import RateLimiter, ThrottledHttpClient
from hmohunter.adapters.enrichment.street_data import StreetDataEnricher
from hmohunter.adapters.ingestion.base import SourceFetchError
from hmohunter.adapters.ingestion.propertydata_hmo import PropertyDataHmoSource, _records
from hmohunter.adapters.ingestion.stub_json import StubJsonSource
from hmohunter.domain.types import ListingDetails, Licensing, ListingType, Valuation


def _http(handler) -> ThrottledHttpClient:
    return ThrottledHttpClient(RateLimiter(0), user_agent="t", transport=httpx.MockTransport(handler))


HMO_RECORD = {
    "address": "12 Elm Road",
    "postcode": "n76pa",
    "local_authority": "Islington",
    "licence_number": "HMO/2023/0412",
    "licence_issue_date": "2023-04-01",
    "licence_expiry_date": "2028-03-31",
    "maximum_occupancy": "6",
    "number_of_bedrooms": 5,
    "uprn": 5300012345,
}


@pytest.mark.parametrize(
    "payload",
    [
        {"data": [HMO_RECORD]},
        {"hmo_licences": [HMO_RECORD]},
        {"results": [HMO_RECORD]},
        {"result": HMO_RECORD},
        {"data": HMO_RECORD},
        {"data": {"hmos": [HMO_RECORD]}},
    ],
)
def test_register_response_shapes(payload):
    assert _records(payload) == [HMO_RECORD]


def test_unrecognised_shape():
    assert _records({"something": 1}) is None
    assert _records([HMO_RECORD]) is None


@pytest.mark.asyncio
async def test_propertydata_maps_register_records():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(dict(request.url.params))
        if request.url.params["postcode"] == "N7 6PA":
            return httpx.Response(200, json={"status": "success", "data": [HMO_RECORD]})
        return httpx.Response(200, json={"status": "error", "message": "postcode not covered"})

    src = PropertyDataHmoSource(api_key="k", postcodes=["n76pa", "E2 9PL"], http=_http(handler))
    listings = await src.fetch()

    assert seen[0] == {"key": "k", "postcode": "N7 6PA"}
    assert len(listings) == 1
    lst = listings[0]
    assert lst.source_name == "propertydata_hmo"
    assert lst.external_id == "HMO/2023/0412"
    assert lst.postcode == "N7 6PA"
    assert lst.city == "Islington"
    assert lst.bedrooms == 5
    assert lst.uprn == "5300012345"
    assert lst.coordinate is None
    assert lst.listing_type == ListingType.rent

    lic = lst.block(Licensing)
    assert lic.licence_id == "HMO/2023/0412"
    assert lic.licence_start_date == "2023-04-01"
    assert lic.licence_end_date == "2028-03-31"
    assert lic.max_occupants == 6
    assert lic.licence_status == "active"
    assert lst.block(ListingDetails).property_type == "HMO"


@pytest.mark.asyncio
async def test_propertydata_all_postcodes_failing_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "bad key"})

    src = PropertyDataHmoSource(api_key="k", postcodes=["N7 6PA", "E2 9PL"], http=_http(handler))
    with pytest.raises(SourceFetchError) as ei:
        await src.fetch()
    assert ei.value.source == "propertydata_hmo"


@pytest.mark.asyncio
async def test_propertydata_disabled_without_key():
    assert PropertyDataHmoSource(api_key="k").enabled is True

    src = PropertyDataHmoSource(api_key=None)
    assert src.enabled is False
    with pytest.raises(SourceFetchError, match="not configured"):
        await src.fetch()


@pytest.mark.asyncio
async def test_stub_json_reads_fixtures(tmp_path):
    (tmp_path / "N76PA.json").write_text(
        json.dumps(
            {
                "listings": [
                    {"id": "s1", "address": "12 Elm Road", "bedrooms": "5", "price_pcm": 3850, "images": ["a.jpg"]},
                    {"address": "47 Hornsey Road", "postcode": "N7 6PA", "listing_type": "sale", "licence_id": "L9"},
                    {"postcode": "N7 6PA"},
                ]
            }
        ),
        encoding="utf-8",
    )

    src = StubJsonSource(fixtures_dir=tmp_path)
    assert src.enabled
    first, second = await src.fetch()

    assert first.external_id == "s1"
    assert first.postcode == "N7 6PA"  # from the file name
    assert first.bedrooms == 5
    details = first.block(ListingDetails)
    assert details.price_pcm == 3850
    assert details.images == ("a.jpg",)

    assert second.external_id.startswith("stub::N76PA::")
    assert second.listing_type == ListingType.purchase
    assert second.block(Licensing).licence_id == "L9"

    # hashed ids are stable between reads
    again = await src.fetch()
    assert again[1].external_id == second.external_id


@pytest.mark.asyncio
async def test_stub_json_postcode_filter_and_bad_file(tmp_path):
    (tmp_path / "E29PL.json").write_text("[]", encoding="utf-8")
    (tmp_path / "N76PA.json").write_text("{not json", encoding="utf-8")

    assert await StubJsonSource(fixtures_dir=tmp_path, postcodes=["E2 9PL", "SE5 8TR"]).fetch() == []
    with pytest.raises(SourceFetchError):
        await StubJsonSource(fixtures_dir=tmp_path).fetch()

    assert StubJsonSource(fixtures_dir=tmp_path / "missing").enabled is False


@pytest.mark.asyncio
async def test_street_data_enrichment():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["params"] = dict(request.url.params)
        seen["key"] = request.headers.get("x-api-key")
        return httpx.Response(200, json={"average_price": 450000, "yield": "5.2", "rental_estimate": 2100})

    from fakes import listing

    enricher = StreetDataEnricher(api_key="sk", http=_http(handler), base_url="https://street.test")
    patch = await enricher.enrich(listing("zoopla", "z1", postcode="N7 6PA"))

    assert seen == {"path": "/properties/areas/postcodes", "params": {"postcode": "N76PA", "tier": "core"}, "key": "sk"}
    assert patch.source == "street_data"
    assert patch.fields == {"estimated_value": 450000.0, "rental_yield": 5.2, "area_avg_rent": 2100.0}
    assert set(patch.fields) <= set(Valuation.field_names())


@pytest.mark.asyncio
async def test_street_data_failure_returns_empty_patch():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500)

    from fakes import listing

    enricher = StreetDataEnricher(api_key="sk", http=_http(handler))
    assert (await enricher.enrich(listing("zoopla", "z1"))).is_empty()

    disabled = StreetDataEnricher(api_key=None, http=_http(handler))
    assert disabled.enabled is False
    assert (await disabled.enrich(listing("zoopla", "z1"))).is_empty()
