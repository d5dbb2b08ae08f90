# hmohunter/adapters/ingestion/propertydata_hmo.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ...domain.address import normalize_postcode
from ...domain.parsing import get_first, to_float, to_int, to_str
from ...domain.types import ListingDetails, ListingType, Licensing, PropertyListing
from ..clients.http_resilience import UPSTREAM_ERRORS, RateLimiter, ThrottledHttpClient
from .base import SourceFetchError

log = logging.getLogger(__name__)

SOURCE_NAME = "propertydata_hmo"

# Full postcodes only; the register endpoint rejects outcodes.
DEFAULT_POSTCODES = ["N7 6PA", "E2 9PL", "SE5 8TR", "NW5 2HB", "E8 1EJ"]


def _records(data: Any) -> list[dict[str, Any]] | None:
    """
    The register has answered in several shapes over time:
      {"data": [...]}, {"hmo_licences": [...]}, {"results": [...]},
      {"result": {...}}, {"data": {...}}, {"data": {"hmos": [...]}}
    None means "shape not recognised".
    """
    if not isinstance(data, dict):
        return None

    inner = data.get("data")
    if isinstance(inner, dict) and isinstance(inner.get("hmos"), list):
        return [r for r in inner["hmos"] if isinstance(r, dict)]

    for key in ("data", "hmo_licences", "results"):
        v = data.get(key)
        if isinstance(v, list):
            return [r for r in v if isinstance(r, dict)]

    for key in ("result", "data"):
        v = data.get(key)
        if isinstance(v, dict):
            return [v]

    return None


@dataclass
class PropertyDataHmoSource:
    """
    Licensed HMOs from the PropertyData national HMO register, one request
    per configured postcode. Coordinates are left to the geocoder.
    """

    api_key: str | None
    base_url: str = "https://api.propertydata.co.uk"
    postcodes: list[str] = field(default_factory=lambda: list(DEFAULT_POSTCODES))
    http: ThrottledHttpClient | None = None
    name: str = SOURCE_NAME

    @classmethod
    def from_settings(
        cls, settings: Any, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "PropertyDataHmoSource":
        postcodes = [p.strip() for p in (settings.PROPERTYDATA_POSTCODES or "").split(",") if p.strip()]
        http = ThrottledHttpClient(
            RateLimiter(settings.PROPERTYDATA_MIN_INTERVAL_S, name=SOURCE_NAME),
            user_agent=settings.GEOCODE_USER_AGENT,
            timeout_s=settings.SOURCE_HTTP_TIMEOUT_S,
            transport=transport,
        )
        return cls(
            api_key=settings.PROPERTYDATA_API_KEY,
            base_url=settings.PROPERTYDATA_BASE_URL,
            postcodes=postcodes or list(DEFAULT_POSTCODES),
            http=http,
        )

    def __post_init__(self) -> None:
        if self.http is None:
            self.http = ThrottledHttpClient(RateLimiter(0.5, name=SOURCE_NAME), user_agent="HMO-Hunter-App/1.0")

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.base_url)

    async def fetch(self) -> list[PropertyListing]:
        if not self.enabled:
            raise SourceFetchError(self.name, "PROPERTYDATA_API_KEY / PROPERTYDATA_BASE_URL not configured")

        out: list[PropertyListing] = []
        failures: list[str] = []

        for pc in self.postcodes:
            pc = normalize_postcode(pc)
            try:
                data = await self.http.get_json(
                    f"{self.base_url.rstrip('/')}/national-hmo-register",
                    params={"key": self.api_key, "postcode": pc},
                )
            except UPSTREAM_ERRORS as e:
                log.warning("propertydata: request failed for %s: %s", pc, e)
                failures.append(f"{pc}: {e}")
                continue

            if isinstance(data, dict) and data.get("status") == "error":
                log.warning("propertydata: api error for %s: %s", pc, data.get("message"))
                failures.append(f"{pc}: {data.get('message')}")
                continue

            records = _records(data)
            if records is None:
                keys = sorted(data) if isinstance(data, dict) else type(data).__name__
                log.warning("propertydata: unexpected response shape for %s: %s", pc, keys)
                failures.append(f"{pc}: unexpected response shape")
                continue

            for rec in records:
                listing = self._to_listing(rec, fallback_postcode=pc)
                if listing is not None:
                    out.append(listing)

            log.info("propertydata: %d HMO records for %s", len(records), pc)

        if failures and len(failures) == len(self.postcodes):
            raise SourceFetchError(self.name, "; ".join(failures[:5]))

        return out

    def _to_listing(self, rec: dict[str, Any], *, fallback_postcode: str) -> PropertyListing | None:
        address = to_str(get_first(rec, "address", "property_address"))
        if not address:
            return None

        postcode = normalize_postcode(to_str(rec.get("postcode")) or fallback_postcode)
        licence_id = to_str(get_first(rec, "licence_number", "licence_reference"))
        uprn = to_str(rec.get("uprn"))
        external_id = licence_id or (f"uprn-{uprn}" if uprn else f"{postcode}-{address}".lower())
        authority = to_str(rec.get("local_authority"))

        licensing = Licensing(
            licence_id=licence_id,
            licence_start_date=to_str(get_first(rec, "licence_start", "licence_issue_date")),
            licence_end_date=to_str(get_first(rec, "licence_end", "licence_expiry_date")),
            licence_status=(to_str(get_first(rec, "status", "licence_status")) or "active").lower(),
            max_occupants=to_int(get_first(rec, "max_occupants", "maximum_occupancy")),
            licensed_hmo=True,
        )
        details = ListingDetails(
            title=f"Licensed HMO - {address}",
            property_type="HMO",
            description=(
                f"Licensed HMO registered with {authority or 'the local council'}. "
                f"Reference: {licence_id or 'N/A'}."
            ),
            source_url="https://propertydata.co.uk",
        )

        return PropertyListing(
            address=address,
            postcode=postcode,
            source_name=self.name,
            external_id=external_id,
            city=authority,
            latitude=to_float(rec.get("latitude")),
            longitude=to_float(rec.get("longitude")),
            bedrooms=to_int(get_first(rec, "bedrooms", "number_of_bedrooms")),
            listing_type=ListingType.rent,
            uprn=uprn,
            enrichments=(licensing, details),
        )
