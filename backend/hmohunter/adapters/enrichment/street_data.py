# hmohunter/adapters/enrichment/street_data.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import httpx

from ...domain.address import normalize_postcode
from ...domain.parsing import get_first, to_float, to_int
from ...domain.types import ListingPatch, PropertyListing, Valuation
from ..clients.http_resilience import UPSTREAM_ERRORS, RateLimiter, ThrottledHttpClient

log = logging.getLogger(__name__)

SOURCE_NAME = "street_data"


@dataclass
class StreetDataEnricher:
    """Area-level valuation figures keyed by postcode."""

    api_key: str | None
    http: ThrottledHttpClient
    base_url: str = "https://api.street.co.uk"
    name: str = SOURCE_NAME

    @classmethod
    def from_settings(
        cls, settings: Any, *, transport: httpx.AsyncBaseTransport | None = None
    ) -> "StreetDataEnricher":
        http = ThrottledHttpClient(
            RateLimiter(0.2, name=SOURCE_NAME),
            user_agent=settings.GEOCODE_USER_AGENT,
            timeout_s=settings.SOURCE_HTTP_TIMEOUT_S,
            transport=transport,
        )
        return cls(api_key=settings.STREETDATA_API_KEY, http=http, base_url=settings.STREETDATA_BASE_URL)

    @property
    def enabled(self) -> bool:
        return bool(self.api_key and self.base_url)

    async def enrich(self, listing: PropertyListing) -> ListingPatch:
        empty = ListingPatch(source=self.name)
        if not self.enabled:
            return empty

        # the endpoint wants the postcode without its space
        compact = normalize_postcode(listing.postcode).replace(" ", "")
        try:
            data = await self.http.get_json(
                f"{self.base_url.rstrip('/')}/properties/areas/postcodes",
                params={"postcode": compact, "tier": "core"},
                headers={"x-api-key": self.api_key or ""},
            )
        except UPSTREAM_ERRORS as e:
            log.warning("street_data: lookup failed for %s: %s", compact, e)
            return empty

        if not isinstance(data, dict) or data.get("status") == "error":
            log.warning("street_data: no usable answer for %s", compact)
            return empty

        valuation = Valuation(
            estimated_value=to_float(get_first(data, "average_price", "estimate", "price")),
            rental_yield=to_float(get_first(data, "rental_yield", "yield")),
            area_avg_rent=to_float(get_first(data, "average_rent", "rental_estimate")),
            year_built=to_int(data.get("year_built")),
        )
        return ListingPatch.from_blocks(self.name, valuation)
