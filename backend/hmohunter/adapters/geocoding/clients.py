"""
Thin clients for the two free geocoding upstreams.

Both go through a ThrottledHttpClient, so spacing, User-Agent and timeout
are handled there. They raise on transport/HTTP/JSON trouble and return
None for a well-formed "nothing here" answer.
"""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from ...domain.address import normalize_postcode
from ...domain.parsing import get_nested, to_float
from ...domain.types import Coordinate
from ..clients.http_resilience import RateLimiter, ThrottledHttpClient

log = logging.getLogger(__name__)


def _coordinate(lat: Any, lng: Any) -> Coordinate | None:
    flat, flng = to_float(lat), to_float(lng)
    if flat is None or flng is None:
        return None
    return Coordinate(lat=flat, lng=flng)


class NominatimClient:
    def __init__(self, http: ThrottledHttpClient, *, base_url: str = "https://nominatim.openstreetmap.org") -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Any, *, transport: httpx.AsyncBaseTransport | None = None) -> "NominatimClient":
        limiter = RateLimiter(settings.NOMINATIM_MIN_INTERVAL_S, name="nominatim")
        http = ThrottledHttpClient(
            limiter,
            user_agent=settings.GEOCODE_USER_AGENT,
            timeout_s=settings.GEOCODE_TIMEOUT_S,
            transport=transport,
        )
        return cls(http, base_url=settings.NOMINATIM_BASE_URL)

    async def search(self, query: str) -> Coordinate | None:
        """First hit for a free-text query, restricted to GB."""
        data = await self.http.get_json(
            f"{self.base_url}/search",
            params={"q": query, "format": "json", "limit": 1, "countrycodes": "gb"},
        )
        if not isinstance(data, list):
            raise ValueError(f"nominatim: expected a list, got {type(data).__name__}")
        if not data or not isinstance(data[0], dict):
            return None
        return _coordinate(data[0].get("lat"), data[0].get("lon"))


class PostcodesIoClient:
    def __init__(self, http: ThrottledHttpClient, *, base_url: str = "https://api.postcodes.io") -> None:
        self.http = http
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: Any, *, transport: httpx.AsyncBaseTransport | None = None) -> "PostcodesIoClient":
        limiter = RateLimiter(settings.POSTCODES_IO_MIN_INTERVAL_S, name="postcodes_io")
        http = ThrottledHttpClient(
            limiter,
            user_agent=settings.GEOCODE_USER_AGENT,
            timeout_s=settings.GEOCODE_TIMEOUT_S,
            transport=transport,
        )
        return cls(http, base_url=settings.POSTCODES_IO_BASE_URL)

    async def lookup(self, postcode: str) -> Coordinate | None:
        """Centroid of a postcode; None for an unknown postcode."""
        compact = normalize_postcode(postcode).replace(" ", "")
        if not compact:
            return None
        try:
            data = await self.http.get_json(f"{self.base_url}/postcodes/{quote(compact)}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                log.debug("postcodes.io: unknown postcode %s", compact)
                return None
            raise
        if not isinstance(data, dict):
            raise ValueError(f"postcodes.io: expected an object, got {type(data).__name__}")
        if data.get("status") != 200:
            return None
        return _coordinate(get_nested(data, "result.latitude"), get_nested(data, "result.longitude"))
