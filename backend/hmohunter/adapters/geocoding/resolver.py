# hmohunter/adapters/geocoding/resolver.py
from __future__ import annotations

import enum
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Protocol

import httpx

from ...domain.address import (
    house_number_value,
    normalize_postcode,
    split_leading_house_number,
    strip_unit_designators,
)
from ...domain.geo import centroid_offset, house_number_offset
from ...domain.types import Coordinate
from ..clients.http_resilience import UPSTREAM_ERRORS
from .cache import GeocodeCache
from .clients import NominatimClient, PostcodesIoClient

log = logging.getLogger(__name__)


class AddressSearch(Protocol):
    async def search(self, query: str) -> Coordinate | None: ...


class PostcodeLookup(Protocol):
    async def lookup(self, postcode: str) -> Coordinate | None: ...


class GeocodeStrategy(str, enum.Enum):
    cache = "cache"
    full_address = "full_address"
    street_name = "street_name"
    postcode_centroid = "postcode_centroid"


class GeocodeStats:
    def __init__(self) -> None:
        self.resolved: dict[str, int] = defaultdict(int)
        self.errors: dict[str, int] = defaultdict(int)
        self.not_found = 0

    def snapshot(self) -> dict[str, Any]:
        return {
            "resolved": dict(self.resolved),
            "errors": dict(self.errors),
            "not_found": self.not_found,
        }


def _query(place: str, postcode: str) -> str:
    return f"{place}, {normalize_postcode(postcode)}, United Kingdom"


class GeocodeResolver:
    """
    Address -> coordinate with graceful degradation.

    Strategies run in order and the first hit wins:
      full address      "<address minus flat/unit>, <postcode>, United Kingdom"
      street name       house number dropped, then nudged north by the number
      postcode centroid centroid plus a stable per-address offset (~50 m)

    Any upstream failure inside a strategy just means "try the next one".
    Hits are cached by normalized address|postcode; misses are not.
    """

    def __init__(
        self,
        search: AddressSearch,
        postcodes: PostcodeLookup,
        *,
        cache: GeocodeCache | None = None,
    ) -> None:
        self.search = search
        self.postcodes = postcodes
        self.cache = cache if cache is not None else GeocodeCache()
        self.stats = GeocodeStats()
        self._strategies: list[tuple[GeocodeStrategy, Callable[[str, str], Awaitable[Coordinate | None]]]] = [
            (GeocodeStrategy.full_address, self._full_address),
            (GeocodeStrategy.street_name, self._street_name),
            (GeocodeStrategy.postcode_centroid, self._postcode_centroid),
        ]

    @classmethod
    def from_settings(
        cls,
        settings: Any,
        *,
        cache: GeocodeCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "GeocodeResolver":
        return cls(
            NominatimClient.from_settings(settings, transport=transport),
            PostcodesIoClient.from_settings(settings, transport=transport),
            cache=cache,
        )

    async def resolve(self, address: str | None, postcode: str | None) -> Coordinate | None:
        if not (address or "").strip() or not (postcode or "").strip():
            self.stats.not_found += 1
            return None

        cached = await self.cache.get(address, postcode)
        if cached is not None:
            self.stats.resolved[GeocodeStrategy.cache.value] += 1
            return cached

        for strategy, attempt in self._strategies:
            try:
                coord = await attempt(address, postcode)
            except UPSTREAM_ERRORS as e:
                self.stats.errors[strategy.value] += 1
                log.warning("geocode %s failed for %r %s: %s", strategy.value, address, postcode, e)
                continue

            if coord is not None:
                self.stats.resolved[strategy.value] += 1
                await self.cache.set(address, postcode, coord)
                log.debug("geocoded %r %s via %s", address, postcode, strategy.value)
                return coord

        self.stats.not_found += 1
        log.info("geocode: nothing found for %r %s", address, postcode)
        return None

    async def _full_address(self, address: str, postcode: str) -> Coordinate | None:
        cleaned = strip_unit_designators(address)
        if not cleaned:
            return None
        return await self.search.search(_query(cleaned, postcode))

    async def _street_name(self, address: str, postcode: str) -> Coordinate | None:
        split = split_leading_house_number(address)
        if split is None:
            return None
        number, street = split
        hit = await self.search.search(_query(street, postcode))
        if hit is None:
            return None
        return Coordinate(lat=hit.lat + house_number_offset(house_number_value(number)), lng=hit.lng)

    async def _postcode_centroid(self, address: str, postcode: str) -> Coordinate | None:
        centroid = await self.cache.get_postcode(postcode)
        if centroid is None:
            centroid = await self.postcodes.lookup(postcode)
            if centroid is None:
                return None
            await self.cache.set_postcode(postcode, centroid)

        d_lat, d_lng = centroid_offset(address, centroid.lat)
        return Coordinate(lat=centroid.lat + d_lat, lng=centroid.lng + d_lng)
