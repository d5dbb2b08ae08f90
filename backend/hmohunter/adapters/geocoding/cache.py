from __future__ import annotations

import asyncio
from dataclasses import dataclass

from ...domain.address import geocode_cache_key, normalize_postcode
from ...domain.types import Coordinate


@dataclass
class GeocodeCacheStats:
    hits: int = 0
    misses: int = 0

    def snapshot(self) -> dict[str, int]:
        return {"hits": self.hits, "misses": self.misses}


class GeocodeCache:
    """
    Process-lifetime memo of resolved coordinates.

    Two key spaces: the normalized "address|postcode" pair, and the bare
    postcode for centroid lookups. No eviction; coordinates are near-static
    and everything here can be re-derived after a restart.
    """

    def __init__(self) -> None:
        self._entries: dict[str, Coordinate] = {}
        self._lock = asyncio.Lock()
        self.stats = GeocodeCacheStats()

    def __len__(self) -> int:
        return len(self._entries)

    async def _get(self, key: str) -> Coordinate | None:
        async with self._lock:
            hit = self._entries.get(key)
            if hit is None:
                self.stats.misses += 1
            else:
                self.stats.hits += 1
            return hit

    async def _set(self, key: str, coord: Coordinate) -> None:
        async with self._lock:
            self._entries[key] = coord

    async def get(self, address: str, postcode: str) -> Coordinate | None:
        key = geocode_cache_key(address, postcode)
        if key is None:
            return None
        return await self._get(key)

    async def set(self, address: str, postcode: str, coord: Coordinate) -> None:
        # unit-only addresses would all share one key per postcode
        key = geocode_cache_key(address, postcode)
        if key is not None:
            await self._set(key, coord)

    async def get_postcode(self, postcode: str) -> Coordinate | None:
        return await self._get(f"postcode:{normalize_postcode(postcode)}")

    async def set_postcode(self, postcode: str, coord: Coordinate) -> None:
        await self._set(f"postcode:{normalize_postcode(postcode)}", coord)
