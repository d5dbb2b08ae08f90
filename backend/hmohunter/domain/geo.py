from __future__ import annotations

import math

EARTH_RADIUS_M = 6_371_000.0
METRES_PER_DEGREE_LAT = 111_320.0

# Street fallback: ~1.1 m of latitude per house number, wraps every 100 numbers.
HOUSE_NUMBER_STEP_DEG = 1e-5
# Centroid fallback spreads points over roughly +/- 50 m.
CENTROID_JITTER_M = 50.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def address_hash(s: str) -> int:
    """Signed 32-bit rolling hash (h = h*31 + c), stable across processes."""
    h = 0
    for ch in s:
        h = (h * 31 + ord(ch)) & 0xFFFFFFFF
    return h - 0x1_0000_0000 if h & 0x8000_0000 else h


def house_number_offset(number: int) -> float:
    """Latitude delta for the street-name fallback."""
    return (number % 100) * HOUSE_NUMBER_STEP_DEG


def centroid_offset(address: str, base_lat: float) -> tuple[float, float]:
    """
    Deterministic (d_lat, d_lng) for the postcode-centroid fallback.

    Each axis takes a fraction in [-0.995, 0.995] from a different slice of
    the address hash, so the offset is never zero and the same address always
    lands on the same point.
    """
    h = address_hash(address)
    f_lat = ((h % 200) - 99.5) / 100.0
    f_lng = (((h >> 8) % 200) - 99.5) / 100.0

    d_lat = f_lat * CENTROID_JITTER_M / METRES_PER_DEGREE_LAT
    cos_lat = max(math.cos(math.radians(base_lat)), 0.01)
    d_lng = f_lng * CENTROID_JITTER_M / (METRES_PER_DEGREE_LAT * cos_lat)
    return d_lat, d_lng
