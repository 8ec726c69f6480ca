from __future__ import annotations

import logging
import math
from typing import Any, Tuple

logger = logging.getLogger(__name__)


BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
DEMAND_PRECISION = 6
LANE_PRECISION = 4  # coarser cells for origin/destination lane analysis

INVALID_GEOHASH = "0"


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def encode_geohash(lat: Any, lng: Any, precision: int = DEMAND_PRECISION) -> str:
    """Encode a coordinate into a base32 geohash of ``precision`` characters.

    Out-of-range coordinates are clamped. Non-numeric or NaN input returns
    ``INVALID_GEOHASH`` instead of raising.
    """
    lat_f = _as_float(lat)
    lng_f = _as_float(lng)
    if math.isnan(lat_f) or math.isnan(lng_f):
        logger.error("Invalid coordinates for geohash lat=%r lng=%r", lat, lng)
        return INVALID_GEOHASH

    lat_f = max(-90.0, min(90.0, lat_f))
    lng_f = max(-180.0, min(180.0, lng_f))

    lat_range = [-90.0, 90.0]
    lng_range = [-180.0, 180.0]
    even = True
    bits = 0
    bit_count = 0
    chars = []

    while len(chars) < precision:
        if even:
            mid = (lng_range[0] + lng_range[1]) / 2
            if lng_f >= mid:
                bits = (bits << 1) | 1
                lng_range[0] = mid
            else:
                bits = bits << 1
                lng_range[1] = mid
        else:
            mid = (lat_range[0] + lat_range[1]) / 2
            if lat_f >= mid:
                bits = (bits << 1) | 1
                lat_range[0] = mid
            else:
                bits = bits << 1
                lat_range[1] = mid
        even = not even

        bit_count += 1
        if bit_count == 5:
            chars.append(BASE32[bits])
            bits = 0
            bit_count = 0

    return "".join(chars)


def decode_geohash(geohash: str) -> Tuple[float, float]:
    """Return the (lat, lng) centre of a geohash cell."""
    lat_range = [-90.0, 90.0]
    lng_range = [-180.0, 180.0]
    even = True
    for ch in str(geohash or "").lower():
        idx = BASE32.find(ch)
        if idx < 0:
            raise ValueError(f"Invalid geohash character: {ch!r}")
        for shift in range(4, -1, -1):
            bit = (idx >> shift) & 1
            rng = lng_range if even else lat_range
            mid = (rng[0] + rng[1]) / 2
            if bit:
                rng[0] = mid
            else:
                rng[1] = mid
            even = not even
    return (lat_range[0] + lat_range[1]) / 2, (lng_range[0] + lng_range[1]) / 2
