from __future__ import annotations

import math
import random
from datetime import datetime
from typing import Any, Dict, Optional

from .geohash import DEMAND_PRECISION, LANE_PRECISION, encode_geohash
from .utils import js_weekday


EARTH_RADIUS_KM = 6371.0
KM_TO_MILES = 0.621371
HOUR_MS = 3_600_000

# Ordered: the first matching group wins.
COMMODITY_KEYWORDS = [
    ("food", ("food", "produce", "grocery")),
    ("electronics", ("electronics", "computer")),
    ("furniture", ("furniture", "household")),
    ("automotive", ("auto", "car", "vehicle")),
    ("construction", ("construction", "building")),
]
DEFAULT_COMMODITY = "general"

REGION_FACTORS = {
    "CA": 1.3,
    "TX": 1.2,
    "FL": 1.15,
    "NY": 1.25,
    "IL": 1.1,
    "GA": 1.18,
    "PA": 1.05,
    "OH": 1.08,
    "MI": 1.02,
    "NC": 1.12,
}

# Sunday first; midweek peak.
DAY_OF_WEEK_FACTORS = (0.85, 1.1, 1.15, 1.2, 1.15, 1.05, 0.8)

# Index is hour of day (0-23).
HOUR_FACTORS = (
    0.6, 0.5, 0.4, 0.3, 0.4, 0.5,
    0.7, 0.9, 1.1, 1.2, 1.3, 1.3,
    1.2, 1.3, 1.3, 1.2, 1.1, 1.0,
    0.9, 0.8, 0.7, 0.7, 0.6, 0.6,
)

JITTER_MIN = 0.95
JITTER_MAX = 1.05

AVERAGE_SPEED_MPH = {"expedited": 65.0, "ltl": 45.0}
DEFAULT_SPEED_MPH = 55.0
HOURS_BETWEEN_REST = 8
REST_BLOCK_HOURS = 10  # hours-of-service rest per block


def calculate_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in miles (Haversine), rounded to 1 decimal."""
    d_lat = math.radians(float(lat2) - float(lat1))
    d_lng = math.radians(float(lng2) - float(lng1))
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(float(lat1))) * math.cos(math.radians(float(lat2))) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c * KM_TO_MILES, 1)


def categorize_commodity(commodity: Optional[str]) -> str:
    text = str(commodity or "").lower()
    for category, keywords in COMMODITY_KEYWORDS:
        if any(k in text for k in keywords):
            return category
    return DEFAULT_COMMODITY


def calculate_urgency_score(window_start: Optional[float], window_end: Optional[float], now_ms: float) -> float:
    """Score 0-10 for how pressing a pickup/delivery window is at ``now_ms``.

    Inside the window the score grows linearly with the elapsed share of the
    window; past the end it is 10. Before the window opens the score is bucketed
    by hours until start and scaled by clamp(24 / window_hours, 0.8, 1.2), so
    short windows read as more urgent than long ones.
    """
    if window_start is None or window_end is None:
        return 0.0
    start = float(window_start)
    end = float(window_end)
    now = float(now_ms)

    time_to_start = start - now
    duration = end - start

    if time_to_start < 0:
        if now < end:
            percent_passed = (now - start) / duration
            return min(10.0, 10 - 10 * (1 - percent_passed))
        return 10.0

    hours_to_start = time_to_start / HOUR_MS
    window_hours = duration / HOUR_MS
    if window_hours == 0:
        window_factor = 1.2
    else:
        window_factor = max(0.8, min(1.2, 24 / window_hours))

    if hours_to_start < 24:
        base = 9.0
    elif hours_to_start < 48:
        base = 8.0
    elif hours_to_start < 72:
        base = 7.0
    elif hours_to_start < 120:
        base = 6.0
    elif hours_to_start < 168:
        base = 5.0
    else:
        base = float(max(1, min(4, 10 - math.floor(hours_to_start / 168))))
    return min(10.0, base * window_factor)


def determine_market_segment(commodity: Optional[str], weight: Optional[float]) -> str:
    w = float(weight or 0)
    if w > 40000:
        return "heavy_freight"
    if w > 20000:
        return "medium_freight"
    if w > 10000:
        return "light_freight"

    category = categorize_commodity(commodity)
    if category == "food" and w < 10000:
        return "perishable_small"
    if category == "electronics":
        return "high_value"
    return "general_freight"


def calculate_seasonal_factor(as_of: datetime) -> float:
    month = as_of.month
    day = as_of.day

    # Holiday season, with the pre-Christmas surge
    if month in (11, 12):
        if month == 12 and day > 15:
            return 1.4
        return 1.3
    # Summer peak, July 4th week highest
    if 6 <= month <= 8:
        if month == 7 and 1 <= day <= 7:
            return 1.25
        return 1.2
    # Spring produce season
    if 3 <= month <= 5:
        return 1.15
    if month == 1:
        return 0.9
    if month == 2:
        return 0.95
    if month == 9:
        return 1.1
    if month == 10:
        return 1.15
    return 1.0


def calculate_rate_per_mile(rate: Optional[float], distance: Optional[float]) -> float:
    if not rate or not distance:
        return 0.0
    return round(float(rate) / float(distance), 2)


def estimate_transit_time(distance: float, load_type: Optional[str]) -> int:
    """Transit hours including mandated rest blocks, rounded up."""
    speed = AVERAGE_SPEED_MPH.get(str(load_type or "").strip().lower(), DEFAULT_SPEED_MPH)
    driving_hours = float(distance or 0) / speed
    rest_hours = math.floor(driving_hours / HOURS_BETWEEN_REST) * REST_BLOCK_HOURS
    return int(math.ceil(driving_hours + rest_hours))


def draw_jitter(rng: Optional[random.Random] = None) -> float:
    source = rng or random
    return source.uniform(JITTER_MIN, JITTER_MAX)


def calculate_market_demand_score(region: Optional[str], as_of: datetime, jitter: Optional[float] = None) -> float:
    """Composite 0-10 demand score for a region at ``as_of``.

    ``jitter`` is the +/-5% noise multiplier; when omitted it is drawn at random.
    """
    region_factor = REGION_FACTORS.get(str(region or "").strip().upper(), 1.0)
    day_factor = DAY_OF_WEEK_FACTORS[js_weekday(as_of)]
    hour_factor = HOUR_FACTORS[as_of.hour]
    noise = draw_jitter() if jitter is None else float(jitter)

    score = 5.0
    score *= region_factor
    score *= calculate_seasonal_factor(as_of)
    score *= day_factor
    score *= hour_factor
    score *= noise
    return min(10.0, round(score * 10) / 10)


def derive_endpoint_features(
    *,
    load: Dict[str, Any],
    location: Dict[str, Any],
    window_start: Optional[float],
    window_end: Optional[float],
    distance_to_delivery: float,
    as_of: datetime,
    now_ms: int,
    jitter: Optional[float] = None,
) -> Dict[str, Any]:
    lat = location.get("latitude")
    lng = location.get("longitude")
    return {
        "latitude": lat,
        "longitude": lng,
        "geohash": encode_geohash(lat, lng, DEMAND_PRECISION),
        "region": location.get("state"),
        "city_name": location.get("city"),
        "zip_code": location.get("zip_code"),
        "hazmat_required": bool(load.get("hazmat")),
        "distance_to_delivery": distance_to_delivery,
        "commodity_type": categorize_commodity(load.get("commodity")),
        "urgency_score": calculate_urgency_score(window_start, window_end, now_ms),
        "market_segment": determine_market_segment(load.get("commodity"), load.get("weight")),
        "seasonal_factor": calculate_seasonal_factor(as_of),
        "market_demand_score": calculate_market_demand_score(location.get("state"), as_of, jitter),
    }


def derive_lane_features(
    *,
    load: Dict[str, Any],
    pickup: Dict[str, Any],
    delivery: Dict[str, Any],
    as_of: datetime,
    jitter: Optional[float] = None,
) -> Dict[str, Any]:
    distance = calculate_distance(pickup["latitude"], pickup["longitude"], delivery["latitude"], delivery["longitude"])
    return {
        "origin_geohash": encode_geohash(pickup.get("latitude"), pickup.get("longitude"), LANE_PRECISION),
        "destination_geohash": encode_geohash(delivery.get("latitude"), delivery.get("longitude"), LANE_PRECISION),
        "origin_region": pickup.get("state"),
        "destination_region": delivery.get("state"),
        "origin_city": pickup.get("city"),
        "destination_city": delivery.get("city"),
        "distance": distance,
        "rate_per_mile": calculate_rate_per_mile(load.get("rate"), distance),
        "transit_time": estimate_transit_time(distance, load.get("load_type")),
        "commodity_type": categorize_commodity(load.get("commodity")),
        "seasonal_factor": calculate_seasonal_factor(as_of),
        "market_demand_score": calculate_market_demand_score(pickup.get("state"), as_of, jitter),
    }
