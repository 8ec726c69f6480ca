from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, Field, field_validator


class DemandType(str, Enum):
    PICKUP = "pickup"
    DELIVERY = "delivery"


class Timeframe(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class AggregationScope(str, Enum):
    GEOHASH = "geohash"
    REGION = "region"
    NATIONAL = "national"


NATIONAL_KEY = "US"


@dataclass(frozen=True)
class AggregationKey:
    """Identity of one daily aggregate: (scope, key, year, month, day).

    Used both to upsert aggregates and to check how fresh they are.
    """

    scope: AggregationScope
    key: str
    year: int
    month: int
    day: int

    @property
    def key_field(self) -> str:
        return "geohash" if self.scope == AggregationScope.GEOHASH else "region_id"

    def filters(self) -> List[Tuple[str, Any]]:
        return [
            ("aggregation_type", self.scope.value),
            (self.key_field, self.key),
            ("timeframe", Timeframe.DAILY.value),
            ("year", self.year),
            ("month", self.month),
            ("day", self.day),
        ]

    @classmethod
    def national(cls, year: int, month: int, day: int) -> "AggregationKey":
        return cls(scope=AggregationScope.NATIONAL, key=NATIONAL_KEY, year=year, month=month, day=day)


class LoadDemandRecord(BaseModel):
    id: Optional[str] = None

    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geohash: str
    region: Optional[str] = None

    timestamp: int
    timeframe: Timeframe = Timeframe.HOURLY
    year: int
    month: int
    day: int
    hour: int
    week_number: int

    load_count: int = 1
    total_weight: float = 0.0
    avg_rate: float = 0.0
    equipment_types: List[str] = Field(default_factory=list)
    load_types: List[str] = Field(default_factory=list)

    is_aggregated: bool = False
    source_load_ids: List[str] = Field(default_factory=list)

    demand_type: DemandType
    city_name: Optional[str] = None
    zip_code: Optional[str] = None
    hazmat_required: bool = False
    distance_to_delivery: float = 0.0
    commodity_type: str = "general"
    urgency_score: float = 0.0
    market_segment: str = "general_freight"
    seasonal_factor: float = 1.0
    market_demand_score: float = 0.0

    created_at: int
    updated_at: int

    @field_validator("equipment_types", "load_types", mode="before")
    @classmethod
    def _drop_empty(cls, value: Any) -> List[str]:
        if not value:
            return []
        return [str(v) for v in value if v]


class LoadLaneData(BaseModel):
    id: Optional[str] = None

    origin_geohash: str
    destination_geohash: str
    origin_region: Optional[str] = None
    destination_region: Optional[str] = None
    origin_city: Optional[str] = None
    destination_city: Optional[str] = None

    timestamp: int
    year: int
    month: int
    day: int
    week_number: int

    load_count: int = 1
    total_weight: float = 0.0
    avg_rate: float = 0.0
    distance: float = 0.0
    rate_per_mile: float = 0.0
    transit_time: int = 0
    equipment_type: Optional[str] = None
    load_type: Optional[str] = None
    hazmat: bool = False
    commodity_type: str = "general"
    seasonal_factor: float = 1.0
    market_demand_score: float = 0.0

    source_load_id: str

    created_at: int
    updated_at: int


class LoadDemandAggregation(BaseModel):
    id: Optional[str] = None

    aggregation_type: AggregationScope
    geohash: Optional[str] = None
    region_id: Optional[str] = None
    city_name: Optional[str] = None
    zip_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None

    timeframe: Timeframe = Timeframe.DAILY
    year: int
    month: int
    day: int

    total_loads: int = 0
    total_weight: float = 0.0
    avg_rate: float = 0.0
    avg_urgency_score: float = 0.0
    avg_market_demand_score: float = 0.0
    avg_seasonal_factor: float = 0.0

    equipment_breakdown: Dict[str, int] = Field(default_factory=dict)
    load_type_breakdown: Dict[str, int] = Field(default_factory=dict)
    commodity_type_breakdown: Dict[str, int] = Field(default_factory=dict)
    hazmat_breakdown: Dict[str, int] = Field(default_factory=lambda: {"true": 0, "false": 0})
    demand_type_breakdown: Dict[str, int] = Field(default_factory=lambda: {"pickup": 0, "delivery": 0})
    # Region and national scopes only.
    city_breakdown: Optional[Dict[str, int]] = None

    data_points: int = 0
    last_updated: int


class HeatmapUpdate(BaseModel):
    id: Optional[str] = None
    load_id: str
    demand_type: DemandType
    geohash: str
    region: Optional[str] = None
    city_name: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    equipment_type: Optional[str] = None
    urgency_score: float = 0.0
    timestamp: int
    # Epoch ms after which the purge job deletes this update.
    expires_at: Optional[int] = None


# ---------------------------------------------------------------------------
# Requests / responses
# ---------------------------------------------------------------------------


class LoadCreationHookRequest(BaseModel):
    # Skip aggregation for batch imports; raw records are still written.
    skip_aggregation: bool = False
    enable_real_time_updates: bool = True
    enable_notifications: bool = True
    enable_llm_insights: bool = True


class RecordDemandRequest(BaseModel):
    # Overwrite this load's records instead of appending new ones.
    update_existing: bool = False


class AggregateDailyRequest(BaseModel):
    # Epoch milliseconds, or any date string (e.g. "2026-03-14").
    date: Optional[Union[int, str]] = None
    force_refresh: bool = False


class RecordDemandResult(BaseModel):
    success: bool = True
    pickup_demand: LoadDemandRecord
    delivery_demand: LoadDemandRecord
    lane_data: LoadLaneData
    load: Dict[str, Any] = Field(default_factory=dict)


class AggregationRunResult(BaseModel):
    year: int
    month: int
    day: int
    records_scanned: int
    groups_written: Dict[str, int] = Field(default_factory=dict)
    groups_removed: Dict[str, int] = Field(default_factory=dict)
    skipped: bool = False
    last_updated: Optional[int] = None


class CreationHookResult(BaseModel):
    success: bool = True
    aggregated: bool
    real_time_updated: bool
    notified: bool = False


class HeatmapDataResponse(BaseModel):
    aggregations: List[LoadDemandAggregation]
    total: int


class LaneDataResponse(BaseModel):
    lanes: List[LoadLaneData]
    total: int


class TopLane(BaseModel):
    origin_region: Optional[str] = None
    destination_region: Optional[str] = None
    load_count: int
    total_weight: float
    avg_rate: float
    avg_rate_per_mile: float
    avg_distance: float


class TopLanesResponse(BaseModel):
    metric: str
    lanes: List[TopLane]


class HeatmapUpdatesResponse(BaseModel):
    updates: List[HeatmapUpdate]
    total: int
