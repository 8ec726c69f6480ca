from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from .auth import get_current_user, require_admin
from .hooks import hook_into_load_creation
from .models import (
    AggregateDailyRequest,
    AggregationRunResult,
    AggregationScope,
    CreationHookResult,
    HeatmapDataResponse,
    HeatmapUpdatesResponse,
    LaneDataResponse,
    LoadCreationHookRequest,
    RecordDemandRequest,
    RecordDemandResult,
    TopLanesResponse,
)
from .repo import (
    DemandNotFoundError,
    aggregate_daily_demand_data,
    get_heatmap_data,
    get_lane_demand_data,
    get_top_lanes,
    list_heatmap_updates,
    record_load_demand_data,
)
from .utils import parse_any_date, to_epoch_ms


router = APIRouter(prefix="/demand", tags=["Demand"])


def _resolve_date_ms(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    dt = parse_any_date(value)
    if dt is None:
        raise ValueError(f"Unrecognized date: {value}")
    return to_epoch_ms(dt)


@router.post("/loads/{load_id}/created", response_model=CreationHookResult)
async def demand_load_created(
    load_id: str,
    req: Optional[LoadCreationHookRequest] = None,
    user: Dict[str, Any] = Depends(get_current_user),
):
    req = req or LoadCreationHookRequest()
    try:
        return hook_into_load_creation(
            load_id,
            skip_aggregation=req.skip_aggregation,
            enable_real_time_updates=req.enable_real_time_updates,
            enable_notifications=req.enable_notifications,
            enable_llm_insights=req.enable_llm_insights,
        )
    except DemandNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/loads/{load_id}/record", response_model=RecordDemandResult)
async def demand_load_record(
    load_id: str,
    req: Optional[RecordDemandRequest] = None,
    user: Dict[str, Any] = Depends(get_current_user),
):
    req = req or RecordDemandRequest()
    try:
        return record_load_demand_data(load_id, update_existing=req.update_existing)
    except DemandNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.post("/aggregate/daily", response_model=AggregationRunResult)
async def demand_aggregate_daily(
    req: Optional[AggregateDailyRequest] = None,
    user: Dict[str, Any] = Depends(require_admin),
):
    req = req or AggregateDailyRequest()
    try:
        date_ms = _resolve_date_ms(req.date)
        return aggregate_daily_demand_data(date=date_ms, force_refresh=req.force_refresh)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/heatmap", response_model=HeatmapDataResponse)
async def demand_heatmap(
    year: int,
    month: int,
    day: int,
    scope: AggregationScope = AggregationScope.GEOHASH,
    region: Optional[str] = None,
    equipment_type: Optional[str] = None,
    commodity_type: Optional[str] = None,
    min_loads: int = 0,
    user: Dict[str, Any] = Depends(get_current_user),
):
    items = get_heatmap_data(
        year=year,
        month=month,
        day=day,
        scope=scope,
        region=region,
        equipment_type=equipment_type,
        commodity_type=commodity_type,
        min_loads=min_loads,
    )
    return HeatmapDataResponse(aggregations=items, total=len(items))


@router.get("/heatmap/updates", response_model=HeatmapUpdatesResponse)
async def demand_heatmap_updates(
    since: Optional[int] = None,
    regions: Optional[List[str]] = Query(None),
    equipment_type: Optional[str] = None,
    limit: int = 100,
    user: Dict[str, Any] = Depends(get_current_user),
):
    try:
        items = list_heatmap_updates(since_ms=since, regions=regions, equipment_type=equipment_type, limit=limit)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return HeatmapUpdatesResponse(updates=items, total=len(items))


@router.get("/lanes", response_model=LaneDataResponse)
async def demand_lanes(
    year: int,
    month: int,
    day: Optional[int] = None,
    origin_region: Optional[str] = None,
    destination_region: Optional[str] = None,
    equipment_type: Optional[str] = None,
    load_type: Optional[str] = None,
    commodity_type: Optional[str] = None,
    limit: int = 500,
    user: Dict[str, Any] = Depends(get_current_user),
):
    try:
        items = get_lane_demand_data(
            year=year,
            month=month,
            day=day,
            origin_region=origin_region,
            destination_region=destination_region,
            equipment_type=equipment_type,
            load_type=load_type,
            commodity_type=commodity_type,
            limit=limit,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return LaneDataResponse(lanes=items, total=len(items))


@router.get("/lanes/top", response_model=TopLanesResponse)
async def demand_top_lanes(
    year: int,
    month: int,
    day: Optional[int] = None,
    origin_region: Optional[str] = None,
    metric: str = "volume",
    limit: int = 10,
    user: Dict[str, Any] = Depends(get_current_user),
):
    try:
        lanes = get_top_lanes(year=year, month=month, day=day, origin_region=origin_region, metric=metric, limit=limit)
        return TopLanesResponse(metric=metric, lanes=lanes)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
