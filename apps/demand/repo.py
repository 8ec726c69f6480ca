from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Type, TypeVar

from firebase_admin import firestore
from pydantic import BaseModel

from .features import HOUR_MS, derive_endpoint_features, derive_lane_features
from .models import (
    AggregationKey,
    AggregationRunResult,
    AggregationScope,
    DemandType,
    HeatmapUpdate,
    LoadDemandAggregation,
    LoadDemandRecord,
    LoadLaneData,
    RecordDemandResult,
    Timeframe,
    TopLane,
)
from .service import GroupSummary, summarize_by_scope
from .settings import settings
from .utils import now_ms as _now_ms
from .utils import to_local_datetime, week_number

logger = logging.getLogger(__name__)


LOADS = "loads"
LOCATIONS = "locations"
DEMAND_DATA = "load_demand_data"
LANE_DATA = "load_lane_data"
AGGREGATIONS = "load_demand_aggregations"
HEATMAP_UPDATES = "heatmap_updates"

TOP_LANE_METRICS = {
    "volume": lambda lane: lane.load_count,
    "rate": lambda lane: lane.avg_rate,
    "rate_per_mile": lambda lane: lane.avg_rate_per_mile,
}

M = TypeVar("M", bound=BaseModel)


class DemandNotFoundError(LookupError):
    pass


def _db(db_client=None):
    if db_client is not None:
        return db_client
    # Local import so importing this module never initializes Firebase.
    from .database import get_db

    return get_db()


def _get_doc(db, collection: str, doc_id: Any) -> Optional[Dict[str, Any]]:
    if not doc_id:
        return None
    snap = db.collection(collection).document(str(doc_id)).get()
    if not snap.exists:
        return None
    d = snap.to_dict() or {}
    d.setdefault("id", snap.id)
    return d


def _write(db, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
    col = db.collection(collection)
    ref = col.document(doc_id) if doc_id else col.document()
    ref.set(data)
    return ref.id


def _query(db, collection: str, filters: Iterable[Tuple[str, Any]], limit: Optional[int] = None):
    q = db.collection(collection)
    for field, value in filters:
        q = q.where(field, "==", value)
    if limit:
        q = q.limit(int(limit))
    return list(q.stream())


def _to_model(model: Type[M], snap) -> M:
    d = snap.to_dict() or {}
    d["id"] = snap.id
    return model(**d)


def _previous_days(db, load_id: str, current_day: Tuple[int, int, int]) -> List[int]:
    """Timestamps of this load's overwritable records that sit on a different day."""
    out: Dict[Tuple[int, int, int], int] = {}
    for suffix in ("pickup", "delivery"):
        prior = _get_doc(db, DEMAND_DATA, f"{load_id}_{suffix}")
        if not prior or prior.get("timestamp") is None:
            continue
        day = (prior.get("year"), prior.get("month"), prior.get("day"))
        if day != current_day:
            out.setdefault(day, int(prior["timestamp"]))
    return list(out.values())


def _check_limit(limit: Optional[int]) -> None:
    if limit is not None and int(limit) < 1:
        raise ValueError("limit must be a positive integer")


def _require_coordinates(location: Mapping[str, Any], label: str) -> None:
    if location.get("latitude") is None or location.get("longitude") is None:
        raise ValueError(f"{label} location has no coordinates")


# ---------------------------------------------------------------------------
# Demand recorder
# ---------------------------------------------------------------------------


def record_load_demand_data(
    load_id: str,
    *,
    update_existing: bool = False,
    now_ms: Optional[int] = None,
    jitter: Optional[float] = None,
    db_client=None,
) -> RecordDemandResult:
    """Write the pickup/delivery demand records and the lane record for a load.

    Every call appends three new documents unless ``update_existing`` is set, in
    which case the load's records are overwritten under deterministic ids.
    """
    db = _db(db_client)

    load = _get_doc(db, LOADS, load_id)
    if not load:
        raise DemandNotFoundError("Load not found")
    pickup = _get_doc(db, LOCATIONS, load.get("pickup_location_id"))
    if not pickup:
        raise DemandNotFoundError("Pickup location not found")
    delivery = _get_doc(db, LOCATIONS, load.get("delivery_location_id"))
    if not delivery:
        raise DemandNotFoundError("Delivery location not found")
    _require_coordinates(pickup, "Pickup")
    _require_coordinates(delivery, "Delivery")

    # One clock reading for all three records.
    timestamp = int(_now_ms() if now_ms is None else now_ms)
    as_of = to_local_datetime(timestamp)
    week = week_number(as_of)

    lane = derive_lane_features(load=load, pickup=pickup, delivery=delivery, as_of=as_of, jitter=jitter)

    base: Dict[str, Any] = {
        "timestamp": timestamp,
        "timeframe": Timeframe.HOURLY,
        "year": as_of.year,
        "month": as_of.month,
        "day": as_of.day,
        "hour": as_of.hour,
        "week_number": week,
        "load_count": 1,
        "total_weight": float(load.get("weight") or 0),
        "avg_rate": float(load.get("rate") or 0),
        "equipment_types": [load.get("equipment_type")],
        "load_types": [load.get("load_type")],
        "is_aggregated": False,
        "source_load_ids": [str(load_id)],
        "created_at": timestamp,
        "updated_at": timestamp,
    }

    pickup_demand = LoadDemandRecord(
        **base,
        demand_type=DemandType.PICKUP,
        **derive_endpoint_features(
            load=load,
            location=pickup,
            window_start=load.get("pickup_window_start"),
            window_end=load.get("pickup_window_end"),
            distance_to_delivery=lane["distance"],
            as_of=as_of,
            now_ms=timestamp,
            jitter=jitter,
        ),
    )
    delivery_demand = LoadDemandRecord(
        **base,
        demand_type=DemandType.DELIVERY,
        **derive_endpoint_features(
            load=load,
            location=delivery,
            window_start=load.get("delivery_window_start"),
            window_end=load.get("delivery_window_end"),
            distance_to_delivery=0.0,
            as_of=as_of,
            now_ms=timestamp,
            jitter=jitter,
        ),
    )
    lane_data = LoadLaneData(
        **lane,
        timestamp=timestamp,
        year=as_of.year,
        month=as_of.month,
        day=as_of.day,
        week_number=week,
        load_count=1,
        total_weight=base["total_weight"],
        avg_rate=base["avg_rate"],
        equipment_type=load.get("equipment_type"),
        load_type=load.get("load_type"),
        hazmat=bool(load.get("hazmat")),
        source_load_id=str(load_id),
        created_at=timestamp,
        updated_at=timestamp,
    )

    previous_days = _previous_days(db, load_id, (as_of.year, as_of.month, as_of.day)) if update_existing else []

    pickup_id = _write(
        db,
        DEMAND_DATA,
        pickup_demand.model_dump(mode="json", exclude={"id"}),
        doc_id=f"{load_id}_pickup" if update_existing else None,
    )
    delivery_id = _write(
        db,
        DEMAND_DATA,
        delivery_demand.model_dump(mode="json", exclude={"id"}),
        doc_id=f"{load_id}_delivery" if update_existing else None,
    )
    lane_id = _write(
        db,
        LANE_DATA,
        lane_data.model_dump(mode="json", exclude={"id"}),
        doc_id=str(load_id) if update_existing else None,
    )

    # Records moved off a day that was already rolled up; refresh that day.
    for previous_ts in previous_days:
        aggregate_daily_demand_data(date=previous_ts, now_ms=timestamp, db_client=db)

    return RecordDemandResult(
        success=True,
        pickup_demand=pickup_demand.model_copy(update={"id": pickup_id}),
        delivery_demand=delivery_demand.model_copy(update={"id": delivery_id}),
        lane_data=lane_data.model_copy(update={"id": lane_id}),
        load=load,
    )


# ---------------------------------------------------------------------------
# Daily aggregator
# ---------------------------------------------------------------------------


def find_aggregation(key: AggregationKey, *, db_client=None) -> Optional[Dict[str, Any]]:
    snaps = _query(_db(db_client), AGGREGATIONS, key.filters(), limit=1)
    if not snaps:
        return None
    d = snaps[0].to_dict() or {}
    d["id"] = snaps[0].id
    return d


def is_aggregation_fresh(key: AggregationKey, *, now_ms: int, window_ms: int, db_client=None) -> bool:
    existing = find_aggregation(key, db_client=db_client)
    if not existing:
        return False
    return int(existing.get("last_updated") or 0) >= int(now_ms) - int(window_ms)


def _upsert_aggregation(
    db,
    key: AggregationKey,
    summary: GroupSummary,
    first: Mapping[str, Any],
    now: int,
) -> str:
    fields = summary.to_fields(include_cities=key.scope != AggregationScope.GEOHASH)
    fields["last_updated"] = now

    existing = _query(db, AGGREGATIONS, key.filters(), limit=1)
    if existing:
        existing[0].reference.update(fields)
        return existing[0].id

    representative: Dict[str, Any] = {}
    if key.scope == AggregationScope.GEOHASH:
        representative = {
            "geohash": key.key,
            "region_id": first.get("region"),
            "city_name": first.get("city_name"),
            "zip_code": first.get("zip_code"),
            "latitude": first.get("latitude"),
            "longitude": first.get("longitude"),
        }
    elif key.scope == AggregationScope.REGION:
        representative = {
            "region_id": key.key,
            "latitude": first.get("latitude"),
            "longitude": first.get("longitude"),
        }
    else:
        representative = {"region_id": key.key}

    record = LoadDemandAggregation(
        aggregation_type=key.scope,
        year=key.year,
        month=key.month,
        day=key.day,
        **representative,
        **fields,
    )
    return _write(db, AGGREGATIONS, record.model_dump(mode="json", exclude={"id"}))


def _prune_aggregations(db, scope: AggregationScope, year: int, month: int, day: int, live_keys) -> int:
    """Delete the day's aggregates for ``scope`` whose key no longer has raw records."""
    key_field = AggregationKey(scope, "", year, month, day).key_field
    snaps = _query(
        db,
        AGGREGATIONS,
        [
            ("aggregation_type", scope.value),
            ("timeframe", Timeframe.DAILY.value),
            ("year", year),
            ("month", month),
            ("day", day),
        ],
    )
    removed = 0
    for snap in snaps:
        if (snap.to_dict() or {}).get(key_field) not in live_keys:
            snap.reference.delete()
            removed += 1
    return removed


def _already_current(existing: Optional[Mapping[str, Any]], records: List[Mapping[str, Any]]) -> bool:
    if not existing or not records:
        return False
    if int(existing.get("data_points") or 0) != len(records):
        return False
    newest = max(int(r.get("updated_at") or r.get("timestamp") or 0) for r in records)
    return newest <= int(existing.get("last_updated") or 0)


def aggregate_daily_demand_data(
    *,
    date: Optional[int] = None,
    force_refresh: bool = False,
    now_ms: Optional[int] = None,
    db_client=None,
) -> AggregationRunResult:
    """Roll one day's hourly demand records into geohash, region and national aggregates.

    Every group is recomputed from the full set of the day's raw records, so
    repeated runs converge on the same totals. Unless ``force_refresh`` is set,
    a run is skipped when the national aggregate already covers every raw record.
    """
    db = _db(db_client)
    now = int(_now_ms() if now_ms is None else now_ms)
    target = to_local_datetime(now if date is None else date)
    year, month, day = target.year, target.month, target.day

    snaps = _query(
        db,
        DEMAND_DATA,
        [("timeframe", Timeframe.HOURLY.value), ("year", year), ("month", month), ("day", day)],
    )
    records = [s.to_dict() or {} for s in snaps]

    if not force_refresh:
        national = find_aggregation(AggregationKey.national(year, month, day), db_client=db)
        if _already_current(national, records):
            logger.info("Demand aggregates for %04d-%02d-%02d already current (%d records)", year, month, day, len(records))
            return AggregationRunResult(
                year=year,
                month=month,
                day=day,
                records_scanned=len(records),
                skipped=True,
                last_updated=int(national.get("last_updated") or 0),
            )

    groups_written: Dict[str, int] = {}
    groups_removed: Dict[str, int] = {}
    for scope in (AggregationScope.GEOHASH, AggregationScope.REGION, AggregationScope.NATIONAL):
        written = 0
        groups = summarize_by_scope(records, scope)
        for key, (summary, first) in groups.items():
            _upsert_aggregation(db, AggregationKey(scope, key, year, month, day), summary, first, now)
            written += 1
        groups_written[scope.value] = written
        groups_removed[scope.value] = _prune_aggregations(db, scope, year, month, day, set(groups))

    logger.info(
        "Aggregated %d demand records for %04d-%02d-%02d: wrote %s, removed %s",
        len(records),
        year,
        month,
        day,
        groups_written,
        groups_removed,
    )
    return AggregationRunResult(
        year=year,
        month=month,
        day=day,
        records_scanned=len(records),
        groups_written=groups_written,
        groups_removed=groups_removed,
        skipped=False,
        last_updated=now,
    )


# ---------------------------------------------------------------------------
# Real-time updates and read side
# ---------------------------------------------------------------------------


def publish_realtime_heatmap_update(load_id: str, result: RecordDemandResult, *, db_client=None) -> List[str]:
    """Append one heatmap update per demand endpoint for live dashboards."""
    db = _db(db_client)
    retention_ms = int(settings.HEATMAP_UPDATE_RETENTION_HOURS) * HOUR_MS
    ids: List[str] = []
    for demand in (result.pickup_demand, result.delivery_demand):
        update = HeatmapUpdate(
            load_id=str(load_id),
            demand_type=demand.demand_type,
            geohash=demand.geohash,
            region=demand.region,
            city_name=demand.city_name,
            latitude=demand.latitude,
            longitude=demand.longitude,
            equipment_type=(demand.equipment_types or [None])[0],
            urgency_score=demand.urgency_score,
            timestamp=demand.timestamp,
            expires_at=demand.timestamp + retention_ms,
        )
        ids.append(_write(db, HEATMAP_UPDATES, update.model_dump(mode="json", exclude={"id"})))
    return ids


def list_heatmap_updates(
    *,
    since_ms: Optional[int] = None,
    regions: Optional[List[str]] = None,
    equipment_type: Optional[str] = None,
    limit: int = 100,
    db_client=None,
) -> List[HeatmapUpdate]:
    _check_limit(limit)
    q = _db(db_client).collection(HEATMAP_UPDATES)
    if since_ms is not None:
        q = q.where("timestamp", ">=", int(since_ms))
    q = q.order_by("timestamp", direction=firestore.Query.DESCENDING)

    wanted_regions = {r.strip().upper() for r in (regions or []) if r and r.strip()}
    out: List[HeatmapUpdate] = []
    for snap in q.stream():
        update = _to_model(HeatmapUpdate, snap)
        if wanted_regions and str(update.region or "").upper() not in wanted_regions:
            continue
        if equipment_type and update.equipment_type != equipment_type:
            continue
        out.append(update)
        if len(out) >= int(limit):
            break
    return out


def purge_expired_heatmap_updates(*, now_ms: Optional[int] = None, db_client=None) -> int:
    """Delete heatmap updates whose ``expires_at`` has passed."""
    now = int(_now_ms() if now_ms is None else now_ms)
    q = _db(db_client).collection(HEATMAP_UPDATES).where("expires_at", "<=", now)
    removed = 0
    for snap in q.stream():
        snap.reference.delete()
        removed += 1
    return removed


def get_heatmap_data(
    *,
    year: int,
    month: int,
    day: int,
    scope: AggregationScope = AggregationScope.GEOHASH,
    region: Optional[str] = None,
    equipment_type: Optional[str] = None,
    commodity_type: Optional[str] = None,
    min_loads: int = 0,
    db_client=None,
) -> List[LoadDemandAggregation]:
    snaps = _query(
        _db(db_client),
        AGGREGATIONS,
        [
            ("aggregation_type", scope.value),
            ("timeframe", Timeframe.DAILY.value),
            ("year", year),
            ("month", month),
            ("day", day),
        ],
    )
    out: List[LoadDemandAggregation] = []
    for snap in snaps:
        agg = _to_model(LoadDemandAggregation, snap)
        if region and str(agg.region_id or "").upper() != region.strip().upper():
            continue
        if equipment_type and not agg.equipment_breakdown.get(equipment_type):
            continue
        if commodity_type and not agg.commodity_type_breakdown.get(commodity_type):
            continue
        if agg.total_loads < min_loads:
            continue
        out.append(agg)
    out.sort(key=lambda a: a.total_loads, reverse=True)
    return out


def get_lane_demand_data(
    *,
    year: int,
    month: int,
    day: Optional[int] = None,
    origin_region: Optional[str] = None,
    destination_region: Optional[str] = None,
    equipment_type: Optional[str] = None,
    load_type: Optional[str] = None,
    commodity_type: Optional[str] = None,
    limit: Optional[int] = 500,
    db_client=None,
) -> List[LoadLaneData]:
    _check_limit(limit)
    filters: List[Tuple[str, Any]] = [("year", year), ("month", month)]
    if day is not None:
        filters.append(("day", day))
    if origin_region:
        filters.append(("origin_region", origin_region))

    out: List[LoadLaneData] = []
    for snap in _query(_db(db_client), LANE_DATA, filters):
        lane = _to_model(LoadLaneData, snap)
        if destination_region and lane.destination_region != destination_region:
            continue
        if equipment_type and lane.equipment_type != equipment_type:
            continue
        if load_type and lane.load_type != load_type:
            continue
        if commodity_type and lane.commodity_type != commodity_type:
            continue
        out.append(lane)
    out.sort(key=lambda l: l.timestamp, reverse=True)
    return out if limit is None else out[: int(limit)]


def get_top_lanes(
    *,
    year: int,
    month: int,
    day: Optional[int] = None,
    origin_region: Optional[str] = None,
    metric: str = "volume",
    limit: int = 10,
    db_client=None,
) -> List[TopLane]:
    """Rank origin/destination region pairs by volume, average rate or rate per mile."""
    _check_limit(limit)
    rank = TOP_LANE_METRICS.get(str(metric or "").strip().lower())
    if rank is None:
        raise ValueError(f"Unsupported lane metric: {metric}")

    lanes = get_lane_demand_data(
        year=year, month=month, day=day, origin_region=origin_region, limit=None, db_client=db_client
    )

    totals: Dict[Tuple[Optional[str], Optional[str]], Dict[str, float]] = {}
    for lane in lanes:
        t = totals.setdefault(
            (lane.origin_region, lane.destination_region),
            {"count": 0, "weight": 0.0, "rate": 0.0, "rpm": 0.0, "distance": 0.0},
        )
        n = lane.load_count
        t["count"] += n
        t["weight"] += lane.total_weight
        t["rate"] += lane.avg_rate * n
        t["rpm"] += lane.rate_per_mile * n
        t["distance"] += lane.distance * n

    ranked: List[TopLane] = []
    for (origin, destination), t in totals.items():
        count = int(t["count"])
        ranked.append(
            TopLane(
                origin_region=origin,
                destination_region=destination,
                load_count=count,
                total_weight=t["weight"],
                avg_rate=round(t["rate"] / count, 2) if count else 0.0,
                avg_rate_per_mile=round(t["rpm"] / count, 2) if count else 0.0,
                avg_distance=round(t["distance"] / count, 1) if count else 0.0,
            )
        )
    ranked.sort(key=rank, reverse=True)
    return ranked[: int(limit)]
