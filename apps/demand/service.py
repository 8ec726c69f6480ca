from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .models import NATIONAL_KEY, AggregationScope


@dataclass
class GroupSummary:
    total_loads: int = 0
    total_weight: float = 0.0
    avg_rate: float = 0.0
    avg_urgency_score: float = 0.0
    avg_market_demand_score: float = 0.0
    avg_seasonal_factor: float = 0.0
    equipment_breakdown: Dict[str, int] = field(default_factory=dict)
    load_type_breakdown: Dict[str, int] = field(default_factory=dict)
    commodity_type_breakdown: Dict[str, int] = field(default_factory=dict)
    hazmat_breakdown: Dict[str, int] = field(default_factory=lambda: {"true": 0, "false": 0})
    demand_type_breakdown: Dict[str, int] = field(default_factory=lambda: {"pickup": 0, "delivery": 0})
    city_breakdown: Dict[str, int] = field(default_factory=dict)
    data_points: int = 0

    def to_fields(self, *, include_cities: bool = False) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "total_loads": self.total_loads,
            "total_weight": self.total_weight,
            "avg_rate": self.avg_rate,
            "avg_urgency_score": self.avg_urgency_score,
            "avg_market_demand_score": self.avg_market_demand_score,
            "avg_seasonal_factor": self.avg_seasonal_factor,
            "equipment_breakdown": dict(self.equipment_breakdown),
            "load_type_breakdown": dict(self.load_type_breakdown),
            "commodity_type_breakdown": dict(self.commodity_type_breakdown),
            "hazmat_breakdown": dict(self.hazmat_breakdown),
            "demand_type_breakdown": dict(self.demand_type_breakdown),
            "data_points": self.data_points,
        }
        if include_cities:
            out["city_breakdown"] = dict(self.city_breakdown)
        return out


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _bump(counts: Dict[str, int], key: Any) -> None:
    k = str(key)
    counts[k] = counts.get(k, 0) + 1


def group_key(record: Mapping[str, Any], scope: AggregationScope) -> Optional[str]:
    if scope == AggregationScope.GEOHASH:
        return record.get("geohash") or None
    if scope == AggregationScope.REGION:
        return record.get("region") or None
    return NATIONAL_KEY


def group_records(records: Iterable[Mapping[str, Any]], scope: AggregationScope) -> Dict[str, List[Mapping[str, Any]]]:
    """Partition raw demand records by scope key, keeping first-seen order.

    Records without a key for the scope (no region, for instance) are left out.
    """
    groups: Dict[str, List[Mapping[str, Any]]] = {}
    for record in records:
        key = group_key(record, scope)
        if key is None:
            continue
        groups.setdefault(key, []).append(record)
    return groups


def summarize_group(records: List[Mapping[str, Any]]) -> GroupSummary:
    summary = GroupSummary(data_points=len(records))

    total_rate = 0.0
    total_urgency = 0.0
    total_market = 0.0
    total_seasonal = 0.0

    for point in records:
        load_count = int(point.get("load_count") or 0)
        summary.total_loads += load_count
        summary.total_weight += _num(point.get("total_weight"))
        total_rate += _num(point.get("avg_rate")) * load_count
        total_urgency += _num(point.get("urgency_score"))
        total_market += _num(point.get("market_demand_score"))
        total_seasonal += _num(point.get("seasonal_factor"))

        for equipment in point.get("equipment_types") or []:
            _bump(summary.equipment_breakdown, equipment)
        for load_type in point.get("load_types") or []:
            _bump(summary.load_type_breakdown, load_type)
        if point.get("commodity_type"):
            _bump(summary.commodity_type_breakdown, point["commodity_type"])
        if point.get("hazmat_required") is not None:
            summary.hazmat_breakdown["true" if point["hazmat_required"] else "false"] += 1
        demand_type = point.get("demand_type")
        if demand_type in summary.demand_type_breakdown:
            summary.demand_type_breakdown[demand_type] += 1
        if point.get("city_name"):
            _bump(summary.city_breakdown, point["city_name"])

    if summary.total_loads > 0:
        summary.avg_rate = total_rate / summary.total_loads
        summary.avg_urgency_score = total_urgency / summary.total_loads
        summary.avg_market_demand_score = total_market / summary.total_loads
        summary.avg_seasonal_factor = total_seasonal / summary.total_loads
    return summary


def summarize_by_scope(
    records: Iterable[Mapping[str, Any]], scope: AggregationScope
) -> Dict[str, tuple[GroupSummary, Mapping[str, Any]]]:
    """Return {key: (summary, representative_record)} for one scope."""
    out: Dict[str, tuple[GroupSummary, Mapping[str, Any]]] = {}
    for key, members in group_records(records, scope).items():
        if not members:
            continue
        out[key] = (summarize_group(members), members[0])
    return out
