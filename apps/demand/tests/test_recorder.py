from __future__ import annotations

import pytest

from apps.demand.repo import DemandNotFoundError, record_load_demand_data

from .conftest import NOW_MS, seed_load


def test_records_pickup_delivery_and_lane(fake_db):
    seed_load(fake_db)

    res = record_load_demand_data("L1", now_ms=NOW_MS, jitter=1.0, db_client=fake_db)

    demand = fake_db.docs("load_demand_data")
    lanes = fake_db.docs("load_lane_data")
    assert len(demand) == 2
    assert len(lanes) == 1
    assert sorted(d["demand_type"] for d in demand) == ["delivery", "pickup"]

    lane = lanes[0]
    assert lane["distance"] == 81.4
    assert lane["commodity_type"] == "general"
    assert lane["origin_geohash"] == "dp3w"
    assert lane["destination_geohash"] == "dp9k"
    assert lane["origin_region"] == "IL"
    assert lane["destination_region"] == "WI"
    assert lane["rate_per_mile"] == 10.44
    assert lane["transit_time"] == 2
    assert lane["source_load_id"] == "L1"

    assert res.success is True
    assert res.pickup_demand.id and res.delivery_demand.id and res.lane_data.id
    assert res.load["commodity"] == "general merchandise"


def test_endpoint_features(fake_db):
    seed_load(fake_db)
    res = record_load_demand_data("L1", now_ms=NOW_MS, jitter=1.0, db_client=fake_db)

    pickup = res.pickup_demand
    assert pickup.geohash == "dp3wjz"
    assert pickup.region == "IL"
    assert pickup.city_name == "Chicago"
    assert pickup.zip_code == "60601"
    assert pickup.distance_to_delivery == 81.4
    assert pickup.urgency_score == pytest.approx(9.6)
    assert pickup.market_demand_score == 9.9
    assert pickup.market_segment == "light_freight"
    assert pickup.seasonal_factor == 1.15
    assert pickup.equipment_types == ["Dry Van"]
    assert pickup.load_types == ["ftl"]
    assert pickup.source_load_ids == ["L1"]
    assert pickup.is_aggregated is False

    delivery = res.delivery_demand
    assert delivery.geohash == "dp9kzd"
    assert delivery.region == "WI"
    assert delivery.distance_to_delivery == 0.0
    assert delivery.urgency_score == pytest.approx(8.0)
    assert delivery.market_demand_score == 9.0


def test_all_records_share_one_timestamp_and_bucket(fake_db):
    seed_load(fake_db)
    record_load_demand_data("L1", now_ms=NOW_MS, jitter=1.0, db_client=fake_db)

    rows = fake_db.docs("load_demand_data") + fake_db.docs("load_lane_data")
    assert {r["timestamp"] for r in rows} == {NOW_MS}
    assert {(r["year"], r["month"], r["day"], r["week_number"]) for r in rows} == {(2026, 3, 18, 12)}
    assert {r["hour"] for r in fake_db.docs("load_demand_data")} == {14}
    assert {r["timeframe"] for r in fake_db.docs("load_demand_data")} == {"hourly"}


def test_repeated_calls_append_new_records(fake_db):
    seed_load(fake_db)
    record_load_demand_data("L1", now_ms=NOW_MS, db_client=fake_db)
    record_load_demand_data("L1", now_ms=NOW_MS, db_client=fake_db)

    assert len(fake_db.docs("load_demand_data")) == 4
    assert len(fake_db.docs("load_lane_data")) == 2


def test_update_existing_overwrites_in_place(fake_db):
    seed_load(fake_db)
    record_load_demand_data("L1", update_existing=True, now_ms=NOW_MS, db_client=fake_db)
    fake_db.collection("loads").document("L1").update({"rate": 1700})
    res = record_load_demand_data("L1", update_existing=True, now_ms=NOW_MS + 1000, db_client=fake_db)

    assert res.pickup_demand.id == "L1_pickup"
    assert res.delivery_demand.id == "L1_delivery"
    assert res.lane_data.id == "L1"
    assert len(fake_db.docs("load_demand_data")) == 2
    assert len(fake_db.docs("load_lane_data")) == 1
    assert fake_db.docs("load_lane_data")[0]["avg_rate"] == 1700


def test_missing_optional_load_fields_use_defaults(fake_db):
    seed_load(
        fake_db,
        weight=None,
        rate=None,
        commodity=None,
        hazmat=None,
        pickup_window_start=None,
        delivery_window_start=None,
    )
    res = record_load_demand_data("L1", now_ms=NOW_MS, jitter=1.0, db_client=fake_db)

    assert res.pickup_demand.total_weight == 0
    assert res.pickup_demand.avg_rate == 0
    assert res.pickup_demand.urgency_score == 0.0
    assert res.pickup_demand.hazmat_required is False
    assert res.lane_data.commodity_type == "general"
    assert res.lane_data.rate_per_mile == 0


def test_missing_load(fake_db):
    with pytest.raises(DemandNotFoundError, match="Load not found"):
        record_load_demand_data("nope", db_client=fake_db)


def test_missing_pickup_location(fake_db):
    seed_load(fake_db, pickup_location_id="gone")
    with pytest.raises(DemandNotFoundError, match="Pickup location not found"):
        record_load_demand_data("L1", db_client=fake_db)
    assert fake_db.docs("load_demand_data") == []


def test_missing_delivery_location(fake_db):
    seed_load(fake_db, delivery_location_id="gone")
    with pytest.raises(DemandNotFoundError, match="Delivery location not found"):
        record_load_demand_data("L1", db_client=fake_db)
    assert fake_db.docs("load_lane_data") == []


def test_location_without_coordinates_is_rejected(fake_db):
    seed_load(fake_db)
    fake_db.collection("locations").document("loc-mke").set({"state": "WI", "city": "Milwaukee"})
    with pytest.raises(ValueError, match="no coordinates"):
        record_load_demand_data("L1", db_client=fake_db)
