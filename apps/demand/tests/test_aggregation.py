from __future__ import annotations

from apps.demand.models import AggregationKey, AggregationScope
from apps.demand.repo import (
    aggregate_daily_demand_data,
    find_aggregation,
    is_aggregation_fresh,
    record_load_demand_data,
)

from .conftest import HOUR_MS, NOW_MS, seed_load


def _aggs(db, scope: str):
    return [a for a in db.docs("load_demand_aggregations") if a["aggregation_type"] == scope]


def _seed_and_record(db, load_id: str = "L1", **overrides):
    seed_load(db, load_id, **overrides)
    record_load_demand_data(load_id, now_ms=NOW_MS, jitter=1.0, db_client=db)


def test_one_aggregate_per_geohash_and_idempotent(fake_db):
    _seed_and_record(fake_db)

    first = aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)
    second = aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 2000, db_client=fake_db)

    assert first.skipped is False
    assert first.records_scanned == 2
    assert first.groups_written == {"geohash": 2, "region": 2, "national": 1}
    assert second.skipped is True
    assert second.last_updated == NOW_MS + 1000

    geo = _aggs(fake_db, "geohash")
    assert sorted(a["geohash"] for a in geo) == ["dp3wjz", "dp9kzd"]
    for a in geo:
        assert a["total_loads"] == 1
        assert a["timeframe"] == "daily"
        assert (a["year"], a["month"], a["day"]) == (2026, 3, 18)


def test_geohash_aggregate_fields(fake_db):
    _seed_and_record(fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)

    chi = find_aggregation(AggregationKey(AggregationScope.GEOHASH, "dp3wjz", 2026, 3, 18), db_client=fake_db)
    assert chi is not None
    assert chi["region_id"] == "IL"
    assert chi["city_name"] == "Chicago"
    assert chi["zip_code"] == "60601"
    assert chi["latitude"] == 41.8781
    assert chi["total_weight"] == 15000
    assert chi["avg_rate"] == 850
    assert chi["equipment_breakdown"] == {"Dry Van": 1}
    assert chi["load_type_breakdown"] == {"ftl": 1}
    assert chi["commodity_type_breakdown"] == {"general": 1}
    assert chi["hazmat_breakdown"] == {"true": 0, "false": 1}
    assert chi["demand_type_breakdown"] == {"pickup": 1, "delivery": 0}
    assert chi["avg_market_demand_score"] == 9.9
    assert chi["data_points"] == 1
    assert chi["last_updated"] == NOW_MS + 1000
    assert chi.get("city_breakdown") is None


def test_region_and_national_aggregates(fake_db):
    _seed_and_record(fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)

    assert sorted(a["region_id"] for a in _aggs(fake_db, "region")) == ["IL", "WI"]
    wi = find_aggregation(AggregationKey(AggregationScope.REGION, "WI", 2026, 3, 18), db_client=fake_db)
    assert wi["city_breakdown"] == {"Milwaukee": 1}
    assert wi["demand_type_breakdown"] == {"pickup": 0, "delivery": 1}

    national = find_aggregation(AggregationKey.national(2026, 3, 18), db_client=fake_db)
    assert national["region_id"] == "US"
    assert national["total_loads"] == 2
    assert national["data_points"] == 2
    assert national["city_breakdown"] == {"Chicago": 1, "Milwaukee": 1}


def test_new_records_update_existing_rows(fake_db):
    _seed_and_record(fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)

    _seed_and_record(fake_db, "L2", rate=1150, equipment_type="Reefer")
    res = aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 2000, db_client=fake_db)

    assert res.skipped is False
    assert res.records_scanned == 4
    geo = _aggs(fake_db, "geohash")
    assert len(geo) == 2
    chi = next(a for a in geo if a["geohash"] == "dp3wjz")
    assert chi["total_loads"] == 2
    assert chi["avg_rate"] == 1000
    assert chi["equipment_breakdown"] == {"Dry Van": 1, "Reefer": 1}
    assert chi["last_updated"] == NOW_MS + 2000
    assert len(_aggs(fake_db, "national")) == 1


def test_force_refresh_recomputes_without_duplicates(fake_db):
    _seed_and_record(fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)
    before = {a["geohash"]: a["total_loads"] for a in _aggs(fake_db, "geohash")}

    res = aggregate_daily_demand_data(date=NOW_MS, force_refresh=True, now_ms=NOW_MS + 5000, db_client=fake_db)

    assert res.skipped is False
    assert {a["geohash"]: a["total_loads"] for a in _aggs(fake_db, "geohash")} == before
    assert len(fake_db.docs("load_demand_aggregations")) == 5
    assert {a["last_updated"] for a in fake_db.docs("load_demand_aggregations")} == {NOW_MS + 5000}


def test_only_the_target_day_is_aggregated(fake_db):
    seed_load(fake_db)
    record_load_demand_data("L1", now_ms=NOW_MS - 24 * HOUR_MS, jitter=1.0, db_client=fake_db)

    res = aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS, db_client=fake_db)

    assert res.records_scanned == 0
    assert res.groups_written == {"geohash": 0, "region": 0, "national": 0}
    assert fake_db.docs("load_demand_aggregations") == []


def test_default_date_is_today(fake_db):
    _seed_and_record(fake_db)
    res = aggregate_daily_demand_data(now_ms=NOW_MS + HOUR_MS, db_client=fake_db)
    assert (res.year, res.month, res.day) == (2026, 3, 18)
    assert res.records_scanned == 2


def test_freshness_window(fake_db):
    key = AggregationKey.national(2026, 3, 18)
    assert is_aggregation_fresh(key, now_ms=NOW_MS, window_ms=HOUR_MS, db_client=fake_db) is False

    _seed_and_record(fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS, db_client=fake_db)

    assert is_aggregation_fresh(key, now_ms=NOW_MS + HOUR_MS - 1, window_ms=HOUR_MS, db_client=fake_db) is True
    assert is_aggregation_fresh(key, now_ms=NOW_MS + HOUR_MS + 1, window_ms=HOUR_MS, db_client=fake_db) is False


def test_moved_pickup_drops_the_emptied_cell(fake_db):
    seed_load(fake_db)
    fake_db.collection("locations").document("loc-nyc").set(
        {"latitude": 40.7128, "longitude": -74.0060, "state": "NY", "city": "New York", "zip_code": "10007"}
    )
    record_load_demand_data("L1", update_existing=True, now_ms=NOW_MS, jitter=1.0, db_client=fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)

    fake_db.collection("loads").document("L1").update({"pickup_location_id": "loc-nyc"})
    record_load_demand_data("L1", update_existing=True, now_ms=NOW_MS + 2000, jitter=1.0, db_client=fake_db)
    res = aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 3000, db_client=fake_db)

    assert res.groups_removed == {"geohash": 1, "region": 1, "national": 0}
    geo = _aggs(fake_db, "geohash")
    assert "dp3wjz" not in {a["geohash"] for a in geo}
    assert sorted(a["region_id"] for a in _aggs(fake_db, "region")) == ["NY", "WI"]
    national = _aggs(fake_db, "national")[0]
    assert sum(a["total_loads"] for a in geo) == national["total_loads"] == 2


def test_record_moved_to_another_day_clears_the_old_day(fake_db):
    seed_load(fake_db)
    record_load_demand_data("L1", update_existing=True, now_ms=NOW_MS, jitter=1.0, db_client=fake_db)
    aggregate_daily_demand_data(date=NOW_MS, now_ms=NOW_MS + 1000, db_client=fake_db)
    assert find_aggregation(AggregationKey.national(2026, 3, 18), db_client=fake_db) is not None

    record_load_demand_data("L1", update_existing=True, now_ms=NOW_MS + 24 * HOUR_MS, jitter=1.0, db_client=fake_db)

    assert [a for a in fake_db.docs("load_demand_aggregations") if a["day"] == 18] == []
    assert {r["day"] for r in fake_db.docs("load_demand_data")} == {19}
