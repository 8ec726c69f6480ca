from __future__ import annotations

import logging
from typing import Optional

from . import repo
from .models import AggregationKey, CreationHookResult, RecordDemandResult
from .notify import DemandNotificationPort, get_notifier
from .settings import settings
from .utils import now_ms as _now_ms
from .utils import start_of_day_ms, to_local_datetime

logger = logging.getLogger(__name__)


def _publish(load_id: str, result: RecordDemandResult, db_client) -> None:
    try:
        repo.publish_realtime_heatmap_update(load_id, result, db_client=db_client)
    except Exception:
        logger.exception("Error publishing real-time heatmap update for load %s", load_id)


def _notify(notifier: DemandNotificationPort, load_id: str, enable_llm_insights: bool) -> bool:
    try:
        notifier.notify_demand_update(
            load_id=load_id,
            enable_notifications=True,
            enable_llm_insights=enable_llm_insights,
        )
        return True
    except Exception:
        # Notifications never fail the load creation flow.
        logger.exception("Error triggering demand notifications for load %s", load_id)
        return False


def hook_into_load_creation(
    load_id: str,
    *,
    skip_aggregation: bool = False,
    enable_real_time_updates: bool = True,
    enable_notifications: bool = True,
    enable_llm_insights: bool = True,
    notifier: Optional[DemandNotificationPort] = None,
    now_ms: Optional[int] = None,
    db_client=None,
) -> CreationHookResult:
    """Record demand for a newly created load and refresh today's aggregates.

    Re-aggregation runs at most once per throttle window, measured against the
    national aggregate that the aggregator itself maintains.
    """
    now = int(_now_ms() if now_ms is None else now_ms)
    demand = repo.record_load_demand_data(load_id, now_ms=now, db_client=db_client)

    if skip_aggregation:
        if enable_real_time_updates:
            _publish(load_id, demand, db_client)
        return CreationHookResult(aggregated=False, real_time_updated=enable_real_time_updates)

    today = to_local_datetime(now)
    fresh = repo.is_aggregation_fresh(
        AggregationKey.national(today.year, today.month, today.day),
        now_ms=now,
        window_ms=settings.DEMAND_AGGREGATION_THROTTLE_MS,
        db_client=db_client,
    )

    notifier = notifier or get_notifier()
    if not fresh:
        repo.aggregate_daily_demand_data(date=start_of_day_ms(now), now_ms=now, db_client=db_client)
        notified = _notify(notifier, load_id, enable_llm_insights) if enable_notifications else False
        return CreationHookResult(
            aggregated=True,
            real_time_updated=enable_real_time_updates,
            notified=notified,
        )

    logger.debug("Skipping demand aggregation for load %s, aggregates refreshed within the throttle window", load_id)
    if enable_real_time_updates:
        _publish(load_id, demand, db_client)
    notified = _notify(notifier, load_id, enable_llm_insights) if enable_notifications else False
    return CreationHookResult(
        aggregated=False,
        real_time_updated=enable_real_time_updates,
        notified=notified,
    )
