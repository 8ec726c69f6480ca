from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from .repo import aggregate_daily_demand_data, purge_expired_heatmap_updates
from .settings import settings
from .utils import now_ms as _now_ms
from .utils import start_of_day_ms

logger = logging.getLogger(__name__)


class SchedulerWrapper:
    def __init__(self):
        self._scheduler = BackgroundScheduler()
        self._started = False
        self._lock = threading.Lock()

    @property
    def started(self) -> bool:
        return self._started

    def start(self):
        with self._lock:
            if not self._started:
                self._scheduler.start()
                self._started = True

    def add_interval_job(
        self,
        func: Callable[..., Any],
        minutes: int,
        id: str,
        *,
        max_instances: int = 1,
        coalesce: bool = True,
        misfire_grace_time: int | None = 60,
    ):
        # Defaults chosen to reduce log noise and avoid piling up missed runs.
        self._scheduler.add_job(
            func,
            "interval",
            minutes=minutes,
            id=id,
            replace_existing=True,
            max_instances=max_instances,
            coalesce=coalesce,
            misfire_grace_time=misfire_grace_time,
        )

    def shutdown(self):
        with self._lock:
            if self._started:
                self._scheduler.shutdown(wait=False)


def aggregate_today_job(now_ms: Optional[int] = None, db_client=None):
    """Refresh yesterday's and today's demand aggregates.

    Yesterday is included so loads recorded inside the hook's throttle window
    before midnight still reach their day. Unchanged days are skipped.
    """
    now = int(_now_ms() if now_ms is None else now_ms)
    today = start_of_day_ms(now)
    for date in (today - 1, today):
        try:
            result = aggregate_daily_demand_data(date=date, force_refresh=False, now_ms=now, db_client=db_client)
            if not result.skipped:
                logger.info(
                    "Scheduled demand aggregation for %04d-%02d-%02d wrote %s from %d records",
                    result.year,
                    result.month,
                    result.day,
                    result.groups_written,
                    result.records_scanned,
                )
        except Exception:
            logger.exception("Scheduled demand aggregation failed")


def purge_heatmap_updates_job(now_ms: Optional[int] = None, db_client=None):
    try:
        removed = purge_expired_heatmap_updates(now_ms=now_ms, db_client=db_client)
        if removed:
            logger.info("Purged %d expired heatmap updates", removed)
    except Exception:
        logger.exception("Heatmap update purge failed")


def init_demand_scheduler(scheduler: SchedulerWrapper):
    scheduler.add_interval_job(
        aggregate_today_job,
        minutes=settings.DEMAND_AGGREGATION_INTERVAL_MINUTES,
        id="demand_daily_aggregation",
    )
    scheduler.add_interval_job(
        purge_heatmap_updates_job,
        minutes=settings.DEMAND_AGGREGATION_INTERVAL_MINUTES,
        id="demand_heatmap_update_purge",
    )
    logger.info(
        "Demand scheduler initialized: daily aggregation every %d minutes",
        settings.DEMAND_AGGREGATION_INTERVAL_MINUTES,
    )
