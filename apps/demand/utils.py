from __future__ import annotations

import math
import time
from datetime import datetime, timezone, tzinfo
from typing import Any, Optional

from dateutil import parser, tz

from .settings import settings


def now_ms() -> int:
    return int(time.time() * 1000)


def demand_tz() -> tzinfo:
    """Timezone used to bucket demand records into calendar days and hours."""
    return tz.gettz(settings.DEMAND_TIMEZONE) or timezone.utc


def to_local_datetime(ms: int | float) -> datetime:
    return datetime.fromtimestamp(float(ms) / 1000.0, tz=demand_tz())


def start_of_day_ms(ms: int | float) -> int:
    local = to_local_datetime(ms)
    midnight = local.replace(hour=0, minute=0, second=0, microsecond=0)
    return int(midnight.timestamp() * 1000)


def js_weekday(dt: datetime) -> int:
    """Day of week with Sunday as 0."""
    return (dt.weekday() + 1) % 7


def week_number(dt: datetime) -> int:
    jan1 = dt.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
    days = (dt - jan1).total_seconds() / 86400.0
    return int(math.ceil((days + js_weekday(jan1) + 1) / 7.0))


def parse_any_date(value: Any) -> Optional[datetime]:
    """Best-effort date parser returning an aware datetime in the demand timezone."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return to_local_datetime(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        # Epoch milliseconds; shorter digit runs are compact dates like 20260314.
        if text.lstrip("-").isdigit() and len(text.lstrip("-")) >= 10:
            return to_local_datetime(int(text))
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            try:
                dt = parser.parse(text, fuzzy=True)
            except (ValueError, OverflowError):
                return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=demand_tz())
    return dt.astimezone(demand_tz())


def to_epoch_ms(dt: datetime) -> int:
    return int(dt.timestamp() * 1000)
