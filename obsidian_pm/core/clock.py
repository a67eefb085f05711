"""
Calendar helpers for day-granular logic.

"Today" is evaluated in a single configured timezone (NOTIFY_TIMEZONE).
Per-user timezones are not supported.
"""

import math
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from obsidian_pm.core.config import settings


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def normalize_now(now: Optional[datetime]) -> datetime:
    """Return an aware UTC datetime; naive values are taken to be UTC."""
    if now is None:
        return utc_now()
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


def reference_tz() -> ZoneInfo:
    return ZoneInfo(settings.NOTIFY_TIMEZONE or "UTC")


def local_today(now: Optional[datetime] = None) -> date:
    """Calendar date of `now` in the reference timezone."""
    return normalize_now(now).astimezone(reference_tz()).date()


def start_of_day_utc(day: date) -> datetime:
    """Midnight of `day` in the reference timezone, expressed in UTC."""
    local_midnight = datetime.combine(day, time.min, tzinfo=reference_tz())
    return local_midnight.astimezone(timezone.utc)


def days_between(start: date, end: date) -> int:
    """Whole days from `start` to `end` (negative when `end` is earlier)."""
    return (end - start) // timedelta(days=1)


def days_until(now: datetime, moment: datetime) -> int:
    """Days from `now` until `moment`, rounding partial days up."""
    delta = normalize_now(moment) - normalize_now(now)
    return math.ceil(delta.total_seconds() / 86400)
