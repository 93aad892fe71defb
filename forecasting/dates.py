"""
Time-zone aware date ranges.

Everything is stored in UTC. A "day" only exists at the reporting boundary,
where it means the calendar day in ``settings.REPORTING_TIME_ZONE``. These
helpers are the one place where local days are turned into UTC instants.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterator, Optional, Tuple
from zoneinfo import ZoneInfo

from django.conf import settings
from django.utils import timezone

UTC = ZoneInfo("UTC")


def reporting_zone() -> ZoneInfo:
    return ZoneInfo(getattr(settings, "REPORTING_TIME_ZONE", "America/Los_Angeles"))


def day_bounds(day: date, tz: Optional[ZoneInfo] = None) -> Tuple[datetime, datetime]:
    """Return ``[start, end)`` in UTC for the local calendar day ``day``."""
    tz = tz or reporting_zone()
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(UTC), end.astimezone(UTC)


def local_day_range(start_day: date, end_day: date, tz: Optional[ZoneInfo] = None) -> Tuple[datetime, datetime]:
    """UTC bounds covering the local days ``start_day`` through ``end_day`` inclusive."""
    if end_day < start_day:
        raise ValueError("end_day must not be before start_day")
    start, _ = day_bounds(start_day, tz)
    _, end = day_bounds(end_day, tz)
    return start, end


def iter_days(start_day: date, end_day: date) -> Iterator[date]:
    current = start_day
    while current <= end_day:
        yield current
        current += timedelta(days=1)


def trailing_window(now: datetime, days: int) -> Tuple[datetime, datetime]:
    """``[now - days, now)`` as UTC instants."""
    if days <= 0:
        raise ValueError("days must be positive")
    if timezone.is_naive(now):
        raise ValueError("now must be timezone aware")
    now = now.astimezone(UTC)
    return now - timedelta(days=days), now


def local_today(now: Optional[datetime] = None, tz: Optional[ZoneInfo] = None) -> date:
    now = now or timezone.now()
    return now.astimezone(tz or reporting_zone()).date()
