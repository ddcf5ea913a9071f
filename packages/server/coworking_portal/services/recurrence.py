"""
Due-date arithmetic for recurring tasks.

Weekdays follow the 0 = Sunday convention used by stored patterns.
``time_of_day`` is interpreted in UTC and ignored for hourly patterns.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Optional, Sequence

from coworking_portal_shared.schemas.common import RecurrenceType
from coworking_portal_shared.schemas.tasks import RecurringPattern


def _weekday(value: datetime) -> int:
    return value.isoweekday() % 7


def _next_weekday(current: datetime, days: Sequence[int], interval: int) -> datetime:
    today = _weekday(current)
    later = [d for d in days if d > today]
    if later:
        return current + timedelta(days=later[0] - today)
    # Wrap to the first listed day of the next active week
    return current + timedelta(days=7 - today + days[0] + 7 * (interval - 1))


def _add_months(current: datetime, months: int, day_of_month: Optional[int]) -> datetime:
    index = current.month - 1 + months
    year, month = current.year + index // 12, index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    day = min(day_of_month or current.day, last_day)
    return current.replace(year=year, month=month, day=day)


def _at_time_of_day(value: datetime, time_of_day: Optional[str]) -> datetime:
    if not time_of_day:
        return value
    hour, minute = (int(part) for part in time_of_day.split(":"))
    return value.replace(hour=hour, minute=minute, second=0, microsecond=0)


def step(pattern: RecurringPattern, current: datetime) -> datetime:
    """Return the occurrence that follows ``current``. Always later than ``current``."""
    interval = pattern.interval
    if pattern.type == RecurrenceType.HOURLY:
        return current + timedelta(hours=interval)

    if pattern.type == RecurrenceType.WEEKLY:
        if pattern.days_of_week:
            following = _next_weekday(current, sorted(set(pattern.days_of_week)), interval)
        else:
            following = current + timedelta(weeks=interval)
    elif pattern.type == RecurrenceType.MONTHLY:
        following = _add_months(current, interval, pattern.day_of_month)
    else:
        # daily and custom both count in days
        following = current + timedelta(days=interval)

    return _at_time_of_day(following, pattern.time_of_day)


def next_occurrence(
    pattern: RecurringPattern, after: datetime, now: datetime
) -> Optional[datetime]:
    """First occurrence after ``after`` that is also strictly after ``now``.

    Missed periods are skipped, not back-filled. Returns None once the series
    has passed its ``end_date``.
    """
    due = step(pattern, after)
    while due <= now:
        if pattern.end_date is not None and due > pattern.end_date:
            return None
        due = step(pattern, due)
    if pattern.end_date is not None and due > pattern.end_date:
        return None
    return due
