"""
UTC timestamp helpers for the SideQuest core.
All persisted timestamps (visit records, journey points) are timezone-aware UTC.
"""

import datetime
from typing import Optional

import pytz

UTC = pytz.utc


def now_utc() -> datetime.datetime:
    """Current timezone-aware UTC datetime."""
    return datetime.datetime.now(UTC)


def ensure_utc(dt: datetime.datetime) -> datetime.datetime:
    """
    Normalise a datetime to aware UTC.

    Args:
        dt: Naive (assumed UTC) or aware datetime

    Returns:
        datetime.datetime: The same instant in UTC
    """
    if dt.tzinfo is None:
        return UTC.localize(dt)
    return dt.astimezone(UTC)


def age_in_days(then: datetime.datetime, now: Optional[datetime.datetime] = None) -> float:
    """Fractional days elapsed between `then` and `now` (never negative)."""
    now = ensure_utc(now) if now is not None else now_utc()
    delta = now - ensure_utc(then)
    return max(delta.total_seconds() / 86400.0, 0.0)


def seconds_between(start: datetime.datetime, end: datetime.datetime) -> float:
    return (ensure_utc(end) - ensure_utc(start)).total_seconds()


__all__ = [
    'UTC',
    'now_utc',
    'ensure_utc',
    'age_in_days',
    'seconds_between',
]
