"""Datetime utilities for common operations."""

from datetime import datetime, date, time, timedelta, timezone
from typing import Optional


def now() -> datetime:
    """Get current datetime in UTC."""
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Return an aware UTC datetime.

    Naive values are taken to already be in UTC (that is how the store
    hands them back on backends without timezone support).
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def add_days(dt: datetime, days: int) -> datetime:
    """
    Add days to a datetime.

    Args:
        dt: Datetime
        days: Number of days to add (can be negative)

    Returns:
        New datetime
    """
    return dt + timedelta(days=days)


def start_of_day(dt: datetime | date) -> datetime:
    """
    Get start of day (00:00:00) in UTC.

    Args:
        dt: Date or datetime

    Returns:
        Datetime at start of day
    """
    if isinstance(dt, datetime):
        dt = as_utc(dt).date()
    return datetime.combine(dt, time.min, tzinfo=timezone.utc)


def days_between(start: datetime | date, end: datetime | date) -> int:
    """
    Calculate number of calendar days between two dates.

    Args:
        start: Start date
        end: End date

    Returns:
        Number of days
    """
    if isinstance(start, datetime):
        start = as_utc(start).date()
    if isinstance(end, datetime):
        end = as_utc(end).date()

    return (end - start).days


def hours_between(start: datetime, end: datetime) -> float:
    """
    Calculate number of hours between two datetimes.

    Args:
        start: Start datetime
        end: End datetime

    Returns:
        Number of hours (can be fractional)
    """
    delta = as_utc(end) - as_utc(start)
    return delta.total_seconds() / 3600
