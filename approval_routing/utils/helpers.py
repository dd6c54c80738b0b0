"""Shared time helpers.

SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
columns; every comparison in the routing services goes through
``as_utc`` so naive and aware values never meet.
"""
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware; naive values are assumed UTC."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def as_date(value: date | datetime) -> date:
    """Collapse a datetime to its calendar date (UTC), pass dates through."""
    if isinstance(value, datetime):
        return as_utc(value).date()
    return value
