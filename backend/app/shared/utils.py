"""Shared utility functions used across components."""

from calendar import monthrange
from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Return the current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Return datetime as timezone-aware UTC. Returns None if input is None.

    SQLite hands back naive datetimes even for ``DateTime(timezone=True)``
    columns; everything stored by this service is UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def month_bounds(moment: datetime | None = None) -> tuple[date, date]:
    """First and last calendar day of the UTC month containing ``moment``."""
    current = ensure_utc(moment) or utcnow()
    current = current.astimezone(timezone.utc)
    last_day = monthrange(current.year, current.month)[1]
    return date(current.year, current.month, 1), date(current.year, current.month, last_day)
