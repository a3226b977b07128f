"""
Date utility functions shared by the ledger, limits and retention code.
"""

from datetime import UTC, datetime, timedelta
from typing import Literal

UsagePeriod = Literal["day", "week", "month", "all"]

# Trailing windows, not calendar boundaries
DAY = timedelta(days=1)
WEEK = timedelta(days=7)
MONTH = timedelta(days=30)

_PERIODS: dict[str, timedelta] = {"day": DAY, "week": WEEK, "month": MONTH}


def utcnow() -> datetime:
    """
    Return timezone-aware UTC datetime.

    Replaces deprecated datetime.utcnow() which is scheduled for removal in Python 3.14.
    """
    return datetime.now(UTC)


def utcfromtimestamp(timestamp: float) -> datetime:
    """Return timezone-aware UTC datetime from POSIX timestamp."""
    return datetime.fromtimestamp(timestamp, UTC)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (MongoDB returns naive values by default)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def period_start(period: UsagePeriod, reference: datetime | None = None) -> datetime | None:
    """
    Start of a trailing usage window.

    Args:
        period: 'day', 'week', 'month' or 'all'
        reference: End of the window (defaults to now)

    Returns:
        Window start, or None for 'all' (no lower bound)
    """
    if period == "all":
        return None
    if period not in _PERIODS:
        raise ValueError(f"Unknown usage period: {period}")
    return (reference or utcnow()) - _PERIODS[period]
