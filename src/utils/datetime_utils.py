"""
Datetime utilities for consistent timezone handling across the booking core.

All timestamps written to the ledgers, pools and bookings are timezone-aware
UTC datetimes. Some stores (SQLite) hand them back naive; ensure_utc() is the
single place that normalizes values read back or received from callers.
"""

import logging
from datetime import datetime, timezone, timedelta
from typing import Optional

logger = logging.getLogger(__name__)

UTC = timezone.utc


def utc_now() -> datetime:
    """
    Get current UTC datetime.

    Returns:
        Current datetime with UTC timezone
    """
    return datetime.now(UTC)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to normalize

    Returns:
        Timezone-aware datetime in UTC, or None if input is None
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        # Naive values are stored UTC
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse a polling/query timestamp into an aware UTC datetime.

    Accepts ISO 8601 strings (with offset, with "Z", or naive meaning UTC)
    and datetime objects.

    Raises:
        ValueError: If the string cannot be parsed
    """
    if isinstance(value, datetime):
        result = ensure_utc(value)
        assert result is not None
        return result

    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid timestamp format: {value}") from e

    result = ensure_utc(parsed)
    assert result is not None
    return result


def hours_from(start: datetime, hours: int) -> datetime:
    """Return start + hours, normalized to UTC."""
    normalized = ensure_utc(start)
    assert normalized is not None
    return normalized + timedelta(hours=hours)


def minutes_between(earlier: datetime, later: datetime) -> float:
    """Elapsed minutes between two datetimes (negative if out of order)."""
    earlier_utc = ensure_utc(earlier)
    later_utc = ensure_utc(later)
    assert earlier_utc is not None and later_utc is not None
    return (later_utc - earlier_utc).total_seconds() / 60
