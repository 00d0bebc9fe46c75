"""
utils/time.py

Timestamp utilities for standardizing time handling across the codebase.
All wall-clock timestamps are timezone-aware UTC datetimes; durations are
measured with the monotonic clock.
"""

import time
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    Get the current time as a timezone-aware UTC datetime.

    Returns:
        datetime: Current UTC time
    """
    return datetime.now(timezone.utc)


def monotonic_ms() -> float:
    """Monotonic clock reading in milliseconds, for measuring durations."""
    return time.monotonic() * 1000


def elapsed_ms(start_monotonic_ms: float) -> int:
    """Whole milliseconds elapsed since a monotonic_ms() reading."""
    return max(0, int(round(monotonic_ms() - start_monotonic_ms)))


def parse_iso(value: str) -> Optional[datetime]:
    """
    Parse an ISO 8601 string into an aware datetime.

    Naive values are assumed to be UTC; a trailing ``Z`` is accepted.

    Returns:
        Optional[datetime]: Parsed datetime, or None if unparseable
    """
    try:
        dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except (ValueError, TypeError, AttributeError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def file_timestamp(dt: Optional[datetime] = None) -> str:
    """ISO timestamp safe for use in file names (``:`` and ``.`` replaced)."""
    dt = dt or utc_now()
    return dt.isoformat().replace(":", "-").replace(".", "-").replace("+", "_")
