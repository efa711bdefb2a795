"""
UTC helpers shared by the auth models and services.

Everything stored or compared by the auth core is a timezone-aware UTC
datetime. Naive values coming back from a database driver are assumed to
already be UTC.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Args:
        dt: Naive (assumed UTC) or aware datetime, or None

    Returns:
        Aware UTC datetime, or None if dt is None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_timestamp(dt: datetime) -> int:
    """Whole seconds since the epoch for a datetime."""
    return int(ensure_utc(dt).timestamp())


def from_timestamp(value: int) -> datetime:
    """Aware UTC datetime from seconds since the epoch."""
    return datetime.fromtimestamp(value, tz=timezone.utc)
