"""
Datetime utility functions.
All timestamps handled by the engine are timezone-aware UTC.
"""

from datetime import datetime
from typing import Optional
import pytz


def utcnow() -> datetime:
    """
    Get current UTC datetime using pytz.UTC.

    Returns:
        Current UTC datetime with pytz timezone information
    """
    return datetime.now(pytz.UTC)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to aware UTC.

    Naive values (as returned by backends without timezone support) are
    assumed to already be UTC. Aware values are converted.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return pytz.UTC.localize(value)
    return value.astimezone(pytz.UTC)


def hours_until(target: datetime, now: Optional[datetime] = None) -> float:
    """Hours from ``now`` until ``target``; negative when target is in the past."""
    now = now or utcnow()
    return (ensure_utc(target) - ensure_utc(now)).total_seconds() / 3600
