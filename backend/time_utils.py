"""
Time utilities for the Errando backend.

Single source of truth for "now", used for row timestamps and token expiry.
"""

from datetime import datetime, timezone, timedelta
from typing import Optional


def utc_now() -> datetime:
    """
    Get current UTC time.

    Returns:
        timezone-aware datetime in UTC
    """
    return datetime.now(timezone.utc)


def expires_at(days: int) -> datetime:
    """
    Calculate an expiry instant a number of days from now.

    Args:
        days: Lifetime in days

    Returns:
        timezone-aware datetime in UTC
    """
    return utc_now() + timedelta(days=days)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to timezone-aware UTC.

    Naive values are taken to already be in UTC; aware values are converted.

    Args:
        value: datetime to normalize, or None

    Returns:
        timezone-aware datetime in UTC, or None
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
