# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""DateTime utilities for ClassPulse.

Design Decisions:
-----------------
1. All timestamps are stored in UTC
2. All Python datetimes are timezone-aware (with timezone.utc)
3. LMS timestamps arrive as Unix seconds where 0 means "not set"

Usage:
------
    from classpulse.utils.datetime import utc_now

    now = utc_now()
    expires_at = now + timedelta(hours=6)
"""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Timezone-aware datetime representing current UTC time.
    """
    return datetime.now(timezone.utc)


def utc_from_timestamp(timestamp: float | int | None) -> datetime | None:
    """Create a timezone-aware UTC datetime from a Unix timestamp.

    LMS APIs use 0 for unset dates, so falsy values map to None. Values
    that are not a usable timestamp also map to None.

    Args:
        timestamp: Unix timestamp (seconds since epoch) or None.

    Returns:
        Timezone-aware UTC datetime, or None when unset.

    Example:
        >>> utc_from_timestamp(0) is None
        True
        >>> utc_from_timestamp("n/a") is None
        True
    """
    if not timestamp:
        return None
    try:
        return datetime.fromtimestamp(float(timestamp), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def ensure_utc(dt: datetime | None) -> datetime | None:
    """Ensure a datetime is timezone-aware UTC.

    Args:
        dt: A datetime object (naive or aware) or None.

    Returns:
        Timezone-aware UTC datetime or None.

    Note:
        - If dt is None, returns None
        - If dt is naive, assumes UTC and adds tzinfo
        - If dt is aware, converts to UTC
    """
    if dt is None:
        return None

    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)

    return dt.astimezone(timezone.utc)


def minutes_ago(minutes: float, now: datetime | None = None) -> datetime:
    """Get the UTC datetime N minutes before now.

    Args:
        minutes: Number of minutes to go back.
        now: Reference time, defaults to utc_now().

    Returns:
        Timezone-aware UTC datetime.
    """
    return (now or utc_now()) - timedelta(minutes=minutes)


def is_expired(expiry: datetime | None, now: datetime | None = None) -> bool:
    """Check if an expiry datetime has passed.

    Args:
        expiry: Expiry datetime. None means it never expires.
        now: Reference time, defaults to utc_now().

    Returns:
        True if expiry is set and in the past.
    """
    if expiry is None:
        return False
    return ensure_utc(expiry) < (now or utc_now())


def elapsed_ms(start: datetime, end: datetime | None = None) -> int:
    """Milliseconds elapsed between start and end (default now).

    Args:
        start: Start datetime.
        end: End datetime, defaults to utc_now().

    Returns:
        Elapsed milliseconds, never negative.
    """
    delta = (end or utc_now()) - ensure_utc(start)
    return max(0, int(delta.total_seconds() * 1000))


def format_iso(dt: datetime | None) -> str | None:
    """Format datetime as ISO 8601 string.

    Args:
        dt: Datetime to format.

    Returns:
        ISO 8601 string or None.
    """
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()
