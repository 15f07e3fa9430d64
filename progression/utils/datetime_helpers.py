"""
Standardized Date/Time Handling Utilities

All streak day arithmetic goes through this module so that every computation
shares one day-boundary rule:

CRITICAL RULES:
- Timestamps are stored as timezone-aware UTC (use to_utc())
- A "day" is the calendar date in STREAK_TIMEZONE (use activity_day())
- Never mix naive and aware datetimes; naive input is treated as UTC
"""

import logging
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from progression.config import STREAK_TIMEZONE

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "UTC"


def get_streak_timezone(tz_name: Optional[str] = None) -> ZoneInfo:
    """
    Get the canonical timezone that anchors streak days

    Args:
        tz_name: Override for STREAK_TIMEZONE

    Returns:
        ZoneInfo object, falling back to UTC for unknown names
    """
    tz_name = tz_name or STREAK_TIMEZONE
    try:
        return ZoneInfo(tz_name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        logger.error(f"Invalid streak timezone '{tz_name}': {e}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def now_utc() -> datetime:
    """Current datetime in UTC (timezone-aware)"""
    return datetime.now(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Convert datetime to UTC, treating naive values as UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def activity_day(timestamp: datetime, tz: Optional[ZoneInfo] = None) -> date:
    """
    Calendar day of a timestamp in the canonical streak timezone

    Args:
        timestamp: Event time (naive values are treated as UTC)
        tz: Override timezone (defaults to STREAK_TIMEZONE)

    Returns:
        The local date used for streak gap computation

    Example:
        23:30 UTC on Jan 1 is Jan 2 with STREAK_TIMEZONE=Asia/Tokyo
    """
    tz = tz or get_streak_timezone()
    return to_utc(timestamp).astimezone(tz).date()


def day_gap(earlier: date, later: date) -> int:
    """Number of calendar days from earlier to later (negative if reversed)"""
    return (later - earlier).days


def hours_until_day_end(now: datetime, tz: Optional[ZoneInfo] = None) -> float:
    """
    Hours remaining until midnight in the canonical timezone

    Args:
        now: Current time
        tz: Override timezone

    Returns:
        Hours (fractional) until the next day boundary
    """
    tz = tz or get_streak_timezone()
    local_now = to_utc(now).astimezone(tz)
    next_midnight = datetime.combine(local_now.date() + timedelta(days=1), time.min, tzinfo=tz)
    return (next_midnight - local_now).total_seconds() / 3600
