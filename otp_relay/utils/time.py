"""
Time utilities for the dashboard's local-time strings.
"""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo
from typing import Optional, Tuple

from dateutil import parser as dateutil_parser

# Format used by the dashboard for message timestamps and query bounds
DASHBOARD_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def get_current_time(timezone: str = "UTC") -> datetime:
    """Get the current time in the given timezone."""
    return datetime.now(ZoneInfo(timezone))


def to_zone(dt: datetime, timezone: str) -> datetime:
    """
    Convert a datetime to the given timezone.

    Args:
        dt: Datetime to convert (can be naive or aware)
        timezone: IANA timezone name

    Returns:
        Aware datetime in the target timezone
    """
    tz = ZoneInfo(timezone)
    if dt.tzinfo is None:
        # Assume naive datetime is already in the target zone
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def format_dashboard_time(dt: datetime, timezone: str = "UTC") -> str:
    """Format a datetime the way the dashboard expects it."""
    return to_zone(dt, timezone).strftime(DASHBOARD_TIME_FORMAT)


def parse_dashboard_time(value: str, timezone: str = "UTC") -> Optional[datetime]:
    """
    Parse a dashboard timestamp string.

    Args:
        value: Timestamp such as "2025-01-01 10:00:00"
        timezone: Timezone the dashboard reports in

    Returns:
        Aware datetime, or None if the string cannot be parsed
    """
    if not value:
        return None

    try:
        parsed = datetime.strptime(value.strip(), DASHBOARD_TIME_FORMAT)
    except ValueError:
        try:
            parsed = dateutil_parser.parse(value)
        except (ValueError, OverflowError):
            return None

    return to_zone(parsed, timezone)


def trailing_window(
    now: datetime,
    window_minutes: int,
    skew_seconds: int = 0,
    timezone: str = "UTC"
) -> Tuple[str, str]:
    """
    Compute the query bounds for a trailing window ending at now.

    The window is widened by the clock skew tolerance on both ends so a
    dashboard clock slightly ahead of or behind ours does not hide rows.
    """
    skew = timedelta(seconds=skew_seconds)
    start = now - timedelta(minutes=window_minutes) - skew
    end = now + skew
    return format_dashboard_time(start, timezone), format_dashboard_time(end, timezone)
