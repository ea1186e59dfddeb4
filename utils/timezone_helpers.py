"""
Timezone utilities for bucketing UTC shift timestamps into local calendar days.
"""

from datetime import date, datetime
from datetime import time as datetime_time
from datetime import timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

from core import config


def from_utc_to_local(utc_dt: datetime, tz: str) -> datetime:
    """
    Convert UTC datetime to local datetime in the specified timezone.

    Args:
        utc_dt: UTC datetime (naive values are assumed to be UTC)
        tz: IANA timezone string (e.g., 'America/New_York', 'America/Los_Angeles')

    Returns:
        datetime: Local datetime in the specified timezone
    """
    if utc_dt.tzinfo is None:
        utc_dt = utc_dt.replace(tzinfo=timezone.utc)

    return utc_dt.astimezone(ZoneInfo(tz))


def local_start_of_day(date_or_dt: Union[date, datetime], tz: str) -> datetime:
    """
    Get the start of day (00:00:00) in the specified timezone.

    Args:
        date_or_dt: date or datetime object
        tz: IANA timezone string

    Returns:
        datetime: Start of day in UTC
    """
    local_date = date_or_dt.date() if isinstance(date_or_dt, datetime) else date_or_dt
    local_start = datetime.combine(local_date, datetime_time.min, tzinfo=ZoneInfo(tz))
    return local_start.astimezone(timezone.utc)


def local_end_of_day(date_or_dt: Union[date, datetime], tz: str) -> datetime:
    """
    Get the end of day (23:59:59.999999) in the specified timezone.

    Args:
        date_or_dt: date or datetime object
        tz: IANA timezone string

    Returns:
        datetime: End of day in UTC
    """
    local_date = date_or_dt.date() if isinstance(date_or_dt, datetime) else date_or_dt
    local_end = datetime.combine(local_date, datetime_time.max, tzinfo=ZoneInfo(tz))
    return local_end.astimezone(timezone.utc)


def validate_timezone(tz: str) -> bool:
    """True if `tz` is a valid IANA timezone."""
    try:
        ZoneInfo(tz)
        return True
    except Exception:
        return False


def get_default_timezone() -> str:
    """Timezone used for "today" and daily buckets in analytics."""
    return config.ANALYTICS_TIMEZONE


def ensure_timezone_aware(dt: datetime, default_tz: Optional[str] = None) -> datetime:
    """
    Ensure a datetime is timezone-aware, defaulting to UTC if naive.

    Args:
        dt: datetime object
        default_tz: Optional default timezone if dt is naive

    Returns:
        datetime: timezone-aware datetime
    """
    if dt.tzinfo is None:
        if default_tz:
            return dt.replace(tzinfo=ZoneInfo(default_tz))
        else:
            return dt.replace(tzinfo=timezone.utc)
    return dt
