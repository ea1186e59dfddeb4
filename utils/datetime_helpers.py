from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Current time as an aware UTC datetime; used for every stored timestamp."""
    return datetime.now(timezone.utc)


def as_utc(dt: datetime) -> datetime:
    """Naive datetimes come back from SQLite without tzinfo; they are UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_utc_datetime(dt: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as ISO 8601 with a 'Z' suffix, e.g. 2024-05-01T08:00:00Z.

    Returns None for None so it can back optional response fields.
    """
    if dt is None:
        return None

    iso_string = as_utc(dt).isoformat()
    if iso_string.endswith('+00:00'):
        return iso_string[:-len('+00:00')] + 'Z'
    return iso_string
