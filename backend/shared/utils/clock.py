"""
Timezone-aware time helpers.

Timestamps are stored in UTC. Some backends (SQLite) return them naive,
so comparisons go through ensure_utc().
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes; convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_local(value: datetime, tz_name: str) -> datetime:
    """Convert an aware (or naive UTC) datetime to the given IANA timezone."""
    return ensure_utc(value).astimezone(ZoneInfo(tz_name))
