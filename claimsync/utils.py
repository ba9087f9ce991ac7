"""
Shared helpers for timestamps and identifiers

Timestamps are always timezone-aware UTC. They are stored as ISO8601 text
with a fixed microsecond width so that text ordering in SQLite matches
chronological ordering.
"""

import uuid
from datetime import datetime, UTC
from typing import Callable, Optional

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current time as an aware UTC datetime"""
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec="microseconds")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def new_id() -> str:
    """Client-generated identifier (UUID4), assigned once at creation"""
    return str(uuid.uuid4())
