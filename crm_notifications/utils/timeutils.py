"""Timezone helpers shared by persistence and preference evaluation."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC and convert aware ones to UTC.

    SQLite drops tzinfo on round trips, so every value read back from the
    database or received from a client passes through here.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
