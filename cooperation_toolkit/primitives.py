"""
Common primitives shared across the toolkit.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from ulid import ULID


def generate_ulid() -> str:
    """Generate a ULID for object IDs.

    ULIDs are lexicographically sortable and globally unique.
    """
    return str(ULID())


def utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite returns naive values)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat_utc(value: Optional[datetime]) -> Optional[str]:
    """ISO-8601 rendering normalized to UTC."""
    normalized = ensure_utc(value)
    return normalized.isoformat() if normalized else None
