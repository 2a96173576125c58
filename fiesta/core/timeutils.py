"""Timezone helpers shared by services."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    return datetime.now(UTC)


def coerce_utc(dt: datetime) -> datetime:
    """Return ``dt`` as an aware UTC datetime (SQLite hands back naive values)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)
