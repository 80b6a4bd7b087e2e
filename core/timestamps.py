"""
core/timestamps.py -- UTC timestamp helpers shared by every layer.

Stored timestamps are ISO-8601 strings in UTC. Rows written by older clients
may lack an offset or use a trailing "Z"; parse_timestamp() accepts both and
always returns an aware datetime.
"""

from __future__ import annotations

from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored ISO-8601 timestamp. Naive values are taken as UTC; empty values give None."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso(value: datetime) -> str:
    """Normalize a datetime to the UTC ISO-8601 form the stores sort on."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
