"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, datetime
from email.utils import parsedate_to_datetime

__all__ = [
    "utcnow",
    "ensure_utc",
    "serialize_datetime",
    "parse_datetime",
    "parse_header_date",
]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` in UTC, treating naive values as already UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to a fixed-width UTC ISO 8601 string.

    Fixed width keeps stored timestamps comparable as plain strings in SQL.
    """
    normalized = ensure_utc(value)
    if normalized is None:
        return None
    return normalized.isoformat(timespec="microseconds")


def parse_datetime(value: str | None) -> datetime | None:
    """Parse a stored ISO 8601 string into an aware UTC ``datetime``."""
    if value is None:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def parse_header_date(header_value: str | None) -> datetime | None:
    """Parse an RFC 2822 ``Date`` header, returning ``None`` when unusable."""
    if not header_value:
        return None
    try:
        return ensure_utc(parsedate_to_datetime(header_value))
    except (TypeError, ValueError, IndexError):
        return None
