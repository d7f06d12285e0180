"""Time helpers for epoch-millisecond timestamps."""

from __future__ import annotations

from datetime import UTC, datetime


def utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(tz=UTC)


def to_epoch_ms(value: datetime) -> int:
    """Convert a datetime to epoch milliseconds.

    Naive datetimes are taken to be UTC, matching google-auth's expiry values.

    Args:
        value: Datetime value.

    Returns:
        Milliseconds since the Unix epoch.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return int(value.timestamp() * 1000)


def from_epoch_ms(value: int) -> datetime:
    """Convert epoch milliseconds to a timezone-aware UTC datetime."""
    return datetime.fromtimestamp(value / 1000, tz=UTC)
