"""Common time utilities."""

from __future__ import annotations

import datetime as dt


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def from_epoch(seconds: float) -> dt.datetime:
    """Convert epoch seconds (as sent in rate-limit headers) to aware UTC."""
    return dt.datetime.fromtimestamp(seconds, tz=dt.UTC)


def to_epoch(value: dt.datetime) -> int:
    """Convert an aware datetime to whole epoch seconds."""
    if value.tzinfo is None:
        msg = "value must be timezone-aware"
        raise ValueError(msg)
    return int(value.timestamp())
