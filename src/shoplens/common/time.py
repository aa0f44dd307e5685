from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """UTC timestamp (timezone-aware)."""
    return datetime.now(timezone.utc)


def as_naive_utc(ts: datetime) -> datetime:
    """Drop tz info after converting to UTC; stores keep naive UTC timestamps."""
    if ts.tzinfo is None:
        return ts
    return ts.astimezone(timezone.utc).replace(tzinfo=None)
