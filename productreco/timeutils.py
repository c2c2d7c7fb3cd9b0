"""Small datetime helpers shared by scoring, caching and ingestion."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]

_SECONDS_PER_DAY = 86400.0


def utcnow() -> datetime:
    """Return the current time as a UTC-aware :class:`datetime`."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def age_in_days(created_at: datetime | None, now: datetime) -> float:
    """Return the non-negative age of *created_at* relative to *now* in days.

    ``None`` is treated as infinitely old so callers can skip it.
    """
    if created_at is None:
        return float("inf")
    delta = ensure_utc(now) - ensure_utc(created_at)
    return max(0.0, delta.total_seconds() / _SECONDS_PER_DAY)


def time_bucket(now: datetime, seconds: int) -> int:
    """Return the index of the *seconds*-wide window containing *now*."""
    return int(ensure_utc(now).timestamp() // seconds)


def hour_bucket(now: datetime) -> int:
    return time_bucket(now, 3600)


def minute_bucket(now: datetime) -> int:
    return time_bucket(now, 60)


def to_iso(dt: datetime | None) -> str | None:
    if dt is None:
        return None
    return ensure_utc(dt).isoformat()


def from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
