"""Interaction store: append-only log of user/product interaction events."""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Iterable

from productreco import constants as C
from productreco.models import InteractionEvent, InteractionType
from productreco.timeutils import Clock, ensure_utc, minute_bucket, utcnow

logger = logging.getLogger(__name__)

_DedupKey = tuple[str, str, str, int]


class InteractionStore(ABC):
    """Read/write API for per-user interaction events."""

    @abstractmethod
    def append(self, event: InteractionEvent) -> bool:
        """Persist *event*.

        Returns:
            ``False`` when an event with the same user, product, type and
            minute already exists (the new one is dropped).
        """

    @abstractmethod
    def bulk_append(self, events: Iterable[InteractionEvent]) -> int:
        """Persist many events; returns how many were new."""

    @abstractmethod
    def find_for_user(
        self,
        user_id: str,
        since: datetime | None = None,
        types: Iterable[InteractionType] | None = None,
    ) -> list[InteractionEvent]:
        """Return the user's events, newest first."""

    @abstractmethod
    def upvotes_since(self, since: datetime) -> list[InteractionEvent]: ...

    @abstractmethod
    def distinct_products(
        self, user_id: str, types: Iterable[InteractionType] | None = None
    ) -> set[str]: ...

    @abstractmethod
    def purge_expired(self, now: datetime | None = None) -> int: ...


class InteractionLog(InteractionStore):
    """Thread-safe in-memory :class:`InteractionStore`.

    Events are kept in insertion order.  Duplicates at minute granularity
    are rejected so client retries do not double-count.

    Args:
        clock: Time source used by :meth:`purge_expired`.
        retention_days: Events older than this are purged.
    """

    def __init__(
        self,
        clock: Clock = utcnow,
        retention_days: int = C.INTERACTION_RETENTION_DAYS,
    ) -> None:
        self._clock = clock
        self._retention = timedelta(days=retention_days)
        self._lock = threading.RLock()
        self._events: list[InteractionEvent] = []
        self._keys: set[_DedupKey] = set()

    def append(self, event: InteractionEvent) -> bool:
        key = _dedup_key(event)
        with self._lock:
            if key in self._keys:
                logger.debug(
                    "Dropping duplicate %s event for user=%r product=%r",
                    event.interaction_type.value,
                    event.user_id,
                    event.product_id,
                )
                return False
            self._keys.add(key)
            self._events.append(event)
        return True

    def bulk_append(self, events: Iterable[InteractionEvent]) -> int:
        with self._lock:
            return sum(1 for event in events if self.append(event))

    def find_for_user(
        self,
        user_id: str,
        since: datetime | None = None,
        types: Iterable[InteractionType] | None = None,
    ) -> list[InteractionEvent]:
        wanted = set(types) if types is not None else None
        cutoff = ensure_utc(since) if since is not None else None
        with self._lock:
            events = [
                e
                for e in self._events
                if e.user_id == user_id
                and (wanted is None or e.interaction_type in wanted)
                and (cutoff is None or ensure_utc(e.timestamp) >= cutoff)
            ]
        events.sort(key=lambda e: ensure_utc(e.timestamp), reverse=True)
        return events

    def upvotes_since(self, since: datetime) -> list[InteractionEvent]:
        cutoff = ensure_utc(since)
        with self._lock:
            return [
                e
                for e in self._events
                if e.interaction_type is InteractionType.UPVOTE
                and ensure_utc(e.timestamp) >= cutoff
            ]

    def distinct_products(
        self, user_id: str, types: Iterable[InteractionType] | None = None
    ) -> set[str]:
        return {e.product_id for e in self.find_for_user(user_id, types=types)}

    def purge_expired(self, now: datetime | None = None) -> int:
        """Drop events older than the retention window; returns the count removed."""
        cutoff = ensure_utc(now or self._clock()) - self._retention
        with self._lock:
            kept = [e for e in self._events if ensure_utc(e.timestamp) >= cutoff]
            removed = len(self._events) - len(kept)
            self._events = kept
            self._keys = {_dedup_key(e) for e in kept}
        if removed:
            logger.info("Purged %d expired interaction events.", removed)
        return removed


def _dedup_key(event: InteractionEvent) -> _DedupKey:
    return (
        event.user_id,
        event.product_id,
        event.interaction_type.value,
        minute_bucket(event.timestamp),
    )
