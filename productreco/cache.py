"""Cache layer: pluggable key/value backends plus recommendation key policy."""

from __future__ import annotations

import fnmatch
import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Iterable, Mapping

import redis
from redis.exceptions import ConnectionError, RedisError, TimeoutError

from productreco import constants as C
from productreco.errors import CacheUnavailableError
from productreco.models import InteractionType
from productreco.timeutils import Clock, hour_bucket, time_bucket, utcnow

logger = logging.getLogger(__name__)

KEY_PREFIXES: dict[str, str] = {
    "trending": "rec:trend",
    "new": "rec:new",
    "personalized": "rec:pers",
    "category": "rec:cat",
    "tag": "rec:tag",
    "similar": "rec:sim",
    "feed": "rec:feed",
    "maker": "rec:maker",
    "collaborative": "rec:collab",
    "popular": "rec:pop",
    "interests": "rec:interests",
    "preferences": "rec:pref",
    "discovery": "rec:disc",
}

# Key segment order; every generated key ends with the time bucket.
_KEY_SEGMENTS: tuple[tuple[str, str], ...] = (
    ("product_id", "p"),
    ("category_id", "c"),
    ("maker_id", "m"),
    ("tags", "t"),
    ("days", "d"),
    ("blend", "bl"),
    ("limit", "l"),
    ("offset", "o"),
)

_ENGAGEMENT_TYPES = frozenset(
    {
        InteractionType.UPVOTE,
        InteractionType.BOOKMARK,
        InteractionType.COMMENT,
        InteractionType.REMOVE_UPVOTE,
        InteractionType.REMOVE_BOOKMARK,
    }
)
_BROWSE_TYPES = frozenset({InteractionType.VIEW, InteractionType.CLICK})
_NEGATIVE_TYPES = frozenset({InteractionType.DISMISS, InteractionType.FEEDBACK})
_USER_DEPENDENT_CANDIDATES = ("personalized", "collaborative", "interests", "similar")


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class CacheBackend(ABC):
    """Raw string key/value store with per-key TTL."""

    @abstractmethod
    def get(self, key: str) -> str | None: ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: int) -> bool: ...

    @abstractmethod
    def delete(self, key: str) -> bool: ...

    @abstractmethod
    def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching the glob *pattern*; returns the count."""


class MemoryCacheBackend(CacheBackend):
    """Thread-safe in-process backend.

    Expired entries are dropped lazily on access.

    Args:
        clock: Monotonic seconds source, injectable for tests.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.RLock()
        self._entries: dict[str, tuple[str, float]] = {}

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: str, ttl: int) -> bool:
        with self._lock:
            self._entries[key] = (value, self._clock() + ttl)
        return True

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_pattern(self, pattern: str) -> int:
        with self._lock:
            doomed = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def keys(self) -> list[str]:
        with self._lock:
            return sorted(self._entries)


class RedisCacheBackend(CacheBackend):
    """Redis backend; outages degrade to misses and no-ops.

    Args:
        host: Redis host.
        port: Redis port.
        db: Database index.
        password: Optional password.
        socket_timeout: Per-command timeout in seconds.
        client: Pre-built ``redis.Redis`` client (mainly for tests).
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
        socket_timeout: int = 5,
        client: Any = None,
    ) -> None:
        self.enabled = True
        if client is not None:
            self.client = client
            return
        try:
            self.client = redis.Redis(
                host=host,
                port=port,
                db=db,
                password=password,
                socket_timeout=socket_timeout,
                socket_connect_timeout=socket_timeout,
                decode_responses=True,
            )
            self.client.ping()
            logger.info("Redis connection established: %s:%s", host, port)
        except (ConnectionError, TimeoutError) as exc:
            logger.warning("Redis connection failed: %s. Cache disabled.", exc)
            self.enabled = False
            self.client = None

    def get(self, key: str) -> str | None:
        if not self.enabled or not self.client:
            return None
        try:
            return self.client.get(key)
        except RedisError as exc:
            logger.warning("Redis GET failed for key %s: %s", key, exc)
            return None

    def set(self, key: str, value: str, ttl: int) -> bool:
        if not self.enabled or not self.client:
            return False
        try:
            return bool(self.client.setex(key, ttl, value))
        except RedisError as exc:
            logger.warning("Redis SET failed for key %s: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        if not self.enabled or not self.client:
            return False
        try:
            return bool(self.client.delete(key))
        except RedisError as exc:
            logger.warning("Redis DELETE failed for key %s: %s", key, exc)
            return False

    def delete_pattern(self, pattern: str) -> int:
        if not self.enabled or not self.client:
            return 0
        try:
            keys = list(self.client.scan_iter(match=pattern, count=500))
            if keys:
                return int(self.client.delete(*keys))
            return 0
        except RedisError as exc:
            logger.warning("Redis pattern delete failed for %s: %s", pattern, exc)
            return 0


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CacheService:
    """JSON cache with recommendation-specific key and invalidation policy.

    Backend failures never escape: reads degrade to misses and writes to
    no-ops, and both are logged.

    Args:
        backend: The :class:`CacheBackend` to store values in.
        clock: Wall-clock source used for time buckets.
    """

    def __init__(self, backend: CacheBackend, clock: Clock = utcnow) -> None:
        self._backend = backend
        self._clock = clock

    # ------------------------------------------------------------------
    # Basic operations
    # ------------------------------------------------------------------

    def get(self, key: str) -> Any | None:
        try:
            raw = self._backend.get(key)
        except CacheUnavailableError as exc:
            logger.warning("Cache read bypassed for %s: %s", key, exc)
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            self.delete(key)
            return None

    def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            raw = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            logger.warning("Failed to serialize cache value for %s: %s", key, exc)
            return False
        try:
            return self._backend.set(key, raw, ttl)
        except CacheUnavailableError as exc:
            logger.warning("Cache write bypassed for %s: %s", key, exc)
            return False

    def delete(self, key: str) -> bool:
        try:
            return self._backend.delete(key)
        except CacheUnavailableError as exc:
            logger.warning("Cache delete bypassed for %s: %s", key, exc)
            return False

    def delete_pattern(self, pattern: str) -> int:
        try:
            return self._backend.delete_pattern(pattern)
        except CacheUnavailableError as exc:
            logger.warning("Cache pattern delete bypassed for %s: %s", pattern, exc)
            return 0

    # ------------------------------------------------------------------
    # Keys
    # ------------------------------------------------------------------

    def generate_key(
        self,
        kind: str,
        params: Mapping[str, Any] | None = None,
        user_id: str | None = None,
        now: datetime | None = None,
    ) -> str:
        """Build a cache key for a single-strategy result.

        The key is ``{prefix}:u:{user}`` (or ``{prefix}:anon``) followed by
        one ``:{segment}:{value}`` pair per present parameter and a time
        bucket: 3 minutes for users, 15 minutes for anonymous callers.

        Raises:
            KeyError: If *kind* has no registered prefix.
        """
        params = params or {}
        parts = [KEY_PREFIXES[kind], f"u:{user_id}" if user_id else "anon"]
        for name, short in _KEY_SEGMENTS:
            value = params.get(name)
            if value is None or value == "" or value == []:
                continue
            if name == "tags":
                value = ",".join(sorted(str(t).lower() for t in value))
            parts.append(f"{short}:{value}")
        bucket_size = C.AUTH_TIME_BUCKET_SECONDS if user_id else C.ANON_TIME_BUCKET_SECONDS
        parts.append(f"b:{time_bucket(now or self._clock(), bucket_size)}")
        return ":".join(parts)

    def trending_metrics_key(self, now: datetime | None = None) -> str:
        return f"trending_metrics:{hour_bucket(now or self._clock())}"

    # ------------------------------------------------------------------
    # Invalidation
    # ------------------------------------------------------------------

    def invalidate_user_cache(self, user_id: str, invalidate_all: bool = False) -> int:
        """Purge every cached result keyed to *user_id*.

        With *invalidate_all* the shared candidate caches that depend on
        user preferences are dropped too.
        """
        patterns = [f"rec:*:u:{user_id}:*", f"hybrid:auth:{user_id}:*"]
        if invalidate_all:
            patterns.extend(f"rec:cand:{kind}:*" for kind in _USER_DEPENDENT_CANDIDATES)
        deleted = self._delete_patterns(patterns)
        logger.debug("Invalidated %d cache keys for user=%r", deleted, user_id)
        return deleted

    def invalidate_category_cache(self, category_id: str) -> int:
        return self.delete_pattern(f"rec:cat:*:c:{category_id}:*")

    def invalidate_similar_cache(self, product_id: str) -> int:
        return self.delete_pattern(f"rec:sim:*:p:{product_id}:*")

    def invalidate_tag_cache(self, tags: Iterable[str]) -> int:
        joined = ",".join(sorted(t.lower() for t in tags))
        return self.delete_pattern(f"rec:tag:*:t:{joined}:*")

    def smart_invalidate_cache(
        self,
        interaction_type: InteractionType | str,
        user_id: str | None = None,
        product_id: str | None = None,
        category_id: str | None = None,
        tags: Iterable[str] | None = None,
    ) -> int:
        """Purge only the keyspaces whose freshness *interaction_type* affects.

        Returns:
            Number of keys deleted.
        """
        try:
            kind = InteractionType(interaction_type)
        except ValueError:
            kind = None
        patterns: list[str] = []
        if kind in _ENGAGEMENT_TYPES:
            if user_id:
                patterns.extend(
                    f"{KEY_PREFIXES[k]}:u:{user_id}:*"
                    for k in ("personalized", "feed", "collaborative", "interests")
                )
                patterns.append(f"hybrid:auth:{user_id}:*")
            patterns.extend(["rec:trend:*", "rec:pop:*", "trending_metrics:*"])
        elif kind in _BROWSE_TYPES:
            if user_id:
                patterns.append(f"rec:feed:u:{user_id}:*")
        elif kind in _NEGATIVE_TYPES:
            if user_id:
                patterns.append(f"hybrid:auth:{user_id}:*")
                patterns.append(f"rec:pers:u:{user_id}:*")
        if user_id and kind is not None and kind is not InteractionType.IMPRESSION:
            # candidate lists scored against this user's preferences and history
            patterns.append(f"rec:cand:*:u:{user_id}:*")
        deleted = self._delete_patterns(patterns)
        if product_id:
            deleted += self.invalidate_similar_cache(product_id)
        if category_id:
            deleted += self.invalidate_category_cache(category_id)
        tag_list = list(tags or [])
        if tag_list:
            deleted += self.invalidate_tag_cache(tag_list)
        return deleted

    def _delete_patterns(self, patterns: Iterable[str]) -> int:
        return sum(self.delete_pattern(p) for p in patterns)
