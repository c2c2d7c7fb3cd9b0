"""Trending metrics: hour-bucketed per-product upvote momentum."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from productreco import constants as C
from productreco.cache import CacheService
from productreco.interactions import InteractionStore
from productreco.timeutils import Clock, ensure_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class TrendingMetrics:
    """Upvote counts for one product.

    Attributes:
        recent_upvotes: Upvotes in the last 7 days.
        prior_upvotes: Upvotes 8–30 days ago.
        percent_increase: ``(recent - prior) / prior * 100``, or ``None``
            when there were no prior upvotes.
    """

    recent_upvotes: int = 0
    prior_upvotes: int = 0
    percent_increase: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "recent_upvotes": self.recent_upvotes,
            "prior_upvotes": self.prior_upvotes,
            "percent_increase": self.percent_increase,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TrendingMetrics:
        return cls(
            recent_upvotes=int(data.get("recent_upvotes", 0)),
            prior_upvotes=int(data.get("prior_upvotes", 0)),
            percent_increase=data.get("percent_increase"),
        )


class TrendingMetricsService:
    """Computes and caches the trending-metrics snapshot.

    The snapshot is cached under ``trending_metrics:{hour}`` for an hour.
    Concurrent cache misses are coalesced: only one thread computes while
    the others wait and then read the freshly cached value.

    Args:
        interactions: Source of upvote events.
        cache: Cache holding the snapshot.
        clock: Time source.
    """

    def __init__(
        self,
        interactions: InteractionStore,
        cache: CacheService,
        clock: Clock = utcnow,
    ) -> None:
        self._interactions = interactions
        self._cache = cache
        self._clock = clock
        self._lock = threading.Lock()

    def snapshot(self) -> dict[str, TrendingMetrics]:
        """Return product id to :class:`TrendingMetrics` for the current hour.

        Failures are logged and yield an empty snapshot.
        """
        key = self._cache.trending_metrics_key(self._clock())
        cached = self._cache.get(key)
        if cached is not None:
            return _decode(cached)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return _decode(cached)
            try:
                metrics = self.compute()
            except Exception:
                logger.exception("Failed to compute trending metrics; using empty snapshot.")
                return {}
            self._cache.set(
                key, {pid: m.to_dict() for pid, m in metrics.items()}, C.TRENDING_METRICS_TTL
            )
            return metrics

    def compute(self) -> dict[str, TrendingMetrics]:
        """Aggregate upvotes of the last 30 days into recent and prior counts."""
        now = ensure_utc(self._clock())
        window_start = now - timedelta(days=C.TRENDING_METRICS_WINDOW_DAYS)
        recent_start = now - timedelta(days=C.TRENDING_METRICS_RECENT_DAYS)

        recent: dict[str, int] = defaultdict(int)
        prior: dict[str, int] = defaultdict(int)
        for event in self._interactions.upvotes_since(window_start):
            if ensure_utc(event.timestamp) >= recent_start:
                recent[event.product_id] += 1
            else:
                prior[event.product_id] += 1

        metrics: dict[str, TrendingMetrics] = {}
        for product_id in sorted(set(recent) | set(prior)):
            r, p = recent[product_id], prior[product_id]
            metrics[product_id] = TrendingMetrics(
                recent_upvotes=r,
                prior_upvotes=p,
                percent_increase=(r - p) / p * 100 if p > 0 else None,
            )
        logger.debug("Computed trending metrics for %d products.", len(metrics))
        return metrics


def _decode(data: dict[str, Any]) -> dict[str, TrendingMetrics]:
    return {pid: TrendingMetrics.from_dict(m) for pid, m in data.items()}
