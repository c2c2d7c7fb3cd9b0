"""Shared fetch-score-cache helper behind most candidate strategies."""

from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Sequence

from productreco import constants as C
from productreco.cache import CacheService
from productreco.catalogue import ProductQuery, ProductStore
from productreco.models import Candidate, Product
from productreco.scoring import (
    TimeContext,
    build_time_context,
    normalize_score,
    psychological_multiplier,
    sort_candidates,
)
from productreco.timeutils import Clock, hour_bucket, utcnow
from productreco.user_context import UserContext

logger = logging.getLogger(__name__)

ScoreFn = Callable[[Product], float]
PostProcess = Callable[[list[Candidate]], list[Candidate]]

_PERSONAL_KINDS = frozenset(
    {"personalized", "collaborative", "interests", "similar", "preferences"}
)


class CandidateFetcher:
    """Query, score, order and cache candidates for one strategy call.

    Args:
        products: Product store to query.
        cache: Cache for scored candidate lists.
        clock: Time source for hour buckets.
    """

    def __init__(self, products: ProductStore, cache: CacheService, clock: Clock = utcnow) -> None:
        self._products = products
        self._cache = cache
        self._clock = clock

    def fetch(
        self,
        kind: str,
        query: ProductQuery,
        limit: int,
        score_fn: ScoreFn,
        sort: Sequence[str] = (),
        post_process: PostProcess | None = None,
        reason: str | None = None,
        scope: str | None = None,
        user_id: str | None = None,
        context: UserContext | None = None,
    ) -> list[Candidate]:
        """Return up to *limit* scored candidates for *query*.

        The query is always restricted to published products, the store is
        asked for ``limit * 2`` rows, and a scoring failure gives the
        product a score of 0.5 instead of dropping it.  Raw scores are
        scaled by the psychological multiplier before normalisation.
        Non-empty results are cached per hour bucket.

        Args:
            kind: Strategy tag; used as reason and in the cache key.
            query: Product predicate.
            limit: Number of candidates wanted.
            score_fn: Raw scorer; results are normalised onto [0.1, 1].
            sort: Store sort fields (descending).
            post_process: Optional transform applied to the ordered list.
            reason: Overrides the reason tag (defaults to *kind*).
            scope: Extra key segment for scorers that depend on something
                besides the query, such as a source product.
            user_id: Caller whose preferences shape the scores.  The key
                then carries ``u:{user_id}`` so user invalidation reaches
                it, and the caller's session joins the multiplier.
            context: Caller context supplying time of day and session.

        Returns:
            Candidates best first.
        """
        if limit <= 0:
            return []
        query = query.published()
        now = self._clock()
        owner = f"u:{user_id}" if user_id else "anon"
        key = (
            f"rec:cand:{kind}:{owner}:{scope or '-'}:{query.cache_key()}:{limit}:"
            f"{','.join(sort) or '-'}:{hour_bucket(now)}"
        )
        cached = self._cache.get(key)
        if cached:
            return [Candidate.from_dict(item) for item in cached]

        time_context = context.time_context if context is not None else build_time_context(now)
        # shared keys never carry one caller's session
        session = context.session if context is not None and user_id else None

        products = self._products.find(query, sort=sort, limit=limit * C.FETCH_OVERSAMPLE)
        candidates: list[Candidate] = []
        for product in products:
            try:
                raw = score_fn(product)
                score = normalize_score(_adjust(raw, product, time_context, session))
            except Exception:
                logger.warning(
                    "Scoring failed for product %r in %s; using default score.",
                    product.product_id,
                    kind,
                    exc_info=True,
                )
                raw = score = C.SCORE_ERROR_DEFAULT
            candidates.append(Candidate(product, score, reason or kind, raw_score=raw))

        candidates = sort_candidates(candidates)
        if post_process is not None:
            candidates = post_process(candidates)
        candidates = candidates[:limit]

        if candidates:
            ttl = C.PERSONALIZED_CACHE_TTL if kind in _PERSONAL_KINDS else C.CANDIDATE_CACHE_TTL
            self._cache.set(key, [c.to_dict() for c in candidates], ttl)
        return candidates


def _adjust(
    raw: float,
    product: Product,
    time_context: TimeContext,
    session: Mapping[str, Any] | None,
) -> float:
    multiplier = max(C.PSYCHOLOGICAL_MIN, psychological_multiplier(product, time_context, session))
    return max(C.SCORE_FLOOR, raw * multiplier)
