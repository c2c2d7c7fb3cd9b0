"""Trending strategy: products gaining engagement in a recent window."""

from __future__ import annotations

import logging
import random
from datetime import timedelta

from productreco import constants as C
from productreco.catalogue import ProductQuery
from productreco.models import Candidate, StrategyType
from productreco.scoring import clip_score, trending_score
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)

_SORT = ("upvotes", "views", "created_at")


class TrendingStrategy(CandidateStrategy):
    """Ranks products by engagement velocity within the last *days* days.

    **Fallback chain**: if the window is empty it is doubled; if still
    empty the date filter is dropped.  Candidates from a widened window are
    tagged with ``sub_reason`` ``"extended_window"`` or ``"all_time"``.
    For signed-in users a short list is topped up from the whole
    catalogue at a 0.9 discount (``sub_reason="diverse"``).

    A per-position decay and a small random jitter are applied last; list
    order is preserved.

    Args:
        fetcher: Shared :class:`CandidateFetcher`.
        clock: Time source.
        rng: Random source for the jitter and view estimates.
    """

    strategy_type = StrategyType.TRENDING

    def __init__(
        self,
        fetcher: CandidateFetcher,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._clock = clock
        self._rng = rng or random.Random()

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        days = request.days or C.TRENDING_DAYS_DEFAULT
        now = self._clock()
        categories = {request.category_id} if request.category_id else set()

        def score(product):
            return trending_score(product, now, days, self._rng)

        windows = (
            (days, None),
            (days * 2, "extended_window"),
            (None, "all_time"),
        )
        results: list[Candidate] = []
        for window, sub_reason in windows:
            query = ProductQuery(
                created_after=now - timedelta(days=window) if window else None,
                category_ids=categories,
                exclude_ids=request.blocked_ids,
            )
            results = self._fetcher.fetch(
                "trending", query, request.limit, score, sort=_SORT, context=request.context
            )
            if results:
                if sub_reason:
                    logger.debug("Trending widened to %s for %d results.", sub_reason, len(results))
                    for c in results:
                        c.sub_reason = sub_reason
                break

        if request.user_id and len(results) < request.limit:
            results.extend(self._diverse_top_up(request, results, categories, score))

        return self._apply_position_decay(results)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _diverse_top_up(self, request, results, categories, score) -> list[Candidate]:
        seen = {c.product_id for c in results}
        query = ProductQuery(
            category_ids=categories,
            exclude_ids=request.blocked_ids | seen,
        )
        extra = self._fetcher.fetch(
            "trending_diverse",
            query,
            request.limit - len(results),
            score,
            sort=_SORT,
            reason=StrategyType.TRENDING.value,
            context=request.context,
        )
        for c in extra:
            c.score = clip_score(c.score * C.TRENDING_DIVERSE_MULTIPLIER)
            c.sub_reason = "diverse"
        return extra

    def _apply_position_decay(self, candidates: list[Candidate]) -> list[Candidate]:
        previous = 1.0
        for i, c in enumerate(candidates):
            jitter = C.TRENDING_JITTER_BASE + self._rng.random() * C.TRENDING_JITTER_SPAN
            # never above the previous item, so scores stay in list order
            decayed = clip_score(c.score * (1 - C.TRENDING_POSITION_DECAY * i) * jitter)
            c.score = min(previous, decayed)
            previous = c.score
        return candidates
