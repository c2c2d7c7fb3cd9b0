"""New-products strategy: recently launched products, freshest first."""

from __future__ import annotations

import math
import random
from datetime import timedelta

from productreco import constants as C
from productreco.catalogue import ProductQuery
from productreco.models import Candidate, Product, StrategyType
from productreco.scoring import clip_score, engagement_score, recency_score
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.timeutils import Clock, age_in_days, utcnow

_SORT = ("created_at", "upvotes")


class NewProductsStrategy(CandidateStrategy):
    """Surfaces products created in the last *days* days (default 14).

    Score is ``0.7 * recency * exp(-0.15 * age) + 0.3 * engagement``.  The
    window widens the same way as :class:`TrendingStrategy`, signed-in
    users get a ``new_diverse`` top-up, and a ±2 % noise is applied last
    without reordering.

    Args:
        fetcher: Shared :class:`CandidateFetcher`.
        clock: Time source.
        rng: Random source for the noise.
    """

    strategy_type = StrategyType.NEW

    def __init__(
        self,
        fetcher: CandidateFetcher,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._clock = clock
        self._rng = rng or random.Random()

    def score(self, product: Product, days: int) -> float:
        now = self._clock()
        age = age_in_days(product.created_at, now)
        recency = recency_score(
            product.created_at, now, max_age_days=days, recent_days_boost=C.NEW_RECENT_DAYS_BOOST
        )
        return (
            recency * C.NEW_RECENCY_WEIGHT * math.exp(-C.NEW_AGE_DECAY * age)
            + engagement_score(product) * C.NEW_ENGAGEMENT_WEIGHT
        )

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        days = request.days or C.NEW_DAYS_DEFAULT
        now = self._clock()
        categories = {request.category_id} if request.category_id else set()

        results: list[Candidate] = []
        for window, sub_reason in ((days, None), (days * 2, "extended_window"), (None, "all_time")):
            query = ProductQuery(
                created_after=now - timedelta(days=window) if window else None,
                category_ids=categories,
                exclude_ids=request.blocked_ids,
            )
            results = self._fetcher.fetch(
                "new",
                query,
                request.limit,
                lambda p: self.score(p, days),
                sort=_SORT,
                context=request.context,
            )
            if results:
                for c in results:
                    c.sub_reason = sub_reason
                break

        if request.user_id and len(results) < request.limit:
            seen = {c.product_id for c in results}
            extra = self._fetcher.fetch(
                "new_diverse",
                ProductQuery(category_ids=categories, exclude_ids=request.blocked_ids | seen),
                request.limit - len(results),
                lambda p: self.score(p, days),
                sort=_SORT,
                reason=StrategyType.NEW.value,
                context=request.context,
            )
            for c in extra:
                c.sub_reason = "diverse"
            results.extend(extra)

        previous = 1.0
        for c in results:
            noise = C.NEW_NOISE_BASE + self._rng.random() * C.NEW_NOISE_SPAN
            c.score = min(previous, clip_score(c.score * noise))
            previous = c.score
        return results
