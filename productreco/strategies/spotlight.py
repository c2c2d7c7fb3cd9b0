"""Category-spotlight strategy: strong categories the user has not explored."""

from __future__ import annotations

import logging
import random

from productreco import constants as C
from productreco.catalogue import ProductQuery, ProductStore
from productreco.models import Candidate, Product, StrategyType
from productreco.scoring import engagement_score, normalize_score, recency_score, sort_candidates
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)


class CategorySpotlightStrategy(CandidateStrategy):
    """Spotlights well-rated categories outside the user's favourites.

    Categories need at least three published products and an average
    upvote count at the exploration floor.  The user's top three
    categories are excluded, five of the ten best remaining categories are
    sampled, and each contributes up to five recent products above the
    upvote floor.  With no eligible category a random sample of engaged
    products is returned instead.

    Args:
        products: Product store.
        clock: Time source.
        rng: Random source for category and fallback sampling.
    """

    strategy_type = StrategyType.SPOTLIGHT

    def __init__(
        self,
        products: ProductStore,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._products = products
        self._clock = clock
        self._rng = rng or random.Random()

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        excluded_categories: set[str] = set()
        if request.context is not None:
            excluded_categories = set(
                request.context.preferences.top_categories(C.SPOTLIGHT_EXCLUDED_TOP_CATEGORIES)
            )

        stats = [
            s
            for s in self._products.category_stats(ProductQuery())
            if s.count >= C.SPOTLIGHT_MIN_PRODUCTS
            and s.average_upvotes >= C.MIN_EXPLORATION_UPVOTES
            and s.category_id not in excluded_categories
        ]
        stats.sort(key=lambda s: (-s.average_upvotes, s.category_id))
        top = stats[: C.SPOTLIGHT_TOP_CATEGORIES]
        chosen = self._rng.sample(top, min(C.SPOTLIGHT_SAMPLED_CATEGORIES, len(top)))

        products: list[Product] = []
        for stat in chosen:
            products.extend(
                self._products.find(
                    ProductQuery(
                        category_ids={stat.category_id},
                        min_upvotes=C.MIN_EXPLORATION_UPVOTES,
                        exclude_ids=request.blocked_ids,
                    ),
                    sort=("created_at",),
                    limit=C.SPOTLIGHT_PRODUCTS_PER_CATEGORY,
                )
            )

        if not products:
            logger.debug("No spotlight categories available; sampling engaged products.")
            products = self._products.sample(
                ProductQuery(
                    min_upvotes=C.MIN_EXPLORATION_UPVOTES, exclude_ids=request.blocked_ids
                ),
                request.limit,
                self._rng,
            )

        now = self._clock()
        results = []
        for p in products:
            raw = engagement_score(p) + recency_score(p.created_at, now)
            results.append(
                Candidate(
                    p,
                    normalize_score(raw),
                    StrategyType.SPOTLIGHT.value,
                    raw_score=raw,
                    sub_reason=p.category_name or None,
                )
            )
        return sort_candidates(results)[: request.limit]
