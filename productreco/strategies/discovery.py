"""Discovery strategy: a blend of fresh hits, proven favourites and random picks."""

from __future__ import annotations

import logging
import math
import random
from datetime import timedelta
from typing import Callable

from productreco import constants as C
from productreco.catalogue import ProductQuery, ProductStore
from productreco.models import Candidate, Product, StrategyType
from productreco.scoring import sort_candidates
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)

_DISCOVERY_SCORE = 1.0


class DiscoveryStrategy(CandidateStrategy):
    """Union of three sub-strategies, each filling a fixed share.

    ==============  =====================================  =====
    Sub-strategy    Selection                              Share
    ==============  =====================================  =====
    trending_new    created in the last 30 days, by votes  30 %
    highly_rated    at least 3 upvotes, by votes           30 %
    serendipity     uniform random sample                  40 %
    ==============  =====================================  =====

    Every candidate carries ``reason="discovery"`` and the sub-strategy in
    ``sub_reason``.  Equal scores are ordered by product id, so only the
    sampled share varies between calls.

    Args:
        products: Product store.
        clock: Time source.
        rng: Random source for the sampled share.
    """

    strategy_type = StrategyType.DISCOVERY

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
        target = math.ceil(request.limit * C.DISCOVERY_OVERSAMPLE)
        base = ProductQuery(
            category_ids={request.category_id} if request.category_id else set(),
            exclude_ids=request.blocked_ids,
        )
        now = self._clock()
        shares = C.DISCOVERY_SHARES

        sub_strategies: list[tuple[str, Callable[[int], list[Product]]]] = [
            (
                "trending_new",
                lambda n: self._products.find(
                    ProductQuery(
                        created_after=now - timedelta(days=C.DISCOVERY_WINDOW_DAYS),
                        category_ids=base.category_ids,
                        exclude_ids=base.exclude_ids,
                    ),
                    sort=("upvotes",),
                    limit=n,
                ),
            ),
            (
                "highly_rated",
                lambda n: self._products.find(
                    ProductQuery(
                        min_upvotes=C.HIGHLY_RATED_MIN_UPVOTES,
                        category_ids=base.category_ids,
                        exclude_ids=base.exclude_ids,
                    ),
                    sort=("upvotes",),
                    limit=n,
                ),
            ),
            ("serendipity", lambda n: self._products.sample(base, n, self._rng)),
        ]

        seen: set[str] = set()
        results: list[Candidate] = []
        for name, pick in sub_strategies:
            size = max(1, math.ceil(target * shares[name]))
            try:
                picked = pick(size)
            except Exception:
                logger.exception("Discovery sub-strategy %s failed; skipping.", name)
                continue
            for product in picked:
                if product.product_id in seen:
                    continue
                seen.add(product.product_id)
                results.append(
                    Candidate(
                        product,
                        _DISCOVERY_SCORE,
                        StrategyType.DISCOVERY.value,
                        raw_score=_DISCOVERY_SCORE,
                        sub_reason=name,
                    )
                )
        return sort_candidates(results)[: request.limit]
