"""Serendipity strategy: explicitly randomised picks among engaged products."""

from __future__ import annotations

import random

from productreco import constants as C
from productreco.catalogue import ProductQuery, ProductStore
from productreco.models import Candidate, StrategyType
from productreco.scoring import engagement_score, normalize_score, sort_candidates
from productreco.strategies.base import CandidateRequest, CandidateStrategy


class SerendipityStrategy(CandidateStrategy):
    """Random engaged products the user has not seen.

    The score is engagement plus ``rng.random() * 2``, so ranking is
    deliberately unstable between calls.
    """

    strategy_type = StrategyType.SERENDIPITY

    def __init__(self, products: ProductStore, rng: random.Random | None = None) -> None:
        self._products = products
        self._rng = rng or random.Random()

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        seen: set[str] = set()
        if request.context is not None:
            seen = set(request.context.history.viewed_ids) | set(
                request.context.history.upvoted_products
            )
        query = ProductQuery(
            min_upvotes_or_bookmarks=C.MIN_EXPLORATION_UPVOTES,
            category_ids={request.category_id} if request.category_id else set(),
            exclude_ids=request.blocked_ids | seen,
        )
        pool = self._products.sample(query, request.limit * C.FETCH_OVERSAMPLE, self._rng)
        results = []
        for product in pool:
            raw = engagement_score(product) + self._rng.random() * C.SERENDIPITY_RANDOM_SPAN
            results.append(
                Candidate(
                    product,
                    normalize_score(raw),
                    StrategyType.SERENDIPITY.value,
                    raw_score=raw,
                )
            )
        return sort_candidates(results)[: request.limit]
