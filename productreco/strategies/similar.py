"""Similar-to-recent strategy: products resembling what the user just viewed."""

from __future__ import annotations

from productreco import constants as C
from productreco.catalogue import ProductQuery, ProductStore
from productreco.models import Candidate, StrategyType
from productreco.scoring import similarity_score
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.timeutils import Clock, utcnow


class SimilarToRecentStrategy(CandidateStrategy):
    """Uses the categories and tags of the user's last five viewed products.

    Products the user already viewed or upvoted are excluded.  Each
    candidate is scored by its best similarity to any of the recent
    products.

    Args:
        products: Product store for resolving the viewed products.
        fetcher: Shared :class:`CandidateFetcher`.
        clock: Time source.
    """

    strategy_type = StrategyType.SIMILAR

    def __init__(
        self, products: ProductStore, fetcher: CandidateFetcher, clock: Clock = utcnow
    ) -> None:
        self._products = products
        self._fetcher = fetcher
        self._clock = clock

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        ctx = request.context
        if ctx is None or not ctx.history.viewed_products:
            return []
        recent_ids = ctx.history.viewed_ids[: C.SIMILAR_RECENT_PRODUCTS]
        sources = self._products.get_many(recent_ids)
        if not sources:
            return []

        categories = {p.category_id for p in sources if p.category_id}
        tags: set[str] = set()
        for p in sources:
            tags |= p.lowercase_tags
        if not categories and not tags:
            return []

        seen = set(ctx.history.viewed_ids) | set(ctx.history.upvoted_products)
        now = self._clock()
        category_scores = ctx.preferences.category_scores

        def score(product):
            return max(similarity_score(product, src, now, category_scores) for src in sources)

        query = ProductQuery(
            category_ids=categories,
            tags=tags,
            exclude_ids=request.blocked_ids | seen,
        )
        return self._fetcher.fetch(
            "similar",
            query,
            request.limit,
            score,
            sort=("upvotes", "created_at"),
            user_id=request.user_id,
            context=request.context,
        )
