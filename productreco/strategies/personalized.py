"""Personalized strategy: match products against the user's preference scores."""

from __future__ import annotations

import logging

from productreco.catalogue import ProductQuery
from productreco.models import Candidate, StrategyType
from productreco.scoring import personalized_score
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.timeutils import Clock, utcnow

logger = logging.getLogger(__name__)

_SORT = ("upvotes", "created_at")


class PersonalizedStrategy(CandidateStrategy):
    """Recommends products in the categories and tags the user engages with.

    Requires a user context with at least one positive category or tag
    score; cold-start users get no candidates from this strategy.
    Dismissed products are excluded.

    Args:
        fetcher: Shared :class:`CandidateFetcher`.
        clock: Time source.
    """

    strategy_type = StrategyType.PERSONALIZED

    def __init__(self, fetcher: CandidateFetcher, clock: Clock = utcnow) -> None:
        self._fetcher = fetcher
        self._clock = clock

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        ctx = request.context
        if ctx is None or not ctx.is_authenticated:
            return []
        prefs = ctx.preferences
        categories = {k for k, v in prefs.category_scores.items() if v > 0}
        tags = {k for k, v in prefs.tag_scores.items() if v > 0}
        if request.category_id:
            categories &= {request.category_id}
        if not categories and not tags:
            logger.debug("No positive preferences for user=%r; skipping.", ctx.user_id)
            return []

        now = self._clock()
        recently_viewed = set(ctx.history.viewed_ids[:20])
        recent_categories = ctx.recent_categories

        def score(product):
            return personalized_score(
                product,
                now,
                prefs.category_scores,
                prefs.tag_scores,
                recently_viewed=recently_viewed,
                recent_categories=recent_categories,
                last_activity=prefs.last_activity,
                time_context=ctx.time_context,
            )

        query = ProductQuery(
            category_ids=categories,
            tags=tags,
            exclude_ids=request.blocked_ids,
        )
        return self._fetcher.fetch(
            "personalized",
            query,
            request.limit,
            score,
            sort=_SORT,
            user_id=ctx.user_id,
            context=ctx,
        )
