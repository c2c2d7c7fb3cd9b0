"""Interest strategies: products matching the user's strongest declared and learned interests."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import timedelta

from productreco import constants as C
from productreco.catalogue import ProductQuery
from productreco.models import Candidate, StrategyType
from productreco.scoring import personalized_score
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.timeutils import Clock, age_in_days, utcnow

logger = logging.getLogger(__name__)


class InterestExplorationStrategy(CandidateStrategy):
    """Intersects the user's top 5 categories and top 10 tags with products
    that cleared the exploration upvote floor.

    Users without any interest signal get recent (14 day) products above
    the floor instead.  If the lookup fails the *fallback* strategy
    (trending over 14 days) answers in its place.

    Args:
        fetcher: Shared :class:`CandidateFetcher`.
        fallback: Strategy used when this one errors.
        clock: Time source.
    """

    strategy_type = StrategyType.INTERESTS

    def __init__(
        self,
        fetcher: CandidateFetcher,
        fallback: CandidateStrategy | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._fetcher = fetcher
        self._fallback = fallback
        self._clock = clock

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        try:
            return self._explore(request)
        except Exception:
            if self._fallback is None:
                raise
            logger.exception("Interest exploration failed; falling back to trending.")
            return self._fallback.candidates(replace(request, days=C.INTEREST_FALLBACK_DAYS))

    def _explore(self, request: CandidateRequest) -> list[Candidate]:
        now = self._clock()
        ctx = request.context
        category_scores: dict[str, float] = {}
        tag_scores: dict[str, float] = {}
        seen: set[str] = set()
        categories: set[str] = set()
        tags: set[str] = set()
        if ctx is not None:
            category_scores = ctx.preferences.category_scores
            tag_scores = ctx.preferences.tag_scores
            seen = set(ctx.history.viewed_ids) | set(ctx.history.upvoted_products)
            categories = set(ctx.preferences.top_categories(C.INTEREST_TOP_CATEGORIES))
            tags = set(ctx.preferences.top_tags(C.INTEREST_TOP_TAGS))

        created_after = None
        if not categories and not tags:
            created_after = now - timedelta(days=C.INTEREST_FALLBACK_DAYS)

        query = ProductQuery(
            created_after=created_after,
            category_ids=categories,
            tags=tags,
            min_upvotes=C.MIN_EXPLORATION_UPVOTES,
            exclude_ids=request.blocked_ids | seen,
        )

        def score(product):
            return personalized_score(product, now, category_scores, tag_scores)

        return self._fetcher.fetch(
            "interests",
            query,
            request.limit,
            score,
            sort=("upvotes", "created_at"),
            user_id=request.user_id,
            context=request.context,
        )


class InterestBasedStrategy(CandidateStrategy):
    """Products matching the user's strongest categories and tags.

    The raw score is ``0.6 * category score + 0.4 * sum of matching tag
    scores`` (0.1 when nothing matches).  Products younger than 30 days
    get up to a 30 % recency boost and upvotes add up to 50 %.

    Short results are topped up first from *exploration* and then from
    *trending*, skipping duplicates.  Users with no interest signal are
    answered by *discovery* (trending if that fails), and any error hands
    the request to *new* over a 14 day window.

    Args:
        fetcher: Shared :class:`CandidateFetcher`.
        exploration: :class:`InterestExplorationStrategy` used for top-ups.
        discovery: Cold-start answer.
        trending: Top-up and last-resort source.
        new: Error fallback.
        clock: Time source.
    """

    strategy_type = StrategyType.INTERESTS

    def __init__(
        self,
        fetcher: CandidateFetcher,
        exploration: CandidateStrategy,
        discovery: CandidateStrategy,
        trending: CandidateStrategy,
        new: CandidateStrategy,
        clock: Clock = utcnow,
    ) -> None:
        self._fetcher = fetcher
        self._exploration = exploration
        self._discovery = discovery
        self._trending = trending
        self._new = new
        self._clock = clock

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        try:
            return self._recommend(request)
        except Exception:
            logger.exception(
                "Interest-based recommendations failed for user=%r; using new products.",
                request.user_id,
            )
            return self._new.candidates(replace(request, days=C.INTEREST_FALLBACK_DAYS))

    def score(
        self,
        product,
        category_scores: dict[str, float],
        tag_scores: dict[str, float],
    ) -> float:
        """Return the raw interest score of *product*."""
        category = category_scores.get(product.category_id or "", 0.0)
        tags = sum(tag_scores.get(t, 0.0) for t in product.lowercase_tags)
        score = category * C.INTEREST_CATEGORY_WEIGHT + tags * C.INTEREST_TAG_WEIGHT
        if score == 0:
            score = C.INTEREST_BASE_SCORE
        age = age_in_days(product.created_at, self._clock())
        if age < C.INTEREST_RECENCY_DAYS:
            freshness = (C.INTEREST_RECENCY_DAYS - age) / C.INTEREST_RECENCY_DAYS
            score *= 1 + freshness * C.INTEREST_RECENCY_BOOST
        if product.upvotes > 0:
            score *= 1 + min(product.upvotes / 10, C.INTEREST_UPVOTE_BOOST)
        return score

    def _recommend(self, request: CandidateRequest) -> list[Candidate]:
        ctx = request.context
        if ctx is None or ctx.preferences.is_cold_start:
            try:
                return self._discovery.candidates(request)
            except Exception:
                logger.exception("Discovery failed for interest cold start; using trending.")
                return self._trending.candidates(request)

        prefs = ctx.preferences
        categories = prefs.top_categories(C.INTEREST_TOP_CATEGORIES)
        tags = prefs.top_tags(C.INTEREST_TOP_TAGS)
        category_scores = {c: prefs.category_scores[c] for c in categories}
        tag_scores = {t: prefs.tag_scores[t] for t in tags}
        query = ProductQuery(
            category_ids=set(categories),
            tags=set(tags),
            exclude_ids=request.blocked_ids | set(ctx.history.viewed_ids),
        )
        results = self._fetcher.fetch(
            "interests_based",
            query,
            request.limit,
            lambda p: self.score(p, category_scores, tag_scores),
            sort=("upvotes", "created_at"),
            reason=StrategyType.INTERESTS.value,
            user_id=request.user_id,
            context=request.context,
        )

        for source in (self._exploration, self._trending):
            if len(results) >= request.limit:
                break
            seen = {c.product_id for c in results}
            extra = source.candidates(
                replace(
                    request,
                    limit=request.limit * C.FETCH_OVERSAMPLE,
                    exclude_ids=request.exclude_ids | seen,
                )
            )
            results.extend(c for c in extra if c.product_id not in seen)
        return results[: request.limit]
