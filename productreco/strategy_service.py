"""Single-strategy recommendation entry points."""

from __future__ import annotations

import inspect
import logging
from dataclasses import replace
from typing import Any, Callable

from productreco import constants as C
from productreco.blend import parse_blend
from productreco.cache import CacheService
from productreco.catalogue import ProductQuery, ProductStore
from productreco.concurrency import CancellationToken
from productreco.errors import InvalidInputError, MissingError, OperationCancelled
from productreco.explanations import ExplanationContext, build_item, context_for
from productreco.metrics import TrendingMetricsService
from productreco.models import (
    Blend,
    Candidate,
    RecommendationItem,
    RecommendationResponse,
    StrategyType,
)
from productreco.scoring import (
    clip_score,
    diversity_score,
    engagement_score,
    quality_multiplier,
    recency_score,
    similarity_score,
    sort_candidates,
)
from productreco.strategies.base import CandidateRequest
from productreco.strategies.fetcher import CandidateFetcher
from productreco.strategies.registry import StrategyRegistry
from productreco.timeutils import Clock, utcnow
from productreco.user_context import UserContext, UserContextService
from productreco.validation import (
    validate_days,
    validate_id,
    validate_limit,
    validate_offset,
    validate_tags,
)

logger = logging.getLogger(__name__)

_FALLBACK_SUB_REASONS = frozenset({"extended_window", "all_time", "fallback"})
_LISTING_SORT = ("upvotes", "created_at")

# Source priority for the feed, per blend.
_FEED_PRIORITY: dict[Blend, tuple[str, ...]] = {
    Blend.TRENDING: ("trending", "personalized", "new", "collaborative", "interests"),
    Blend.NEW: ("new", "personalized", "trending", "interests", "collaborative"),
    Blend.DISCOVERY: ("new", "interests", "collaborative", "trending", "personalized"),
    Blend.PERSONALIZED: ("personalized", "interests", "collaborative", "trending", "new"),
    Blend.STANDARD: ("personalized", "trending", "new", "collaborative", "interests"),
}
# How many of a source's next candidates the feed compares for diversity.
_FEED_LOOKAHEAD = 3


class StrategyRecommendationService:
    """Runs one strategy for a caller and shapes the result into items.

    Every entry point follows the same pipeline: check the result cache,
    build the caller's context, ask the strategy for ``offset + limit``
    candidates, weight them by content quality, slice the page and convert
    it to :class:`~productreco.models.RecommendationItem` records.

    Args:
        registry: Candidate strategies.
        contexts: Builds the caller's :class:`UserContext`.
        products: Product store (contextual lookups).
        cache: Result cache.
        metrics: Trending-metrics snapshot for explanations.
        clock: Time source.
        debug: Attach score breakdowns to items.
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        contexts: UserContextService,
        products: ProductStore,
        cache: CacheService,
        metrics: TrendingMetricsService,
        clock: Clock = utcnow,
        debug: bool = False,
    ) -> None:
        self._registry = registry
        self._contexts = contexts
        self._products = products
        self._cache = cache
        self._metrics = metrics
        self._clock = clock
        self._debug = debug
        self._fetcher = CandidateFetcher(products, cache, clock)
        self._dispatch: dict[str, Callable[..., RecommendationResponse]] = {
            StrategyType.TRENDING.value: self.get_trending,
            StrategyType.NEW.value: self.get_new,
            StrategyType.SIMILAR.value: self.get_similar,
            StrategyType.CATEGORY.value: self.get_category,
            StrategyType.TAG.value: self.get_tags,
            "tags": self.get_tags,
            StrategyType.MAKER.value: self.get_maker,
            StrategyType.PERSONALIZED.value: self.get_personalized,
            StrategyType.COLLABORATIVE.value: self.get_collaborative,
            StrategyType.PREFERENCES.value: self.get_preferences,
            StrategyType.INTERESTS.value: self.get_interests,
            StrategyType.DISCOVERY.value: self.get_discovery,
            StrategyType.FEED.value: self.get_feed,
        }

    # ------------------------------------------------------------------
    # Dispatcher
    # ------------------------------------------------------------------

    def recommend_for_strategy(self, name: str, **kwargs: Any) -> RecommendationResponse:
        """Invoke the entry point registered under *name*.

        Keyword arguments the entry point does not take are ignored, so a
        generic caller can pass one parameter set to any strategy.

        Raises:
            InvalidInputError: If *name* is not a single-strategy endpoint.
        """
        handler = self._dispatch.get(name)
        if handler is None:
            raise InvalidInputError(
                f"Unknown strategy {name!r}; expected one of: {', '.join(sorted(self._dispatch))}"
            )
        accepted = inspect.signature(handler).parameters
        missing = [
            p.name for p in accepted.values() if p.default is p.empty and p.name not in kwargs
        ]
        if missing:
            raise InvalidInputError(f"Strategy {name!r} requires: {', '.join(missing)}")
        ignored = sorted(set(kwargs) - set(accepted))
        if ignored:
            logger.debug("Ignoring %s for strategy %s", ignored, name)
        return handler(**{k: v for k, v in kwargs.items() if k in accepted})

    @property
    def strategy_names(self) -> list[str]:
        return sorted(self._dispatch)

    # ------------------------------------------------------------------
    # Registry-backed strategies
    # ------------------------------------------------------------------

    def get_trending(
        self,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        days: int | None = None,
        category_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        days = validate_days(days, C.TRENDING_DAYS_DEFAULT)
        return self._from_registry(
            StrategyType.TRENDING,
            user_id,
            limit,
            offset,
            token,
            days=days,
            category_id=category_id,
        )

    def get_new(
        self,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        days: int | None = None,
        category_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        days = validate_days(days, C.NEW_DAYS_DEFAULT)
        return self._from_registry(
            StrategyType.NEW, user_id, limit, offset, token, days=days, category_id=category_id
        )

    def get_personalized(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        """Preference-matched products; cold-start users get trending instead."""
        user_id = validate_id(user_id, "user_id")
        return self._from_registry(
            StrategyType.PERSONALIZED,
            user_id,
            limit,
            offset,
            token,
            fallback=StrategyType.TRENDING,
        )

    def get_collaborative(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        user_id = validate_id(user_id, "user_id")
        return self._from_registry(StrategyType.COLLABORATIVE, user_id, limit, offset, token)

    def get_interests(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        user_id = validate_id(user_id, "user_id")
        return self._from_registry(StrategyType.INTERESTS, user_id, limit, offset, token)

    def get_discovery(
        self,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        category_id: str | None = None,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        return self._from_registry(
            StrategyType.DISCOVERY, user_id, limit, offset, token, category_id=category_id
        )

    # ------------------------------------------------------------------
    # Contextual listings
    # ------------------------------------------------------------------

    def get_similar(
        self,
        product_id: str,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        """Products resembling *product_id*, excluding the product itself.

        Raises:
            MissingError: If the source product does not exist.
        """
        product_id = validate_id(product_id, "product_id")
        source = self._products.get(product_id)
        if source is None:
            raise MissingError(f"Product {product_id!r} not found")

        def produce(ctx: UserContext, wanted: int) -> list[Candidate]:
            now = self._clock()
            query = ProductQuery(
                category_ids={source.category_id} if source.category_id else set(),
                tags=source.lowercase_tags,
                exclude_ids=ctx.preferences.dismissed | {product_id},
            )
            return self._fetcher.fetch(
                "similar_product",
                query,
                wanted,
                lambda p: similarity_score(p, source, now, ctx.preferences.category_scores),
                sort=_LISTING_SORT,
                reason=StrategyType.SIMILAR.value,
                scope=product_id,
                user_id=ctx.user_id,
                context=ctx,
            )

        return self._serve(
            "similar", {"product_id": product_id}, user_id, limit, offset, produce, token
        )

    def get_category(
        self,
        category_id: str,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        category_id = validate_id(category_id, "category_id")
        return self._listing(
            StrategyType.CATEGORY,
            "category",
            {"category_id": category_id},
            lambda ctx: ProductQuery(category_ids={category_id}),
            user_id,
            limit,
            offset,
            token,
        )

    def get_tags(
        self,
        tags: Any,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        tags = validate_tags(tags)
        return self._listing(
            StrategyType.TAG,
            "tag",
            {"tags": list(tags)},
            lambda ctx: ProductQuery(tags=set(tags)),
            user_id,
            limit,
            offset,
            token,
        )

    def get_maker(
        self,
        maker_id: str,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        maker_id = validate_id(maker_id, "maker_id")
        return self._listing(
            StrategyType.MAKER,
            "maker",
            {"maker_id": maker_id},
            lambda ctx: ProductQuery(maker_id=maker_id),
            user_id,
            limit,
            offset,
            token,
        )

    def get_preferences(
        self,
        user_id: str,
        limit: int = 20,
        offset: int = 0,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        """Products ranked purely by the user's stored preference weights.

        Users without preferences get discovery candidates instead.
        """
        user_id = validate_id(user_id, "user_id")

        def produce(ctx: UserContext, wanted: int) -> list[Candidate]:
            prefs = ctx.preferences
            if prefs.is_cold_start:
                return self._fallback(StrategyType.DISCOVERY, ctx, wanted, token)
            categories = prefs.category_scores
            tags = prefs.tag_scores

            def score(product):
                value = categories.get(product.category_id, 0.0) if product.category_id else 0.0
                value += sum(tags.get(t, 0.0) for t in product.lowercase_tags)
                return value

            query = ProductQuery(
                category_ids={k for k, v in categories.items() if v > 0},
                tags={k for k, v in tags.items() if v > 0},
                exclude_ids=prefs.dismissed,
            )
            return self._fetcher.fetch(
                "preferences",
                query,
                wanted,
                score,
                sort=_LISTING_SORT,
                user_id=user_id,
                context=ctx,
            )

        return self._serve("preferences", {}, user_id, limit, offset, produce, token)

    def get_feed(
        self,
        user_id: str | None = None,
        limit: int = 20,
        offset: int = 0,
        blend: Blend = Blend.STANDARD,
        token: CancellationToken | None = None,
    ) -> RecommendationResponse:
        """A diversified feed interleaving several sources.

        Anonymous callers get new and trending products; signed-in users
        also get personalized, collaborative and interest candidates.  The
        blend decides which source leads each round, and within a round
        each source contributes the candidate that adds most diversity.
        """
        blend = parse_blend(blend)

        def produce(ctx: UserContext, wanted: int) -> list[Candidate]:
            order = [
                name
                for name in _FEED_PRIORITY.get(blend, _FEED_PRIORITY[Blend.STANDARD])
                if ctx.is_authenticated or name not in C.AUTHENTICATED_ONLY_STRATEGIES
            ]
            request = CandidateRequest(
                limit=wanted, user_id=ctx.user_id, context=ctx, token=token
            )
            pools: dict[str, list[Candidate]] = {}
            for name in order:
                try:
                    pools[name] = self._registry.get(name).candidates(request)
                except (InvalidInputError, MissingError, OperationCancelled):
                    raise
                except Exception:
                    logger.exception("Feed source %s failed; skipping.", name)
                    pools[name] = []
            return _interleave(pools, order, wanted)

        return self._serve(
            "feed", {"blend": blend.value}, user_id, limit, offset, produce, token, rerank=False
        )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _from_registry(
        self,
        strategy: StrategyType,
        user_id: str | None,
        limit: int,
        offset: int,
        token: CancellationToken | None,
        days: int | None = None,
        category_id: str | None = None,
        fallback: StrategyType | None = None,
    ) -> RecommendationResponse:
        def produce(ctx: UserContext, wanted: int) -> list[Candidate]:
            request = CandidateRequest(
                limit=wanted,
                user_id=ctx.user_id,
                days=days,
                category_id=category_id,
                context=ctx,
                token=token,
            )
            results = self._registry.get(strategy).candidates(request)
            if not results and fallback is not None:
                return self._fallback(fallback, ctx, wanted, token)
            return results

        params = {"days": days, "category_id": category_id}
        return self._serve(strategy.value, params, user_id, limit, offset, produce, token)

    def _listing(
        self,
        reason: StrategyType,
        kind: str,
        params: dict[str, Any],
        make_query: Callable[[UserContext], ProductQuery],
        user_id: str | None,
        limit: int,
        offset: int,
        token: CancellationToken | None,
    ) -> RecommendationResponse:
        """Popularity-ordered products matching a fixed predicate."""

        def produce(ctx: UserContext, wanted: int) -> list[Candidate]:
            now = self._clock()
            query = make_query(ctx).excluding(ctx.preferences.dismissed)

            def score(product):
                return engagement_score(product) + recency_score(product.created_at, now) * 0.5

            return self._fetcher.fetch(
                f"listing_{kind}",
                query,
                wanted,
                score,
                sort=_LISTING_SORT,
                reason=reason.value,
                context=ctx,
            )

        return self._serve(kind, params, user_id, limit, offset, produce, token)

    def _fallback(
        self,
        strategy: StrategyType,
        ctx: UserContext,
        wanted: int,
        token: CancellationToken | None,
    ) -> list[Candidate]:
        logger.info("Falling back to %s for user=%r", strategy.value, ctx.user_id)
        request = CandidateRequest(limit=wanted, user_id=ctx.user_id, context=ctx, token=token)
        results = self._registry.get(strategy).candidates(request)
        return [replace(c, sub_reason=c.sub_reason or "fallback") for c in results]

    def _serve(
        self,
        kind: str,
        params: dict[str, Any],
        user_id: str | None,
        limit: int,
        offset: int,
        produce: Callable[[UserContext, int], list[Candidate]],
        token: CancellationToken | None,
        rerank: bool = True,
    ) -> RecommendationResponse:
        limit = validate_limit(limit)
        offset = validate_offset(offset)
        if token is not None:
            token.raise_if_cancelled()

        key = self._cache.generate_key(
            kind, {**params, "limit": limit, "offset": offset}, user_id
        )
        cached = self._cache.get(key)
        if cached:
            try:
                items = [RecommendationItem.from_dict(d) for d in cached["items"]]
                metadata = dict(cached["metadata"], cacheStatus="hit")
                return RecommendationResponse(items=items, metadata=metadata)
            except (KeyError, TypeError, ValueError):
                logger.warning("Discarding malformed cache entry %s", key)
                self._cache.delete(key)

        ctx = self._contexts.build_user_context(user_id)
        # one extra candidate tells whether another page exists
        candidates = produce(ctx, offset + limit + 1)
        if rerank:
            candidates = self._apply_quality(candidates)
        dismissed = ctx.preferences.dismissed
        candidates = [c for c in candidates if c.product_id not in dismissed]

        page = candidates[offset : offset + limit]
        explain = self._explanation_context(ctx)
        items = [build_item(c, explain, include_components=self._debug) for c in page]
        metadata = {
            "strategy": kind,
            "total": len(items),
            "limit": limit,
            "offset": offset,
            "nextOffset": offset + len(items),
            "hasMore": len(candidates) > offset + limit,
            "hasFallback": any(c.sub_reason in _FALLBACK_SUB_REASONS for c in page),
            "cacheStatus": "miss",
        }
        if items:
            ttl = C.CACHE_DURATION.get(kind, C.CANDIDATE_CACHE_TTL)
            self._cache.set(
                key, {"items": [i.to_dict() for i in items], "metadata": metadata}, ttl
            )
        logger.debug("%s returned %d items for user=%r", kind, len(items), user_id)
        return RecommendationResponse(items=items, metadata=metadata)

    def _apply_quality(self, candidates: list[Candidate]) -> list[Candidate]:
        weighted = []
        for c in candidates:
            multiplier = quality_multiplier(c.product)
            components = c.score_components
            if self._debug:
                components = {
                    **(c.score_components or {}),
                    "strategy_score": c.score,
                    "quality_multiplier": multiplier,
                }
            weighted.append(
                replace(c, score=clip_score(c.score * multiplier), score_components=components)
            )
        return sort_candidates(weighted)

    def _explanation_context(self, ctx: UserContext) -> ExplanationContext:
        return context_for(ctx, self._metrics.snapshot(), self._products, self._clock())


def _interleave(
    pools: dict[str, list[Candidate]], order: list[str], limit: int
) -> list[Candidate]:
    """Round-robin over *order*, picking the most diversifying next candidate.

    Each source's reason is rewritten to the source name so the feed
    reports where every item came from.
    """
    queues = {name: list(pools.get(name, [])) for name in order}
    picked: list[Candidate] = []
    seen: set[str] = set()
    while len(picked) < limit and any(queues.values()):
        for name in order:
            if len(picked) >= limit:
                break
            queue = queues[name]
            while queue and queue[0].product_id in seen:
                queue.pop(0)
            if not queue:
                continue
            current = [c.product for c in picked]
            window = [c for c in queue[:_FEED_LOOKAHEAD] if c.product_id not in seen]
            best = max(window, key=lambda c: c.score * diversity_score(c.product, current))
            queue.remove(best)
            seen.add(best.product_id)
            picked.append(replace(best, reason=name, source=name))
    return picked
