"""Hybrid recommendation engine: fan-out, blend, diversify, paginate, cache."""

from __future__ import annotations

import logging
import time
from collections import Counter
from concurrent import futures
from dataclasses import dataclass, field, replace
from functools import partial
from typing import Any

from productreco import constants as C
from productreco.blend import coerce_blend, weight_for, weights_for_context
from productreco.cache import CacheService
from productreco.catalogue import ProductStore
from productreco.concurrency import BackgroundExecutor, CancellationToken, fan_out
from productreco.diversity import Diversifier
from productreco.emergency import EmergencyRecommender
from productreco.errors import InvalidInputError, OperationCancelled
from productreco.explanations import (
    ExplanationContext,
    build_item,
    context_for,
    explanation_text,
    score_context,
)
from productreco.interactions import InteractionStore
from productreco.metrics import TrendingMetricsService
from productreco.models import (
    Blend,
    Candidate,
    InteractionEvent,
    InteractionType,
    ProductStatus,
    RecommendationItem,
    RecommendationResponse,
    SortBy,
)
from productreco.strategies.base import CandidateRequest
from productreco.strategies.registry import StrategyRegistry
from productreco.timeutils import Clock, ensure_utc, utcnow
from productreco.user_context import UserContext, UserContextService

logger = logging.getLogger(__name__)


@dataclass
class HybridRequest:
    """Inputs of one hybrid recommendation call.

    Attributes:
        user_id: Requesting user, ``None`` for anonymous callers.
        limit: Page size (1–100).
        offset: Page start (≥ 0).
        blend: Weight preset.
        category_id: Only return products in this category.
        tags: Only return products carrying at least one of these tags.
        sort_by: Final ordering of the page.
        force_refresh: Skip the page cache.
        session: Session details (``session_id``, ``device_type``,
            ``user_agent``).
        token: Cancellation handle propagated to every strategy call.
    """

    user_id: str | None = None
    limit: int = 20
    offset: int = 0
    blend: Blend = Blend.STANDARD
    category_id: str | None = None
    tags: tuple[str, ...] = ()
    sort_by: SortBy = SortBy.SCORE
    force_refresh: bool = False
    session: dict[str, Any] = field(default_factory=dict)
    token: CancellationToken | None = None

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


class HybridRecommendationEngine:
    """Blends every candidate strategy into one diversified page.

    Pipeline: cache lookup, context assembly, parallel candidate fan-out
    (each strategy retried once), blend reweighting, diversity enforcement
    with pick-time dedup, sorting, pagination, emergency top-up, impression
    logging and cache write.

    Non-input failures never escape :meth:`get_hybrid`: the caller gets a
    degraded page with ``metadata["error"] = True``.

    Args:
        registry: Candidate strategies.
        contexts: Builds the caller's :class:`UserContext`.
        cache: Page cache.
        metrics: Trending-metrics snapshot provider.
        emergency: Last-resort item source.
        interactions: Receives impression events.
        products: Resolves the caller's last viewed product for
            explanations.
        executor: Pool the strategy fan-out runs on.
        background: Pool for fire-and-forget impression logging.
        diversifier: Diversity policy; defaults to :class:`Diversifier`.
        clock: Time source.
        debug: Attach score breakdowns to items.
        retry_delay: Pause before a failed strategy is retried, in seconds.
    """

    def __init__(
        self,
        registry: StrategyRegistry,
        contexts: UserContextService,
        cache: CacheService,
        metrics: TrendingMetricsService,
        emergency: EmergencyRecommender,
        interactions: InteractionStore,
        products: ProductStore,
        executor: futures.Executor | None = None,
        background: BackgroundExecutor | None = None,
        diversifier: Diversifier | None = None,
        clock: Clock = utcnow,
        debug: bool = False,
        retry_delay: float = 0.1,
    ) -> None:
        self._registry = registry
        self._contexts = contexts
        self._cache = cache
        self._metrics = metrics
        self._emergency = emergency
        self._interactions = interactions
        self._products = products
        self._executor = executor or futures.ThreadPoolExecutor(
            max_workers=len(C.HYBRID_STRATEGY_ORDER), thread_name_prefix="fanout"
        )
        self._background = background or BackgroundExecutor()
        self._diversifier = diversifier or Diversifier()
        self._clock = clock
        self._debug = debug
        self._retry_delay = retry_delay

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def get_hybrid(self, request: HybridRequest) -> RecommendationResponse:
        """Return one page of blended recommendations.

        Args:
            request: Validated request parameters.

        Returns:
            Items plus the metadata block (score stats, distributions,
            pagination and cache status).

        Raises:
            InvalidInputError: Propagated from input checks.
            OperationCancelled: If ``request.token`` fires mid-request.
        """
        start = time.monotonic()
        blend = coerce_blend(request.blend, request.is_authenticated)
        request = replace(request, blend=blend)
        try:
            response = self._generate(request, request.force_refresh)
        except (InvalidInputError, OperationCancelled):
            raise
        except Exception as exc:
            logger.exception("Hybrid recommendations failed for user=%r", request.user_id)
            items = self._emergency.recommend(request.limit)
            response = RecommendationResponse(
                items=items,
                metadata=self._metadata(
                    request,
                    items,
                    cache_status="error",
                    has_more=False,
                    has_fallback=True,
                    error_message=str(exc),
                ),
            )
        logger.info(
            "[Hybrid] Generated %d recommendations in %.1fms (cache=%s)",
            len(response.items),
            (time.monotonic() - start) * 1000,
            response.metadata.get("cacheStatus"),
        )
        return response

    def cache_key(self, request: HybridRequest) -> str:
        auth = "auth" if request.is_authenticated else "anon"
        category = f"cat:{request.category_id}" if request.category_id else ""
        tags = f"tags:{','.join(sorted(request.tags))}" if request.tags else ""
        return (
            f"hybrid:{auth}:{request.user_id or 'anon'}:{request.limit}:{request.offset}:"
            f"{request.blend.value}:{category}:{tags}:{request.sort_by.value}"
        )

    def short_cache_key(self, request: HybridRequest) -> str:
        auth = "auth" if request.is_authenticated else "anon"
        return (
            f"hybrid:{auth}:{request.user_id or 'anon'}:"
            f"{C.SHORT_PAGE_LIMIT}:0:{request.blend.value}"
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    def _generate(self, request: HybridRequest, force_refresh: bool) -> RecommendationResponse:
        key = self.cache_key(request)
        cache_status = "bypass" if force_refresh else "miss"
        if not force_refresh:
            cached = self._read_cache(key, request.limit)
            if cached is not None:
                items, has_more = cached
                return RecommendationResponse(
                    items=items,
                    metadata=self._metadata(
                        request, items, cache_status="hit", has_more=has_more, has_fallback=False
                    ),
                )

        ctx = self._contexts.build_user_context(request.user_id, request.session)
        explain = self._explanation_context(ctx)
        merged = self._collect(request, ctx, explain)

        if not merged:
            logger.warning("[Hybrid] No candidates; using emergency recommendations.")
            items = self._emergency.recommend(request.limit, ctx.preferences.dismissed)
            return RecommendationResponse(
                items=items,
                metadata=self._metadata(
                    request, items, cache_status=cache_status, has_more=False, has_fallback=True
                ),
            )

        min_sources = (
            C.MIN_SOURCES_AUTHENTICATED if request.is_authenticated else C.MIN_SOURCES_ANONYMOUS
        )
        available = {c.source for c in merged}
        if len(available) < min_sources and not force_refresh:
            logger.warning(
                "Not enough source diversity (%d/%d); retrying with a forced refresh.",
                len(available),
                min_sources,
            )
            return self._generate(request, force_refresh=True)

        window = max(request.limit * 3, request.offset + request.limit)
        diversified = self._diversifier.diversify(merged, window, min_sources)
        ordered = self._sort(diversified, request.sort_by)
        page = ordered[request.offset : request.offset + request.limit]
        has_more = len(ordered) > request.offset + request.limit
        items = [build_item(c, explain, include_components=self._debug) for c in page]

        has_fallback = False
        if len(items) < request.limit:
            gap = request.limit - len(items)
            logger.warning(
                "Not enough results after slicing: %d/%d. Adding emergency recommendations.",
                len(items),
                request.limit,
            )
            existing = {i.product_id for i in items} | ctx.preferences.dismissed
            items.extend(self._emergency.recommend(gap * 2, existing)[:gap])
            has_fallback = True

        if request.is_authenticated:
            self._background.submit(
                self._record_impressions,
                request.user_id,
                items,
                request.offset,
                description=f"impressions for user={request.user_id!r}",
            )

        self._write_cache(request, key, items, has_more, min(min_sources, len(available)))
        return RecommendationResponse(
            items=items,
            metadata=self._metadata(
                request,
                items,
                cache_status=cache_status,
                has_more=has_more,
                has_fallback=has_fallback,
            ),
        )

    def _collect(
        self, request: HybridRequest, ctx: UserContext, explain: ExplanationContext
    ) -> list[Candidate]:
        """Fan out to every applicable strategy, then filter and reweight each list."""
        weights = weights_for_context(request.blend, ctx)
        names = [
            name
            for name in C.HYBRID_STRATEGY_ORDER
            if (request.is_authenticated or name not in C.AUTHENTICATED_ONLY_STRATEGIES)
            and name in self._registry
        ]
        candidate_request = CandidateRequest(
            limit=request.limit * C.HYBRID_OVERSAMPLE,
            user_id=request.user_id,
            category_id=request.category_id,
            context=ctx,
            token=request.token,
        )
        tasks = {
            name: partial(self._registry.get(name).candidates, candidate_request)
            for name in names
        }
        results = fan_out(self._executor, tasks, request.token, self._retry_delay)

        wanted_tags = {t.lower() for t in request.tags}
        dismissed = ctx.preferences.dismissed
        merged: list[Candidate] = []
        for name in names:
            weight = weight_for(weights, name)
            multiplier = C.TYPE_MULTIPLIERS.get(name, C.DEFAULT_TYPE_MULTIPLIER)
            # a product offered by several sources stays in each list; the
            # diversifier keeps whichever copy it picks first
            seen: set[str] = set()
            for c in results.get(name, []):
                if c.product_id in seen or c.product_id in dismissed:
                    continue
                seen.add(c.product_id)
                product = c.product
                if product.status is not ProductStatus.PUBLISHED:
                    continue
                if request.category_id and product.category_id != request.category_id:
                    continue
                if wanted_tags and not (product.lowercase_tags & wanted_tags):
                    continue
                stable = c.score * weight * multiplier
                components = None
                if self._debug:
                    components = {
                        "strategy_score": c.score,
                        "blend_weight": weight,
                        "type_multiplier": multiplier,
                        "final": stable,
                    }
                merged.append(
                    replace(
                        c,
                        score=stable,
                        raw_score=c.score,
                        reason=name,
                        source=name,
                        score_components=components,
                        explanation_text=explanation_text(product, name, explain),
                        score_context=score_context(product, name, stable, explain),
                    )
                )
        logger.info(
            "Merged %d candidates from %d sources.", len(merged), len({c.source for c in merged})
        )
        return merged

    def _sort(self, candidates: list[Candidate], sort_by: SortBy) -> list[Candidate]:
        ordered = list(candidates)
        if sort_by is SortBy.CREATED:
            ordered.sort(key=lambda c: ensure_utc(c.product.created_at), reverse=True)
        elif sort_by is SortBy.UPVOTES:
            ordered.sort(key=lambda c: c.product.upvotes, reverse=True)
        elif sort_by is SortBy.TRENDING:
            ordered.sort(key=lambda c: (c.reason != "trending", -c.score))
        # score: the diversifier's order is already score-aware
        return ordered

    def _explanation_context(self, ctx: UserContext) -> ExplanationContext:
        return context_for(ctx, self._metrics.snapshot(), self._products, self._clock())

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def _read_cache(
        self, key: str, limit: int
    ) -> tuple[list[RecommendationItem], bool] | None:
        cached = self._cache.get(key)
        if not cached:
            return None
        try:
            items = [RecommendationItem.from_dict(d) for d in cached["items"]]
        except (KeyError, TypeError, ValueError):
            logger.warning("Discarding malformed hybrid cache entry %s", key)
            self._cache.delete(key)
            return None
        if len(items) < min(C.MIN_CACHEABLE_ITEMS, limit):
            return None
        if len({i.reason for i in items}) < C.MIN_CACHED_SOURCES:
            return None
        return items, bool(cached.get("has_more", False))

    def _write_cache(
        self,
        request: HybridRequest,
        key: str,
        items: list[RecommendationItem],
        has_more: bool,
        required_sources: int,
    ) -> None:
        sources = len({i.reason for i in items})
        if any(i.is_placeholder for i in items):
            logger.warning("Not caching results that contain placeholder items.")
            return
        if sources < required_sources:
            logger.warning(
                "Not caching results due to insufficient source diversity: %d/%d",
                sources,
                required_sources,
            )
            return
        if (
            len(items) < min(C.MIN_CACHEABLE_ITEMS, request.limit)
            or len(items) < request.limit * C.CACHEABLE_FILL_RATIO
        ):
            logger.warning(
                "Not caching results due to insufficient item count: %d/%d",
                len(items),
                request.limit,
            )
            return

        auth = request.is_authenticated
        ttl = C.HYBRID_TTL_AUTHENTICATED if auth else C.HYBRID_TTL_ANONYMOUS
        self._cache.set(key, {"items": [i.to_dict() for i in items], "has_more": has_more}, ttl)
        if request.offset == 0 and len(items) > C.SHORT_PAGE_LIMIT:
            short_ttl = C.HYBRID_SHORT_TTL_AUTHENTICATED if auth else C.HYBRID_SHORT_TTL_ANONYMOUS
            self._cache.set(
                self.short_cache_key(request),
                {"items": [i.to_dict() for i in items[: C.SHORT_PAGE_LIMIT]], "has_more": True},
                short_ttl,
            )

    # ------------------------------------------------------------------
    # Side effects and metadata
    # ------------------------------------------------------------------

    def _record_impressions(
        self, user_id: str, items: list[RecommendationItem], offset: int
    ) -> None:
        now = self._clock()
        events = [
            InteractionEvent(
                user_id=user_id,
                product_id=item.product_id,
                interaction_type=InteractionType.IMPRESSION,
                timestamp=now,
                recommendation_type=item.reason,
                position=offset + i,
                score=item.score,
                reason=item.reason,
                engagement_quality=C.ENGAGEMENT_QUALITY_BASE["impression"],
            )
            for i, item in enumerate(items)
            if not item.is_placeholder
        ]
        recorded = self._interactions.bulk_append(events)
        logger.debug("Recorded %d impressions for user=%r", recorded, user_id)

    def _metadata(
        self,
        request: HybridRequest,
        items: list[RecommendationItem],
        cache_status: str,
        has_more: bool,
        has_fallback: bool,
        error_message: str | None = None,
    ) -> dict[str, Any]:
        scores = [i.score for i in items]
        categories = Counter(
            (i.product_data.get("category") or {}).get("id") or "uncategorized" for i in items
        )
        metadata: dict[str, Any] = {
            "total": len(items),
            "limit": request.limit,
            "offset": request.offset,
            "blend": request.blend.value,
            "sortBy": request.sort_by.value,
            "authenticated": request.is_authenticated,
            "scoreStats": {
                "min": min(scores) if scores else 0.0,
                "max": max(scores) if scores else 0.0,
                "avg": round(sum(scores) / len(scores), 4) if scores else 0.0,
            },
            "sourceDistribution": dict(Counter(i.reason for i in items)),
            "categoryDistribution": dict(categories),
            "nextOffset": request.offset + len(items),
            "hasMore": has_more,
            "cacheStatus": cache_status,
            "hasFallback": has_fallback,
            "error": error_message is not None,
        }
        if error_message is not None:
            metadata["errorMessage"] = error_message
        return metadata
