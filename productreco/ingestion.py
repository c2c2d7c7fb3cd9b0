"""Interaction ingestion: event logging, preference updates and cache upkeep."""

from __future__ import annotations

import logging
from concurrent import futures
from functools import partial
from typing import Any, Iterable

from productreco import constants as C
from productreco.blend import weight_for, weights_for_context
from productreco.cache import CacheService
from productreco.concurrency import fan_out
from productreco.errors import PreferenceWriteError
from productreco.explanations import ExplanationContext, explanation_text
from productreco.interactions import InteractionStore
from productreco.models import (
    Blend,
    Candidate,
    FeedbackAction,
    Interest,
    InteractionEvent,
    InteractionType,
    RecommendedProduct,
    StrategyType,
)
from productreco.strategies.base import CandidateRequest
from productreco.strategies.registry import StrategyRegistry
from productreco.timeutils import Clock, utcnow
from productreco.user_context import UserContextService
from productreco.user_state import UserStateService
from productreco.validation import validate_id

logger = logging.getLogger(__name__)

# Interaction types that never move preference scores on their own.
_NO_PREFERENCE_UPDATE = frozenset({InteractionType.IMPRESSION, InteractionType.FEEDBACK})

# (strategy, days) fetched in parallel when regenerating stored recommendations.
_REGENERATE_SOURCES: tuple[tuple[StrategyType, int | None], ...] = (
    (StrategyType.PERSONALIZED, None),
    (StrategyType.TRENDING, 7),
    (StrategyType.COLLABORATIVE, None),
    (StrategyType.DISCOVERY, None),
)


def engagement_quality(interaction_type: InteractionType, metadata: dict[str, Any] | None) -> float:
    """Estimate how engaged the user was, on a 0–10 scale.

    The base score depends on the interaction type.  Optional metadata adds
    up to 4 points for time on page (one per minute), up to 3 for scroll
    depth (a 0–1 fraction), up to 3 for session duration (one per five
    minutes) and up to 2 for clicks.  Unparseable metadata scores 5.
    """
    score = C.ENGAGEMENT_QUALITY_BASE.get(interaction_type.value, C.ENGAGEMENT_QUALITY_DEFAULT)
    metadata = metadata or {}
    try:
        time_on_page = float(metadata.get("time_on_page") or 0)
        scroll_depth = float(metadata.get("scroll_depth") or 0)
        session_duration = float(metadata.get("session_duration") or 0)
        click_count = float(metadata.get("click_count") or 0)
    except (TypeError, ValueError):
        logger.warning("Unparseable engagement metadata %r; using fallback quality.", metadata)
        return C.ENGAGEMENT_QUALITY_FALLBACK
    score += min(4.0, time_on_page / 60)
    score += min(3.0, max(0.0, scroll_depth) * 3)
    score += min(3.0, session_duration / 300)
    score += min(2.0, click_count)
    return max(0.0, min(10.0, score))


class InteractionIngestionService:
    """Inbound write path: interactions, dismissals, feedback and regeneration.

    Args:
        interactions: Append-only interaction event store.
        user_state: Preference profile writer.
        cache: Cache purged after writes.
        registry: Candidate strategies (regeneration).
        contexts: Builds user contexts (regeneration).
        executor: Pool for the regeneration fan-out.
        clock: Time source.
    """

    def __init__(
        self,
        interactions: InteractionStore,
        user_state: UserStateService,
        cache: CacheService,
        registry: StrategyRegistry,
        contexts: UserContextService,
        executor: futures.Executor | None = None,
        clock: Clock = utcnow,
    ) -> None:
        self._interactions = interactions
        self._user_state = user_state
        self._cache = cache
        self._registry = registry
        self._contexts = contexts
        self._executor = executor or futures.ThreadPoolExecutor(
            max_workers=len(_REGENERATE_SOURCES), thread_name_prefix="regenerate"
        )
        self._clock = clock

    # ------------------------------------------------------------------
    # Interactions
    # ------------------------------------------------------------------

    def record_interaction(
        self,
        user_id: str,
        product_id: str,
        interaction_type: InteractionType,
        metadata: dict[str, Any] | None = None,
        recommendation_type: str | None = None,
        position: int | None = None,
        score: float | None = None,
        reason: str | None = None,
    ) -> dict[str, Any]:
        """Persist one interaction and fold it into the user's preferences.

        A repeat of the same (user, product, type) within the same minute
        is ignored, so retried deliveries do not count twice.

        Returns:
            ``{"recorded", "preferencesUpdated", "engagementQuality"}``.

        Raises:
            InvalidInputError: If an id is empty.
        """
        user_id = validate_id(user_id, "user_id")
        product_id = validate_id(product_id, "product_id")
        metadata = dict(metadata or {})
        quality = engagement_quality(interaction_type, metadata)
        event = InteractionEvent(
            user_id=user_id,
            product_id=product_id,
            interaction_type=interaction_type,
            timestamp=self._clock(),
            recommendation_type=recommendation_type or "unknown",
            position=position,
            score=score,
            reason=reason,
            metadata=metadata,
            engagement_quality=quality,
        )
        recorded = self._interactions.append(event)
        if not recorded:
            logger.debug(
                "Duplicate %s by user=%r on product=%r ignored.",
                interaction_type.value,
                user_id,
                product_id,
            )
            return {"recorded": False, "preferencesUpdated": False, "engagementQuality": quality}

        updated = False
        if interaction_type not in _NO_PREFERENCE_UPDATE:
            updated = self._user_state.update_after_interaction(
                user_id, product_id, interaction_type, metadata
            )
        return {"recorded": True, "preferencesUpdated": updated, "engagementQuality": quality}

    def dismiss(
        self,
        user_id: str,
        product_id: str,
        reason: str | None = None,
        source: str | None = None,
    ) -> dict[str, Any]:
        """Hide *product_id* from the user for good.

        Idempotent: dismissing an already dismissed product changes nothing.

        Returns:
            ``{"dismissed": True, "alreadyDismissed": bool}``.
        """
        user_id = validate_id(user_id, "user_id")
        product_id = validate_id(product_id, "product_id")
        try:
            newly = self._user_state.add_dismissed(user_id, product_id)
        except PreferenceWriteError:
            logger.exception("Dismiss failed for user=%r product=%r", user_id, product_id)
            return {"dismissed": False, "alreadyDismissed": False}
        if not newly:
            return {"dismissed": True, "alreadyDismissed": True}

        metadata = {k: v for k, v in (("reason", reason), ("source", source)) if v}
        self._interactions.append(
            InteractionEvent(
                user_id=user_id,
                product_id=product_id,
                interaction_type=InteractionType.DISMISS,
                timestamp=self._clock(),
                recommendation_type=source or "unknown",
                reason=reason,
                metadata=metadata,
                engagement_quality=engagement_quality(InteractionType.DISMISS, None),
            )
        )
        self._user_state.update_after_interaction(
            user_id, product_id, InteractionType.DISMISS, metadata
        )
        self._cache.invalidate_user_cache(user_id)
        logger.info("User %r dismissed product %r", user_id, product_id)
        return {"dismissed": True, "alreadyDismissed": False}

    def process_feedback(
        self,
        user_id: str,
        product_id: str,
        action: FeedbackAction,
        source: str | None = None,
    ) -> dict[str, Any]:
        """Apply explicit feedback on a recommendation.

        ``like`` counts as an upvote, ``dislike`` applies the dismiss weight
        without hiding the product, and ``not_interested`` dismisses it.
        """
        user_id = validate_id(user_id, "user_id")
        product_id = validate_id(product_id, "product_id")
        metadata = {"action": action.value, "source": source or "unknown"}

        if action is FeedbackAction.LIKE:
            updated = self._user_state.update_after_interaction(
                user_id, product_id, InteractionType.UPVOTE, metadata
            )
        elif action is FeedbackAction.DISLIKE:
            updated = self._user_state.update_after_interaction(
                user_id,
                product_id,
                InteractionType.FEEDBACK,
                metadata,
                weight=C.INTERACTION_WEIGHTS["dismiss"],
            )
        else:
            updated = self.dismiss(user_id, product_id, reason="not_interested", source=source)[
                "dismissed"
            ]

        self._interactions.append(
            InteractionEvent(
                user_id=user_id,
                product_id=product_id,
                interaction_type=InteractionType.FEEDBACK,
                timestamp=self._clock(),
                recommendation_type=source or "unknown",
                reason=action.value,
                metadata=metadata,
                engagement_quality=engagement_quality(InteractionType.FEEDBACK, None),
            )
        )
        self._cache.invalidate_user_cache(user_id, invalidate_all=True)
        return {"processed": True, "action": action.value, "preferencesUpdated": updated}

    def update_interests(self, user_id: str, interests: Iterable[Interest]) -> bool:
        user_id = validate_id(user_id, "user_id")
        return self._user_state.update_from_interests(user_id, interests)

    # ------------------------------------------------------------------
    # Regeneration
    # ------------------------------------------------------------------

    def regenerate(
        self, user_id: str, max_items: int = C.MAX_RECOMMENDED_PRODUCTS
    ) -> dict[str, Any]:
        """Rebuild the user's stored recommendation list from scratch.

        Personalized, 7-day trending, collaborative and discovery
        candidates are fetched in parallel (``max_items / 4`` each),
        weighted by the standard blend, deduplicated and the best
        *max_items* stored.  Old recent interactions are trimmed and all
        of the user's caches are purged.

        Returns:
            ``{"regenerated", "count", "sources"}``.
        """
        user_id = validate_id(user_id, "user_id")
        ctx = self._contexts.build_user_context(user_id)
        per_source = max(1, max_items // len(_REGENERATE_SOURCES))
        tasks = {}
        for strategy, days in _REGENERATE_SOURCES:
            if strategy not in self._registry:
                continue
            request = CandidateRequest(
                limit=per_source, user_id=user_id, days=days, context=ctx
            )
            tasks[strategy.value] = partial(self._registry.get(strategy).candidates, request)
        results = fan_out(self._executor, tasks)

        weights = weights_for_context(Blend.STANDARD, ctx)
        best: dict[str, tuple[float, Candidate, str]] = {}
        for name, candidates in results.items():
            weight = weight_for(weights, name)
            for c in candidates:
                if c.product_id in ctx.preferences.dismissed:
                    continue
                weighted = c.score * weight
                current = best.get(c.product_id)
                if current is None or weighted > current[0]:
                    best[c.product_id] = (weighted, c, name)

        ranked = sorted(best.values(), key=lambda entry: (-entry[0], entry[1].product_id))
        now = self._clock()
        explain = ExplanationContext(
            preferences=ctx.preferences, history=ctx.history, now=now
        )
        stored = [
            RecommendedProduct(
                product_id=c.product_id,
                score=round(score, 4),
                reason=name,
                explanation=explanation_text(c.product, name, explain),
                timestamp=now,
            )
            for score, c, name in ranked[:max_items]
        ]

        try:
            self._user_state.set_recommended_products(user_id, stored)
            self._user_state.trim_recent_interactions(user_id)
        except PreferenceWriteError:
            logger.exception("Failed to store regenerated recommendations for user=%r", user_id)
            return {"regenerated": False, "count": 0, "sources": {}}
        finally:
            self._cache.invalidate_user_cache(user_id, invalidate_all=True)

        sources: dict[str, int] = {}
        for item in stored:
            sources[item.reason] = sources.get(item.reason, 0) + 1
        logger.info("Regenerated %d recommendations for user=%r", len(stored), user_id)
        return {"regenerated": True, "count": len(stored), "sources": sources}
