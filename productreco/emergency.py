"""Emergency recommendations: the last line of defence against empty responses."""

from __future__ import annotations

import logging
import random
from typing import Iterable

from productreco import constants as C
from productreco.catalogue import ProductQuery, ProductStore
from productreco.models import ItemMetadata, Product, RecommendationItem, StrategyType
from productreco.timeutils import Clock, age_in_days, ensure_utc, utcnow

logger = logging.getLogger(__name__)

_ROTATION = (
    StrategyType.TRENDING.value,
    StrategyType.NEW.value,
    StrategyType.DISCOVERY.value,
    StrategyType.PERSONALIZED.value,
    StrategyType.INTERESTS.value,
)
_PLACEHOLDER_ROTATION = (StrategyType.TRENDING.value, StrategyType.DISCOVERY.value)
PLACEHOLDER_PREFIX = "emergency-fallback-"
PLACEHOLDER_SCORE = 0.1


class EmergencyRecommender:
    """Produces exactly *limit* items whatever state the stores are in.

    Engaged products (any upvote, bookmark or view) are sampled first,
    then any published product.  Reasons rotate through trending, new,
    discovery, personalized and interests so the page still shows several
    sources.  If the store cannot supply enough products, the remainder is
    padded with placeholder items (``is_placeholder=True``) whose ids start
    with ``emergency-fallback-``.

    Args:
        products: Product store.
        clock: Time source.
        rng: Random source for the samples.
    """

    def __init__(
        self,
        products: ProductStore,
        clock: Clock = utcnow,
        rng: random.Random | None = None,
    ) -> None:
        self._products = products
        self._clock = clock
        self._rng = rng or random.Random()

    def recommend(
        self, limit: int, exclude_ids: Iterable[str] = ()
    ) -> list[RecommendationItem]:
        """Return exactly *limit* items, none of them in *exclude_ids*."""
        if limit <= 0:
            return []
        excluded = frozenset(exclude_ids)
        try:
            products = self._pick_products(limit, excluded)
        except Exception:
            logger.exception("Emergency product lookup failed; using placeholders.")
            products = []

        if len(products) < limit:
            logger.error(
                "Critical: only %d emergency products for limit %d; padding with placeholders.",
                len(products),
                limit,
            )
        items = [self._item(p, i) for i, p in enumerate(products[:limit])]
        items.extend(self.placeholders(limit - len(items), start=len(items)))
        return items

    def placeholders(self, count: int, start: int = 0) -> list[RecommendationItem]:
        """Return *count* synthetic items that refer to no real product."""
        now = self._clock()
        items = []
        for i in range(start, start + count):
            reason = _PLACEHOLDER_ROTATION[i % len(_PLACEHOLDER_ROTATION)]
            items.append(
                RecommendationItem(
                    product_id=f"{PLACEHOLDER_PREFIX}{i}",
                    score=PLACEHOLDER_SCORE,
                    reason=reason,
                    explanation_text="Recommended product",
                    score_context=f"Score: {PLACEHOLDER_SCORE:.4f}",
                    product_data={},
                    metadata=ItemMetadata(source=reason, generated_at=now),
                    is_placeholder=True,
                )
            )
        return items

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _pick_products(self, limit: int, excluded: frozenset[str]) -> list[Product]:
        size = limit * C.EMERGENCY_OVERSAMPLE
        engaged = self._products.sample(
            ProductQuery(engaged_only=True, exclude_ids=excluded), size, self._rng
        )
        engaged.sort(
            key=lambda p: (p.upvotes, ensure_utc(p.created_at).timestamp()), reverse=True
        )
        if len(engaged) >= limit:
            return engaged

        logger.warning(
            "Not enough engaged products (%d/%d); falling back to any published product.",
            len(engaged),
            limit,
        )
        seen = excluded | {p.product_id for p in engaged}
        anything = self._products.sample(ProductQuery(exclude_ids=seen), size, self._rng)
        anything.sort(key=lambda p: ensure_utc(p.created_at).timestamp(), reverse=True)
        return engaged + anything

    def _item(self, product: Product, index: int) -> RecommendationItem:
        now = self._clock()
        reason = _ROTATION[index % len(_ROTATION)]
        upvote_part = min(product.upvotes / 10, C.EMERGENCY_MAX_UPVOTE_BONUS)
        age = age_in_days(product.created_at, now)
        recency_part = min(
            1 - age / C.EMERGENCY_RECENCY_WINDOW_DAYS * C.EMERGENCY_MAX_RECENCY_BONUS,
            C.EMERGENCY_MAX_RECENCY_BONUS,
        )
        score = C.EMERGENCY_BASE_SCORE + upvote_part + recency_part
        score = min(1.0, max(PLACEHOLDER_SCORE, score))
        return RecommendationItem(
            product_id=product.product_id,
            score=round(score, 4),
            reason=reason,
            explanation_text=" ".join(
                p for p in ("Recommended", product.category_name, "product for you") if p
            ),
            score_context=f"{reason.capitalize()}: {score:.4f} - Selected for you",
            product_data=product.projection(),
            metadata=ItemMetadata(source=reason, generated_at=now, sub_source="emergency"),
            raw_score=score,
            sub_reason="emergency",
        )
