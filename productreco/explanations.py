"""Human-readable explanation and score-context strings per strategy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from productreco import constants as C
from productreco.catalogue import ProductStore
from productreco.metrics import TrendingMetrics
from productreco.models import (
    Candidate,
    ItemMetadata,
    Product,
    RecommendationItem,
    StrategyType,
)
from productreco.timeutils import age_in_days, utcnow
from productreco.user_context import UserContext, UserHistory, UserPreferences


@dataclass
class ExplanationContext:
    """What the explainer may know about the request.

    Attributes:
        metrics: Trending-metrics snapshot keyed by product id.
        preferences: Caller's merged preferences (empty when anonymous).
        history: Caller's view history (empty when anonymous).
        recent_product_name: Name of the product the caller viewed last.
        now: Reference time for product ages.
    """

    metrics: dict[str, TrendingMetrics] = field(default_factory=dict)
    preferences: UserPreferences = field(default_factory=UserPreferences)
    history: UserHistory = field(default_factory=UserHistory)
    recent_product_name: str | None = None
    now: datetime = field(default_factory=utcnow)


def context_for(
    user_context: UserContext,
    metrics: dict[str, TrendingMetrics],
    products: ProductStore,
    now: datetime,
) -> ExplanationContext:
    """Build the explanation context for one request.

    The most recently viewed product is resolved for the "similar to X"
    wording; a product that no longer exists leaves the name unset.
    """
    recent_name = None
    if user_context.history.viewed_ids:
        recent = products.get(user_context.history.viewed_ids[0])
        recent_name = recent.name if recent is not None else None
    return ExplanationContext(
        metrics=metrics,
        preferences=user_context.preferences,
        history=user_context.history,
        recent_product_name=recent_name,
        now=now,
    )


def _words(*parts: str | None) -> str:
    return " ".join(p for p in parts if p)


def _days_since(product: Product, now: datetime) -> int:
    return int(age_in_days(product.created_at, now))


def _top_tag(product: Product) -> str | None:
    return product.tags[0] if product.tags else None


def _matches_category(product: Product, ctx: ExplanationContext) -> bool:
    return bool(product.category_id and ctx.preferences.category_scores.get(product.category_id))


def _matching_tag(product: Product, ctx: ExplanationContext) -> str | None:
    for tag in product.tags:
        if ctx.preferences.tag_scores.get(tag.lower()):
            return tag
    return None


def explanation_text(product: Product, strategy: str, ctx: ExplanationContext) -> str:
    """Return a one-line explanation of why *product* was recommended.

    Args:
        product: The recommended product.
        strategy: Source strategy tag.
        ctx: Request knowledge used to personalise the wording.

    Returns:
        Explanation text; never empty.
    """
    days = _days_since(product, ctx.now)
    category = product.category_name
    top_tag = _top_tag(product)
    metrics = ctx.metrics.get(product.product_id)

    if strategy == StrategyType.TRENDING:
        if days <= 7:
            if product.upvotes >= 5:
                return _words(
                    "New",
                    category,
                    "product gaining traction with",
                    f"{product.upvotes} upvotes in just {days} days",
                )
            return _words("Recently launched", category, "product showing early engagement")
        if metrics is not None and metrics.recent_upvotes > 0:
            return f"Trending with {metrics.recent_upvotes} upvotes in the past week"
        if product.upvotes > 0:
            return _words("Popular", category, f"product with {product.upvotes} community upvotes")
        return f"Getting attention since {days} days ago"

    if strategy == StrategyType.NEW:
        if product.maker_name:
            return f"New product by {product.maker_name} launched {days} days ago"
        if top_tag:
            return f"New {top_tag} product launched {days} days ago"
        return _words("Recently launched", category, f"product ({days} days ago)")

    if strategy in (StrategyType.PERSONALIZED, StrategyType.PREFERENCES):
        if _matches_category(product, ctx):
            return f"Recommended based on your interest in {category or 'this category'}"
        tag = _matching_tag(product, ctx)
        if tag:
            return f"Matches your interest in {tag}"
        if product.product_id in set(ctx.history.viewed_ids):
            return "Similar to products you've viewed recently"
        return "Personalized recommendation based on your activity"

    if strategy == StrategyType.COLLABORATIVE:
        if _matches_category(product, ctx) and category:
            return f"Popular with users who also like {category}"
        tag = _matching_tag(product, ctx)
        if tag:
            return f"Liked by users with similar interest in {tag}"
        if product.upvotes > 5:
            return "Popular with users who have similar interests to you"
        return "Discovered by users with similar interests to you"

    if strategy == StrategyType.INTERESTS:
        if _matches_category(product, ctx):
            return f"Matches your interest in {category or 'this category'}"
        tag = _matching_tag(product, ctx)
        if tag:
            return f"Aligns with your interest in {tag}"
        return "Matches your interests and preferences"

    if strategy == StrategyType.SIMILAR:
        if ctx.recent_product_name:
            return f"Similar to {ctx.recent_product_name} you recently viewed"
        return "Similar to products you've shown interest in"

    if strategy == StrategyType.DISCOVERY:
        if product.views > 100:
            return _words(f"Discovered by {product.views}+ users in the", category, "category")
        if top_tag:
            return f"Expanding your interests with this {top_tag} product"
        return "Curated to expand your product discovery"

    if strategy == StrategyType.SPOTLIGHT:
        return _words("Spotlight on a top-rated", category, "product")

    if strategy == StrategyType.SERENDIPITY:
        return "A pleasant surprise picked for you"

    if strategy == StrategyType.CATEGORY:
        return f"Top pick in {category or 'this category'}"

    if strategy == StrategyType.TAG:
        return f"Popular in {top_tag}" if top_tag else "Popular with matching tags"

    if strategy == StrategyType.MAKER:
        return f"More from {product.maker_name or 'this maker'}"

    return _words("Quality", category, "product for you")


def score_context(
    product: Product, strategy: str, score: float, ctx: ExplanationContext
) -> str:
    """Return a short ``"Label: 0.1234 - detail"`` summary of *score*."""
    formatted = f"{score:.4f}"
    metrics = ctx.metrics.get(product.product_id)

    if strategy == StrategyType.TRENDING:
        if metrics is not None and metrics.recent_upvotes:
            return f"Popularity: {formatted} - {metrics.recent_upvotes} upvotes in the last week"
        if product.upvotes > 0:
            return (
                f"Popularity: {formatted} - Based on {product.upvotes} upvotes "
                f"and {product.views} views"
            )
        return f"Popularity: {formatted} - Based on recent engagement"
    if strategy == StrategyType.NEW:
        return f"Recency: {formatted} - Added {_days_since(product, ctx.now)} days ago"
    if strategy in (StrategyType.PERSONALIZED, StrategyType.PREFERENCES):
        if _matches_category(product, ctx):
            return f"Relevance: {formatted} - Matches your category preferences"
        if _matching_tag(product, ctx):
            return f"Relevance: {formatted} - Matches your tag preferences"
        return f"Relevance: {formatted} - Matched to your interests"
    if strategy == StrategyType.COLLABORATIVE:
        return f"Similarity: {formatted} - Based on similar users' activity"
    if strategy == StrategyType.INTERESTS:
        return f"Interest: {formatted} - Based on your explicit interests"
    if strategy == StrategyType.SIMILAR:
        return f"Similarity: {formatted} - Similar to products you've viewed"
    if strategy == StrategyType.DISCOVERY:
        return f"Discovery: {formatted} - Selected for exploration"
    return f"Score: {formatted}"


def is_top_trending(strategy: str, score: float) -> bool:
    return strategy == StrategyType.TRENDING and score > C.TOP_TRENDING_SCORE


def build_item(
    candidate: Candidate,
    ctx: ExplanationContext,
    score: float | None = None,
    include_components: bool = False,
) -> RecommendationItem:
    """Turn a scored candidate into a client-facing :class:`RecommendationItem`.

    Explanation strings already set on the candidate are kept; missing
    ones are generated from its reason.

    Args:
        candidate: Scored candidate.
        ctx: Request knowledge for the explanation strings.
        score: Output score; defaults to ``candidate.score``.
        include_components: Attach the score breakdown (debug mode).
    """
    product = candidate.product
    reason = candidate.source or candidate.reason
    score = candidate.score if score is None else score
    score = min(1.0, max(0.0, score))
    top = is_top_trending(reason, score)
    return RecommendationItem(
        product_id=product.product_id,
        score=round(score, 4),
        reason=reason,
        explanation_text=candidate.explanation_text or explanation_text(product, reason, ctx),
        score_context=candidate.score_context or score_context(product, reason, score, ctx),
        product_data=product.projection(),
        metadata=ItemMetadata(
            source=reason,
            generated_at=ctx.now,
            sub_source=candidate.sub_reason,
            is_top_trending=top,
            trending_since=ctx.now if top else None,
            time_window=(
                candidate.sub_reason
                if candidate.sub_reason in ("extended_window", "all_time")
                else "recent"
            ),
        ),
        raw_score=candidate.raw_score,
        sub_reason=candidate.sub_reason,
        score_components=candidate.score_components if include_components else None,
    )
