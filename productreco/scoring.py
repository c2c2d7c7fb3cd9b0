"""Pure scoring functions: engagement, recency, trending, similarity and friends.

None of these functions touch a store or a cache.  Functions that need
randomness take an explicit :class:`random.Random` so callers (and tests)
control the seed.
"""

from __future__ import annotations

import functools
import math
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Mapping, Sequence

from productreco import constants as C
from productreco.models import Candidate, Product
from productreco.timeutils import age_in_days, ensure_utc


# ---------------------------------------------------------------------------
# Time context
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TimeContext:
    """Calendar facts about "now" used by the multipliers."""

    hour: int
    weekday: int
    is_weekend: bool
    season: str
    is_business_hours: bool

    @property
    def is_evening(self) -> bool:
        return self.hour >= C.EVENING_START_HOUR or self.hour < C.EVENING_END_HOUR


def get_season(month: int) -> str:
    """Return the meteorological season for a 1-based *month*."""
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def build_time_context(now: datetime) -> TimeContext:
    now = ensure_utc(now)
    weekday = now.weekday()
    is_weekend = weekday >= 5
    return TimeContext(
        hour=now.hour,
        weekday=weekday,
        is_weekend=is_weekend,
        season=get_season(now.month),
        is_business_hours=not is_weekend and 9 <= now.hour <= 17,
    )


# ---------------------------------------------------------------------------
# Base scores
# ---------------------------------------------------------------------------


def engagement_score(product: Product) -> float:
    """Return a log-saturating engagement score for *product*.

    Views contribute ``log10(views)``; upvotes, bookmarks and comments
    contribute ``log10(1 + n)``.  Each term is multiplied by its weight in
    :data:`~productreco.constants.ENGAGEMENT_WEIGHTS`.  Zero counters
    contribute nothing.
    """
    w = C.ENGAGEMENT_WEIGHTS
    score = 0.0
    if product.views > 0:
        score += math.log10(product.views) * w["views"]
    if product.upvotes > 0:
        score += math.log10(1 + product.upvotes) * w["upvotes"]
    if product.bookmarks > 0:
        score += math.log10(1 + product.bookmarks) * w["bookmarks"]
    if product.comments > 0:
        score += math.log10(1 + product.comments) * w["comments"]
    return score


def recency_score(
    created_at: datetime | None,
    now: datetime,
    max_age_days: float = C.RECENCY_REFERENCE_DAYS,
    recent_days_boost: float = 7,
) -> float:
    """Return an exponentially decaying freshness score.

    The half-life is :data:`~productreco.constants.RECENCY_HALF_LIFE_DAYS`
    scaled by ``max_age_days / 90``, so a shorter window decays faster.
    The decay never drops below the floor, and items younger than
    *recent_days_boost* days receive a linearly shrinking bonus.

    Args:
        created_at: Product creation time; ``None`` scores 0.
        now: Reference time.
        max_age_days: Window the decay is scaled to.
        recent_days_boost: Width of the "very recent" bonus window.

    Returns:
        A non-negative score, at most ``RECENCY_WEIGHT * (1 + RECENCY_BOOST)``.
    """
    if created_at is None:
        return 0.0
    age = age_in_days(created_at, now)
    half_life = C.RECENCY_HALF_LIFE_DAYS * max(max_age_days, 1) / C.RECENCY_REFERENCE_DAYS
    decay = math.exp(-math.log(2) * age / half_life)
    score = max(C.RECENCY_FLOOR, decay)
    if recent_days_boost > 0 and age <= recent_days_boost:
        score += C.RECENCY_BOOST * (1 - age / recent_days_boost)
    return C.RECENCY_WEIGHT * score


def trending_score(
    product: Product,
    now: datetime,
    days: int = C.TRENDING_DAYS_DEFAULT,
    rng: random.Random | None = None,
) -> float:
    """Return a velocity-based trending score in [0, 1].

    Recent views come from ``product.recent_views`` when the store tracks
    them; otherwise 30–50 % of total views are assumed (uniformly random).
    Recent upvotes and comments are estimated at 30 % of their totals.
    """
    rng = rng or random.Random()
    window = max(1, days)
    total_views = product.views
    if product.recent_views is not None:
        recent_views = float(product.recent_views)
    else:
        share = C.TRENDING_RECENT_VIEW_SHARE + rng.random() * C.TRENDING_RECENT_VIEW_SPAN
        recent_views = total_views * share
    recent_upvotes = product.upvotes * C.TRENDING_RECENT_ACTIVITY_SHARE
    recent_comments = product.comments * C.TRENDING_RECENT_ACTIVITY_SHARE

    accel = [
        (recent / total) * window
        for recent, total in (
            (recent_views, total_views),
            (recent_upvotes, product.upvotes),
            (recent_comments, product.comments),
        )
        if total > 0
    ]
    growth = min(C.TRENDING_MAX_GROWTH_BOOST, 1.0 + sum(accel) / 3)

    w = C.TRENDING_WEIGHTS
    score = (
        recent_views / window * w["views"]
        + recent_upvotes / window * w["upvotes"] * C.TRENDING_UPVOTE_EMPHASIS
        + recent_comments / window * w["comments"]
        + product.bookmarks / window * C.ENGAGEMENT_WEIGHTS["bookmarks"]
    )

    age = age_in_days(product.created_at, now)
    age_boost = 1.0
    for max_age, boost in C.TRENDING_AGE_BOOSTS:
        if age <= max_age:
            age_boost = boost
            break
    score *= age_boost * growth

    if score < C.TRENDING_MIN_QUALITY and (total_views < 5 or product.upvotes < 2):
        score *= C.TRENDING_LOW_ENGAGEMENT_PENALTY

    return min(1.0, score / C.TRENDING_NORMALIZATION_FACTOR)


def similarity_score(
    product: Product,
    source: Product | None,
    now: datetime,
    category_scores: Mapping[str, float] | None = None,
) -> float:
    """Score *product* by its resemblance to *source*, clipped to [0, 1].

    Tag overlap is divided by the larger tag list, so two products sharing
    every tag score the full tag weight.  The source product itself is
    scored near zero.
    """
    score = (
        engagement_score(product) * C.BASE_ENGAGEMENT_SHARE
        + recency_score(product.created_at, now) * C.BASE_RECENCY_SHARE
    )
    if source is not None:
        source_tags = source.lowercase_tags
        product_tags = product.lowercase_tags
        common = source_tags & product_tags
        if common:
            denom = max(1, len(source_tags), len(product_tags))
            score += len(common) / denom * C.SIMILARITY_WEIGHTS["tags"]
        if source.category_id and source.category_id == product.category_id:
            score += C.SIMILARITY_WEIGHTS["category"]
        if source.maker_id and source.maker_id == product.maker_id:
            score += C.SIMILARITY_WEIGHTS["maker"]
        if source.product_id == product.product_id:
            score *= C.SIMILARITY_SELF_PENALTY
    if category_scores and product.category_id in category_scores:
        score += category_scores[product.category_id] * C.MATCH_WEIGHTS["category_match"]
    return min(1.0, max(0.0, score))


def personalized_score(
    product: Product,
    now: datetime,
    category_scores: Mapping[str, float],
    tag_scores: Mapping[str, float],
    recently_viewed: Iterable[str] = (),
    recent_categories: Iterable[str] = (),
    last_activity: datetime | None = None,
    time_context: TimeContext | None = None,
) -> float:
    """Score *product* against a user's preference vectors.

    Args:
        product: Product to score.
        now: Reference time.
        category_scores: Category id to preference score.
        tag_scores: Lowercased tag to preference score.
        recently_viewed: Product ids the user viewed recently (penalised).
        recent_categories: Categories the user browsed recently (boosted).
        last_activity: Time of the user's last interaction.
        time_context: Calendar context; derived from *now* if omitted.

    Returns:
        A non-negative raw score.  It is not capped at 1 so a product
        matching on both category and tags always outranks one matching
        on a single axis after normalisation.
    """
    time_context = time_context or build_time_context(now)
    score = (
        engagement_score(product) * C.BASE_ENGAGEMENT_SHARE
        + recency_score(product.created_at, now) * C.BASE_RECENCY_SHARE
    )
    if product.category_id and product.category_id in category_scores:
        score += category_scores[product.category_id] * C.PREFERENCE_WEIGHTS["category"]

    tags = [t.lower() for t in product.tags]
    matches = [t for t in tags if t in tag_scores]
    if matches:
        score += len(matches) / max(1, len(tags)) * C.PREFERENCE_WEIGHTS["tags"]

    if product.product_id in set(recently_viewed):
        score *= C.RECENTLY_VIEWED_PENALTY
    if product.category_id and product.category_id in set(recent_categories):
        score *= C.RECENT_CATEGORY_BOOST
    if time_context.is_weekend and "hobby" in product.category_name.lower():
        score *= C.WEEKEND_HOBBY_BOOST
    if last_activity is not None and age_in_days(last_activity, now) > C.INACTIVITY_DAYS:
        score *= C.INACTIVITY_PENALTY
    return max(0.0, score)


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------

_CATEGORY_RULES: tuple[tuple[tuple[str, ...], float, str], ...] = (
    (("tech", "productivity", "software"), 1.2, "morning"),
    (("entertainment", "game", "media"), 1.3, "evening"),
    (("creative", "art", "craft", "hobby"), 1.25, "weekend"),
    (("business", "professional", "enterprise"), 1.3, "business"),
)


def _rule_applies(slot: str, ctx: TimeContext) -> bool:
    if slot == "morning":
        return 8 <= ctx.hour <= 12
    if slot == "evening":
        return 18 <= ctx.hour <= 23
    if slot == "weekend":
        return ctx.is_weekend
    return ctx.is_business_hours


def psychological_multiplier(
    product: Product,
    time_context: TimeContext,
    session: Mapping[str, Any] | None = None,
) -> float:
    """Return a time- and session-aware multiplier clamped to [0.1, 1.3]."""
    ctx = time_context
    multiplier = 1.0
    if C.PEAK_HOUR_START <= ctx.hour <= C.PEAK_HOUR_END:
        multiplier *= C.PEAK_HOUR_BOOST
    if ctx.is_weekend:
        multiplier *= C.WEEKEND_BOOST
    if ctx.season in ("spring", "fall"):
        multiplier *= C.SEASONAL_BOOST

    name = product.category_name.lower()
    if name:
        for keywords, boost, slot in _CATEGORY_RULES:
            if _rule_applies(slot, ctx) and any(k in name for k in keywords):
                multiplier *= boost
        if (ctx.season == "winter" and any(k in name for k in ("cozy", "indoor"))) or (
            ctx.season == "summer" and any(k in name for k in ("outdoor", "travel"))
        ):
            multiplier *= 1.2

    if session:
        commute = 7 <= ctx.hour <= 9 or 17 <= ctx.hour <= 19
        if session.get("device_type") == "mobile" and commute:
            multiplier *= 1.15
        if (session.get("session_duration") or 0) > 600:
            multiplier *= 1.1
        if session.get("last_action") in ("search", "category_browse"):
            multiplier *= 1.1

    return min(C.PSYCHOLOGICAL_MAX, max(C.PSYCHOLOGICAL_MIN, multiplier))


def quality_score(product: Product) -> float:
    """Return a 0–10 content quality estimate from engagement ratios."""
    views = product.views
    upvotes = product.upvotes
    score = C.QUALITY_BASE
    if views > 0:
        score += (upvotes * 20 + product.bookmarks * 15 + product.comments * 10) / views
    if upvotes > 10:
        score += 1
    if upvotes > 50:
        score += 1
    if views > 1000:
        score += 0.5
    if views > 20 and upvotes == 0:
        score -= 2
    return max(0.0, min(C.QUALITY_MAX, score))


def quality_multiplier(product: Product) -> float:
    return 0.8 + quality_score(product) / 50


def diversity_score(product: Product, current: Sequence[Product]) -> float:
    """Return how much *product* would diversify the already chosen *current*.

    1.0 means nothing in common with the current selection.
    """
    if not current:
        return 1.0
    category = 1.0
    if product.category_id:
        same = sum(1 for p in current if p.category_id == product.category_id)
        category = max(0.2, 1 - same * 0.2)
    maker = 1.0
    if product.maker_id:
        same = sum(1 for p in current if p.maker_id == product.maker_id)
        maker = max(0.1, 1 - same * 0.3)
    tag = 1.0
    tags = product.lowercase_tags
    if tags:
        overlap = 0.0
        for other in current:
            other_tags = other.lowercase_tags
            overlap += len(tags & other_tags) / max(1, min(len(tags), len(other_tags)))
        tag = max(0.3, 1 - overlap / len(current))
    f = C.DIVERSITY_FACTORS
    return category * f["category"] + maker * f["maker"] + tag * (1 - f["category"] - f["maker"])


# ---------------------------------------------------------------------------
# Normalisation and ordering
# ---------------------------------------------------------------------------


def normalize_score(score: float) -> float:
    """Map a non-negative raw score onto [0.1, 1] with a saturating curve."""
    if score <= 0:
        return C.SCORE_FLOOR
    value = C.SCORE_FLOOR + (1 - C.SCORE_FLOOR) * (
        1 - 1 / (1 + (score / C.NORMALIZE_SCALE) ** C.NORMALIZE_EXPONENT)
    )
    return clip_score(value)


def clip_score(score: float) -> float:
    """Clamp *score* to [0.1, 1]."""
    return min(1.0, max(C.SCORE_FLOOR, score))


def compare_candidates(a: Candidate, b: Candidate) -> int:
    """Order by score descending; near-ties fall back to product id."""
    diff = b.score - a.score
    if abs(diff) < C.TIE_EPSILON:
        return (a.product_id > b.product_id) - (a.product_id < b.product_id)
    return 1 if diff > 0 else -1


def sort_candidates(candidates: Iterable[Candidate]) -> list[Candidate]:
    return sorted(candidates, key=functools.cmp_to_key(compare_candidates))
