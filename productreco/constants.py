"""Scoring constants: weights, thresholds and cache durations.

Every tunable used by the scoring, candidate and orchestration layers is
defined here so operators can adjust ranking behaviour in one place.
"""

from __future__ import annotations

# ---------------------------------------------------------------------------
# Engagement / recency / trending
# ---------------------------------------------------------------------------

ENGAGEMENT_WEIGHTS: dict[str, float] = {
    "views": 0.3,
    "upvotes": 0.5,
    "bookmarks": 0.4,
    "comments": 0.3,
}
RECENCY_WEIGHT: float = 1.0

RECENCY_HALF_LIFE_DAYS: float = 15.0
RECENCY_REFERENCE_DAYS: float = 90.0
RECENCY_FLOOR: float = 0.1
RECENCY_BOOST: float = 0.2

TRENDING_WEIGHTS: dict[str, float] = {
    "views": 0.3,
    "upvotes": 0.5,
    "comments": 0.3,
}
TRENDING_NORMALIZATION_FACTOR: float = 10.0
TRENDING_DAYS_DEFAULT: int = 7
TRENDING_MAX_GROWTH_BOOST: float = 2.0
TRENDING_LOW_ENGAGEMENT_PENALTY: float = 0.5
TRENDING_MIN_QUALITY: float = 0.05
TRENDING_RECENT_VIEW_SHARE: float = 0.3
TRENDING_RECENT_VIEW_SPAN: float = 0.2
TRENDING_RECENT_ACTIVITY_SHARE: float = 0.3
TRENDING_UPVOTE_EMPHASIS: float = 1.5
# (max age in days, boost) checked in order
TRENDING_AGE_BOOSTS: tuple[tuple[float, float], ...] = ((3, 1.5), (7, 1.3), (14, 1.1))
TRENDING_POSITION_DECAY: float = 0.01
TRENDING_JITTER_BASE: float = 0.97
TRENDING_JITTER_SPAN: float = 0.06
TRENDING_DIVERSE_MULTIPLIER: float = 0.9

NEW_DAYS_DEFAULT: int = 14
NEW_RECENCY_WEIGHT: float = 0.7
NEW_ENGAGEMENT_WEIGHT: float = 0.3
NEW_AGE_DECAY: float = 0.15
NEW_RECENT_DAYS_BOOST: int = 3
NEW_NOISE_BASE: float = 0.98
NEW_NOISE_SPAN: float = 0.04

# ---------------------------------------------------------------------------
# Similarity / personalisation
# ---------------------------------------------------------------------------

SIMILARITY_WEIGHTS: dict[str, float] = {
    "tags": 0.5,
    "category": 0.2,
    "maker": 0.3,
}
SIMILARITY_SELF_PENALTY: float = 0.01

PREFERENCE_WEIGHTS: dict[str, float] = {
    "category": 0.3,
    "tags": 0.3,
}
MATCH_WEIGHTS: dict[str, float] = {
    "tag_match": 0.3,
    "category_match": 0.2,
}
BASE_ENGAGEMENT_SHARE: float = 0.3
BASE_RECENCY_SHARE: float = 0.2

RECENTLY_VIEWED_PENALTY: float = 0.2
RECENT_CATEGORY_BOOST: float = 1.5
WEEKEND_HOBBY_BOOST: float = 1.2
INACTIVITY_DAYS: int = 30
INACTIVITY_PENALTY: float = 0.8

# ---------------------------------------------------------------------------
# Time context / psychological multiplier
# ---------------------------------------------------------------------------

PEAK_HOUR_START: int = 8
PEAK_HOUR_END: int = 22
PEAK_HOUR_BOOST: float = 1.05
WEEKEND_BOOST: float = 1.05
SEASONAL_BOOST: float = 1.05
PSYCHOLOGICAL_MIN: float = 0.1
PSYCHOLOGICAL_MAX: float = 1.3
EVENING_START_HOUR: int = 18
EVENING_END_HOUR: int = 6

# ---------------------------------------------------------------------------
# Normalisation and thresholds
# ---------------------------------------------------------------------------

SCORE_FLOOR: float = 0.1
NORMALIZE_SCALE: float = 3.0
NORMALIZE_EXPONENT: float = 0.8
SCORE_ERROR_DEFAULT: float = 0.5
TIE_EPSILON: float = 1e-4

MIN_EXPLORATION_UPVOTES: int = 1
HIGHLY_RATED_MIN_UPVOTES: int = 3

QUALITY_BASE: float = 5.0
QUALITY_MAX: float = 10.0

DIVERSITY_FACTORS: dict[str, float] = {
    "category": 0.4,
    "maker": 0.3,
}

# ---------------------------------------------------------------------------
# Candidate fetch / strategies
# ---------------------------------------------------------------------------

FETCH_OVERSAMPLE: int = 2
HYBRID_OVERSAMPLE: int = 4
DISCOVERY_OVERSAMPLE: float = 3.0
DISCOVERY_SHARES: dict[str, float] = {
    "trending_new": 0.3,
    "highly_rated": 0.3,
    "serendipity": 0.4,
}
DISCOVERY_WINDOW_DAYS: int = 30
SIMILAR_RECENT_PRODUCTS: int = 5
SPOTLIGHT_EXCLUDED_TOP_CATEGORIES: int = 3
SPOTLIGHT_MIN_PRODUCTS: int = 3
SPOTLIGHT_TOP_CATEGORIES: int = 10
SPOTLIGHT_SAMPLED_CATEGORIES: int = 5
SPOTLIGHT_PRODUCTS_PER_CATEGORY: int = 5
SERENDIPITY_RANDOM_SPAN: float = 2.0
INTEREST_TOP_CATEGORIES: int = 5
INTEREST_TOP_TAGS: int = 10
INTEREST_FALLBACK_DAYS: int = 14

COLLABORATIVE_MAX_PROFILES: int = 100
COLLABORATIVE_MIN_SIMILARITY: float = 0.3
COLLABORATIVE_TOP_USERS: int = 10
COLLABORATIVE_COMMON_INTERESTS: int = 5

INTEREST_CATEGORY_WEIGHT: float = 0.6
INTEREST_TAG_WEIGHT: float = 0.4
INTEREST_BASE_SCORE: float = 0.1
INTEREST_RECENCY_DAYS: int = 30
INTEREST_RECENCY_BOOST: float = 0.3
INTEREST_UPVOTE_BOOST: float = 0.5

# ---------------------------------------------------------------------------
# Hybrid orchestration
# ---------------------------------------------------------------------------

# Fan-out order; also the dedup walk order.
HYBRID_STRATEGY_ORDER: tuple[str, ...] = (
    "trending",
    "new",
    "discovery",
    "personalized",
    "collaborative",
    "interests",
    "similar",
    "spotlight",
    "serendipity",
)
AUTHENTICATED_ONLY_STRATEGIES: frozenset[str] = frozenset(
    {"personalized", "collaborative", "interests", "similar"}
)
DIVERSITY_PRIORITY: tuple[str, ...] = (
    "trending",
    "personalized",
    "interests",
    "new",
    "discovery",
    "collaborative",
    "similar",
)
TYPE_MULTIPLIERS: dict[str, float] = {
    "personalized": 1.2,
    "collaborative": 1.1,
    "interests": 1.1,
    "spotlight": 0.9,
    "serendipity": 0.9,
}
DEFAULT_TYPE_MULTIPLIER: float = 1.0
DEFAULT_BLEND_WEIGHT: float = 0.1
MAX_PER_CATEGORY: int = 3
MIN_SOURCES_AUTHENTICATED: int = 4
MIN_SOURCES_ANONYMOUS: int = 3
MIN_CACHED_SOURCES: int = 2
CACHEABLE_FILL_RATIO: float = 0.8
MIN_CACHEABLE_ITEMS: int = 5
SHORT_PAGE_LIMIT: int = 5
STRONG_PREFERENCE_CATEGORIES: int = 2
TOP_TRENDING_SCORE: float = 0.85

# ---------------------------------------------------------------------------
# Cache durations (seconds)
# ---------------------------------------------------------------------------

CACHE_DURATION: dict[str, int] = {
    "trending": 3600,
    "new": 7200,
    "personalized": 43200,
    "feed": 1800,
}
CANDIDATE_CACHE_TTL: int = 3600
PERSONALIZED_CACHE_TTL: int = 1800
TRENDING_METRICS_TTL: int = 3600
HYBRID_TTL_AUTHENTICATED: int = 1800
HYBRID_TTL_ANONYMOUS: int = 3600
HYBRID_SHORT_TTL_AUTHENTICATED: int = 3600
HYBRID_SHORT_TTL_ANONYMOUS: int = 7200
AUTH_TIME_BUCKET_SECONDS: int = 180
ANON_TIME_BUCKET_SECONDS: int = 900

# ---------------------------------------------------------------------------
# Preference updates
# ---------------------------------------------------------------------------

INTERACTION_WEIGHTS: dict[str, float] = {
    "view": 0.2,
    "click": 0.3,
    "comment": 0.5,
    "share": 0.6,
    "bookmark": 0.7,
    "upvote": 0.8,
    "dismiss": -0.5,
    "remove_upvote": -0.8,
    "remove_bookmark": -0.7,
}
DEFAULT_INTERACTION_WEIGHT: float = 0.3
NEW_PREFERENCE_MIN_SCORE: float = 0.1
MAX_RECENT_INTERACTIONS: int = 100
MAX_RECOMMENDED_PRODUCTS: int = 50
RECENT_INTERACTION_RETENTION_DAYS: int = 30
INTERACTION_RETENTION_DAYS: int = 90
HISTORY_WINDOW_DAYS: int = 30
TRENDING_METRICS_WINDOW_DAYS: int = 30
TRENDING_METRICS_RECENT_DAYS: int = 7

ENGAGEMENT_QUALITY_BASE: dict[str, float] = {
    "conversion": 10,
    "bookmark": 8,
    "upvote": 7,
    "comment": 6,
    "share": 5,
    "click": 3,
    "view": 2,
    "impression": 1,
    "dismiss": 0,
}
ENGAGEMENT_QUALITY_DEFAULT: float = 1.0
# Used when metadata cannot be scored
ENGAGEMENT_QUALITY_FALLBACK: float = 5.0

# ---------------------------------------------------------------------------
# Blend weight tables
# ---------------------------------------------------------------------------

BACKUP_WEIGHT: float = 0.05
ANONYMOUS_BACKUP_WEIGHT: float = 0.10

ANONYMOUS_BLEND_WEIGHTS: dict[str, dict[str, float]] = {
    "discovery": {"trending": 0.25, "new": 0.30, "discovery": 0.35, "backup": 0.10},
    "new": {"trending": 0.20, "new": 0.40, "discovery": 0.30, "backup": 0.10},
    "trending": {"trending": 0.40, "new": 0.25, "discovery": 0.25, "backup": 0.10},
}

# ---------------------------------------------------------------------------
# Emergency recommendations
# ---------------------------------------------------------------------------

EMERGENCY_OVERSAMPLE: int = 5
EMERGENCY_BASE_SCORE: float = 0.3
EMERGENCY_MAX_UPVOTE_BONUS: float = 0.3
EMERGENCY_MAX_RECENCY_BONUS: float = 0.2
EMERGENCY_RECENCY_WINDOW_DAYS: int = 30
