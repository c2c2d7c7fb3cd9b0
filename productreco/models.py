"""Core domain dataclasses shared across all productreco modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from productreco.timeutils import from_iso, to_iso, utcnow


class ProductStatus(str, Enum):
    """Lifecycle states of a product; the engine only ever serves ``PUBLISHED``."""

    DRAFT = "Draft"
    PUBLISHED = "Published"
    ARCHIVED = "Archived"


class InteractionType(str, Enum):
    """Kinds of user/product interaction events tracked by the system."""

    IMPRESSION = "impression"
    CLICK = "click"
    VIEW = "view"
    UPVOTE = "upvote"
    BOOKMARK = "bookmark"
    SHARE = "share"
    COMMENT = "comment"
    CONVERSION = "conversion"
    DISMISS = "dismiss"
    FEEDBACK = "feedback"
    REMOVE_UPVOTE = "remove_upvote"
    REMOVE_BOOKMARK = "remove_bookmark"


class StrategyType(str, Enum):
    """Discriminator for candidate strategies and the reason tag they emit.

    The first nine members are candidate sources that take part in the
    hybrid fan-out.  The remaining members only tag results produced by
    single-strategy entry points.
    """

    TRENDING = "trending"
    NEW = "new"
    PERSONALIZED = "personalized"
    COLLABORATIVE = "collaborative"
    INTERESTS = "interests"
    SIMILAR = "similar"
    DISCOVERY = "discovery"
    SPOTLIGHT = "spotlight"
    SERENDIPITY = "serendipity"
    CATEGORY = "category"
    TAG = "tag"
    MAKER = "maker"
    PREFERENCES = "preferences"
    FEED = "feed"


class Blend(str, Enum):
    """Presets selecting a weight distribution across candidate sources."""

    STANDARD = "standard"
    DISCOVERY = "discovery"
    TRENDING = "trending"
    PERSONALIZED = "personalized"
    NEW = "new"


class SortBy(str, Enum):
    SCORE = "score"
    CREATED = "created"
    UPVOTES = "upvotes"
    TRENDING = "trending"


class FeedbackAction(str, Enum):
    LIKE = "like"
    DISLIKE = "dislike"
    NOT_INTERESTED = "not_interested"


@dataclass
class Product:
    """Read-only projection of a product as the engine consumes it.

    Attributes:
        product_id: Stable unique identifier.
        name: Display name.
        category_id: Id of the product's category, ``None`` if uncategorised.
        tags: Free-form tags; matching against preferences is case-insensitive.
        created_at: Creation time (UTC).
        status: Lifecycle state.  Only published products are recommended.
        slug: URL slug.
        tagline: One-line pitch.
        description: Long description.
        thumbnail: Thumbnail URL.
        category_name: Category display name (from the category lookup).
        category_slug: Category slug (from the category lookup).
        maker_id: Id of the maker, if known.
        maker_name: Maker display name (from the maker lookup).
        views: Lifetime view count.
        upvotes: Upvote count.
        bookmarks: Bookmark count.
        comments: Comment count.
        recent_views: Views within the trending window, when the store
            tracks them.  ``None`` means unknown and is estimated.
    """

    product_id: str
    name: str
    category_id: str | None = None
    tags: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)
    status: ProductStatus = ProductStatus.PUBLISHED
    slug: str = ""
    tagline: str = ""
    description: str = ""
    thumbnail: str = ""
    category_name: str = ""
    category_slug: str = ""
    maker_id: str | None = None
    maker_name: str = ""
    views: int = 0
    upvotes: int = 0
    bookmarks: int = 0
    comments: int = 0
    recent_views: int | None = None

    @property
    def lowercase_tags(self) -> set[str]:
        return {t.lower() for t in self.tags}

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "name": self.name,
            "category_id": self.category_id,
            "tags": list(self.tags),
            "created_at": to_iso(self.created_at),
            "status": self.status.value,
            "slug": self.slug,
            "tagline": self.tagline,
            "description": self.description,
            "thumbnail": self.thumbnail,
            "category_name": self.category_name,
            "category_slug": self.category_slug,
            "maker_id": self.maker_id,
            "maker_name": self.maker_name,
            "views": self.views,
            "upvotes": self.upvotes,
            "bookmarks": self.bookmarks,
            "comments": self.comments,
            "recent_views": self.recent_views,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Product:
        values = dict(data)
        values["created_at"] = from_iso(values.get("created_at")) or utcnow()
        values["status"] = ProductStatus(values.get("status", ProductStatus.PUBLISHED.value))
        values["tags"] = list(values.get("tags") or [])
        return cls(**values)

    def projection(self) -> dict[str, Any]:
        """Return the client-facing ``productData`` block for this product."""
        return {
            "id": self.product_id,
            "name": self.name or "Unnamed Product",
            "tagline": self.tagline,
            "slug": self.slug or self.product_id,
            "thumbnail": self.thumbnail,
            "description": self.description,
            "category": (
                {"id": self.category_id, "name": self.category_name, "slug": self.category_slug}
                if self.category_id
                else None
            ),
            "maker": {"id": self.maker_id, "name": self.maker_name} if self.maker_id else None,
            "tags": list(self.tags),
            "upvotes": self.upvotes,
            "views": self.views,
            "bookmarks": self.bookmarks,
            "comments": self.comments,
            "created_at": to_iso(self.created_at),
        }


@dataclass
class CategoryStats:
    """Aggregate of published products in one category."""

    category_id: str
    category_name: str
    count: int
    upvote_total: int

    @property
    def average_upvotes(self) -> float:
        return self.upvote_total / self.count if self.count else 0.0


@dataclass
class PreferenceScore:
    """Accumulated affinity for one category or tag.

    Attributes:
        score: Non-negative preference weight.
        last_interaction: When the weight last changed.
        interaction_count: Number of interactions that touched this entry.
    """

    score: float
    last_interaction: datetime | None = None
    interaction_count: int = 0


@dataclass
class RecentInteraction:
    product_id: str
    interaction_type: InteractionType
    timestamp: datetime
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class InteractionCounters:
    views: int = 0
    upvotes: int = 0
    bookmarks: int = 0
    comments: int = 0
    shares: int = 0


@dataclass
class Interest:
    """A declared user interest with strength on a 0–10 scale."""

    name: str
    strength: float


@dataclass
class RecommendedProduct:
    """An entry of the per-user stored recommendation list."""

    product_id: str
    score: float
    reason: str
    explanation: str
    timestamp: datetime


@dataclass
class PreferenceProfile:
    """Per-user preference document.

    The single owner of a user's category/tag scores, dismissed set and
    bounded interaction window.  It references users and products by id
    only.

    Attributes:
        user_id: Owner of the profile.
        categories: Category id to :class:`PreferenceScore`.
        tags: Lowercased tag to :class:`PreferenceScore`.
        dismissed_products: Product ids the user never wants to see again.
        recent_interactions: Newest-first window, at most 100 entries.
        counters: Lifetime interaction counters (never negative).
        interests: Declared interests copied in by ``update_from_interests``.
        recommended_products: Stored recommendation list, at most 50 entries.
        last_updated: Time of the last mutation.
    """

    user_id: str
    categories: dict[str, PreferenceScore] = field(default_factory=dict)
    tags: dict[str, PreferenceScore] = field(default_factory=dict)
    dismissed_products: set[str] = field(default_factory=set)
    recent_interactions: list[RecentInteraction] = field(default_factory=list)
    counters: InteractionCounters = field(default_factory=InteractionCounters)
    interests: list[Interest] = field(default_factory=list)
    recommended_products: list[RecommendedProduct] = field(default_factory=list)
    last_updated: datetime | None = None

    def category_scores(self) -> dict[str, float]:
        return {k: v.score for k, v in self.categories.items()}

    def tag_scores(self) -> dict[str, float]:
        return {k: v.score for k, v in self.tags.items()}


@dataclass
class InteractionEvent:
    """An immutable record of one user/product interaction.

    Attributes:
        user_id: Acting user.
        product_id: Target product.
        interaction_type: Kind of interaction.
        timestamp: When it happened (UTC).
        recommendation_type: Strategy tag the product was surfaced by.
        position: Index in the response for impressions.
        score: Score of the recommendation that was shown.
        reason: Reason tag of the recommendation that was shown.
        metadata: Session, device and engagement details.
        engagement_quality: 0–10 quality estimate computed at ingestion.
    """

    user_id: str
    product_id: str
    interaction_type: InteractionType
    timestamp: datetime
    recommendation_type: str = "unknown"
    position: int | None = None
    score: float | None = None
    reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    engagement_quality: float = 5.0


@dataclass
class Candidate:
    """A scored product proposed by one strategy before merging.

    Attributes:
        product: The candidate product.
        score: Normalised score in [0, 1] (before blend reweighting).
        reason: Strategy tag.
        raw_score: Score before jitter/decay adjustments, when retained.
        sub_reason: Finer-grained origin inside a strategy (e.g. discovery's
            sub-strategies).
        score_components: Optional score breakdown (debug mode).
        source: Strategy the hybrid engine attributes the candidate to.
        explanation_text: Human-readable explanation, filled by the engine.
        score_context: Short score summary, filled by the engine.
    """

    product: Product
    score: float
    reason: str
    raw_score: float | None = None
    sub_reason: str | None = None
    score_components: dict[str, float] | None = None
    source: str | None = None
    explanation_text: str = ""
    score_context: str = ""

    @property
    def product_id(self) -> str:
        return self.product.product_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "product": self.product.to_dict(),
            "score": self.score,
            "reason": self.reason,
            "raw_score": self.raw_score,
            "sub_reason": self.sub_reason,
            "score_components": self.score_components,
            "source": self.source,
            "explanation_text": self.explanation_text,
            "score_context": self.score_context,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Candidate:
        values = dict(data)
        values["product"] = Product.from_dict(values["product"])
        return cls(**values)


@dataclass
class ItemMetadata:
    source: str
    generated_at: datetime
    sub_source: str | None = None
    is_top_trending: bool = False
    trending_since: datetime | None = None
    time_window: str = "recent"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.source,
            "sub_source": self.sub_source,
            "generated_at": to_iso(self.generated_at),
            "is_top_trending": self.is_top_trending,
            "trending_since": to_iso(self.trending_since),
            "time_window": self.time_window,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ItemMetadata:
        return cls(
            source=data["source"],
            sub_source=data.get("sub_source"),
            generated_at=from_iso(data.get("generated_at")) or utcnow(),
            is_top_trending=bool(data.get("is_top_trending", False)),
            trending_since=from_iso(data.get("trending_since")),
            time_window=data.get("time_window", "recent"),
        )


@dataclass
class RecommendationItem:
    """One entry of a response; never persisted beyond a cache TTL.

    Attributes:
        product_id: Recommended product id (``emergency-fallback-N`` for
            placeholders).
        score: Output score in [0, 1].
        reason: Strategy tag.
        explanation_text: Human-readable explanation.
        score_context: Short score summary.
        product_data: Client-facing product projection; empty for
            placeholders.
        metadata: Source and trending details.
        raw_score: Pre-normalisation score, when retained.
        sub_reason: Finer-grained origin inside a strategy.
        is_placeholder: ``True`` for synthetic items that do not refer to
            a real product.
        score_components: Score breakdown, only in debug mode.
    """

    product_id: str
    score: float
    reason: str
    explanation_text: str
    score_context: str
    product_data: dict[str, Any]
    metadata: ItemMetadata
    raw_score: float | None = None
    sub_reason: str | None = None
    is_placeholder: bool = False
    score_components: dict[str, float] | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "product_id": self.product_id,
            "score": self.score,
            "reason": self.reason,
            "explanation_text": self.explanation_text,
            "score_context": self.score_context,
            "product_data": self.product_data,
            "metadata": self.metadata.to_dict(),
            "raw_score": self.raw_score,
            "sub_reason": self.sub_reason,
            "is_placeholder": self.is_placeholder,
        }
        if self.score_components is not None:
            data["score_components"] = self.score_components
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RecommendationItem:
        return cls(
            product_id=data["product_id"],
            score=data["score"],
            reason=data["reason"],
            explanation_text=data.get("explanation_text", ""),
            score_context=data.get("score_context", ""),
            product_data=data.get("product_data") or {},
            metadata=ItemMetadata.from_dict(data["metadata"]),
            raw_score=data.get("raw_score"),
            sub_reason=data.get("sub_reason"),
            is_placeholder=bool(data.get("is_placeholder", False)),
            score_components=data.get("score_components"),
        )


@dataclass
class RecommendationResponse:
    """A page of recommendation items plus the metadata block."""

    items: list[RecommendationItem]
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [item.to_dict() for item in self.items],
            "metadata": self.metadata,
        }
