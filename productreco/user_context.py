"""User context: fully-shaped preference and history records for one request."""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from productreco import constants as C
from productreco.catalogue import ProductStore
from productreco.interactions import InteractionStore
from productreco.models import Interest, InteractionType, RecentInteraction
from productreco.scoring import TimeContext, build_time_context
from productreco.timeutils import Clock, ensure_utc, utcnow
from productreco.user_state import PreferenceRepository

logger = logging.getLogger(__name__)


@dataclass
class UserPreferences:
    """Merged preference view; every field always present."""

    category_scores: dict[str, float] = field(default_factory=dict)
    tag_scores: dict[str, float] = field(default_factory=dict)
    interests: list[Interest] = field(default_factory=list)
    dismissed: set[str] = field(default_factory=set)
    recent_activity: list[RecentInteraction] = field(default_factory=list)
    last_activity: datetime | None = None

    @property
    def is_cold_start(self) -> bool:
        return not self.category_scores and not self.tag_scores

    def top_categories(self, n: int) -> list[str]:
        return _top_keys(self.category_scores, n)

    def top_tags(self, n: int) -> list[str]:
        return _top_keys(self.tag_scores, n)


@dataclass
class ViewedProduct:
    product_id: str
    last_viewed: datetime
    view_count: int


@dataclass
class UserHistory:
    """30-day aggregate over a user's view events.

    Attributes:
        viewed_products: Viewed products, most recently viewed first.
        upvoted_products: Product ids upvoted in the window.
        view_patterns: Weekday (0 = Monday) to hour to view count.
        category_counts: Category id to view count.
        tag_counts: Lowercased tag to view count.
        stats: Summary numbers (total views, unique products, active days).
        last_activity: Time of the newest event, if any.
    """

    viewed_products: list[ViewedProduct] = field(default_factory=list)
    upvoted_products: list[str] = field(default_factory=list)
    view_patterns: dict[int, dict[int, int]] = field(default_factory=dict)
    category_counts: dict[str, int] = field(default_factory=dict)
    tag_counts: dict[str, int] = field(default_factory=dict)
    stats: dict[str, float] = field(default_factory=dict)
    last_activity: datetime | None = None

    @property
    def viewed_ids(self) -> list[str]:
        return [v.product_id for v in self.viewed_products]


@dataclass
class UserContext:
    """Everything the strategies know about the caller for one request."""

    user_id: str | None
    preferences: UserPreferences
    history: UserHistory
    time_context: TimeContext
    session: dict[str, Any] = field(default_factory=dict)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def categories(self) -> list[str]:
        return self.preferences.top_categories(len(self.preferences.category_scores))

    @property
    def recent_categories(self) -> set[str]:
        return set(list(self.history.category_counts)[:5])


class UserContextService:
    """Builds :class:`UserContext` records with safe defaults.

    Args:
        repository: Preference profile storage.
        interactions: Interaction event store.
        products: Product store for resolving viewed products.
        clock: Time source.
    """

    def __init__(
        self,
        repository: PreferenceRepository,
        interactions: InteractionStore,
        products: ProductStore,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._interactions = interactions
        self._products = products
        self._clock = clock

    def build_user_context(
        self, user_id: str | None, session: dict[str, Any] | None = None
    ) -> UserContext:
        now = self._clock()
        if user_id is None:
            return UserContext(
                user_id=None,
                preferences=UserPreferences(),
                history=UserHistory(),
                time_context=build_time_context(now),
                session=dict(session or {}),
            )
        return UserContext(
            user_id=user_id,
            preferences=self.get_user_preferences(user_id),
            history=self.get_user_history(user_id),
            time_context=build_time_context(now),
            session=dict(session or {}),
        )

    def get_user_history(self, user_id: str) -> UserHistory:
        """Aggregate the user's last 30 days of view events.

        Views of products that no longer exist are ignored.  Store errors
        yield an empty history.
        """
        since = ensure_utc(self._clock()) - timedelta(days=C.HISTORY_WINDOW_DAYS)
        try:
            events = self._interactions.find_for_user(
                user_id, since=since, types=(InteractionType.VIEW, InteractionType.UPVOTE)
            )
        except Exception:
            logger.exception("Failed to load interaction history for user=%r", user_id)
            return UserHistory()

        views = [e for e in events if e.interaction_type is InteractionType.VIEW]
        products = {
            p.product_id: p for p in self._products.get_many({e.product_id for e in views})
        }
        viewed: dict[str, ViewedProduct] = {}
        patterns: dict[int, dict[int, int]] = {}
        categories: Counter[str] = Counter()
        tags: Counter[str] = Counter()
        active_days: set[str] = set()
        for event in views:
            product = products.get(event.product_id)
            if product is None:
                continue
            ts = ensure_utc(event.timestamp)
            entry = viewed.get(product.product_id)
            if entry is None:
                viewed[product.product_id] = ViewedProduct(product.product_id, ts, 1)
            else:
                entry.view_count += 1
            hours = patterns.setdefault(ts.weekday(), {})
            hours[ts.hour] = hours.get(ts.hour, 0) + 1
            if product.category_id:
                categories[product.category_id] += 1
            for tag in product.lowercase_tags:
                tags[tag] += 1
            active_days.add(ts.date().isoformat())

        upvoted = list(
            dict.fromkeys(
                e.product_id for e in events if e.interaction_type is InteractionType.UPVOTE
            )
        )
        total_views = sum(v.view_count for v in viewed.values())
        return UserHistory(
            viewed_products=list(viewed.values()),
            upvoted_products=upvoted,
            view_patterns=patterns,
            category_counts=dict(categories.most_common()),
            tag_counts=dict(tags.most_common()),
            stats={
                "total_views": total_views,
                "unique_products": len(viewed),
                "active_days": len(active_days),
                "avg_views_per_product": total_views / len(viewed) if viewed else 0.0,
            },
            last_activity=ensure_utc(events[0].timestamp) if events else None,
        )

    def get_user_preferences(self, user_id: str) -> UserPreferences:
        """Return stored scores merged with declared interests.

        Always returns a fully-shaped :class:`UserPreferences`; on any
        failure the defaults are returned and the error is logged.
        """
        try:
            profile = self._repository.get(user_id)
            if profile is None:
                return UserPreferences()
            categories = profile.category_scores()
            tags = {k.lower(): v for k, v in profile.tag_scores().items()}
            for interest in profile.interests:
                strength = max(0.0, interest.strength) / 10
                if self._products.has_category(interest.name):
                    categories[interest.name] = max(categories.get(interest.name, 0.0), strength)
                else:
                    key = interest.name.lower()
                    tags[key] = max(tags.get(key, 0.0), strength)
            return UserPreferences(
                category_scores=categories,
                tag_scores=tags,
                interests=list(profile.interests),
                dismissed=set(profile.dismissed_products),
                recent_activity=list(profile.recent_interactions),
                last_activity=profile.last_updated,
            )
        except Exception:
            logger.exception("Failed to load preferences for user=%r; using defaults", user_id)
            return UserPreferences()


def _top_keys(scores: dict[str, float], n: int) -> list[str]:
    ranked = sorted(scores.items(), key=lambda kv: (-kv[1], kv[0]))
    return [k for k, v in ranked[:n] if v > 0]
