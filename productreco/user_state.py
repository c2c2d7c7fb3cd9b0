"""User state: preference profile storage and the interaction-driven update loop."""

from __future__ import annotations

import copy
import logging
import threading
import time
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from productreco import constants as C
from productreco.cache import CacheService
from productreco.catalogue import ProductStore
from productreco.errors import InvalidInputError, PreferenceWriteError
from productreco.models import (
    Interest,
    InteractionType,
    PreferenceProfile,
    PreferenceScore,
    Product,
    RecentInteraction,
    RecommendedProduct,
)
from productreco.timeutils import Clock, ensure_utc, utcnow

logger = logging.getLogger(__name__)

ProfileMutator = Callable[[PreferenceProfile], None]
ProfilePersister = Callable[[list[PreferenceProfile]], None]

# interaction type -> (counter attribute, delta)
_COUNTER_DELTAS: dict[InteractionType, tuple[str, int]] = {
    InteractionType.VIEW: ("views", 1),
    InteractionType.UPVOTE: ("upvotes", 1),
    InteractionType.BOOKMARK: ("bookmarks", 1),
    InteractionType.COMMENT: ("comments", 1),
    InteractionType.SHARE: ("shares", 1),
    InteractionType.REMOVE_UPVOTE: ("upvotes", -1),
    InteractionType.REMOVE_BOOKMARK: ("bookmarks", -1),
}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class PreferenceRepository(ABC):
    """Storage contract for per-user :class:`PreferenceProfile` documents."""

    @abstractmethod
    def get(self, user_id: str) -> PreferenceProfile | None:
        """Return a snapshot of the user's profile, or ``None`` if absent."""

    @abstractmethod
    def list_profiles(
        self, exclude_user_id: str | None = None, limit: int | None = None
    ) -> list[PreferenceProfile]: ...

    @abstractmethod
    def update(self, user_id: str, mutator: ProfileMutator) -> PreferenceProfile:
        """Atomically create-or-update a profile.

        *mutator* receives the current profile (a fresh empty one on first
        touch) and mutates it in place.  Concurrent updates for the same
        user are serialised so no event is lost.

        Raises:
            PreferenceWriteError: If the write could not be applied.
        """


class InMemoryPreferenceRepository(PreferenceRepository):
    """Thread-safe in-memory :class:`PreferenceRepository`.

    Profiles are handed out as deep copies so callers cannot mutate stored
    state outside :meth:`update`.  When a *persister* is supplied,
    :meth:`start_persist_loop` periodically passes it a snapshot of every
    profile.

    Args:
        persister: Optional callable receiving all profiles for durable
            storage.
    """

    def __init__(self, persister: ProfilePersister | None = None) -> None:
        self._persister = persister
        self._lock = threading.RLock()
        self._profiles: dict[str, PreferenceProfile] = {}
        self._persist_thread: threading.Thread | None = None

    def load(self, profiles: Iterable[PreferenceProfile]) -> None:
        with self._lock:
            for profile in profiles:
                self._profiles[profile.user_id] = copy.deepcopy(profile)

    def get(self, user_id: str) -> PreferenceProfile | None:
        with self._lock:
            profile = self._profiles.get(user_id)
            return copy.deepcopy(profile) if profile is not None else None

    def list_profiles(
        self, exclude_user_id: str | None = None, limit: int | None = None
    ) -> list[PreferenceProfile]:
        with self._lock:
            ids = sorted(uid for uid in self._profiles if uid != exclude_user_id)
            if limit is not None:
                ids = ids[:limit]
            return [copy.deepcopy(self._profiles[uid]) for uid in ids]

    def update(self, user_id: str, mutator: ProfileMutator) -> PreferenceProfile:
        with self._lock:
            current = self._profiles.get(user_id) or PreferenceProfile(user_id=user_id)
            working = copy.deepcopy(current)
            try:
                mutator(working)
            except Exception as exc:
                raise PreferenceWriteError(
                    f"Failed to update preferences for user {user_id!r}"
                ) from exc
            self._profiles[user_id] = working
            return copy.deepcopy(working)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist_all(self) -> None:
        """Hand a snapshot of every profile to the persister."""
        if self._persister is None:
            return
        with self._lock:
            snapshot = [copy.deepcopy(p) for p in self._profiles.values()]
        try:
            self._persister(snapshot)
            logger.info("Persisted preferences for %d users.", len(snapshot))
        except Exception:
            logger.exception("Failed to persist user preferences.")

    def start_persist_loop(self, interval_seconds: int = 60) -> None:
        """Start a background daemon thread that periodically persists all state.

        Safe to call multiple times; only one thread is started, and none
        at all when the repository has no persister.
        """
        if self._persister is None:
            logger.info("No preference persister configured; persist loop not started.")
            return
        if self._persist_thread is not None and self._persist_thread.is_alive():
            return
        self._persist_thread = threading.Thread(
            target=self._persist_loop,
            args=(interval_seconds,),
            name="preference-persist",
            daemon=True,
        )
        self._persist_thread.start()
        logger.debug("Preference persist loop started (interval=%ds).", interval_seconds)

    def _persist_loop(self, interval_seconds: int) -> None:
        while True:
            time.sleep(interval_seconds)
            self.persist_all()


# ---------------------------------------------------------------------------
# Update loop
# ---------------------------------------------------------------------------


class UserStateService:
    """Applies interactions and declared interests to preference profiles.

    This is the only writer of preference profiles.  Every successful
    write is followed by cache invalidation for the affected user.

    Args:
        repository: Where profiles live.
        products: Used to look up the category and tags of a product.
        cache: Cache whose user-scoped entries are purged after writes.
        clock: Time source.
    """

    def __init__(
        self,
        repository: PreferenceRepository,
        products: ProductStore,
        cache: CacheService,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._products = products
        self._cache = cache
        self._clock = clock

    def get_profile(self, user_id: str) -> PreferenceProfile | None:
        return self._repository.get(user_id)

    def update_after_interaction(
        self,
        user_id: str,
        product_id: str,
        interaction_type: InteractionType,
        metadata: dict[str, Any] | None = None,
        weight: float | None = None,
    ) -> bool:
        """Fold one interaction into the user's preference profile.

        Args:
            user_id: Acting user.
            product_id: Product interacted with.
            interaction_type: Kind of interaction.
            metadata: Stored alongside the recent-interaction entry.
            weight: Overrides the per-type weight (used by feedback).

        Returns:
            ``True`` on success; ``False`` when the product does not exist
            or the profile write failed.

        Raises:
            InvalidInputError: If *user_id* or *product_id* is empty.
        """
        if not user_id or not product_id:
            raise InvalidInputError("user_id and product_id must be non-empty")
        product = self._products.get(product_id)
        if product is None:
            logger.warning(
                "Skipping preference update for user=%r: product %r not found",
                user_id,
                product_id,
            )
            return False

        if weight is None:
            weight = C.INTERACTION_WEIGHTS.get(
                interaction_type.value, C.DEFAULT_INTERACTION_WEIGHT
            )
        now = self._clock()

        def mutate(profile: PreferenceProfile) -> None:
            self._apply_weight_delta(profile, product, weight, now)
            profile.recent_interactions.insert(
                0,
                RecentInteraction(
                    product_id=product_id,
                    interaction_type=interaction_type,
                    timestamp=now,
                    metadata=dict(metadata or {}),
                ),
            )
            del profile.recent_interactions[C.MAX_RECENT_INTERACTIONS:]
            counter = _COUNTER_DELTAS.get(interaction_type)
            if counter is not None:
                name, delta = counter
                setattr(profile.counters, name, max(0, getattr(profile.counters, name) + delta))
            if interaction_type is InteractionType.DISMISS:
                profile.dismissed_products.add(product_id)
            profile.last_updated = now

        try:
            self._repository.update(user_id, mutate)
        except PreferenceWriteError:
            logger.exception(
                "Preference write failed for user=%r product=%r type=%s",
                user_id,
                product_id,
                interaction_type.value,
            )
            return False

        self._cache.invalidate_user_cache(user_id)
        self._cache.smart_invalidate_cache(
            interaction_type,
            user_id=user_id,
            product_id=product_id,
            category_id=product.category_id,
            tags=product.tags,
        )
        return True

    def update_from_interests(self, user_id: str, interests: Iterable[Interest]) -> bool:
        """Merge declared interests into the profile with a ``max`` rule.

        Interests naming a known category id update category scores; all
        others update (lowercased) tag scores.  Strength is mapped from the
        0–10 scale onto 0–1.  An empty interest list is a no-op.
        """
        interests = [i for i in interests if i.name]
        if not interests:
            return True
        now = self._clock()
        as_category = {i.name: self._products.has_category(i.name) for i in interests}

        def mutate(profile: PreferenceProfile) -> None:
            for interest in interests:
                score = max(0.0, interest.strength) / 10
                if as_category[interest.name]:
                    table, key = profile.categories, interest.name
                else:
                    table, key = profile.tags, interest.name.lower()
                entry = table.get(key)
                if entry is None:
                    table[key] = PreferenceScore(score=score, last_interaction=now)
                else:
                    entry.score = max(entry.score, score)
                    entry.last_interaction = now
            declared = {i.name: i for i in profile.interests}
            declared.update({i.name: i for i in interests})
            profile.interests = list(declared.values())
            profile.last_updated = now

        try:
            self._repository.update(user_id, mutate)
        except PreferenceWriteError:
            logger.exception("Interest merge failed for user=%r", user_id)
            return False
        self._cache.invalidate_user_cache(user_id, invalidate_all=True)
        return True

    def add_dismissed(self, user_id: str, product_id: str) -> bool:
        """Add *product_id* to the dismissed set.

        Returns:
            ``True`` if the product was newly dismissed, ``False`` if it
            already was.
        """
        added: list[bool] = []

        def mutate(profile: PreferenceProfile) -> None:
            added.append(product_id not in profile.dismissed_products)
            profile.dismissed_products.add(product_id)
            profile.last_updated = self._clock()

        self._repository.update(user_id, mutate)
        return added[0]

    def set_recommended_products(
        self, user_id: str, items: Iterable[RecommendedProduct]
    ) -> None:
        stored = list(items)[: C.MAX_RECOMMENDED_PRODUCTS]

        def mutate(profile: PreferenceProfile) -> None:
            profile.recommended_products = stored
            profile.last_updated = self._clock()

        self._repository.update(user_id, mutate)

    def trim_recent_interactions(self, user_id: str) -> None:
        """Drop recent interactions older than the retention window."""
        cutoff = ensure_utc(self._clock()) - timedelta(days=C.RECENT_INTERACTION_RETENTION_DAYS)

        def mutate(profile: PreferenceProfile) -> None:
            profile.recent_interactions = [
                r for r in profile.recent_interactions if ensure_utc(r.timestamp) >= cutoff
            ][: C.MAX_RECENT_INTERACTIONS]

        self._repository.update(user_id, mutate)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _apply_weight_delta(
        profile: PreferenceProfile, product: Product, delta: float, now: datetime
    ) -> None:
        """Add *delta* to the product's category and every lowercased tag.

        New entries start at ``max(0.1, delta)``; existing entries never
        drop below zero.
        """
        targets: list[tuple[dict[str, PreferenceScore], str]] = []
        if product.category_id:
            targets.append((profile.categories, product.category_id))
        targets.extend((profile.tags, tag) for tag in sorted(product.lowercase_tags))
        for table, key in targets:
            entry = table.get(key)
            if entry is None:
                table[key] = PreferenceScore(
                    score=max(C.NEW_PREFERENCE_MIN_SCORE, delta),
                    last_interaction=now,
                    interaction_count=1,
                )
            else:
                entry.score = max(0.0, entry.score + delta)
                entry.last_interaction = now
                entry.interaction_count += 1
