"""Collaborative filtering strategy using user-user interest overlap."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from productreco import constants as C
from productreco.catalogue import ProductQuery
from productreco.models import Candidate, PreferenceProfile, StrategyType
from productreco.scoring import personalized_score
from productreco.strategies.base import CandidateRequest, CandidateStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.timeutils import Clock, utcnow
from productreco.user_state import PreferenceRepository

logger = logging.getLogger(__name__)


@dataclass
class SimilarUser:
    user_id: str
    similarity: float
    common_interests: list[str]


class CollaborativeStrategy(CandidateStrategy):
    """Recommends products in the interests the user shares with similar users.

    Similarity between the target user and each of up to 100 other users
    is ``|shared categories| + |shared tags|`` divided by the target's
    total number of categories and tags.  Users at or above 0.3 are kept
    (top 10), and their shared interests (up to five each) drive the
    product query.

    **Fallbacks**, in order:

    =================================  ==================
    Situation                          Answered by
    =================================  ==================
    no similar users                   discovery
    similar users, no shared interest  serendipity
    shared interests, no products      category spotlight
    any error                          discovery, then trending
    =================================  ==================

    Args:
        repository: Source of other users' profiles.
        fetcher: Shared :class:`CandidateFetcher`.
        discovery: Discovery strategy (first fallback).
        serendipity: Serendipity strategy.
        spotlight: Category-spotlight strategy.
        trending: Trending strategy (last resort).
        clock: Time source.
    """

    strategy_type = StrategyType.COLLABORATIVE

    def __init__(
        self,
        repository: PreferenceRepository,
        fetcher: CandidateFetcher,
        discovery: CandidateStrategy,
        serendipity: CandidateStrategy,
        spotlight: CandidateStrategy,
        trending: CandidateStrategy,
        clock: Clock = utcnow,
    ) -> None:
        self._repository = repository
        self._fetcher = fetcher
        self._discovery = discovery
        self._serendipity = serendipity
        self._spotlight = spotlight
        self._trending = trending
        self._clock = clock

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        try:
            return self._recommend(request)
        except Exception:
            logger.exception(
                "Collaborative filtering failed for user=%r; falling back to discovery.",
                request.user_id,
            )
        try:
            return self._discovery.candidates(request)
        except Exception:
            logger.exception("Discovery fallback failed; using trending instead.")
            return self._trending.candidates(request)

    def find_similar_users(
        self,
        user_id: str,
        categories: list[str],
        tags: list[str],
    ) -> list[SimilarUser]:
        """Return up to 10 users whose interests overlap at least 30 %.

        Args:
            user_id: Target user, excluded from the comparison.
            categories: Target user's preferred category ids.
            tags: Target user's preferred tags.

        Returns:
            Similar users sorted by similarity descending, then user id.
        """
        features = [f"c:{c}" for c in categories] + [f"t:{t}" for t in tags]
        if not features:
            return []
        others = self._repository.list_profiles(
            exclude_user_id=user_id, limit=C.COLLABORATIVE_MAX_PROFILES
        )
        if not others:
            return []

        matrix = np.stack([self._membership_vector(p, features) for p in others], axis=0)
        similarities = matrix.sum(axis=1) / len(features)  # (n_users,)
        order = np.argsort(-similarities, kind="stable")

        results: list[SimilarUser] = []
        for i in order:
            if similarities[i] < C.COLLABORATIVE_MIN_SIMILARITY:
                break
            shared = [features[j] for j in np.flatnonzero(matrix[i])]
            results.append(
                SimilarUser(
                    user_id=others[i].user_id,
                    similarity=float(similarities[i]),
                    common_interests=shared[: C.COLLABORATIVE_COMMON_INTERESTS],
                )
            )
            if len(results) >= C.COLLABORATIVE_TOP_USERS:
                break
        return results

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _recommend(self, request: CandidateRequest) -> list[Candidate]:
        ctx = request.context
        if ctx is None or not ctx.is_authenticated:
            return self._discovery.candidates(request)
        prefs = ctx.preferences
        similar = self.find_similar_users(
            ctx.user_id, sorted(prefs.category_scores), sorted(prefs.tag_scores)
        )
        if not similar:
            logger.info("No similar users for user=%r; using discovery.", ctx.user_id)
            return self._discovery.candidates(request)

        categories: list[str] = []
        tags: list[str] = []
        for user in similar:
            for feature in user.common_interests:
                kind, _, value = feature.partition(":")
                target = categories if kind == "c" else tags
                if value not in target:
                    target.append(value)
        if not categories and not tags:
            logger.info("No common interests for user=%r; using serendipity.", ctx.user_id)
            return self._serendipity.candidates(request)

        weight = max(u.similarity for u in similar)
        category_scores = {c: prefs.category_scores.get(c, 0.0) * weight for c in categories}
        tag_scores = {t: prefs.tag_scores.get(t, 0.0) * weight for t in tags}
        now = self._clock()

        def score(product):
            return personalized_score(
                product, now, category_scores, tag_scores, time_context=ctx.time_context
            )

        query = ProductQuery(
            category_ids=set(categories),
            tags=set(tags),
            exclude_ids=request.blocked_ids | set(ctx.history.viewed_ids),
        )
        results = self._fetcher.fetch(
            "collaborative",
            query,
            request.limit,
            score,
            sort=("upvotes", "created_at"),
            user_id=ctx.user_id,
            context=ctx,
        )
        if not results:
            logger.info("No collaborative products for user=%r; using spotlight.", ctx.user_id)
            return self._spotlight.candidates(request)
        return results

    @staticmethod
    def _membership_vector(profile: PreferenceProfile, features: list[str]) -> np.ndarray:
        """Return a 0/1 vector marking which *features* the profile shares."""
        owned = {f"c:{c}" for c in profile.categories} | {f"t:{t.lower()}" for t in profile.tags}
        return np.array([1.0 if f in owned else 0.0 for f in features], dtype=np.float32)
