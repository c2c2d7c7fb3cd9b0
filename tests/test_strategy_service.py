"""Tests for StrategyRecommendationService."""

from __future__ import annotations

import random

import pytest

from productreco.cache import CacheService, MemoryCacheBackend
from productreco.catalogue import ProductCatalogue
from productreco.concurrency import CancellationToken
from productreco.errors import InvalidInputError, MissingError, OperationCancelled
from productreco.ingestion import InteractionIngestionService
from productreco.interactions import InteractionLog
from productreco.metrics import TrendingMetricsService
from productreco.models import Blend, InteractionType, PreferenceProfile, PreferenceScore
from productreco.strategies.registry import build_registry
from productreco.strategy_service import StrategyRecommendationService
from productreco.user_context import UserContextService
from productreco.user_state import InMemoryPreferenceRepository, UserStateService
from tests.support import SyncExecutor, clock, days_ago, make_product


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _build_service(
    catalogue: ProductCatalogue,
    repository: InMemoryPreferenceRepository | None = None,
    seed: int = 7,
) -> StrategyRecommendationService:
    repository = repository or InMemoryPreferenceRepository()
    cache = CacheService(MemoryCacheBackend(), clock=clock)
    interactions = InteractionLog(clock=clock)
    return StrategyRecommendationService(
        build_registry(catalogue, cache, repository, clock=clock, rng=random.Random(seed)),
        UserContextService(repository, interactions, catalogue, clock=clock),
        catalogue,
        cache,
        TrendingMetricsService(interactions, cache, clock=clock),
        clock=clock,
    )


@pytest.fixture
def service(catalogue, repository) -> StrategyRecommendationService:
    return _build_service(catalogue, repository)


def _ids(response) -> list[str]:
    return [item.product_id for item in response.items]


def _reasons(response) -> set[str]:
    return {item.reason for item in response.items}


# ---------------------------------------------------------------------------
# Registry-backed strategies
# ---------------------------------------------------------------------------


class TestTrending:
    def test_anonymous_window(self, service) -> None:
        response = service.get_trending(limit=20)
        assert set(_ids(response)) == {"p_drill", "p_saw", "p_notes", "p_puzzle", "p_paint"}
        assert _reasons(response) == {"trending"}
        assert response.metadata["hasFallback"] is False

    def test_empty_window_widens(self) -> None:
        store = ProductCatalogue()
        store.load(
            [
                make_product(f"p{i}", upvotes=5 + i, views=50, created_at=days_ago(10))
                for i in range(3)
            ]
        )
        response = _build_service(store).get_trending(days=7, limit=10)
        assert len(response.items) == 3
        assert response.metadata["hasFallback"] is True
        scores = [item.score for item in response.items]
        assert all(0 <= s <= 1 for s in scores)
        assert all(a >= b - 1e-3 for a, b in zip(scores, scores[1:]))

    def test_second_call_served_from_cache(self, service) -> None:
        first = service.get_trending(limit=5)
        second = service.get_trending(limit=5)
        assert first.metadata["cacheStatus"] == "miss"
        assert second.metadata["cacheStatus"] == "hit"
        assert _ids(second) == _ids(first)

    def test_days_out_of_range(self, service) -> None:
        with pytest.raises(InvalidInputError):
            service.get_trending(days=0)

    def test_limit_out_of_range(self, service) -> None:
        with pytest.raises(InvalidInputError):
            service.get_trending(limit=101)

    def test_cancelled_token(self, service) -> None:
        token = CancellationToken()
        token.cancel()
        with pytest.raises(OperationCancelled):
            service.get_trending(token=token)


class TestPersonalized:
    def test_requires_user(self, service) -> None:
        with pytest.raises(InvalidInputError):
            service.get_personalized("")

    def test_cold_start_falls_back_to_trending(self, service) -> None:
        response = service.get_personalized("u1", limit=5)
        assert len(response.items) == 5
        assert _reasons(response) == {"trending"}
        assert response.metadata["hasFallback"] is True

    def test_uses_preferences(self, service, repository) -> None:
        repository.load(
            [PreferenceProfile(user_id="u1", categories={"cat_games": PreferenceScore(1.0)})]
        )
        response = service.get_personalized("u1", limit=10)
        assert set(_ids(response)) == {"p_puzzle", "p_chess", "p_cards"}
        assert _reasons(response) == {"personalized"}


class TestCollaborative:
    def test_without_similar_users_matches_discovery(self, catalogue) -> None:
        collaborative = _build_service(catalogue).get_collaborative("u1", limit=6)
        discovery = _build_service(catalogue).get_discovery(user_id="u1", limit=6)
        assert _ids(collaborative) == _ids(discovery)
        assert collaborative.items


# ---------------------------------------------------------------------------
# Contextual listings
# ---------------------------------------------------------------------------


class TestListings:
    def test_similar_excludes_source(self, service) -> None:
        response = service.get_similar("p_drill")
        assert set(_ids(response)) == {"p_saw", "p_level", "p_hammer", "p_paint"}
        assert _reasons(response) == {"similar"}

    def test_similar_unknown_product(self, service) -> None:
        with pytest.raises(MissingError):
            service.get_similar("p_missing")

    def test_category(self, service) -> None:
        response = service.get_category("cat_games")
        assert set(_ids(response)) == {"p_puzzle", "p_chess", "p_cards"}
        assert _reasons(response) == {"category"}

    def test_tags(self, service) -> None:
        response = service.get_tags(["casual"])
        assert set(_ids(response)) == {"p_puzzle", "p_cards"}
        assert _reasons(response) == {"tag"}

    def test_empty_tags_rejected(self, service) -> None:
        with pytest.raises(InvalidInputError):
            service.get_tags([])

    def test_maker(self, service) -> None:
        response = service.get_maker("m_acme")
        assert set(_ids(response)) == {"p_drill", "p_saw"}
        assert _reasons(response) == {"maker"}

    def test_draft_never_listed(self, service) -> None:
        assert "p_draft" not in _ids(service.get_category("cat_tools"))

    def test_pagination(self, service) -> None:
        first = service.get_category("cat_tools", limit=2)
        second = service.get_category("cat_tools", limit=2, offset=2)
        assert len(first.items) == len(second.items) == 2
        assert not set(_ids(first)) & set(_ids(second))
        assert first.metadata["hasMore"] is True
        assert second.metadata["hasMore"] is False
        assert second.metadata["nextOffset"] == 4

    def test_dismissed_products_hidden(self, service, repository) -> None:
        repository.load([PreferenceProfile(user_id="u1", dismissed_products={"p_puzzle"})])
        response = service.get_category("cat_games", user_id="u1")
        assert set(_ids(response)) == {"p_chess", "p_cards"}


class TestPreferences:
    def test_ranks_by_stored_weights(self, service, repository) -> None:
        repository.load(
            [PreferenceProfile(user_id="u1", tags={"casual": PreferenceScore(0.9)})]
        )
        response = service.get_preferences("u1")
        assert set(_ids(response)) == {"p_puzzle", "p_cards"}
        assert _reasons(response) == {"preferences"}

    def test_cold_start_uses_discovery(self, service) -> None:
        response = service.get_preferences("u1", limit=5)
        assert response.items
        assert _reasons(response) == {"discovery"}


# ---------------------------------------------------------------------------
# Feed
# ---------------------------------------------------------------------------


class TestFeed:
    def test_anonymous_sources(self, service) -> None:
        response = service.get_feed(limit=5)
        assert len(response.items) == 5
        assert _reasons(response) <= {"trending", "new"}
        assert len(set(_ids(response))) == 5

    def test_blend_by_name(self, service) -> None:
        response = service.get_feed(limit=4, blend="new")
        assert response.items[0].reason == "new"

    def test_unknown_blend(self, service) -> None:
        with pytest.raises(InvalidInputError):
            service.get_feed(blend="loud")

    def test_authenticated_feed_has_no_duplicates(self, service, repository) -> None:
        repository.load(
            [PreferenceProfile(user_id="u1", categories={"cat_tools": PreferenceScore(1.0)})]
        )
        response = service.get_feed(user_id="u1", limit=10, blend=Blend.PERSONALIZED)
        ids = _ids(response)
        assert len(ids) == len(set(ids))
        assert response.items[0].reason == "personalized"


# ---------------------------------------------------------------------------
# Interactions feeding back into rankings
# ---------------------------------------------------------------------------


class TestLearningLoop:
    @pytest.fixture
    def kitchen(self) -> ProductCatalogue:
        stats = {"upvotes": 10, "views": 200, "created_at": days_ago(4)}
        in_kitchen = {"category_id": "cat_kitchen", "category_name": "Kitchen"}
        in_garden = {"category_id": "cat_garden", "category_name": "Garden"}
        store = ProductCatalogue()
        store.load(
            [
                make_product("k_seed", tags=["ai"], **in_kitchen, **stats),
                make_product("k_both", tags=["ai"], **in_kitchen, **stats),
                make_product("k_plain", tags=["steel"], **in_kitchen, **stats),
                make_product("g_ai", tags=["ai"], **in_garden, **stats),
                make_product("g_plain", tags=["soil"], **in_garden, **stats),
                make_product(
                    "o_popular",
                    category_id="cat_office",
                    category_name="Office",
                    tags=["paper"],
                    upvotes=90,
                    views=2000,
                    created_at=days_ago(1),
                ),
            ]
        )
        return store

    @pytest.fixture
    def wired(self, kitchen):
        repository = InMemoryPreferenceRepository()
        cache = CacheService(MemoryCacheBackend(), clock=clock)
        interactions = InteractionLog(clock=clock)
        contexts = UserContextService(repository, interactions, kitchen, clock=clock)
        registry = build_registry(kitchen, cache, repository, clock=clock, rng=random.Random(2))
        service = StrategyRecommendationService(
            registry,
            contexts,
            kitchen,
            cache,
            TrendingMetricsService(interactions, cache, clock=clock),
            clock=clock,
        )
        ingestion = InteractionIngestionService(
            interactions,
            UserStateService(repository, kitchen, cache, clock=clock),
            cache,
            registry,
            contexts,
            executor=SyncExecutor(),
            clock=clock,
        )
        return service, ingestion, repository

    def test_upvote_ranks_double_match_first(self, wired) -> None:
        service, ingestion, _ = wired
        cold = service.get_personalized("u1", limit=10)
        assert "personalized" not in _reasons(cold)

        result = ingestion.record_interaction("u1", "k_seed", InteractionType.UPVOTE)
        assert result["preferencesUpdated"] is True

        warm = service.get_personalized("u1", limit=10)
        assert warm.metadata["cacheStatus"] == "miss"
        assert _reasons(warm) == {"personalized"}
        scores = {item.product_id: item.score for item in warm.items}
        assert scores["k_both"] > scores["k_plain"]
        assert scores["k_both"] > scores["g_ai"]
        assert "o_popular" not in scores
        assert "g_plain" not in scores

    def test_upvotes_refresh_a_cached_ranking(self, wired) -> None:
        service, ingestion, repository = wired
        repository.load(
            [
                PreferenceProfile(
                    user_id="u1",
                    categories={
                        "cat_kitchen": PreferenceScore(0.1),
                        "cat_garden": PreferenceScore(0.3),
                    },
                    tags={"ai": PreferenceScore(0.1)},
                )
            ]
        )
        before = service.get_personalized("u1", limit=10)
        scores = {item.product_id: item.score for item in before.items}
        assert scores["g_ai"] > scores["k_both"]

        ingestion.record_interaction("u1", "k_seed", InteractionType.UPVOTE)

        after = service.get_personalized("u1", limit=10)
        assert after.metadata["cacheStatus"] == "miss"
        scores = {item.product_id: item.score for item in after.items}
        assert scores["k_both"] > scores["g_ai"]
        assert scores["k_plain"] > scores["g_plain"]
        assert "o_popular" not in scores


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


class TestDispatch:
    def test_routes_by_name_and_ignores_extras(self, service) -> None:
        response = service.recommend_for_strategy(
            "category", category_id="cat_games", days=3, blend="standard"
        )
        assert _reasons(response) == {"category"}

    def test_tags_alias(self, service) -> None:
        response = service.recommend_for_strategy("tags", tags=["casual"])
        assert _reasons(response) == {"tag"}

    def test_unknown_strategy(self, service) -> None:
        with pytest.raises(InvalidInputError, match="expected one of"):
            service.recommend_for_strategy("bogus")

    def test_missing_required_argument(self, service) -> None:
        with pytest.raises(InvalidInputError, match="requires: product_id"):
            service.recommend_for_strategy("similar")

    def test_strategy_names(self, service) -> None:
        assert {"feed", "tags", "similar", "preferences"} <= set(service.strategy_names)
