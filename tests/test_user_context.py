"""Tests for UserContextService."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from productreco.models import (
    Interest,
    InteractionEvent,
    InteractionType,
    PreferenceProfile,
    PreferenceScore,
)
from productreco.user_context import UserContextService, UserPreferences
from tests.support import TS, clock, days_ago


def _view(product_id: str, at, kind: InteractionType = InteractionType.VIEW) -> InteractionEvent:
    return InteractionEvent("u1", product_id, kind, at)


class TestBuildUserContext:
    def test_anonymous_context_has_defaults(self, contexts) -> None:
        ctx = contexts.build_user_context(None, {"device_type": "mobile"})
        assert ctx.is_authenticated is False
        assert ctx.preferences.is_cold_start
        assert ctx.history.viewed_products == []
        assert ctx.session == {"device_type": "mobile"}
        assert ctx.time_context.is_weekend is True

    def test_unknown_user_is_cold_start(self, contexts) -> None:
        ctx = contexts.build_user_context("ghost")
        assert ctx.is_authenticated is True
        assert ctx.preferences == UserPreferences()


class TestUserPreferences:
    def test_merges_scores_and_interests(self, contexts, repository) -> None:
        repository.load(
            [
                PreferenceProfile(
                    user_id="u1",
                    categories={"cat_art": PreferenceScore(0.4)},
                    tags={"Casual": PreferenceScore(0.2)},
                    dismissed_products={"p_chess"},
                    interests=[Interest("cat_art", 9), Interest("casual", 1), Interest("3D", 6)],
                    last_updated=days_ago(2),
                )
            ]
        )
        prefs = contexts.get_user_preferences("u1")
        assert prefs.category_scores == {"cat_art": pytest.approx(0.9)}
        assert prefs.tag_scores == {"casual": pytest.approx(0.2), "3d": pytest.approx(0.6)}
        assert prefs.dismissed == {"p_chess"}
        assert prefs.last_activity == days_ago(2)

    def test_repository_failure_returns_defaults(self, interactions, catalogue) -> None:
        repository = MagicMock()
        repository.get.side_effect = RuntimeError("db down")
        service = UserContextService(repository, interactions, catalogue, clock=clock)
        assert service.get_user_preferences("u1") == UserPreferences()

    def test_top_categories_skip_zero_scores(self) -> None:
        prefs = UserPreferences(category_scores={"a": 0.5, "b": 0.9, "c": 0.0})
        assert prefs.top_categories(5) == ["b", "a"]


class TestUserHistory:
    def test_aggregates_views(self, contexts, interactions) -> None:
        interactions.bulk_append(
            [
                _view("p_drill", days_ago(1)),
                _view("p_drill", days_ago(2)),
                _view("p_notes", days_ago(3)),
                _view("p_drill", days_ago(40)),
                _view("missing", days_ago(1) + timedelta(minutes=5)),
                _view("p_saw", days_ago(4), InteractionType.UPVOTE),
            ]
        )
        history = contexts.get_user_history("u1")
        assert history.viewed_ids == ["p_drill", "p_notes"]
        assert history.viewed_products[0].view_count == 2
        assert history.viewed_products[0].last_viewed == days_ago(1)
        assert history.upvoted_products == ["p_saw"]
        assert history.category_counts == {"cat_tools": 2, "cat_prod": 1}
        assert history.tag_counts["hardware"] == 2
        assert history.stats["total_views"] == 3
        assert history.stats["unique_products"] == 2
        assert history.stats["active_days"] == 3
        assert history.last_activity == days_ago(1) + timedelta(minutes=5)

    def test_view_patterns_by_weekday_and_hour(self, contexts, interactions) -> None:
        interactions.append(_view("p_drill", TS))
        patterns = contexts.get_user_history("u1").view_patterns
        assert patterns == {5: {12: 1}}

    def test_store_failure_yields_empty_history(self, repository, catalogue) -> None:
        broken = MagicMock()
        broken.find_for_user.side_effect = RuntimeError("down")
        service = UserContextService(repository, broken, catalogue, clock=clock)
        assert service.get_user_history("u1").viewed_products == []
