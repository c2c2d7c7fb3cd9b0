"""Tests for the preference repository and UserStateService."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from productreco.errors import InvalidInputError, PreferenceWriteError
from productreco.models import (
    Interest,
    InteractionType,
    PreferenceProfile,
    RecentInteraction,
    RecommendedProduct,
)
from productreco.user_state import InMemoryPreferenceRepository, UserStateService
from tests.support import TS, clock, days_ago


# ---------------------------------------------------------------------------
# InMemoryPreferenceRepository
# ---------------------------------------------------------------------------


class TestRepository:
    def test_update_creates_profile(self, repository) -> None:
        repository.update("u1", lambda p: p.dismissed_products.add("x"))
        assert repository.get("u1").dismissed_products == {"x"}

    def test_get_returns_copy(self, repository) -> None:
        repository.update("u1", lambda p: None)
        repository.get("u1").dismissed_products.add("leak")
        assert repository.get("u1").dismissed_products == set()

    def test_missing_profile(self, repository) -> None:
        assert repository.get("ghost") is None

    def test_failed_mutator_leaves_state_untouched(self, repository) -> None:
        repository.update("u1", lambda p: p.dismissed_products.add("x"))

        def boom(profile: PreferenceProfile) -> None:
            profile.dismissed_products.add("y")
            raise RuntimeError("nope")

        with pytest.raises(PreferenceWriteError):
            repository.update("u1", boom)
        assert repository.get("u1").dismissed_products == {"x"}

    def test_list_profiles_sorted_and_filtered(self, repository) -> None:
        repository.load([PreferenceProfile(user_id=uid) for uid in ("c", "a", "b")])
        assert [p.user_id for p in repository.list_profiles()] == ["a", "b", "c"]
        assert [p.user_id for p in repository.list_profiles("a", limit=1)] == ["b"]

    def test_persist_all_hands_snapshot_to_persister(self) -> None:
        persister = MagicMock()
        repo = InMemoryPreferenceRepository(persister=persister)
        repo.update("u1", lambda p: None)
        repo.persist_all()
        (snapshot,), _ = persister.call_args
        assert [p.user_id for p in snapshot] == ["u1"]

    def test_persist_failure_is_logged_not_raised(self) -> None:
        repo = InMemoryPreferenceRepository(persister=MagicMock(side_effect=OSError("disk")))
        repo.update("u1", lambda p: None)
        repo.persist_all()

    def test_persist_loop_skipped_without_persister(self) -> None:
        repo = InMemoryPreferenceRepository()
        repo.start_persist_loop(1)
        assert repo._persist_thread is None

    def test_persist_loop_started_once(self) -> None:
        repo = InMemoryPreferenceRepository(persister=MagicMock())
        repo.start_persist_loop(3600)
        thread = repo._persist_thread
        assert thread is not None and thread.is_alive()
        assert thread.daemon
        repo.start_persist_loop(3600)
        assert repo._persist_thread is thread


# ---------------------------------------------------------------------------
# UserStateService
# ---------------------------------------------------------------------------


class TestUpdateAfterInteraction:
    def test_upvote_seeds_category_and_tags(self, user_state, repository) -> None:
        assert user_state.update_after_interaction("u1", "p_drill", InteractionType.UPVOTE)
        profile = repository.get("u1")
        assert profile.categories["cat_tools"].score == pytest.approx(0.8)
        assert profile.tags["hardware"].score == pytest.approx(0.8)
        assert profile.tags["diy"].score == pytest.approx(0.8)
        assert profile.counters.upvotes == 1
        assert profile.last_updated == TS

    def test_scores_accumulate(self, user_state, repository) -> None:
        user_state.update_after_interaction("u1", "p_drill", InteractionType.UPVOTE)
        user_state.update_after_interaction("u1", "p_drill", InteractionType.VIEW)
        entry = repository.get("u1").categories["cat_tools"]
        assert entry.score == pytest.approx(1.0)
        assert entry.interaction_count == 2

    def test_negative_first_touch_starts_at_minimum(self, user_state, repository) -> None:
        user_state.update_after_interaction("u1", "p_saw", InteractionType.DISMISS)
        profile = repository.get("u1")
        assert profile.categories["cat_tools"].score == pytest.approx(0.1)
        assert "p_saw" in profile.dismissed_products

    def test_scores_never_negative(self, user_state, repository) -> None:
        user_state.update_after_interaction("u1", "p_saw", InteractionType.VIEW)
        user_state.update_after_interaction("u1", "p_saw", InteractionType.REMOVE_UPVOTE)
        assert repository.get("u1").categories["cat_tools"].score == 0.0
        assert repository.get("u1").counters.upvotes == 0

    def test_explicit_weight_overrides_type(self, user_state, repository) -> None:
        user_state.update_after_interaction(
            "u1", "p_notes", InteractionType.FEEDBACK, weight=0.4
        )
        assert repository.get("u1").categories["cat_prod"].score == pytest.approx(0.4)

    def test_recent_interactions_newest_first(self, user_state, repository) -> None:
        user_state.update_after_interaction("u1", "p_drill", InteractionType.VIEW)
        user_state.update_after_interaction(
            "u1", "p_saw", InteractionType.CLICK, metadata={"source": "feed"}
        )
        recent = repository.get("u1").recent_interactions
        assert [r.product_id for r in recent] == ["p_saw", "p_drill"]
        assert recent[0].metadata == {"source": "feed"}

    def test_unknown_product_is_skipped(self, user_state, repository) -> None:
        assert user_state.update_after_interaction("u1", "nope", InteractionType.VIEW) is False
        assert repository.get("u1") is None

    @pytest.mark.parametrize("user_id, product_id", [("", "p_drill"), ("u1", "")])
    def test_empty_ids_rejected(self, user_state, user_id, product_id) -> None:
        with pytest.raises(InvalidInputError):
            user_state.update_after_interaction(user_id, product_id, InteractionType.VIEW)

    def test_write_failure_returns_false(self, catalogue, cache) -> None:
        repository = MagicMock()
        repository.update.side_effect = PreferenceWriteError("down")
        service = UserStateService(repository, catalogue, cache, clock=clock)
        assert service.update_after_interaction("u1", "p_drill", InteractionType.VIEW) is False

    def test_invalidates_user_cache(self, user_state, cache, backend) -> None:
        cache.set("hybrid:auth:u1:abc", [1], 600)
        cache.set("hybrid:auth:u2:abc", [1], 600)
        user_state.update_after_interaction("u1", "p_drill", InteractionType.VIEW)
        assert backend.keys() == ["hybrid:auth:u2:abc"]


class TestUpdateFromInterests:
    def test_category_and_tag_interests(self, user_state, repository) -> None:
        user_state.update_from_interests(
            "u1", [Interest("cat_games", 8), Interest("Retro", 5)]
        )
        profile = repository.get("u1")
        assert profile.categories["cat_games"].score == pytest.approx(0.8)
        assert profile.tags["retro"].score == pytest.approx(0.5)
        assert [i.name for i in profile.interests] == ["cat_games", "Retro"]

    def test_max_rule_keeps_higher_score(self, user_state, repository) -> None:
        user_state.update_after_interaction("u1", "p_drill", InteractionType.UPVOTE)
        user_state.update_from_interests("u1", [Interest("hardware", 3)])
        assert repository.get("u1").tags["hardware"].score == pytest.approx(0.8)

    def test_empty_is_noop(self, user_state, repository) -> None:
        assert user_state.update_from_interests("u1", []) is True
        assert repository.get("u1") is None

    def test_redeclared_interest_replaces_entry(self, user_state, repository) -> None:
        user_state.update_from_interests("u1", [Interest("retro", 2)])
        user_state.update_from_interests("u1", [Interest("retro", 9)])
        profile = repository.get("u1")
        assert [(i.name, i.strength) for i in profile.interests] == [("retro", 9)]
        assert profile.tags["retro"].score == pytest.approx(0.9)


class TestOtherWrites:
    def test_add_dismissed_reports_novelty(self, user_state) -> None:
        assert user_state.add_dismissed("u1", "p_drill") is True
        assert user_state.add_dismissed("u1", "p_drill") is False

    def test_set_recommended_products(self, user_state, repository) -> None:
        items = [RecommendedProduct(f"p{i}", 0.5, "trending", "", TS) for i in range(60)]
        user_state.set_recommended_products("u1", items)
        assert len(repository.get("u1").recommended_products) == 50

    def test_trim_recent_interactions(self, user_state, repository) -> None:
        def seed(profile: PreferenceProfile) -> None:
            profile.recent_interactions = [
                RecentInteraction("new", InteractionType.VIEW, days_ago(1)),
                RecentInteraction("old", InteractionType.VIEW, TS - timedelta(days=31)),
            ]

        repository.update("u1", seed)
        user_state.trim_recent_interactions("u1")
        assert [r.product_id for r in repository.get("u1").recent_interactions] == ["new"]
