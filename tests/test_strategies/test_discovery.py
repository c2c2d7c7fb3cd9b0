"""Tests for DiscoveryStrategy."""

from __future__ import annotations

import random
from unittest.mock import MagicMock

import pytest

from productreco.strategies.base import CandidateRequest
from productreco.strategies.discovery import DiscoveryStrategy
from tests.support import clock, make_context, make_product

SUB_REASONS = {"trending_new", "highly_rated", "serendipity"}


@pytest.fixture
def strategy(catalogue) -> DiscoveryStrategy:
    return DiscoveryStrategy(catalogue, clock=clock, rng=random.Random(5))


class TestDiscovery:
    def test_shape_of_candidates(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=6))
        assert len(result) == 6
        assert all(c.reason == "discovery" and c.score == 1.0 for c in result)
        assert {c.sub_reason for c in result} <= SUB_REASONS
        ids = [c.product_id for c in result]
        assert len(set(ids)) == len(ids)

    def test_equal_scores_ordered_by_id(self, strategy) -> None:
        ids = [c.product_id for c in strategy.candidates(CandidateRequest(limit=12))]
        assert ids == sorted(ids)

    def test_same_seed_same_result(self, catalogue) -> None:
        a = DiscoveryStrategy(catalogue, clock=clock, rng=random.Random(9))
        b = DiscoveryStrategy(catalogue, clock=clock, rng=random.Random(9))
        request = CandidateRequest(limit=5)
        assert [c.product_id for c in a.candidates(request)] == [
            c.product_id for c in b.candidates(request)
        ]

    def test_blocked_ids_excluded(self, strategy) -> None:
        request = CandidateRequest(
            limit=12, exclude_ids={"p_drill"}, context=make_context(dismissed={"p_notes"})
        )
        ids = {c.product_id for c in strategy.candidates(request)}
        assert not ids & {"p_drill", "p_notes"}

    def test_category_restriction(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=10, category_id="cat_art"))
        assert {c.product_id for c in result} == {"p_paint", "p_sketch"}

    def test_failing_sub_strategy_is_skipped(self) -> None:
        store = MagicMock()
        store.find.side_effect = RuntimeError("index down")
        store.sample.return_value = [make_product("s1"), make_product("s2")]
        strategy = DiscoveryStrategy(store, clock=clock, rng=random.Random(1))
        result = strategy.candidates(CandidateRequest(limit=5))
        assert [(c.product_id, c.sub_reason) for c in result] == [
            ("s1", "serendipity"),
            ("s2", "serendipity"),
        ]

    def test_empty_catalogue(self, empty_catalogue) -> None:
        strategy = DiscoveryStrategy(empty_catalogue, clock=clock, rng=random.Random(1))
        assert strategy.candidates(CandidateRequest(limit=5)) == []
