"""Tests for NewProductsStrategy."""

from __future__ import annotations

import random

import pytest

from productreco.catalogue import ProductCatalogue
from productreco.strategies.base import CandidateRequest
from productreco.strategies.fetcher import CandidateFetcher
from productreco.strategies.new import NewProductsStrategy
from tests.support import clock, days_ago, make_product


@pytest.fixture
def strategy(fetcher) -> NewProductsStrategy:
    return NewProductsStrategy(fetcher, clock=clock, rng=random.Random(2))


class TestNewProducts:
    def test_default_window_is_two_weeks(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=10))
        assert {c.product_id for c in result} == {
            "p_drill",
            "p_saw",
            "p_notes",
            "p_puzzle",
            "p_paint",
            "p_calendar",
        }
        assert all(c.reason == "new" for c in result)

    def test_scores_non_increasing_and_bounded(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=10))
        assert all(a.score >= b.score for a, b in zip(result, result[1:]))
        assert all(0.1 <= c.score <= 1.0 for c in result)

    def test_fresher_identical_product_scores_higher(self, strategy) -> None:
        fresh = make_product("a", views=10, created_at=days_ago(1))
        old = make_product("b", views=10, created_at=days_ago(12))
        assert strategy.score(fresh, 14) > strategy.score(old, 14)

    def test_widens_when_window_empty(self, cache) -> None:
        store = ProductCatalogue()
        store.load([make_product("x", created_at=days_ago(20))])
        strategy = NewProductsStrategy(CandidateFetcher(store, cache, clock), clock=clock)
        result = strategy.candidates(CandidateRequest(limit=3, days=14))
        assert [(c.product_id, c.sub_reason) for c in result] == [("x", "extended_window")]

    def test_signed_in_top_up(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=8, user_id="u1"))
        assert len(result) == 8
        assert [c.sub_reason for c in result[6:]] == ["diverse", "diverse"]

    def test_raw_score_is_kept_from_the_scorer(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=10))
        for c in result:
            assert c.raw_score == pytest.approx(strategy.score(c.product, 14))

    def test_blocked_ids(self, strategy) -> None:
        result = strategy.candidates(CandidateRequest(limit=10, exclude_ids={"p_notes"}))
        assert "p_notes" not in {c.product_id for c in result}
