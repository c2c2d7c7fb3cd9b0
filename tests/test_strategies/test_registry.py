"""Tests for the strategy registry."""

from __future__ import annotations

import random

import pytest

from productreco.errors import InvalidInputError
from productreco.models import StrategyType
from productreco.strategies.registry import StrategyRegistry, build_registry
from productreco.strategies.trending import TrendingStrategy
from tests.support import clock

CANDIDATE_SOURCES = {
    StrategyType.TRENDING,
    StrategyType.NEW,
    StrategyType.PERSONALIZED,
    StrategyType.COLLABORATIVE,
    StrategyType.INTERESTS,
    StrategyType.SIMILAR,
    StrategyType.DISCOVERY,
    StrategyType.SPOTLIGHT,
    StrategyType.SERENDIPITY,
}


@pytest.fixture
def registry(catalogue, cache, repository) -> StrategyRegistry:
    return build_registry(catalogue, cache, repository, clock=clock, rng=random.Random(1))


class TestBuildRegistry:
    def test_registers_every_candidate_source(self, registry) -> None:
        assert set(registry) == CANDIDATE_SOURCES

    def test_strategy_types_match_keys(self, registry) -> None:
        for strategy_type in registry:
            assert registry.get(strategy_type).strategy_type is strategy_type


class TestLookup:
    def test_get_by_name(self, registry) -> None:
        assert isinstance(registry.get("trending"), TrendingStrategy)

    def test_unknown_name(self, registry) -> None:
        with pytest.raises(InvalidInputError, match="Unknown strategy"):
            registry.get("bogus")

    def test_known_type_not_registered(self, registry) -> None:
        with pytest.raises(InvalidInputError, match="No candidate strategy"):
            registry.get(StrategyType.FEED)

    def test_contains(self, registry) -> None:
        assert "similar" in registry
        assert StrategyType.FEED not in registry
        assert "bogus" not in registry

    def test_empty_registry(self) -> None:
        assert list(StrategyRegistry()) == []
