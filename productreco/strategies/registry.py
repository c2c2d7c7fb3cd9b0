"""Strategy registry: maps each strategy tag to its implementation."""

from __future__ import annotations

import logging
import random
from typing import Iterator

from productreco.cache import CacheService
from productreco.catalogue import ProductStore
from productreco.errors import InvalidInputError
from productreco.models import StrategyType
from productreco.strategies.base import CandidateStrategy
from productreco.strategies.collaborative import CollaborativeStrategy
from productreco.strategies.discovery import DiscoveryStrategy
from productreco.strategies.fetcher import CandidateFetcher
from productreco.strategies.interests import InterestBasedStrategy, InterestExplorationStrategy
from productreco.strategies.new import NewProductsStrategy
from productreco.strategies.personalized import PersonalizedStrategy
from productreco.strategies.serendipity import SerendipityStrategy
from productreco.strategies.similar import SimilarToRecentStrategy
from productreco.strategies.spotlight import CategorySpotlightStrategy
from productreco.strategies.trending import TrendingStrategy
from productreco.timeutils import Clock, utcnow
from productreco.user_state import PreferenceRepository

logger = logging.getLogger(__name__)


class StrategyRegistry:
    """Lookup table from :class:`StrategyType` to :class:`CandidateStrategy`."""

    def __init__(self) -> None:
        self._strategies: dict[StrategyType, CandidateStrategy] = {}

    def register(self, strategy: CandidateStrategy) -> None:
        if strategy.strategy_type in self._strategies:
            logger.debug("Replacing strategy for %s.", strategy.strategy_type.value)
        self._strategies[strategy.strategy_type] = strategy

    def get(self, strategy_type: StrategyType | str) -> CandidateStrategy:
        """Return the strategy registered for *strategy_type*.

        Raises:
            InvalidInputError: If the name is unknown or nothing is
                registered for it.
        """
        try:
            key = StrategyType(strategy_type)
        except ValueError:
            raise InvalidInputError(f"Unknown strategy: {strategy_type!r}") from None
        strategy = self._strategies.get(key)
        if strategy is None:
            raise InvalidInputError(f"No candidate strategy registered for {key.value!r}")
        return strategy

    def __contains__(self, strategy_type: object) -> bool:
        try:
            return StrategyType(strategy_type) in self._strategies
        except ValueError:
            return False

    def __iter__(self) -> Iterator[StrategyType]:
        return iter(self._strategies)


def build_registry(
    products: ProductStore,
    cache: CacheService,
    repository: PreferenceRepository,
    clock: Clock = utcnow,
    rng: random.Random | None = None,
) -> StrategyRegistry:
    """Construct every candidate strategy with its fallbacks wired in.

    Args:
        products: Product store shared by all strategies.
        cache: Cache for scored candidate lists.
        repository: Preference profiles (collaborative filtering).
        clock: Time source.
        rng: Shared random source; seed it for reproducible output.

    Returns:
        A registry holding all nine candidate sources.
    """
    rng = rng or random.Random()
    fetcher = CandidateFetcher(products, cache, clock)

    trending = TrendingStrategy(fetcher, clock, rng)
    new = NewProductsStrategy(fetcher, clock, rng)
    discovery = DiscoveryStrategy(products, clock, rng)
    spotlight = CategorySpotlightStrategy(products, clock, rng)
    serendipity = SerendipityStrategy(products, rng)
    exploration = InterestExplorationStrategy(fetcher, fallback=trending, clock=clock)

    registry = StrategyRegistry()
    for strategy in (
        trending,
        new,
        discovery,
        spotlight,
        serendipity,
        PersonalizedStrategy(fetcher, clock),
        SimilarToRecentStrategy(products, fetcher, clock),
        CollaborativeStrategy(
            repository, fetcher, discovery, serendipity, spotlight, trending, clock
        ),
        InterestBasedStrategy(fetcher, exploration, discovery, trending, new, clock),
    ):
        registry.register(strategy)
    return registry
