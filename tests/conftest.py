"""Shared pytest fixtures for all productreco tests."""

from __future__ import annotations

import random

import pytest

from productreco.cache import CacheService, MemoryCacheBackend
from productreco.catalogue import ProductCatalogue
from productreco.interactions import InteractionLog
from productreco.models import Product, ProductStatus
from productreco.strategies.fetcher import CandidateFetcher
from productreco.user_context import UserContextService
from productreco.user_state import InMemoryPreferenceRepository, UserStateService
from tests.support import clock, days_ago, make_product


# ---------------------------------------------------------------------------
# Product fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def sample_products() -> list[Product]:
    """Twelve published products over four categories plus one draft."""
    return [
        make_product(
            "p_drill", category_id="cat_tools", category_name="Tools",
            tags=["hardware", "diy"], upvotes=40, views=900, bookmarks=12, comments=6,
            created_at=days_ago(2), maker_id="m_acme", maker_name="Acme",
        ),
        make_product(
            "p_saw", category_id="cat_tools", category_name="Tools",
            tags=["hardware"], upvotes=25, views=400, bookmarks=4, comments=2,
            created_at=days_ago(5), maker_id="m_acme", maker_name="Acme",
        ),
        make_product(
            "p_level", category_id="cat_tools", category_name="Tools",
            tags=["diy", "measure"], upvotes=8, views=120, created_at=days_ago(20),
        ),
        make_product(
            "p_hammer", category_id="cat_tools", category_name="Tools",
            tags=["hardware"], upvotes=3, views=60, created_at=days_ago(40),
        ),
        make_product(
            "p_notes", category_id="cat_prod", category_name="Productivity",
            tags=["writing", "apps"], upvotes=30, views=700, bookmarks=9, comments=3,
            created_at=days_ago(1),
        ),
        make_product(
            "p_calendar", category_id="cat_prod", category_name="Productivity",
            tags=["apps", "time"], upvotes=12, views=300, created_at=days_ago(8),
        ),
        make_product(
            "p_timer", category_id="cat_prod", category_name="Productivity",
            tags=["time"], upvotes=2, views=50, created_at=days_ago(60),
        ),
        make_product(
            "p_puzzle", category_id="cat_games", category_name="Games",
            tags=["puzzle", "casual"], upvotes=18, views=500, bookmarks=3,
            created_at=days_ago(3),
        ),
        make_product(
            "p_chess", category_id="cat_games", category_name="Games",
            tags=["strategy"], upvotes=9, views=210, created_at=days_ago(15),
        ),
        make_product(
            "p_cards", category_id="cat_games", category_name="Games",
            tags=["casual"], upvotes=4, views=90, created_at=days_ago(45),
        ),
        make_product(
            "p_paint", category_id="cat_art", category_name="Art",
            tags=["creative", "diy"], upvotes=6, views=150, created_at=days_ago(6),
        ),
        make_product(
            "p_sketch", category_id="cat_art", category_name="Art",
            tags=["creative"], upvotes=1, views=30, created_at=days_ago(25),
        ),
        make_product(
            "p_draft", category_id="cat_tools", tags=["hardware"], upvotes=99,
            views=5000, status=ProductStatus.DRAFT, created_at=days_ago(1),
        ),
    ]


@pytest.fixture
def catalogue(sample_products) -> ProductCatalogue:
    store = ProductCatalogue()
    store.load(sample_products)
    return store


@pytest.fixture
def empty_catalogue() -> ProductCatalogue:
    return ProductCatalogue()


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def backend() -> MemoryCacheBackend:
    return MemoryCacheBackend()


@pytest.fixture
def cache(backend) -> CacheService:
    return CacheService(backend, clock=clock)


@pytest.fixture
def repository() -> InMemoryPreferenceRepository:
    return InMemoryPreferenceRepository()


@pytest.fixture
def interactions() -> InteractionLog:
    return InteractionLog(clock=clock)


@pytest.fixture
def user_state(repository, catalogue, cache) -> UserStateService:
    return UserStateService(repository, catalogue, cache, clock=clock)


@pytest.fixture
def contexts(repository, interactions, catalogue) -> UserContextService:
    return UserContextService(repository, interactions, catalogue, clock=clock)


@pytest.fixture
def fetcher(catalogue, cache) -> CandidateFetcher:
    return CandidateFetcher(catalogue, cache, clock=clock)


@pytest.fixture
def rng() -> random.Random:
    return random.Random(42)
