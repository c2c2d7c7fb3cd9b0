"""Tests for ProductQuery and ProductCatalogue."""

from __future__ import annotations

import random
from unittest.mock import MagicMock

import pytest

from productreco.catalogue import ProductCatalogue, ProductQuery
from productreco.errors import StoreError
from productreco.models import ProductStatus
from tests.support import days_ago, make_product


# ---------------------------------------------------------------------------
# ProductQuery
# ---------------------------------------------------------------------------


class TestProductQuery:
    def test_default_requires_published(self) -> None:
        draft = make_product("d", status=ProductStatus.DRAFT)
        assert not ProductQuery().matches(draft)
        assert ProductQuery(status=None).matches(draft)

    def test_category_or_tag(self) -> None:
        query = ProductQuery(category_ids={"c1"}, tags={"gadget"})
        assert query.matches(make_product("a", category_id="c1", tags=[]))
        assert query.matches(make_product("b", category_id="c2", tags=["gadget"]))
        assert not query.matches(make_product("c", category_id="c2", tags=["other"]))

    def test_tags_match_case_insensitively(self) -> None:
        query = ProductQuery(tags={"Gadget"})
        assert query.matches(make_product("a", category_id=None, tags=["GADGET"]))

    def test_exclude_and_include(self) -> None:
        product = make_product("a")
        assert not ProductQuery(exclude_ids={"a"}).matches(product)
        assert not ProductQuery(include_ids={"b"}).matches(product)
        assert ProductQuery(include_ids={"a"}).matches(product)

    def test_created_after_is_inclusive(self) -> None:
        product = make_product("a", created_at=days_ago(7))
        assert ProductQuery(created_after=days_ago(7)).matches(product)
        assert not ProductQuery(created_after=days_ago(6)).matches(product)

    def test_upvote_floors(self) -> None:
        product = make_product("a", upvotes=0, bookmarks=2)
        assert not ProductQuery(min_upvotes=1).matches(product)
        assert ProductQuery(min_upvotes_or_bookmarks=2).matches(product)

    def test_engaged_only(self) -> None:
        assert not ProductQuery(engaged_only=True).matches(make_product("a"))
        assert ProductQuery(engaged_only=True).matches(make_product("b", views=1))

    def test_published_returns_same_query_when_already_published(self) -> None:
        query = ProductQuery()
        assert query.published() is query
        assert ProductQuery(status=None).published().status is ProductStatus.PUBLISHED

    def test_excluding_accumulates(self) -> None:
        query = ProductQuery(exclude_ids={"a"}).excluding(["b"])
        assert query.exclude_ids == frozenset({"a", "b"})

    def test_cache_key_is_stable_and_discriminating(self) -> None:
        a = ProductQuery(category_ids={"c1", "c2"}, tags={"x"})
        b = ProductQuery(category_ids={"c2", "c1"}, tags={"X"})
        c = ProductQuery(category_ids={"c1"})
        assert a.cache_key() == b.cache_key()
        assert a.cache_key() != c.cache_key()


# ---------------------------------------------------------------------------
# ProductCatalogue
# ---------------------------------------------------------------------------


class TestFind:
    def test_excludes_drafts(self, catalogue) -> None:
        ids = {p.product_id for p in catalogue.find(ProductQuery())}
        assert "p_draft" not in ids
        assert len(ids) == 12

    def test_sort_descending(self, catalogue) -> None:
        results = catalogue.find(ProductQuery(), sort=("upvotes",))
        upvotes = [p.upvotes for p in results]
        assert upvotes == sorted(upvotes, reverse=True)

    def test_secondary_sort(self) -> None:
        store = ProductCatalogue()
        store.load(
            [
                make_product("a", upvotes=5, created_at=days_ago(3)),
                make_product("b", upvotes=5, created_at=days_ago(1)),
                make_product("c", upvotes=9, created_at=days_ago(9)),
            ]
        )
        ids = [p.product_id for p in store.find(ProductQuery(), sort=("upvotes", "created_at"))]
        assert ids == ["c", "b", "a"]

    def test_limit_and_offset(self, catalogue) -> None:
        everything = catalogue.find(ProductQuery(), sort=("upvotes",))
        page = catalogue.find(ProductQuery(), sort=("upvotes",), limit=3, offset=2)
        assert page == everything[2:5]

    def test_unsupported_sort_raises(self, catalogue) -> None:
        with pytest.raises(StoreError):
            catalogue.find(ProductQuery(), sort=("name",))


class TestSample:
    def test_seeded_sample_is_reproducible(self, catalogue) -> None:
        a = catalogue.sample(ProductQuery(), 4, random.Random(5))
        b = catalogue.sample(ProductQuery(), 4, random.Random(5))
        assert [p.product_id for p in a] == [p.product_id for p in b]

    def test_sample_respects_query_and_size(self, catalogue) -> None:
        picked = catalogue.sample(ProductQuery(category_ids={"cat_games"}), 10, random.Random(1))
        assert len(picked) == 3
        assert all(p.category_id == "cat_games" for p in picked)

    def test_zero_size(self, catalogue) -> None:
        assert catalogue.sample(ProductQuery(), 0, random.Random(1)) == []


class TestLookups:
    def test_get_and_get_many(self, catalogue) -> None:
        assert catalogue.get("p_drill").name == "P Drill"
        assert catalogue.get("missing") is None
        assert [p.product_id for p in catalogue.get_many(["p_saw", "nope", "p_chess"])] == [
            "p_saw",
            "p_chess",
        ]

    def test_category_stats(self, catalogue) -> None:
        stats = {s.category_id: s for s in catalogue.category_stats(ProductQuery())}
        assert stats["cat_games"].count == 3
        assert stats["cat_games"].upvote_total == 31
        assert stats["cat_art"].average_upvotes == pytest.approx(3.5)

    def test_has_category(self, catalogue) -> None:
        assert catalogue.has_category("cat_art")
        assert not catalogue.has_category("hardware")


class TestRefresh:
    def test_refresh_loads_from_loader(self) -> None:
        loader = MagicMock(return_value=[make_product("a"), make_product("b")])
        store = ProductCatalogue(loader=loader)
        store.refresh()
        assert {p.product_id for p in store.all_products()} == {"a", "b"}

    def test_failed_refresh_keeps_snapshot(self) -> None:
        loader = MagicMock(return_value=[make_product("a")])
        store = ProductCatalogue(loader=loader)
        store.refresh()
        loader.side_effect = RuntimeError("feed down")
        store.refresh()
        assert [p.product_id for p in store.all_products()] == ["a"]

    def test_refresh_without_loader_is_noop(self) -> None:
        store = ProductCatalogue()
        store.refresh()
        assert store.all_products() == []
