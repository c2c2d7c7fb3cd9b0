"""Product catalogue: the read-only product store the engine queries."""

from __future__ import annotations

import hashlib
import json
import logging
import random
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Callable, Iterable, Sequence

from productreco.errors import StoreError
from productreco.models import CategoryStats, Product, ProductStatus
from productreco.timeutils import ensure_utc, to_iso

logger = logging.getLogger(__name__)

ProductLoader = Callable[[], Iterable[Product]]

_SORT_FIELDS = {"upvotes", "views", "bookmarks", "comments", "created_at"}


@dataclass(frozen=True)
class ProductQuery:
    """Immutable predicate over products.

    ``category_ids`` and ``tags`` form a single OR-filter: when either is
    non-empty a product must match at least one category or one tag.
    Tag comparison is case-insensitive.

    Attributes:
        status: Required lifecycle state, ``None`` for any.
        created_after: Inclusive lower bound on ``created_at``.
        category_ids: Category ids of the OR-filter.
        tags: Tags of the OR-filter (stored lowercased).
        include_ids: If set, only these product ids may match.
        exclude_ids: Product ids that never match.
        maker_id: Required maker.
        min_upvotes: Inclusive upvote floor.
        min_upvotes_or_bookmarks: Floor satisfied by either counter.
        engaged_only: Require at least one upvote, bookmark or view.
    """

    status: ProductStatus | None = ProductStatus.PUBLISHED
    created_after: datetime | None = None
    category_ids: frozenset[str] = field(default_factory=frozenset)
    tags: frozenset[str] = field(default_factory=frozenset)
    include_ids: frozenset[str] | None = None
    exclude_ids: frozenset[str] = field(default_factory=frozenset)
    maker_id: str | None = None
    min_upvotes: int | None = None
    min_upvotes_or_bookmarks: int | None = None
    engaged_only: bool = False

    def __post_init__(self) -> None:
        object.__setattr__(self, "category_ids", frozenset(self.category_ids))
        object.__setattr__(self, "tags", frozenset(t.lower() for t in self.tags))
        object.__setattr__(self, "exclude_ids", frozenset(self.exclude_ids))
        if self.include_ids is not None:
            object.__setattr__(self, "include_ids", frozenset(self.include_ids))
        if self.created_after is not None:
            object.__setattr__(self, "created_after", ensure_utc(self.created_after))

    def published(self) -> ProductQuery:
        """Return a copy restricted to published products."""
        if self.status is ProductStatus.PUBLISHED:
            return self
        return replace(self, status=ProductStatus.PUBLISHED)

    def excluding(self, ids: Iterable[str]) -> ProductQuery:
        return replace(self, exclude_ids=self.exclude_ids | frozenset(ids))

    def matches(self, product: Product) -> bool:
        if self.status is not None and product.status is not self.status:
            return False
        if product.product_id in self.exclude_ids:
            return False
        if self.include_ids is not None and product.product_id not in self.include_ids:
            return False
        if self.created_after is not None and ensure_utc(product.created_at) < self.created_after:
            return False
        if self.maker_id is not None and product.maker_id != self.maker_id:
            return False
        if self.min_upvotes is not None and product.upvotes < self.min_upvotes:
            return False
        if self.min_upvotes_or_bookmarks is not None and not (
            product.upvotes >= self.min_upvotes_or_bookmarks
            or product.bookmarks >= self.min_upvotes_or_bookmarks
        ):
            return False
        if self.engaged_only and not (
            product.upvotes > 0 or product.bookmarks > 0 or product.views > 0
        ):
            return False
        if self.category_ids or self.tags:
            in_category = product.category_id in self.category_ids
            if not in_category and not (product.lowercase_tags & self.tags):
                return False
        return True

    def cache_key(self) -> str:
        """Return a short stable digest of this query."""
        payload = {
            "status": self.status.value if self.status else None,
            "created_after": to_iso(self.created_after),
            "category_ids": sorted(self.category_ids),
            "tags": sorted(self.tags),
            "include_ids": sorted(self.include_ids) if self.include_ids is not None else None,
            "exclude_ids": sorted(self.exclude_ids),
            "maker_id": self.maker_id,
            "min_upvotes": self.min_upvotes,
            "min_upvotes_or_bookmarks": self.min_upvotes_or_bookmarks,
            "engaged_only": self.engaged_only,
        }
        raw = json.dumps(payload, sort_keys=True).encode("utf-8")
        return hashlib.sha1(raw).hexdigest()[:16]


class ProductStore(ABC):
    """Read-only product projection API used by every strategy."""

    @abstractmethod
    def find(
        self,
        query: ProductQuery,
        sort: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Product]:
        """Return products matching *query*.

        Args:
            query: Predicate to apply.
            sort: Field names sorted descending in priority order; product
                id ascending always breaks remaining ties.
            limit: Maximum number of products, ``None`` for all.
            offset: Number of leading matches to skip.
        """

    @abstractmethod
    def sample(self, query: ProductQuery, size: int, rng: random.Random) -> list[Product]:
        """Return up to *size* matching products chosen uniformly at random."""

    @abstractmethod
    def get(self, product_id: str) -> Product | None: ...

    @abstractmethod
    def get_many(self, product_ids: Iterable[str]) -> list[Product]:
        """Return the products that exist, in the order of *product_ids*."""

    @abstractmethod
    def category_stats(self, query: ProductQuery) -> list[CategoryStats]: ...

    @abstractmethod
    def has_category(self, category_id: str) -> bool: ...


class ProductCatalogue(ProductStore):
    """In-memory :class:`ProductStore` kept fresh from a loader callable.

    The catalogue is loaded on the first :meth:`refresh` call, then kept
    fresh by a background daemon thread that calls :meth:`refresh` every
    *refresh_interval_seconds*.  All public methods are thread-safe.

    Args:
        loader: Callable returning the full product set.  ``None`` means
            the catalogue is populated through :meth:`load` only.
        refresh_interval_seconds: How often the background thread
            refreshes.  Defaults to 300 (5 minutes).
    """

    def __init__(
        self,
        loader: ProductLoader | None = None,
        refresh_interval_seconds: int = 300,
    ) -> None:
        self._loader = loader
        self._refresh_interval = refresh_interval_seconds
        self._lock = threading.RLock()
        self._products: dict[str, Product] = {}
        self._refresh_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def load(self, products: Iterable[Product]) -> None:
        """Replace the snapshot with *products*."""
        snapshot = {p.product_id: p for p in products}
        with self._lock:
            self._products = snapshot

    def upsert(self, product: Product) -> None:
        with self._lock:
            self._products[product.product_id] = product

    def refresh(self) -> None:
        """Reload the snapshot from the loader.

        On failure, logs an error and keeps the existing snapshot so the
        service can continue running.
        """
        if self._loader is None:
            return
        try:
            products = list(self._loader())
        except Exception:
            logger.exception(
                "Failed to refresh product catalogue; keeping existing %d products.",
                len(self._products),
            )
            return
        self.load(products)
        logger.info("Product catalogue refreshed: %d products loaded.", len(products))

    def start_refresh_loop(self) -> None:
        """Start the background refresh thread.

        Safe to call multiple times; only one refresh thread is started.
        """
        if self._refresh_thread is not None and self._refresh_thread.is_alive():
            return
        self._refresh_thread = threading.Thread(
            target=self._refresh_loop,
            name="catalogue-refresh",
            daemon=True,
        )
        self._refresh_thread.start()
        logger.debug("Catalogue refresh loop started (interval=%ds).", self._refresh_interval)

    def all_products(self) -> list[Product]:
        with self._lock:
            return list(self._products.values())

    # ------------------------------------------------------------------
    # ProductStore
    # ------------------------------------------------------------------

    def find(
        self,
        query: ProductQuery,
        sort: Sequence[str] = (),
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Product]:
        for name in sort:
            if name not in _SORT_FIELDS:
                raise StoreError(f"Unsupported sort field {name!r}")
        matches = self._matching(query)
        matches.sort(key=lambda p: p.product_id)
        for name in reversed(sort):
            matches.sort(key=lambda p, n=name: _sort_value(p, n), reverse=True)
        end = None if limit is None else offset + limit
        return matches[offset:end]

    def sample(self, query: ProductQuery, size: int, rng: random.Random) -> list[Product]:
        matches = sorted(self._matching(query), key=lambda p: p.product_id)
        if size <= 0 or not matches:
            return []
        return rng.sample(matches, min(size, len(matches)))

    def get(self, product_id: str) -> Product | None:
        with self._lock:
            return self._products.get(product_id)

    def get_many(self, product_ids: Iterable[str]) -> list[Product]:
        with self._lock:
            return [self._products[pid] for pid in product_ids if pid in self._products]

    def category_stats(self, query: ProductQuery) -> list[CategoryStats]:
        stats: dict[str, CategoryStats] = {}
        for product in self._matching(query):
            if not product.category_id:
                continue
            entry = stats.get(product.category_id)
            if entry is None:
                entry = stats[product.category_id] = CategoryStats(
                    product.category_id, product.category_name, 0, 0
                )
            entry.count += 1
            entry.upvote_total += product.upvotes
        return sorted(stats.values(), key=lambda s: s.category_id)

    def has_category(self, category_id: str) -> bool:
        with self._lock:
            return any(p.category_id == category_id for p in self._products.values())

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _matching(self, query: ProductQuery) -> list[Product]:
        with self._lock:
            products = list(self._products.values())
        return [p for p in products if query.matches(p)]

    def _refresh_loop(self) -> None:
        """Periodically refresh the catalogue. Runs in a daemon thread."""
        while True:
            time.sleep(self._refresh_interval)
            self.refresh()


def _sort_value(product: Product, name: str) -> float:
    if name == "created_at":
        return ensure_utc(product.created_at).timestamp()
    return getattr(product, name)
