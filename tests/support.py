"""Plain test helpers shared by the test modules and conftest."""

from __future__ import annotations

from concurrent import futures
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from productreco.models import Product
from productreco.scoring import TimeContext, build_time_context
from productreco.user_context import UserContext, UserHistory, UserPreferences, ViewedProduct

# A Saturday at noon; fixed so time-of-day multipliers are deterministic.
TS = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def clock() -> datetime:
    return TS


def days_ago(days: float) -> datetime:
    return TS - timedelta(days=days)


def make_product(product_id: str, **kwargs) -> Product:
    """Return a published product with sensible defaults."""
    values = {
        "name": product_id.replace("_", " ").title(),
        "created_at": days_ago(10),
        "category_id": "cat_tools",
        "category_name": "Tools",
    }
    values.update(kwargs)
    return Product(product_id=product_id, **values)


def make_context(
    user_id: str | None = "u1",
    category_scores: dict[str, float] | None = None,
    tag_scores: dict[str, float] | None = None,
    dismissed: set[str] | None = None,
    viewed: list[str] | None = None,
    upvoted: list[str] | None = None,
    time_context: TimeContext | None = None,
) -> UserContext:
    """Build a :class:`UserContext` directly, bypassing the stores."""
    return UserContext(
        user_id=user_id,
        preferences=UserPreferences(
            category_scores=dict(category_scores or {}),
            tag_scores=dict(tag_scores or {}),
            dismissed=set(dismissed or ()),
        ),
        history=UserHistory(
            viewed_products=[ViewedProduct(pid, TS, 1) for pid in viewed or []],
            upvoted_products=list(upvoted or []),
        ),
        time_context=time_context or build_time_context(TS),
    )


def make_grpc_context() -> MagicMock:
    """Return a mock gRPC servicer context."""
    ctx = MagicMock()
    ctx.set_code = MagicMock()
    ctx.set_details = MagicMock()
    ctx.add_callback = MagicMock(return_value=True)
    return ctx


class SyncExecutor(futures.Executor):
    """Runs submitted callables inline so tests stay deterministic."""

    def submit(self, fn, *args, **kwargs):
        future: futures.Future = futures.Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except BaseException as exc:
            future.set_exception(exc)
        return future


class InlineBackground:
    """Stand-in for BackgroundExecutor that runs tasks immediately."""

    def __init__(self) -> None:
        self.descriptions: list[str] = []

    def submit(self, fn, *args, description: str = "task") -> bool:
        self.descriptions.append(description)
        fn(*args)
        return True

    def shutdown(self, wait: bool = True) -> None:
        pass
