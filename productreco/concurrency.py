"""Thread-based fan-out, single-retry fetches and fire-and-forget dispatch."""

from __future__ import annotations

import logging
import threading
import time
from concurrent import futures
from typing import Any, Callable, Mapping, TypeVar

from productreco.errors import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_DELAY_SECONDS = 0.1


class CancellationToken:
    """Caller-owned cancellation handle shared by every task of a request."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelled("Request was cancelled")


def fetch_with_retry(
    fn: Callable[[], list[T]],
    name: str,
    token: CancellationToken | None = None,
    retry_delay: float = RETRY_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
) -> list[T]:
    """Call *fn*; on failure wait *retry_delay* and try exactly once more.

    Args:
        fn: Zero-argument callable returning a list.
        name: Label used in log messages.
        token: Optional cancellation handle checked between attempts.
        retry_delay: Pause before the second attempt, in seconds.
        sleep: Sleep function, injectable for tests.

    Returns:
        The list from the first successful attempt, or ``[]`` when both
        attempts fail.

    Raises:
        OperationCancelled: If *token* fires before or between attempts.
    """
    if token is not None:
        token.raise_if_cancelled()
    try:
        return fn()
    except OperationCancelled:
        raise
    except Exception as exc:
        logger.warning("Strategy %s failed (%s); retrying once.", name, exc)
    sleep(retry_delay)
    if token is not None:
        token.raise_if_cancelled()
    try:
        return fn()
    except OperationCancelled:
        raise
    except Exception:
        logger.exception("Strategy %s failed after retry; yielding no candidates.", name)
        return []


def fan_out(
    executor: futures.Executor,
    tasks: Mapping[str, Callable[[], list[T]]],
    token: CancellationToken | None = None,
    retry_delay: float = RETRY_DELAY_SECONDS,
) -> dict[str, list[T]]:
    """Run every task concurrently, each wrapped in :func:`fetch_with_retry`.

    Waits for all tasks; one task failing never blocks or fails the others.

    Returns:
        Task name to result list, in the insertion order of *tasks*.

    Raises:
        OperationCancelled: If *token* fires while tasks are in flight.
    """
    pending = {
        name: executor.submit(fetch_with_retry, fn, name, token, retry_delay)
        for name, fn in tasks.items()
    }
    results: dict[str, list[T]] = {}
    try:
        for name, future in pending.items():
            results[name] = future.result()
    except OperationCancelled:
        for future in pending.values():
            future.cancel()
        raise
    return results


class BackgroundExecutor:
    """Bounded pool for fire-and-forget side effects.

    Submissions beyond *max_pending* queued tasks are dropped with a
    warning rather than blocking the caller.  Task failures are logged,
    never surfaced.

    Args:
        max_workers: Worker threads.
        max_pending: Maximum tasks queued or running at once.
    """

    def __init__(self, max_workers: int = 2, max_pending: int = 1000) -> None:
        self._executor = futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="background"
        )
        self._slots = threading.BoundedSemaphore(max_pending)

    def submit(self, fn: Callable[..., Any], *args: Any, description: str = "task") -> bool:
        """Schedule *fn(*args)*; returns ``False`` if the task was dropped."""
        if not self._slots.acquire(blocking=False):
            logger.warning("Background queue full; dropping %s.", description)
            return False
        try:
            future = self._executor.submit(fn, *args)
        except RuntimeError:
            self._slots.release()
            logger.warning("Background executor shut down; dropping %s.", description)
            return False
        future.add_done_callback(lambda f: self._finished(f, description))
        return True

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    def _finished(self, future: futures.Future, description: str) -> None:
        self._slots.release()
        exc = future.exception() if not future.cancelled() else None
        if exc is not None:
            logger.error("Background %s failed: %s", description, exc, exc_info=exc)
        else:
            logger.debug("Background %s completed.", description)
