"""Exception hierarchy shared by every productreco module."""

from __future__ import annotations


class RecommendationError(Exception):
    """Root of all errors raised by the recommendation engine."""


class InvalidInputError(RecommendationError, ValueError):
    """Caller supplied a malformed id, tag list, strategy name or page window.

    Subclasses :class:`ValueError` so callers that already guard against
    ``ValueError`` keep working.
    """


class MissingError(RecommendationError, LookupError):
    """A product, category or user referenced by a request does not exist."""


class StoreError(RecommendationError):
    """A backing store failed to answer a read or write."""


class StoreTransientError(StoreError):
    """A store failure that is expected to succeed on retry."""


class StoreFatalError(StoreError):
    """A store failure that will not recover on retry."""


class CacheUnavailableError(RecommendationError):
    """The cache backend cannot be reached.

    Never propagates out of :class:`~productreco.cache.CacheService`.
    """


class PreferenceWriteError(RecommendationError):
    """Persisting a preference profile update failed."""


class OperationCancelled(RecommendationError):
    """The caller's cancellation handle fired while work was in flight."""
