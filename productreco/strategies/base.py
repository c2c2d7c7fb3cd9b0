"""Abstract base class for all candidate strategies."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from productreco.concurrency import CancellationToken
from productreco.models import Candidate, StrategyType
from productreco.user_context import UserContext


@dataclass
class CandidateRequest:
    """Inputs shared by every strategy call.

    Attributes:
        limit: Number of candidates wanted.
        user_id: Requesting user, ``None`` for anonymous callers.
        days: Time window for windowed strategies; each strategy has its
            own default.
        category_id: Optional category restriction.
        exclude_ids: Product ids that must not be returned.
        context: The caller's :class:`UserContext`, when one was built.
        token: Cancellation handle of the enclosing request.
    """

    limit: int
    user_id: str | None = None
    days: int | None = None
    category_id: str | None = None
    exclude_ids: frozenset[str] = field(default_factory=frozenset)
    context: UserContext | None = None
    token: CancellationToken | None = None

    def __post_init__(self) -> None:
        self.exclude_ids = frozenset(self.exclude_ids)

    @property
    def dismissed(self) -> frozenset[str]:
        if self.context is None:
            return frozenset()
        return frozenset(self.context.preferences.dismissed)

    @property
    def blocked_ids(self) -> frozenset[str]:
        """Ids excluded explicitly or dismissed by the user."""
        return self.exclude_ids | self.dismissed


class CandidateStrategy(ABC):
    """One candidate source.

    Implementations return scored :class:`~productreco.models.Candidate`
    records tagged with their strategy reason, best first.  They should
    never return products in ``request.blocked_ids``.
    """

    strategy_type: StrategyType

    @abstractmethod
    def candidates(self, request: CandidateRequest) -> list[Candidate]:
        """Return up to ``request.limit`` candidates, best first.

        Args:
            request: Shared request parameters.

        Returns:
            Scored candidates with scores in [0, 1].
        """
