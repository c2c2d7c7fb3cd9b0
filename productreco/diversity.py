"""Diversifier: source-diversity floors and per-category caps for merged candidates."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Sequence

from productreco import constants as C
from productreco.models import Candidate
from productreco.scoring import sort_candidates

logger = logging.getLogger(__name__)


class Diversifier:
    """Selects a diverse, capped subset of merged candidates.

    Selection runs in four passes; the order of the returned list is the
    order items were picked in.

    ======  =============================================================
    Pass    Rule
    ======  =============================================================
    1       best item from each of the first *min_source_count* sources
    2       round-robin over sources until each holds
            ``limit // min(source_count, len(priority))`` items
    3       best leftovers by score
    4       best leftovers by score with the category cap lifted
    ======  =============================================================

    Passes 1–3 never put more than *max_per_category* items of one
    category into the result.

    Args:
        max_per_category: Category cap for passes 1–3.
        priority: Source order; sources not listed follow in first-seen
            order.
    """

    def __init__(
        self,
        max_per_category: int = C.MAX_PER_CATEGORY,
        priority: Sequence[str] = C.DIVERSITY_PRIORITY,
    ) -> None:
        self._max_per_category = max_per_category
        self._priority = tuple(priority)

    def diversify(
        self, candidates: Sequence[Candidate], limit: int, min_source_count: int
    ) -> list[Candidate]:
        """Return up to *limit* candidates from *candidates*.

        Args:
            candidates: Candidates with ``source`` set.  A product may appear
                under several sources; only its first pick is kept.
            limit: Maximum number of items to return.
            min_source_count: Number of sources guaranteed one slot each.

        Returns:
            The selected candidates in pick order.
        """
        if not candidates or limit <= 0:
            return []

        groups: dict[str, list[Candidate]] = {}
        for c in candidates:
            groups.setdefault(c.source or c.reason, []).append(c)
        for source in groups:
            groups[source] = sort_candidates(groups[source])
        sources = self._ordered_sources(groups)
        logger.debug(
            "Diversifying %d candidates from %d sources: %s",
            len(candidates),
            len(sources),
            sources,
        )

        picked: list[Candidate] = []
        picked_ids: set[str] = set()
        per_category: Counter[str] = Counter()
        per_source: Counter[str] = Counter()

        def fits(c: Candidate) -> bool:
            category = c.product.category_id
            return not category or per_category[category] < self._max_per_category

        def take(c: Candidate, source: str) -> None:
            picked.append(c)
            picked_ids.add(c.product_id)
            if c.product.category_id:
                per_category[c.product.category_id] += 1
            per_source[source] += 1

        def next_from(source: str) -> Candidate | None:
            for c in groups[source]:
                if c.product_id not in picked_ids and fits(c):
                    return c
            return None

        # Pass 1: one slot per leading source.
        for source in sources[:min_source_count]:
            if len(picked) >= limit:
                break
            c = next_from(source)
            if c is not None:
                take(c, source)

        # Pass 2: round-robin up to the per-source quota.
        quota = max(1, limit // max(1, min(len(sources), len(self._priority))))
        active = list(sources)
        while active and len(picked) < limit:
            still_active = []
            for source in active:
                if len(picked) >= limit:
                    break
                if per_source[source] >= quota:
                    continue
                c = next_from(source)
                if c is None:
                    continue
                take(c, source)
                still_active.append(source)
            active = still_active

        # Passes 3 and 4: best leftovers, capped then uncapped.
        leftovers = sort_candidates(
            c for c in candidates if c.product_id not in picked_ids
        )
        for capped in (True, False):
            for c in leftovers:
                if len(picked) >= limit:
                    break
                if c.product_id in picked_ids or (capped and not fits(c)):
                    continue
                take(c, c.source or c.reason)

        logger.debug("Diversified source distribution: %s", dict(per_source))
        return picked

    def _ordered_sources(self, groups: dict[str, list[Candidate]]) -> list[str]:
        ranked = [s for s in self._priority if s in groups]
        ranked.extend(s for s in groups if s not in self._priority)
        return ranked
