"""Tests for the pure scoring functions."""

from __future__ import annotations

import math
import random

import pytest

from productreco import constants as C
from productreco.models import Candidate
from productreco.scoring import (
    build_time_context,
    clip_score,
    diversity_score,
    engagement_score,
    get_season,
    normalize_score,
    personalized_score,
    psychological_multiplier,
    quality_multiplier,
    quality_score,
    recency_score,
    similarity_score,
    sort_candidates,
    trending_score,
)
from tests.support import TS, days_ago, make_product


# ---------------------------------------------------------------------------
# Time context
# ---------------------------------------------------------------------------


class TestTimeContext:
    @pytest.mark.parametrize(
        "month, season",
        [(1, "winter"), (3, "spring"), (5, "spring"), (7, "summer"), (10, "fall"), (12, "winter")],
    )
    def test_get_season(self, month, season) -> None:
        assert get_season(month) == season

    def test_saturday_noon(self) -> None:
        ctx = build_time_context(TS)
        assert ctx.hour == 12
        assert ctx.weekday == 5
        assert ctx.is_weekend is True
        assert ctx.season == "summer"
        assert ctx.is_business_hours is False
        assert ctx.is_evening is False

    @pytest.mark.parametrize("hour, evening", [(17, False), (18, True), (23, True), (5, True)])
    def test_is_evening(self, hour, evening) -> None:
        assert build_time_context(TS.replace(hour=hour)).is_evening is evening


# ---------------------------------------------------------------------------
# Base scores
# ---------------------------------------------------------------------------


class TestEngagementScore:
    def test_zero_counters_score_zero(self) -> None:
        assert engagement_score(make_product("p")) == 0.0

    def test_views_use_plain_log(self) -> None:
        assert engagement_score(make_product("p", views=100)) == pytest.approx(0.6)

    def test_upvotes_use_log_one_plus(self) -> None:
        assert engagement_score(make_product("p", upvotes=9)) == pytest.approx(0.5)

    def test_more_engagement_scores_higher(self) -> None:
        low = make_product("a", views=10, upvotes=1)
        high = make_product("b", views=1000, upvotes=50, bookmarks=5, comments=5)
        assert engagement_score(high) > engagement_score(low)


class TestRecencyScore:
    def test_none_scores_zero(self) -> None:
        assert recency_score(None, TS) == 0.0

    def test_brand_new_gets_full_boost(self) -> None:
        assert recency_score(TS, TS) == pytest.approx(1.0 + C.RECENCY_BOOST)

    def test_very_old_hits_floor(self) -> None:
        assert recency_score(days_ago(1000), TS) == pytest.approx(C.RECENCY_FLOOR)

    def test_monotone_in_age(self) -> None:
        ages = [0, 1, 5, 10, 30, 90]
        scores = [recency_score(days_ago(a), TS) for a in ages]
        assert scores == sorted(scores, reverse=True)

    def test_future_dates_treated_as_now(self) -> None:
        assert recency_score(TS.replace(year=2025), TS) == recency_score(TS, TS)


class TestTrendingScore:
    def test_bounded(self) -> None:
        product = make_product("p", views=10**6, upvotes=10**5, comments=10**4, created_at=TS)
        score = trending_score(product, TS, 7, random.Random(1))
        assert 0.0 <= score <= 1.0

    def test_seeded_rng_is_reproducible(self) -> None:
        product = make_product("p", views=500, upvotes=20, created_at=days_ago(2))
        a = trending_score(product, TS, 7, random.Random(3))
        b = trending_score(product, TS, 7, random.Random(3))
        assert a == b

    def test_tracked_recent_views_need_no_rng(self) -> None:
        product = make_product("p", views=500, recent_views=200, upvotes=20)
        rng = random.Random(0)
        state = rng.getstate()
        trending_score(product, TS, 7, rng)
        assert rng.getstate() == state

    def test_fresh_product_outscores_identical_old_one(self) -> None:
        fresh = make_product("a", views=30, recent_views=15, upvotes=3, created_at=days_ago(1))
        old = make_product("b", views=30, recent_views=15, upvotes=3, created_at=days_ago(30))
        assert trending_score(fresh, TS, 7) > trending_score(old, TS, 7)

    def test_no_engagement_scores_zero(self) -> None:
        assert trending_score(make_product("p"), TS, 7, random.Random(0)) == 0.0


class TestSimilarityScore:
    def test_self_is_penalised(self) -> None:
        source = make_product("src", tags=["a", "b"], maker_id="m1")
        twin = make_product("twin", tags=["a", "b"], maker_id="m1")
        assert similarity_score(source, source, TS) < similarity_score(twin, source, TS)

    def test_shared_tags_raise_score(self) -> None:
        source = make_product("src", category_id="c1", tags=["a", "b"])
        close = make_product("x", category_id="c2", tags=["a", "b"])
        far = make_product("y", category_id="c2", tags=["z"])
        assert similarity_score(close, source, TS) > similarity_score(far, source, TS)

    def test_clipped_to_unit_interval(self) -> None:
        source = make_product("src", tags=["a"], maker_id="m")
        product = make_product("p", tags=["a"], maker_id="m", views=10**6, upvotes=10**4)
        assert similarity_score(product, source, TS, {"cat_tools": 5.0}) == 1.0

    def test_no_source_uses_base_only(self) -> None:
        product = make_product("p", views=100)
        expected = 0.6 * C.BASE_ENGAGEMENT_SHARE + recency_score(
            product.created_at, TS
        ) * C.BASE_RECENCY_SHARE
        assert similarity_score(product, None, TS) == pytest.approx(expected)


class TestPersonalizedScore:
    def test_is_not_capped_at_one(self) -> None:
        product = make_product("p", category_id="c1", tags=["a"], views=1000, upvotes=100)
        score = personalized_score(product, TS, {"c1": 5.0}, {"a": 1.0})
        assert score > 1.0

    def test_category_and_tag_beats_category_only(self) -> None:
        both = make_product("both", category_id="c1", tags=["a"])
        single = make_product("single", category_id="c1", tags=["b"])
        prefs = ({"c1": 1.0}, {"a": 1.0})
        assert personalized_score(both, TS, *prefs) > personalized_score(single, TS, *prefs)

    def test_tag_match_is_case_insensitive(self) -> None:
        product = make_product("p", category_id=None, tags=["Hardware"])
        assert personalized_score(product, TS, {}, {"hardware": 1.0}) > personalized_score(
            product, TS, {}, {}
        )

    def test_recently_viewed_penalty(self) -> None:
        product = make_product("p", category_id="c1", views=100)
        base = personalized_score(product, TS, {"c1": 1.0}, {})
        viewed = personalized_score(product, TS, {"c1": 1.0}, {}, recently_viewed=["p"])
        assert viewed == pytest.approx(base * C.RECENTLY_VIEWED_PENALTY)

    def test_inactive_user_penalty(self) -> None:
        product = make_product("p", category_id="c1")
        active = personalized_score(product, TS, {"c1": 1.0}, {}, last_activity=days_ago(1))
        stale = personalized_score(product, TS, {"c1": 1.0}, {}, last_activity=days_ago(60))
        assert stale == pytest.approx(active * C.INACTIVITY_PENALTY)


# ---------------------------------------------------------------------------
# Multipliers
# ---------------------------------------------------------------------------


class TestPsychologicalMultiplier:
    @pytest.mark.parametrize("hour", [0, 7, 8, 12, 18, 22, 23])
    @pytest.mark.parametrize("category", ["", "Tech", "Game Media", "Hobby Craft", "Business"])
    def test_within_bounds(self, hour, category) -> None:
        product = make_product("p", category_name=category)
        session = {"device_type": "mobile", "session_duration": 900, "last_action": "search"}
        ctx = build_time_context(TS.replace(hour=hour))
        value = psychological_multiplier(product, ctx, session)
        assert C.PSYCHOLOGICAL_MIN <= value <= C.PSYCHOLOGICAL_MAX

    def test_neutral_product_off_peak_weekday(self) -> None:
        # Wednesday 03:00 in winter: no rule applies.
        ctx = build_time_context(TS.replace(month=1, day=3, hour=3))
        assert psychological_multiplier(make_product("p", category_name=""), ctx) == 1.0


class TestQuality:
    def test_no_views_is_base(self) -> None:
        assert quality_score(make_product("p")) == C.QUALITY_BASE

    def test_views_without_upvotes_penalised(self) -> None:
        assert quality_score(make_product("p", views=100)) == pytest.approx(3.0)

    def test_clamped_to_max(self) -> None:
        assert quality_score(make_product("p", views=10, upvotes=100)) == C.QUALITY_MAX

    def test_multiplier_range(self) -> None:
        assert quality_multiplier(make_product("p")) == pytest.approx(0.9)
        assert quality_multiplier(make_product("p", views=10, upvotes=100)) == pytest.approx(1.0)


class TestDiversityScore:
    def test_empty_selection_is_fully_diverse(self) -> None:
        assert diversity_score(make_product("p"), []) == 1.0

    def test_duplicate_profile_is_less_diverse(self) -> None:
        a = make_product("a", category_id="c1", maker_id="m", tags=["x"])
        b = make_product("b", category_id="c1", maker_id="m", tags=["x"])
        c = make_product("c", category_id="c2", maker_id="n", tags=["y"])
        assert diversity_score(b, [a]) < diversity_score(c, [a])
        assert diversity_score(c, [a]) == pytest.approx(1.0)


# ---------------------------------------------------------------------------
# Normalisation and ordering
# ---------------------------------------------------------------------------


class TestNormalisation:
    @pytest.mark.parametrize("raw", [0.0, -3.0])
    def test_non_positive_maps_to_floor(self, raw) -> None:
        assert normalize_score(raw) == C.SCORE_FLOOR

    def test_scale_point_is_midway(self) -> None:
        assert normalize_score(C.NORMALIZE_SCALE) == pytest.approx(0.55)

    def test_monotone_and_bounded(self) -> None:
        raws = [0.01, 0.1, 1, 3, 10, 100, 1e6]
        values = [normalize_score(r) for r in raws]
        assert values == sorted(values)
        assert all(C.SCORE_FLOOR <= v <= 1.0 for v in values)

    @pytest.mark.parametrize("raw, clipped", [(2.0, 1.0), (0.0, 0.1), (0.5, 0.5)])
    def test_clip(self, raw, clipped) -> None:
        assert clip_score(raw) == clipped

    def test_finite_for_huge_inputs(self) -> None:
        assert math.isfinite(normalize_score(1e300))


class TestSortCandidates:
    def _candidate(self, pid: str, score: float) -> Candidate:
        return Candidate(make_product(pid), score, "trending")

    def test_descending_score(self) -> None:
        ordered = sort_candidates(
            [self._candidate("a", 0.2), self._candidate("b", 0.9), self._candidate("c", 0.5)]
        )
        assert [c.product_id for c in ordered] == ["b", "c", "a"]

    def test_near_ties_break_by_id(self) -> None:
        ordered = sort_candidates(
            [self._candidate("z", 0.50001), self._candidate("a", 0.5), self._candidate("m", 0.5)]
        )
        assert [c.product_id for c in ordered] == ["a", "m", "z"]
