"""Blend presets: per-source weights for the hybrid merge."""

from __future__ import annotations

import logging

from productreco import constants as C
from productreco.errors import InvalidInputError
from productreco.models import Blend
from productreco.user_context import UserContext

logger = logging.getLogger(__name__)


def parse_blend(value: Blend | str | None) -> Blend:
    """Return *value* as a :class:`Blend`, defaulting to ``standard``.

    Raises:
        InvalidInputError: If *value* names no blend.
    """
    if value is None or value == "":
        return Blend.STANDARD
    try:
        return Blend(value)
    except ValueError:
        raise InvalidInputError(f"Unknown blend: {value!r}") from None


def coerce_blend(blend: Blend, authenticated: bool) -> Blend:
    """Anonymous callers cannot use the personalized blend."""
    if not authenticated and blend is Blend.PERSONALIZED:
        logger.debug("Coercing personalized blend to standard for anonymous caller.")
        return Blend.STANDARD
    return blend


def get_blend_weights(
    blend: Blend,
    authenticated: bool,
    has_strong_preferences: bool = False,
    has_recent_activity: bool = False,
    is_evening: bool = False,
) -> dict[str, float]:
    """Return the source weight table for one request.

    Args:
        blend: Requested preset.
        authenticated: Whether a user is signed in.
        has_strong_preferences: User has scores in more than two categories.
        has_recent_activity: User has at least one recent interaction.
        is_evening: Local hour is 18:00–05:59; shifts weight from trending
            to discovery on the standard blend.

    Returns:
        Source name to weight.  Sources absent from the table get
        :data:`~productreco.constants.DEFAULT_BLEND_WEIGHT` via
        :func:`weight_for`.
    """
    if not authenticated:
        table = C.ANONYMOUS_BLEND_WEIGHTS.get(blend.value)
        if table is not None:
            return dict(table)
        return {
            "trending": 0.30 if is_evening else 0.35,
            "new": 0.25,
            "discovery": 0.35 if is_evening else 0.30,
            "backup": C.ANONYMOUS_BACKUP_WEIGHT,
        }

    strong = has_strong_preferences
    recent = has_recent_activity
    if blend is Blend.DISCOVERY:
        return {
            "trending": 0.15,
            "new": 0.15,
            "personalized": 0.20 if strong else 0.15,
            "collaborative": 0.15,
            "interests": 0.15,
            "similar": 0.15 if recent else 0.10,
            "discovery": 0.15,
            "backup": C.BACKUP_WEIGHT,
        }
    if blend is Blend.TRENDING:
        return {
            "trending": 0.25,
            "new": 0.15,
            "personalized": 0.15,
            "collaborative": 0.10,
            "interests": 0.10,
            "similar": 0.10 if recent else 0.05,
            "discovery": 0.10,
            "backup": C.BACKUP_WEIGHT,
        }
    if blend is Blend.PERSONALIZED:
        return {
            "trending": 0.10,
            "new": 0.10,
            "personalized": 0.20,
            "collaborative": 0.20,
            "interests": 0.15,
            "similar": 0.15 if recent else 0.10,
            "discovery": 0.10,
            "backup": C.BACKUP_WEIGHT,
        }
    # standard (and "new", which has no authenticated preset)
    return {
        "trending": 0.15 if is_evening else 0.20,
        "new": 0.15,
        "personalized": 0.15 if strong else 0.10,
        "collaborative": 0.15,
        "interests": 0.15,
        "similar": 0.15 if recent else 0.10,
        "discovery": 0.15 if is_evening else 0.10,
        "backup": C.BACKUP_WEIGHT,
    }


def weights_for_context(blend: Blend, context: UserContext) -> dict[str, float]:
    """Derive the weight table from a built :class:`UserContext`."""
    prefs = context.preferences
    return get_blend_weights(
        blend,
        authenticated=context.is_authenticated,
        has_strong_preferences=len(prefs.category_scores) > C.STRONG_PREFERENCE_CATEGORIES,
        has_recent_activity=bool(prefs.recent_activity),
        is_evening=context.time_context.is_evening,
    )


def weight_for(weights: dict[str, float], source: str) -> float:
    return weights.get(source, C.DEFAULT_BLEND_WEIGHT)
