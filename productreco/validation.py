"""Input validation for the inbound API.

Every helper either returns a normalised value or raises
:class:`~productreco.errors.InvalidInputError`.  Numbers may arrive as
floats (``google.protobuf.Struct`` has no integer type) or strings.
"""

from __future__ import annotations

from typing import Any, Iterable

from productreco.errors import InvalidInputError
from productreco.models import FeedbackAction, InteractionType, SortBy

MAX_LIMIT = 100
MAX_DAYS = 90


def _as_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be an integer, got {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidInputError(f"{name} must be an integer, got {value!r}")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise InvalidInputError(f"{name} must be an integer, got {value!r}") from None
    raise InvalidInputError(f"{name} must be an integer, got {value!r}")


def validate_limit(value: Any, default: int = 20) -> int:
    if value is None:
        return default
    limit = _as_int(value, "limit")
    if not 1 <= limit <= MAX_LIMIT:
        raise InvalidInputError(f"limit must be between 1 and {MAX_LIMIT}, got {limit}")
    return limit


def validate_offset(value: Any, default: int = 0) -> int:
    if value is None:
        return default
    offset = _as_int(value, "offset")
    if offset < 0:
        raise InvalidInputError(f"offset must be non-negative, got {offset}")
    return offset


def validate_days(value: Any, default: int) -> int:
    if value is None:
        return default
    days = _as_int(value, "days")
    if not 1 <= days <= MAX_DAYS:
        raise InvalidInputError(f"days must be between 1 and {MAX_DAYS}, got {days}")
    return days


def validate_id(value: Any, name: str = "id") -> str:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInputError(f"{name} must be a non-empty string")
    return value.strip()


def validate_optional_id(value: Any, name: str = "id") -> str | None:
    if value is None or value == "":
        return None
    return validate_id(value, name)


def validate_tags(value: Any) -> tuple[str, ...]:
    """Return the tags as a tuple of stripped, non-empty strings.

    Raises:
        InvalidInputError: If *value* is not a non-empty list of strings.
    """
    if isinstance(value, str) or not isinstance(value, Iterable):
        raise InvalidInputError("tags must be a list of strings")
    tags = []
    for tag in value:
        if not isinstance(tag, str) or not tag.strip():
            raise InvalidInputError(f"tags must be non-empty strings, got {tag!r}")
        tags.append(tag.strip())
    if not tags:
        raise InvalidInputError("tags must not be empty")
    return tuple(tags)


def validate_optional_tags(value: Any) -> tuple[str, ...]:
    if value is None or value == [] or value == ():
        return ()
    return validate_tags(value)


def _parse_enum(enum_cls, value: Any, name: str, default=None):
    if value is None or value == "":
        if default is None:
            raise InvalidInputError(f"{name} is required")
        return default
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidInputError(f"Unknown {name} {value!r}; expected one of: {allowed}") from None


def parse_sort(value: Any) -> SortBy:
    return _parse_enum(SortBy, value, "sortBy", SortBy.SCORE)


def parse_interaction_type(value: Any) -> InteractionType:
    return _parse_enum(InteractionType, value, "interaction type")


def parse_feedback_action(value: Any) -> FeedbackAction:
    return _parse_enum(FeedbackAction, value, "feedback action")
