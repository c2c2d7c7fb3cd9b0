"""gRPC servicer: the entry point for all inbound recommendation calls.

The service is registered as a generic handler named
``productreco.Recommender``.  Every RPC takes and returns a
``google.protobuf.Struct``, so clients need no generated stubs: they send
JSON-shaped parameters and receive the JSON-shaped result.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable

import grpc
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

from productreco.blend import parse_blend
from productreco.concurrency import CancellationToken
from productreco.engine import HybridRecommendationEngine, HybridRequest
from productreco.errors import InvalidInputError, MissingError, OperationCancelled
from productreco.ingestion import InteractionIngestionService
from productreco.models import Interest
from productreco.strategy_service import StrategyRecommendationService
from productreco.validation import (
    parse_feedback_action,
    parse_interaction_type,
    parse_sort,
    validate_id,
    validate_limit,
    validate_offset,
    validate_optional_id,
    validate_optional_tags,
)

logger = logging.getLogger(__name__)

SERVICE_NAME = "productreco.Recommender"
RPC_METHODS = (
    "GetHybrid",
    "GetStrategy",
    "RecordInteraction",
    "Dismiss",
    "ProcessFeedback",
    "Regenerate",
    "UpdateInterests",
)

# Parameters GetStrategy forwards to the single-strategy entry points.
_STRATEGY_PARAMS = (
    "user_id",
    "limit",
    "offset",
    "days",
    "category_id",
    "product_id",
    "maker_id",
    "tags",
    "blend",
)


class RecommenderServicer:
    """Implements the ``productreco.Recommender`` service.

    Args:
        engine: The :class:`~productreco.engine.HybridRecommendationEngine`.
        strategies: Single-strategy entry points.
        ingestion: Interaction write path.
        warn_threshold_ms: ``GetHybrid`` calls slower than this log a
            warning.
    """

    def __init__(
        self,
        engine: HybridRecommendationEngine,
        strategies: StrategyRecommendationService,
        ingestion: InteractionIngestionService,
        warn_threshold_ms: float = 450,
    ) -> None:
        self._engine = engine
        self._strategies = strategies
        self._ingestion = ingestion
        self._warn_threshold_ms = warn_threshold_ms

    # ------------------------------------------------------------------
    # Recommendation requests
    # ------------------------------------------------------------------

    def GetHybrid(self, request: Struct, context: Any) -> Struct:
        """Return one page of blended recommendations.

        Request fields: ``user_id``, ``limit``, ``offset``, ``blend``,
        ``category_id``, ``tags``, ``sort_by``, ``force_refresh`` and a
        ``session`` object (``session_id``, ``device_type``,
        ``user_agent``).  All are optional.
        """
        params = _to_dict(request)
        start_ms = time.monotonic() * 1000
        try:
            return self._call(
                "GetHybrid",
                context,
                lambda: self._engine.get_hybrid(
                    self._hybrid_request(params, _token_for(context))
                ).to_dict(),
            )
        finally:
            elapsed_ms = time.monotonic() * 1000 - start_ms
            if elapsed_ms > self._warn_threshold_ms:
                logger.warning(
                    "GetHybrid for user=%r took %.1fms (threshold: %.0fms)",
                    params.get("user_id"),
                    elapsed_ms,
                    self._warn_threshold_ms,
                )
            else:
                logger.debug(
                    "GetHybrid for user=%r took %.1fms", params.get("user_id"), elapsed_ms
                )

    def GetStrategy(self, request: Struct, context: Any) -> Struct:
        """Run one named strategy (``strategy`` field) with the given parameters."""
        params = _to_dict(request)

        def run() -> dict[str, Any]:
            name = validate_id(params.get("strategy"), "strategy")
            kwargs = {k: params[k] for k in _STRATEGY_PARAMS if params.get(k) is not None}
            kwargs["token"] = _token_for(context)
            return self._strategies.recommend_for_strategy(name, **kwargs).to_dict()

        return self._call("GetStrategy", context, run)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def RecordInteraction(self, request: Struct, context: Any) -> Struct:
        params = _to_dict(request)
        return self._call(
            "RecordInteraction",
            context,
            lambda: self._ingestion.record_interaction(
                params.get("user_id"),
                params.get("product_id"),
                parse_interaction_type(params.get("interaction_type")),
                metadata=params.get("metadata") or {},
                recommendation_type=params.get("recommendation_type"),
                position=_optional_offset(params.get("position")),
                score=params.get("score"),
                reason=params.get("reason"),
            ),
        )

    def Dismiss(self, request: Struct, context: Any) -> Struct:
        params = _to_dict(request)
        return self._call(
            "Dismiss",
            context,
            lambda: self._ingestion.dismiss(
                params.get("user_id"),
                params.get("product_id"),
                reason=params.get("reason"),
                source=params.get("source"),
            ),
        )

    def ProcessFeedback(self, request: Struct, context: Any) -> Struct:
        params = _to_dict(request)
        return self._call(
            "ProcessFeedback",
            context,
            lambda: self._ingestion.process_feedback(
                params.get("user_id"),
                params.get("product_id"),
                parse_feedback_action(params.get("action")),
                source=params.get("source"),
            ),
        )

    def Regenerate(self, request: Struct, context: Any) -> Struct:
        params = _to_dict(request)
        return self._call(
            "Regenerate", context, lambda: self._ingestion.regenerate(params.get("user_id"))
        )

    def UpdateInterests(self, request: Struct, context: Any) -> Struct:
        params = _to_dict(request)

        def run() -> dict[str, Any]:
            interests = _parse_interests(params.get("interests"))
            updated = self._ingestion.update_interests(params.get("user_id"), interests)
            return {"updated": updated, "count": len(interests)}

        return self._call("UpdateInterests", context, run)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _call(self, method: str, context: Any, fn: Callable[[], dict[str, Any]]) -> Struct:
        try:
            return _to_struct(fn())
        except ValueError as exc:
            # InvalidInputError is a ValueError
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
        except MissingError as exc:
            context.set_code(grpc.StatusCode.NOT_FOUND)
            context.set_details(str(exc))
        except OperationCancelled:
            logger.info("%s cancelled by the caller.", method)
            context.set_code(grpc.StatusCode.CANCELLED)
            context.set_details("Request was cancelled.")
        except Exception:
            logger.exception("Unexpected error in %s", method)
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details(f"Internal error in {method}.")
        return Struct()

    @staticmethod
    def _hybrid_request(params: dict[str, Any], token: CancellationToken) -> HybridRequest:
        session = params.get("session") or {}
        if not isinstance(session, dict):
            raise InvalidInputError("session must be an object")
        return HybridRequest(
            user_id=validate_optional_id(params.get("user_id"), "user_id"),
            limit=validate_limit(params.get("limit")),
            offset=validate_offset(params.get("offset")),
            blend=parse_blend(params.get("blend")),
            category_id=validate_optional_id(params.get("category_id"), "category_id"),
            tags=validate_optional_tags(params.get("tags")),
            sort_by=parse_sort(params.get("sort_by")),
            force_refresh=bool(params.get("force_refresh", False)),
            session=session,
            token=token,
        )


def add_recommender_to_server(servicer: RecommenderServicer, server: grpc.Server) -> None:
    """Register *servicer* on *server* under :data:`SERVICE_NAME`."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=Struct.FromString,
            response_serializer=Struct.SerializeToString,
        )
        for name in RPC_METHODS
    }
    server.add_generic_rpc_handlers(
        (grpc.method_handlers_generic_handler(SERVICE_NAME, handlers),)
    )


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def _to_dict(message: Struct) -> dict[str, Any]:
    return json_format.MessageToDict(message)


def _to_struct(data: dict[str, Any]) -> Struct:
    return json_format.ParseDict(data, Struct())


def _token_for(context: Any) -> CancellationToken:
    """Return a token that fires when the client cancels the RPC."""
    token = CancellationToken()
    context.add_callback(token.cancel)
    return token


def _optional_offset(value: Any) -> int | None:
    return None if value is None else validate_offset(value)


def _parse_interests(value: Any) -> list[Interest]:
    """Parse ``[{"name": str, "strength": 0-10}, ...]``.

    Raises:
        InvalidInputError: On a malformed entry.
    """
    if value is None:
        return []
    if not isinstance(value, list):
        raise InvalidInputError("interests must be a list")
    interests = []
    for entry in value:
        if not isinstance(entry, dict):
            raise InvalidInputError(f"Malformed interest {entry!r}")
        name = validate_id(entry.get("name"), "interest name")
        strength = entry.get("strength", 5)
        if isinstance(strength, bool) or not isinstance(strength, (int, float)):
            raise InvalidInputError(f"Interest strength must be a number, got {strength!r}")
        if not 0 <= strength <= 10:
            raise InvalidInputError(f"Interest strength must be within 0-10, got {strength}")
        interests.append(Interest(name=name, strength=float(strength)))
    return interests
