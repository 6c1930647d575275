"""gRPC servicer: the entry point for all inbound calls from the web backend.

Every RPC takes and returns a ``google.protobuf.Struct`` so payloads stay
JSON-shaped; :func:`build_generic_handler` registers the methods under the
``velocity.VelocityService`` service name.
"""

from __future__ import annotations

import dataclasses
import logging
import time
from typing import Any, Callable

import grpc
from google.protobuf.struct_pb2 import Struct

from velocity.engine import ActivityResult, VelocityEngine
from velocity.models import Intervention
from velocity.serialization import sample_from_dict
from velocity.storage import from_struct, to_struct

logger = logging.getLogger(__name__)

SERVICE_NAME = "velocity.VelocityService"

_RECOMMENDATION_WARN_THRESHOLD_MS = 200


class VelocityServicer:
    """Implements the ``VelocityService`` RPCs on top of a :class:`~velocity.engine.VelocityEngine`.

    Invalid arguments (``ValueError``) are reported as
    ``INVALID_ARGUMENT``; anything else is logged and reported as
    ``INTERNAL``. Either way an empty ``Struct`` is returned.

    Args:
        engine: The :class:`~velocity.engine.VelocityEngine`.
    """

    def __init__(self, engine: VelocityEngine) -> None:
        self._engine = engine

    # ------------------------------------------------------------------
    # Recording methods
    # ------------------------------------------------------------------

    def RecordActivity(self, request: Struct, context: Any) -> Struct:
        """Ingest one metrics window: ``{user_id, metrics: {...}}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            metrics = payload.get("metrics")
            if not isinstance(metrics, dict):
                raise ValueError("metrics must be an object")
            result = self._engine.record_activity(
                _user_id(payload), sample_from_dict(metrics)
            )
            return _activity_result_to_dict(result)

        return self._handle("RecordActivity", request, context, call)

    def RecordRawActivity(self, request: Struct, context: Any) -> Struct:
        """Count one raw event: ``{user_id, activity_type, clicks, keystrokes, ...}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            result = self._engine.record_raw_activity(
                _user_id(payload),
                str(payload.get("activity_type") or "activity"),
                clicks=int(payload.get("clicks", 0)),
                keystrokes=int(payload.get("keystrokes", 0)),
                mouse_moves=int(payload.get("mouse_moves", 0)),
                scrolls=int(payload.get("scrolls", 0)),
            )
            if result is None:
                return {"window_closed": False}
            return {"window_closed": True, **_activity_result_to_dict(result)}

        return self._handle("RecordRawActivity", request, context, call)

    def RecordTaskCompletion(self, request: Struct, context: Any) -> Struct:
        """Record a finished task: ``{user_id, task_id, duration, complexity?}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            if "task_id" not in payload or "duration" not in payload:
                raise ValueError("task_id and duration are required")
            complexity = payload.get("complexity")
            result = self._engine.record_task_completion(
                _user_id(payload),
                str(payload["task_id"]),
                float(payload["duration"]),
                int(complexity) if complexity is not None else None,
            )
            return _activity_result_to_dict(result)

        return self._handle("RecordTaskCompletion", request, context, call)

    def RecordError(self, request: Struct, context: Any) -> Struct:
        """Record a user error: ``{user_id, error_type}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            check = self._engine.record_error(
                _user_id(payload), str(payload.get("error_type") or "other")
            )
            return {"error_check": dataclasses.asdict(check)}

        return self._handle("RecordError", request, context, call)

    def RecordInterventionFeedback(self, request: Struct, context: Any) -> Struct:
        """Record a response: ``{user_id, type, accepted, velocity_before, velocity_after?}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            if "type" not in payload or "velocity_before" not in payload:
                raise ValueError("type and velocity_before are required")
            after = payload.get("velocity_after")
            self._engine.record_intervention_feedback(
                _user_id(payload),
                str(payload["type"]),
                bool(payload.get("accepted", False)),
                float(payload["velocity_before"]),
                float(after) if after is not None else None,
            )
            return {"success": True}

        return self._handle("RecordInterventionFeedback", request, context, call)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def GetRecommendations(self, request: Struct, context: Any) -> Struct:
        """Return velocity, ranked suggestions and a profile summary: ``{user_id, hour?}``."""
        start_ms = time.monotonic() * 1000
        payload = from_struct(request)
        try:
            hour = payload.get("hour")
            recs = self._engine.get_recommendations(
                _user_id(payload), int(hour) if hour is not None else None
            )
        except ValueError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
            return Struct()
        except Exception:
            logger.exception(
                "Unexpected error generating recommendations for user=%r",
                payload.get("user_id"),
            )
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details("Internal error generating recommendations.")
            return Struct()
        finally:
            elapsed_ms = time.monotonic() * 1000 - start_ms
            if elapsed_ms > _RECOMMENDATION_WARN_THRESHOLD_MS:
                logger.warning(
                    "GetRecommendations for user=%r took %.1fms",
                    payload.get("user_id"),
                    elapsed_ms,
                )
            else:
                logger.debug(
                    "GetRecommendations for user=%r took %.1fms",
                    payload.get("user_id"),
                    elapsed_ms,
                )

        return to_struct(
            {
                "velocity": recs.velocity,
                "confidence": recs.confidence,
                "suggestions": [intervention_to_dict(i) for i in recs.suggestions],
                "profile_summary": recs.profile_summary,
            }
        )

    def GetModelState(self, request: Struct, context: Any) -> Struct:
        """Return the serialised model and live session state: ``{user_id}``."""
        return self._handle(
            "GetModelState",
            request,
            context,
            lambda payload: self._engine.get_model_state(_user_id(payload)),
        )

    def CheckIdle(self, request: Struct, context: Any) -> Struct:
        """Return ``{idle: bool}`` for ``{user_id}``."""
        return self._handle(
            "CheckIdle",
            request,
            context,
            lambda payload: {"idle": self._engine.check_idle(_user_id(payload))},
        )

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def ResetUser(self, request: Struct, context: Any) -> Struct:
        """Discard the learned model for ``{user_id}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            self._engine.reset_user(_user_id(payload))
            return {"success": True}

        return self._handle("ResetUser", request, context, call)

    def ResetSession(self, request: Struct, context: Any) -> Struct:
        """Clear the live session histories for ``{user_id}``."""

        def call(payload: dict[str, Any]) -> dict[str, Any]:
            self._engine.reset_session(_user_id(payload))
            return {"success": True}

        return self._handle("ResetSession", request, context, call)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _handle(
        self,
        method: str,
        request: Struct,
        context: Any,
        call: Callable[[dict[str, Any]], dict[str, Any]],
    ) -> Struct:
        payload = from_struct(request)
        try:
            return to_struct(call(payload))
        except ValueError as exc:
            context.set_code(grpc.StatusCode.INVALID_ARGUMENT)
            context.set_details(str(exc))
        except Exception:
            logger.exception(
                "Error handling %s for user=%r", method, payload.get("user_id")
            )
            context.set_code(grpc.StatusCode.INTERNAL)
            context.set_details(f"Internal error handling {method}.")
        return Struct()


_METHODS = (
    "RecordActivity",
    "RecordRawActivity",
    "RecordTaskCompletion",
    "RecordError",
    "RecordInterventionFeedback",
    "GetRecommendations",
    "GetModelState",
    "CheckIdle",
    "ResetUser",
    "ResetSession",
)


def build_generic_handler(servicer: VelocityServicer) -> grpc.GenericRpcHandler:
    """Return a handler registering every servicer method as a unary Struct RPC."""
    handlers = {
        name: grpc.unary_unary_rpc_method_handler(
            getattr(servicer, name),
            request_deserializer=Struct.FromString,
            response_serializer=Struct.SerializeToString,
        )
        for name in _METHODS
    }
    return grpc.method_handlers_generic_handler(SERVICE_NAME, handlers)


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def _user_id(payload: dict[str, Any]) -> str:
    user_id = payload.get("user_id")
    if not user_id:
        raise ValueError("user_id must be non-empty")
    return str(user_id)


def intervention_to_dict(intervention: Intervention) -> dict[str, Any]:
    """Convert an :class:`~velocity.models.Intervention` into a JSON-compatible dict."""
    return {
        "type": intervention.type.value,
        "priority": intervention.priority.value,
        "message": intervention.message,
        "data": dict(intervention.data),
    }


def _activity_result_to_dict(result: ActivityResult) -> dict[str, Any]:
    return {
        "velocity": result.velocity,
        "velocity_check": dataclasses.asdict(result.drop_check),
        "error_check": dataclasses.asdict(result.error_check),
        "intervention": (
            intervention_to_dict(result.intervention) if result.intervention else None
        ),
    }
