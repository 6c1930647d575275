"""Tests for VelocityServicer (gRPC service layer)."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import grpc
import pytest
from google.protobuf.struct_pb2 import Struct

from velocity.engine import VelocityEngine
from velocity.service import SERVICE_NAME, VelocityServicer, build_generic_handler
from velocity.storage import InMemoryModelStorage, from_struct, to_struct
from velocity.user_state import UserStateStore


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_context() -> MagicMock:
    """Return a mock gRPC context."""
    ctx = MagicMock()
    ctx.set_code = MagicMock()
    ctx.set_details = MagicMock()
    return ctx


def _make_servicer(clock) -> VelocityServicer:
    store = UserStateStore(InMemoryModelStorage(), clock=clock)
    return VelocityServicer(engine=VelocityEngine(store, clock=clock))


def _mock_servicer(**engine_behaviour) -> VelocityServicer:
    engine = MagicMock()
    for name, side_effect in engine_behaviour.items():
        getattr(engine, name).side_effect = side_effect
    return VelocityServicer(engine=engine)


METRICS = {"completionTime": 5, "idleTime": 1, "totalTime": 10, "errorCount": 0}


# ---------------------------------------------------------------------------
# RecordActivity
# ---------------------------------------------------------------------------


class TestRecordActivity:
    def test_returns_velocity_and_checks(self, clock) -> None:
        servicer = _make_servicer(clock)
        ctx = _make_context()
        response = servicer.RecordActivity(to_struct({"user_id": "u1", "metrics": METRICS}), ctx)
        payload = from_struct(response)
        assert payload["velocity"] == pytest.approx(39.5)
        assert payload["velocity_check"]["reason"] == "velocity_drop"
        assert payload["intervention"] is None
        ctx.set_code.assert_not_called()

    def test_missing_metrics_is_invalid_argument(self, clock) -> None:
        ctx = _make_context()
        response = _make_servicer(clock).RecordActivity(to_struct({"user_id": "u1"}), ctx)
        assert response == Struct()
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_negative_metrics_is_invalid_argument(self, clock) -> None:
        ctx = _make_context()
        bad = dict(METRICS, idleTime=-1)
        _make_servicer(clock).RecordActivity(to_struct({"user_id": "u1", "metrics": bad}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_missing_user_is_invalid_argument(self, clock) -> None:
        ctx = _make_context()
        _make_servicer(clock).RecordActivity(to_struct({"metrics": METRICS}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_engine_error_sets_internal_status(self) -> None:
        servicer = _mock_servicer(record_activity=RuntimeError("boom"))
        ctx = _make_context()
        with patch("velocity.service.logger") as mock_logger:
            servicer.RecordActivity(to_struct({"user_id": "u1", "metrics": METRICS}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)
        mock_logger.exception.assert_called_once()


# ---------------------------------------------------------------------------
# Other recording RPCs
# ---------------------------------------------------------------------------


class TestRecording:
    def test_raw_activity_open_window(self, clock) -> None:
        response = _make_servicer(clock).RecordRawActivity(
            to_struct({"user_id": "u1", "activity_type": "click", "clicks": 1}), _make_context()
        )
        assert from_struct(response) == {"window_closed": False}

    def test_raw_activity_closes_window(self, clock) -> None:
        servicer = _make_servicer(clock)
        servicer.RecordRawActivity(to_struct({"user_id": "u1", "keystrokes": 40}), _make_context())
        clock.advance(minutes=1)
        payload = from_struct(
            servicer.RecordRawActivity(to_struct({"user_id": "u1", "clicks": 1}), _make_context())
        )
        assert payload["window_closed"] is True
        assert payload["velocity"] == 69.5

    def test_task_completion(self, clock) -> None:
        ctx = _make_context()
        response = _make_servicer(clock).RecordTaskCompletion(
            to_struct({"user_id": "u1", "task_id": "t1", "duration": 3, "complexity": 2}), ctx
        )
        assert "velocity" in from_struct(response)
        ctx.set_code.assert_not_called()

    def test_task_completion_requires_duration(self, clock) -> None:
        ctx = _make_context()
        _make_servicer(clock).RecordTaskCompletion(
            to_struct({"user_id": "u1", "task_id": "t1"}), ctx
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_record_error(self, clock) -> None:
        response = _make_servicer(clock).RecordError(
            to_struct({"user_id": "u1", "error_type": "undo_redo"}), _make_context()
        )
        check = from_struct(response)["error_check"]
        assert check["reason"] == "high_error_rate"
        assert check["should_intervene"] is True

    def test_feedback(self, clock) -> None:
        response = _make_servicer(clock).RecordInterventionFeedback(
            to_struct(
                {
                    "user_id": "u1",
                    "type": "TAKE_BREAK",
                    "accepted": True,
                    "velocity_before": 40,
                    "velocity_after": 60,
                }
            ),
            _make_context(),
        )
        assert from_struct(response) == {"success": True}

    def test_feedback_unknown_type(self, clock) -> None:
        ctx = _make_context()
        _make_servicer(clock).RecordInterventionFeedback(
            to_struct({"user_id": "u1", "type": "NAP", "velocity_before": 40}), ctx
        )
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)


# ---------------------------------------------------------------------------
# GetRecommendations
# ---------------------------------------------------------------------------


class TestGetRecommendations:
    def test_stable_for_new_user(self, clock) -> None:
        response = _make_servicer(clock).GetRecommendations(
            to_struct({"user_id": "u1", "hour": 14}), _make_context()
        )
        payload = from_struct(response)
        assert payload["velocity"] == 100.0
        assert payload["confidence"] == "low"
        assert [s["type"] for s in payload["suggestions"]] == ["NO_ACTION"]
        assert payload["suggestions"][0]["priority"] == "low"

    def test_invalid_hour(self, clock) -> None:
        ctx = _make_context()
        response = _make_servicer(clock).GetRecommendations(
            to_struct({"user_id": "u1", "hour": 30}), ctx
        )
        assert response == Struct()
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INVALID_ARGUMENT)

    def test_engine_error_sets_internal_status(self) -> None:
        servicer = _mock_servicer(get_recommendations=RuntimeError("boom"))
        ctx = _make_context()
        servicer.GetRecommendations(to_struct({"user_id": "u1"}), ctx)
        ctx.set_code.assert_called_once_with(grpc.StatusCode.INTERNAL)

    def test_logs_warning_when_slow(self, clock) -> None:
        servicer = _make_servicer(clock)
        with patch("velocity.service._RECOMMENDATION_WARN_THRESHOLD_MS", -1), patch(
            "velocity.service.logger"
        ) as mock_logger:
            servicer.GetRecommendations(to_struct({"user_id": "u1", "hour": 14}), _make_context())
        mock_logger.warning.assert_called_once()

    def test_logs_debug_when_fast(self, clock) -> None:
        servicer = _make_servicer(clock)
        with patch("velocity.service._RECOMMENDATION_WARN_THRESHOLD_MS", 10**9), patch(
            "velocity.service.logger"
        ) as mock_logger:
            servicer.GetRecommendations(to_struct({"user_id": "u1", "hour": 14}), _make_context())
        mock_logger.warning.assert_not_called()
        mock_logger.debug.assert_called_once()


# ---------------------------------------------------------------------------
# Queries and resets
# ---------------------------------------------------------------------------


class TestQueriesAndResets:
    def test_model_state(self, clock) -> None:
        servicer = _make_servicer(clock)
        servicer.RecordActivity(to_struct({"user_id": "u1", "metrics": METRICS}), _make_context())
        payload = from_struct(
            servicer.GetModelState(to_struct({"user_id": "u1"}), _make_context())
        )
        assert payload["user_id"] == "u1"
        assert payload["data_points_collected"] == 1.0

    def test_check_idle(self, clock) -> None:
        response = _make_servicer(clock).CheckIdle(to_struct({"user_id": "u1"}), _make_context())
        assert from_struct(response) == {"idle": False}

    @pytest.mark.parametrize("method", ["ResetUser", "ResetSession"])
    def test_resets(self, clock, method) -> None:
        response = getattr(_make_servicer(clock), method)(
            to_struct({"user_id": "u1"}), _make_context()
        )
        assert from_struct(response) == {"success": True}


class TestGenericHandler:
    def test_serves_velocity_service(self, clock) -> None:
        handler = build_generic_handler(_make_servicer(clock))
        details = MagicMock(method=f"/{SERVICE_NAME}/GetRecommendations")
        method_handler = handler.service(details)
        assert method_handler is not None
        assert method_handler.request_deserializer == Struct.FromString

    def test_ignores_other_services(self, clock) -> None:
        handler = build_generic_handler(_make_servicer(clock))
        details = MagicMock(method="/other.Service/GetRecommendations")
        assert handler.service(details) is None
