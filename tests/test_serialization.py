"""Tests for velocity.serialization."""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone

import pytest

from velocity.models import (
    DataPoint,
    InterventionStats,
    InterventionType,
    UserModelState,
    VelocityReading,
    Weights,
)
from velocity.serialization import sample_from_dict, state_from_dict, state_to_dict

from conftest import TS, make_sample


def _populated_state() -> UserModelState:
    state = UserModelState(user_id="u1", weights=Weights(0.5, 0.3, 0.2))
    state.thresholds.drop_ratio = 0.75
    state.thresholds.optimal_range = (55.0, 80.0)
    profile = state.profile
    profile.baseline_velocity = 66.0
    profile.peak_hours = {10, 9}
    profile.low_energy_hours = {15}
    profile.velocity_history.append(VelocityReading(70.0, TS))
    profile.intervention_stats[InterventionType.TAKE_BREAK] = InterventionStats(3, 1, 4.5)
    profile.error_patterns = {"undo_redo": 2}
    state.data_points_collected = 12
    state.is_initialized = True
    state.last_update = TS
    state.training_buffer.append(
        DataPoint(
            timestamp=TS,
            velocity=40.0,
            metrics=make_sample(clicks=3, timestamp=TS),
            user_state={"task_id": "t1"},
            intervention_triggered=InterventionType.TAKE_BREAK,
            intervention_accepted=True,
            post_intervention_velocity=60.0,
        )
    )
    return state


class TestStateToDict:
    def test_is_json_compatible(self) -> None:
        json.dumps(state_to_dict(_populated_state()))

    def test_sets_become_sorted_lists(self) -> None:
        data = state_to_dict(_populated_state())
        assert data["profile"]["peak_hours"] == [9, 10]

    def test_enums_become_values(self) -> None:
        data = state_to_dict(_populated_state())
        assert "TAKE_BREAK" in data["profile"]["intervention_stats"]
        assert data["training_buffer"][0]["intervention_triggered"] == "TAKE_BREAK"

    def test_timestamps_keep_offset(self) -> None:
        local = timezone(timedelta(hours=-5))
        state = UserModelState(user_id="u1", last_update=datetime(2024, 6, 1, 9, tzinfo=local))
        restored = state_from_dict(state_to_dict(state))
        assert restored.last_update.hour == 9
        assert restored.last_update.utcoffset() == timedelta(hours=-5)


class TestStateFromDict:
    def test_restores_everything(self) -> None:
        original = _populated_state()
        restored = state_from_dict(state_to_dict(original))
        assert restored.weights == original.weights
        assert restored.thresholds == original.thresholds
        assert restored.profile.peak_hours == {9, 10}
        assert restored.profile.intervention_stats[InterventionType.TAKE_BREAK].accepted == 3
        assert restored.profile.error_patterns == {"undo_redo": 2}
        assert restored.training_buffer == original.training_buffer
        assert restored.last_update == TS
        assert restored.is_initialized is True

    def test_history_stays_bounded(self) -> None:
        data = state_to_dict(UserModelState(user_id="u1"))
        data["profile"]["velocity_history"] = [
            {"value": float(i), "timestamp": TS.isoformat()} for i in range(150)
        ]
        restored = state_from_dict(data)
        assert len(restored.profile.velocity_history) == 100

    def test_missing_sections_fall_back_to_defaults(self) -> None:
        restored = state_from_dict({"user_id": "u1"})
        assert restored == UserModelState(user_id="u1")

    def test_numbers_as_floats_are_accepted(self) -> None:
        # protobuf Struct hands every number back as a float
        data = state_to_dict(_populated_state())
        data["data_points_collected"] = 12.0
        data["profile"]["peak_hours"] = [9.0]
        restored = state_from_dict(data)
        assert restored.data_points_collected == 12
        assert restored.profile.peak_hours == {9}


class TestSampleFromDict:
    def test_snake_case(self) -> None:
        sample = sample_from_dict({"completion_time": 5, "idle_time": 1, "total_time": 10})
        assert sample == make_sample()

    def test_camel_case(self) -> None:
        sample = sample_from_dict(
            {
                "completionTime": 5,
                "idleTime": 1,
                "totalTime": 10,
                "errorCount": 2,
                "mouseMoves": 40,
                "dayOfWeek": 3,
            }
        )
        assert sample.error_count == 2
        assert sample.mouse_moves == 40
        assert sample.day_of_week == 3

    def test_requires_times(self) -> None:
        with pytest.raises(ValueError, match="completion_time"):
            sample_from_dict({"idle_time": 1})

    def test_validates_values(self) -> None:
        with pytest.raises(ValueError):
            sample_from_dict({"completion_time": 5, "total_time": -1})

    def test_parses_timestamp(self) -> None:
        sample = sample_from_dict(
            {"completion_time": 5, "total_time": 10, "timestamp": "2024-06-01T12:00:00+00:00"}
        )
        assert sample.timestamp == TS
