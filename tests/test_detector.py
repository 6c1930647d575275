"""Tests for velocity.detector."""

from __future__ import annotations

from datetime import timedelta

import pytest

from velocity.baseline import BaselineTracker
from velocity.detector import (
    HIGH_ERROR_RATE,
    INSUFFICIENT_DATA,
    VELOCITY_DROP,
    DropDetector,
    combined_intervention,
)
from velocity.models import (
    DropCheck,
    ErrorRateCheck,
    ErrorType,
    InterventionType,
    Priority,
    Thresholds,
)

from conftest import TS


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_detector(clock, thresholds: Thresholds | None = None):
    tracker = BaselineTracker(clock=clock)
    t = thresholds or Thresholds()
    return tracker, DropDetector(tracker, lambda: t)


# ---------------------------------------------------------------------------
# Velocity drops
# ---------------------------------------------------------------------------


class TestCheckVelocityDrop:
    def test_insufficient_data_without_baseline(self, clock) -> None:
        _, detector = _make_detector(clock)
        check = detector.check_velocity_drop(10.0)
        assert check.should_intervene is False
        assert check.reason == INSUFFICIENT_DATA
        assert detector.consecutive_drops == 0

    def test_first_drop_is_counted_but_not_acted_on(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        tracker.record_velocity(100.0)
        check = detector.check_velocity_drop(65.0)
        assert check.reason == VELOCITY_DROP
        assert check.baseline == pytest.approx(100.0)
        assert check.threshold == pytest.approx(70.0)
        assert check.consecutive_drops == 1
        assert check.should_intervene is False
        assert check.drop_percentage == pytest.approx(35.0)

    def test_second_consecutive_drop_intervenes(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        tracker.record_velocity(100.0)
        detector.check_velocity_drop(65.0)
        check = detector.check_velocity_drop(65.0)
        assert check.consecutive_drops == 2
        assert check.should_intervene is True

    def test_non_drop_resets_counter(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        tracker.record_velocity(100.0)
        detector.check_velocity_drop(50.0)
        detector.check_velocity_drop(90.0)
        check = detector.check_velocity_drop(50.0)
        assert check.consecutive_drops == 1
        assert check.should_intervene is False

    def test_threshold_equal_is_not_a_drop(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        tracker.record_velocity(100.0)
        check = detector.check_velocity_drop(70.0)
        assert check.consecutive_drops == 0

    def test_reads_thresholds_on_every_call(self, clock) -> None:
        thresholds = Thresholds()
        tracker, detector = _make_detector(clock, thresholds)
        tracker.record_velocity(100.0)
        thresholds.drop_ratio = 0.5
        check = detector.check_velocity_drop(65.0)
        assert check.threshold == pytest.approx(50.0)
        assert check.consecutive_drops == 0

    def test_respects_consecutive_windows_required(self, clock) -> None:
        tracker, detector = _make_detector(clock, Thresholds(consecutive_windows_required=1))
        tracker.record_velocity(100.0)
        assert detector.check_velocity_drop(10.0).should_intervene is True

    def test_reset(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        tracker.record_velocity(100.0)
        detector.check_velocity_drop(10.0)
        detector.reset()
        assert detector.consecutive_drops == 0

    def test_window_ends_at_given_time(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        ahead = TS + timedelta(seconds=5)
        tracker.record_velocity(100.0, ahead)
        assert detector.check_velocity_drop(65.0).reason == INSUFFICIENT_DATA
        check = detector.check_velocity_drop(65.0, now=ahead)
        assert check.baseline == pytest.approx(100.0)
        assert check.consecutive_drops == 1


# ---------------------------------------------------------------------------
# Error rate
# ---------------------------------------------------------------------------


class TestCheckErrorRate:
    def test_insufficient_data_without_errors(self, clock) -> None:
        _, detector = _make_detector(clock)
        check = detector.check_error_rate()
        assert check.reason == INSUFFICIENT_DATA
        assert check.should_intervene is False

    def test_recent_burst_exceeds_average(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        for _ in range(3):
            tracker.record_error(ErrorType.UNDO_REDO)
        check = detector.check_error_rate()
        # current 3/5 = 0.6 > average 3/30 * 2 = 0.2
        assert check.reason == HIGH_ERROR_RATE
        assert check.current_rate == pytest.approx(0.6)
        assert check.average_rate == pytest.approx(0.1)
        assert check.threshold == pytest.approx(0.2)
        assert check.should_intervene is True

    def test_old_errors_only_do_not_trigger(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        for _ in range(3):
            tracker.record_error(ErrorType.UNDO_REDO)
        clock.advance(minutes=10)
        check = detector.check_error_rate()
        assert check.current_rate == 0.0
        assert check.should_intervene is False

    def test_window_ends_at_given_time(self, clock) -> None:
        tracker, detector = _make_detector(clock)
        earlier = TS - timedelta(hours=2)
        for _ in range(3):
            tracker.record_error(ErrorType.UNDO_REDO, earlier)
        assert detector.check_error_rate().reason == INSUFFICIENT_DATA
        assert detector.check_error_rate(now=earlier).should_intervene is True

    def test_uses_error_multiplier(self, clock) -> None:
        tracker, detector = _make_detector(clock, Thresholds(error_multiplier=10.0))
        tracker.record_error(ErrorType.OTHER)
        # current 0.2 vs threshold 1/30 * 10
        assert detector.check_error_rate().should_intervene is False


# ---------------------------------------------------------------------------
# Combined intervention
# ---------------------------------------------------------------------------


def _drop(intervene: bool) -> DropCheck:
    return DropCheck(
        should_intervene=intervene,
        reason=VELOCITY_DROP,
        current_velocity=50.0,
        baseline=100.0,
        threshold=70.0,
        consecutive_drops=2 if intervene else 1,
        drop_percentage=50.0,
    )


def _errors(intervene: bool) -> ErrorRateCheck:
    return ErrorRateCheck(
        should_intervene=intervene,
        reason=HIGH_ERROR_RATE,
        current_rate=0.6,
        average_rate=0.1,
        threshold=0.2,
    )


class TestCombinedIntervention:
    def test_nothing_fires(self) -> None:
        assert combined_intervention(_drop(False), _errors(False)) is None

    def test_none_inputs(self) -> None:
        assert combined_intervention(None, None) is None

    def test_drop_gives_break(self) -> None:
        intervention = combined_intervention(_drop(True), _errors(False))
        assert intervention.type is InterventionType.TAKE_BREAK
        assert intervention.priority is Priority.MEDIUM
        assert intervention.data["duration"] == 5

    def test_error_spike_gives_task_switch(self) -> None:
        intervention = combined_intervention(_drop(False), _errors(True))
        assert intervention.type is InterventionType.SWITCH_TASK
        assert intervention.priority is Priority.HIGH

    def test_error_spike_outranks_drop(self) -> None:
        intervention = combined_intervention(_drop(True), _errors(True))
        assert intervention.type is InterventionType.SWITCH_TASK
