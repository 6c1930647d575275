"""Tests for velocity.baseline.BaselineTracker."""

from __future__ import annotations

from datetime import timedelta

import pytest

from velocity.baseline import BaselineTracker
from velocity.models import ErrorType

from conftest import TS


@pytest.fixture
def tracker(clock) -> BaselineTracker:
    return BaselineTracker(clock=clock)


class TestBaseline:
    def test_none_without_data(self, tracker) -> None:
        assert tracker.get_baseline() is None

    def test_mean_of_window(self, tracker, clock) -> None:
        tracker.record_velocity(80.0)
        clock.advance(minutes=1)
        tracker.record_velocity(60.0)
        assert tracker.get_baseline() == pytest.approx(70.0)

    def test_reading_outside_window_ignored(self, tracker, clock) -> None:
        tracker.record_velocity(10.0)
        clock.advance(minutes=40)
        tracker.record_velocity(90.0)
        assert tracker.get_baseline(30) == pytest.approx(90.0)
        assert tracker.get_baseline(60) == pytest.approx(50.0)

    def test_none_once_all_readings_are_stale(self, tracker, clock) -> None:
        tracker.record_velocity(50.0)
        clock.advance(minutes=31)
        assert tracker.get_baseline() is None

    def test_reads_are_idempotent(self, tracker) -> None:
        tracker.record_velocity(55.0)
        assert tracker.get_baseline() == tracker.get_baseline()
        assert len(tracker.recent_readings()) == 1

    def test_explicit_now(self, tracker) -> None:
        tracker.record_velocity(40.0, TS)
        assert tracker.get_baseline(now=TS + timedelta(hours=2)) is None

    def test_out_of_order_readings_kept_sorted(self, tracker) -> None:
        tracker.record_velocity(1.0, TS + timedelta(minutes=2))
        tracker.record_velocity(2.0, TS + timedelta(minutes=1))
        values = [r.value for r in tracker.recent_readings()]
        assert values == [2.0, 1.0]


class TestRetention:
    def test_velocity_readings_pruned_after_an_hour(self, tracker, clock) -> None:
        tracker.record_velocity(10.0)
        clock.advance(minutes=61)
        tracker.record_velocity(20.0)
        assert [r.value for r in tracker.recent_readings()] == [20.0]

    def test_errors_pruned_after_thirty_minutes(self, tracker, clock) -> None:
        tracker.record_error(ErrorType.UNDO_REDO)
        clock.advance(minutes=31)
        tracker.record_error(ErrorType.OTHER)
        assert [e.error_type for e in tracker.recent_errors()] == [ErrorType.OTHER]

    def test_recent_readings_limit(self, tracker, clock) -> None:
        for i in range(15):
            tracker.record_velocity(float(i))
            clock.advance(seconds=10)
        assert [r.value for r in tracker.recent_readings(3)] == [12.0, 13.0, 14.0]

    def test_clear(self, tracker) -> None:
        tracker.record_velocity(10.0)
        tracker.record_error("spell_check")
        tracker.clear()
        assert tracker.get_baseline() is None
        assert tracker.recent_errors() == []


class TestErrorRates:
    def test_zero_without_errors(self, tracker) -> None:
        assert tracker.get_current_error_rate() == 0.0
        assert tracker.get_average_error_rate() == 0.0

    def test_current_rate_is_per_minute_over_five_minutes(self, tracker) -> None:
        for _ in range(3):
            tracker.record_error(ErrorType.VALIDATION_FAILURE)
        assert tracker.get_current_error_rate() == pytest.approx(3 / 5)

    def test_average_rate_uses_longer_window(self, tracker, clock) -> None:
        tracker.record_error(ErrorType.OTHER)
        clock.advance(minutes=10)
        tracker.record_error(ErrorType.OTHER)
        assert tracker.get_current_error_rate() == pytest.approx(1 / 5)
        assert tracker.get_average_error_rate() == pytest.approx(2 / 30)

    def test_string_error_types_are_parsed(self, tracker) -> None:
        tracker.record_error("not_a_type")
        assert tracker.recent_errors()[0].error_type is ErrorType.OTHER
