"""Tests for DetectorRule."""

from __future__ import annotations

from velocity.models import DropCheck, ErrorRateCheck, InterventionType
from velocity.rules.base import SuggestionContext
from velocity.rules.detector import DetectorRule


def _ctx(drop: bool = False, errors: bool = False) -> SuggestionContext:
    return SuggestionContext(
        velocity=50.0,
        hour=12,
        drop_check=DropCheck(
            should_intervene=drop,
            reason="velocity_drop",
            current_velocity=50.0,
            baseline=100.0,
            threshold=70.0,
            consecutive_drops=2,
            drop_percentage=50.0,
        ),
        error_check=ErrorRateCheck(
            should_intervene=errors,
            reason="high_error_rate",
            current_rate=1.0,
            average_rate=0.1,
            threshold=0.2,
        ),
    )


class TestDetectorRule:
    def test_quiet_without_detector_output(self) -> None:
        assert DetectorRule().evaluate(SuggestionContext(velocity=50.0, hour=12)) == []

    def test_quiet_when_nothing_triggered(self) -> None:
        assert DetectorRule().evaluate(_ctx()) == []

    def test_surfaces_drop(self) -> None:
        [intervention] = DetectorRule().evaluate(_ctx(drop=True))
        assert intervention.type is InterventionType.TAKE_BREAK

    def test_error_spike_wins(self) -> None:
        [intervention] = DetectorRule().evaluate(_ctx(drop=True, errors=True))
        assert intervention.type is InterventionType.SWITCH_TASK
