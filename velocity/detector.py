"""Drop detection: velocity drops and error-rate spikes against the baseline."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable

from velocity.baseline import (
    BASELINE_WINDOW_MINUTES,
    ERROR_WINDOW_MINUTES,
    BaselineTracker,
)
from velocity.models import (
    DropCheck,
    ErrorRateCheck,
    Intervention,
    InterventionType,
    Priority,
    Thresholds,
)

logger = logging.getLogger(__name__)

INSUFFICIENT_DATA = "insufficient_data"
VELOCITY_DROP = "velocity_drop"
HIGH_ERROR_RATE = "high_error_rate"


class DropDetector:
    """Decides when a user's performance has dropped enough to intervene.

    A velocity reading below ``baseline × drop_ratio`` counts as a drop.
    Drops are counted in :attr:`consecutive_drops`; any reading at or above
    the threshold resets the counter to zero. An intervention is signalled
    only once the counter reaches ``consecutive_windows_required``, which
    suppresses single-window noise.

    Thresholds are read through *thresholds* on every call, so adaptations
    made by the online learner take effect immediately.

    Args:
        baseline: The user's :class:`~velocity.baseline.BaselineTracker`.
        thresholds: Callable returning the user's current
            :class:`~velocity.models.Thresholds`.
        baseline_window_minutes: Window for the velocity baseline and the
            average error rate.
        error_window_minutes: Window for the current error rate.
    """

    def __init__(
        self,
        baseline: BaselineTracker,
        thresholds: Callable[[], Thresholds],
        baseline_window_minutes: float = BASELINE_WINDOW_MINUTES,
        error_window_minutes: float = ERROR_WINDOW_MINUTES,
    ) -> None:
        self._baseline = baseline
        self._thresholds = thresholds
        self._baseline_window = baseline_window_minutes
        self._error_window = error_window_minutes
        self.consecutive_drops = 0

    def check_velocity_drop(
        self, current_velocity: float, now: datetime | None = None
    ) -> DropCheck:
        """Register *current_velocity* against the baseline and return the verdict.

        The baseline window ends at *now*, which should be the time of the
        reading being checked; it defaults to the injected clock. With no
        baseline (empty history) the counter is left untouched and the
        result carries reason ``"insufficient_data"``.
        """
        baseline = self._baseline.get_baseline(self._baseline_window, now=now)
        if baseline is None:
            return DropCheck(
                should_intervene=False,
                reason=INSUFFICIENT_DATA,
                current_velocity=current_velocity,
                consecutive_drops=self.consecutive_drops,
            )

        thresholds = self._thresholds()
        threshold = baseline * thresholds.drop_ratio
        if current_velocity < threshold:
            self.consecutive_drops += 1
        else:
            self.consecutive_drops = 0

        drop_percentage = (
            round((baseline - current_velocity) / baseline * 100, 1) if baseline else 0.0
        )
        return DropCheck(
            should_intervene=self.consecutive_drops
            >= thresholds.consecutive_windows_required,
            reason=VELOCITY_DROP,
            current_velocity=current_velocity,
            baseline=baseline,
            threshold=threshold,
            consecutive_drops=self.consecutive_drops,
            drop_percentage=drop_percentage,
        )

    def check_error_rate(self, now: datetime | None = None) -> ErrorRateCheck:
        """Compare the short-window error rate with the long-window average.

        Only evaluated when the average rate is positive; otherwise the
        result carries reason ``"insufficient_data"``.
        """
        current_rate = self._baseline.get_current_error_rate(self._error_window, now=now)
        average_rate = self._baseline.get_average_error_rate(self._baseline_window, now=now)
        if average_rate <= 0:
            return ErrorRateCheck(
                should_intervene=False,
                reason=INSUFFICIENT_DATA,
                current_rate=current_rate,
                average_rate=average_rate,
            )

        threshold = average_rate * self._thresholds().error_multiplier
        return ErrorRateCheck(
            should_intervene=current_rate > threshold,
            reason=HIGH_ERROR_RATE,
            current_rate=current_rate,
            average_rate=average_rate,
            threshold=threshold,
        )

    def reset(self) -> None:
        self.consecutive_drops = 0


def combined_intervention(
    drop_check: DropCheck | None,
    error_check: ErrorRateCheck | None,
) -> Intervention | None:
    """Merge both detector outputs into at most one intervention.

    An error-rate spike (SWITCH_TASK) outranks a velocity drop (TAKE_BREAK).
    """
    if error_check is not None and error_check.should_intervene:
        return Intervention(
            type=InterventionType.SWITCH_TASK,
            priority=Priority.HIGH,
            message=(
                "Your error rate is high. Switch to a low-complexity task "
                "from your queue."
            ),
            data={
                "reason": error_check.reason,
                "current_rate": error_check.current_rate,
                "average_rate": error_check.average_rate,
                "threshold": error_check.threshold,
            },
        )
    if drop_check is not None and drop_check.should_intervene:
        return Intervention(
            type=InterventionType.TAKE_BREAK,
            priority=Priority.MEDIUM,
            message="Your work velocity has dropped. Take a 5-minute movement break.",
            data={
                "reason": drop_check.reason,
                "baseline": drop_check.baseline,
                "threshold": drop_check.threshold,
                "consecutive_drops": drop_check.consecutive_drops,
                "drop_percentage": drop_check.drop_percentage,
                "duration": 5,
            },
        )
    return None
