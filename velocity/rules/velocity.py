"""Break suggestions driven by the velocity score and sustained activity."""

from __future__ import annotations

import logging

from velocity.models import Intervention, InterventionType, Priority
from velocity.rules.base import SuggestionContext, SuggestionRule

logger = logging.getLogger(__name__)


class LowVelocityRule(SuggestionRule):
    """Suggests a break whenever velocity falls below an absolute floor.

    Below *threshold* a 5-minute break is suggested; below
    *severe_threshold* the break is 10 minutes.

    Args:
        threshold: Velocity below which the rule fires.
        severe_threshold: Velocity below which the longer break is used.
    """

    def __init__(self, threshold: float = 60.0, severe_threshold: float = 40.0) -> None:
        self._threshold = threshold
        self._severe_threshold = severe_threshold

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        if context.velocity >= self._threshold:
            return []
        duration = 10 if context.velocity < self._severe_threshold else 5
        return [
            Intervention(
                type=InterventionType.TAKE_BREAK,
                priority=Priority.HIGH,
                message=f"Your velocity is low. Take a {duration}-minute break.",
                data={
                    "reason": "low_velocity",
                    "velocity": context.velocity,
                    "duration": duration,
                },
            )
        ]


class PersonalizedBreakRule(SuggestionRule):
    """Suggests a break when velocity is below the user's own break threshold.

    The threshold (baseline EMA × drop ratio, raised during known
    low-energy hours) and the break length are computed by the user's
    :class:`~velocity.adapter.OnlineAdapter` and passed in the context.
    """

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        if context.break_threshold is None or context.velocity >= context.break_threshold:
            return []
        duration = context.break_duration
        return [
            Intervention(
                type=InterventionType.TAKE_BREAK,
                priority=Priority.HIGH,
                message=(
                    f"Take a {duration}-minute break. Your velocity is below "
                    "your personal baseline."
                ),
                data={
                    "reason": "personalized_threshold",
                    "velocity": context.velocity,
                    "threshold": context.break_threshold,
                    "baseline": context.profile.baseline_velocity,
                    "low_energy_hour": context.hour in context.profile.low_energy_hours,
                    "duration": duration,
                },
            )
        ]


class ExtendedWorkRule(SuggestionRule):
    """Suggests a longer break after several consecutive high-intensity windows.

    Args:
        windows: Number of most recent windows that must all be intense.
        intensity_threshold: Intensity each of those windows must exceed.
    """

    def __init__(self, windows: int = 6, intensity_threshold: float = 100.0) -> None:
        self._windows = windows
        self._intensity_threshold = intensity_threshold

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        recent = context.recent_intensities[-self._windows:]
        if len(recent) < self._windows:
            return []
        if not all(i > self._intensity_threshold for i in recent):
            return []
        logger.debug("Sustained activity over the last %d windows: %s", self._windows, recent)
        return [
            Intervention(
                type=InterventionType.TAKE_BREAK,
                priority=Priority.HIGH,
                message=(
                    "You've been working intensely for a while. "
                    "Take a 10-minute break to recharge."
                ),
                data={
                    "reason": "extended_work",
                    "windows": self._windows,
                    "recent_intensities": list(recent),
                    "duration": 10,
                },
            )
        ]
