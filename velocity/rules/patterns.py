"""Suggestions driven by the user's learned peak / low-energy hours."""

from __future__ import annotations

from velocity.models import Intervention, InterventionType, Priority
from velocity.rules.base import SuggestionContext, SuggestionRule


class LowEnergyHourRule(SuggestionRule):
    """Flags a historically low-energy hour once velocity falls below the break threshold.

    The threshold in the context is already raised for low-energy hours.
    """

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        if context.hour not in context.profile.low_energy_hours:
            return []
        if context.break_threshold is None or context.velocity >= context.break_threshold:
            return []
        return [
            Intervention(
                type=InterventionType.LOW_ENERGY_HOUR,
                priority=Priority.MEDIUM,
                message=(
                    "This is typically a low-energy hour for you. "
                    "Consider tackling easier tasks."
                ),
                data={
                    "reason": "historical_pattern",
                    "hour": context.hour,
                    "threshold": context.break_threshold,
                },
            )
        ]


class PeakHourRule(SuggestionRule):
    """Encourages hard work in a known peak hour while velocity is high.

    Args:
        min_velocity: Velocity the user must exceed for the rule to fire.
    """

    def __init__(self, min_velocity: float = 70.0) -> None:
        self._min_velocity = min_velocity

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        if context.hour not in context.profile.peak_hours:
            return []
        if context.velocity <= self._min_velocity:
            return []
        return [
            Intervention(
                type=InterventionType.PEAK_HOUR,
                priority=Priority.MEDIUM,
                message=(
                    "This is one of your peak productivity hours. "
                    "Great time for challenging tasks!"
                ),
                data={
                    "reason": "historical_pattern",
                    "hour": context.hour,
                    "velocity": context.velocity,
                },
            )
        ]
