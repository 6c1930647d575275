"""Suggestions driven purely by the time of day."""

from __future__ import annotations

from velocity.models import Intervention, InterventionType, Priority
from velocity.rules.base import SuggestionContext, SuggestionRule

LATE_HOURS = frozenset({21, 22, 23, 0, 1, 2, 3, 4, 5})
MORNING_HOURS = frozenset(range(6, 11))


class LateWorkRule(SuggestionRule):
    """Warns about working late at night, whatever the velocity."""

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        if context.hour not in LATE_HOURS:
            return []
        return [
            Intervention(
                type=InterventionType.LATE_WORK,
                priority=Priority.MEDIUM,
                message="It's late. Consider wrapping up and resting for tomorrow.",
                data={"reason": "late_hour", "hour": context.hour},
            )
        ]


class MorningBoostRule(SuggestionRule):
    """Acknowledges a strong start to the day.

    Args:
        min_velocity: Velocity the user must exceed in the morning.
    """

    def __init__(self, min_velocity: float = 80.0) -> None:
        self._min_velocity = min_velocity

    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        if context.hour not in MORNING_HOURS or context.velocity <= self._min_velocity:
            return []
        return [
            Intervention(
                type=InterventionType.MORNING_BOOST,
                priority=Priority.LOW,
                message="Strong morning! Use this momentum on your most important task.",
                data={
                    "reason": "morning_momentum",
                    "hour": context.hour,
                    "velocity": context.velocity,
                },
            )
        ]
