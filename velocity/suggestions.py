"""Suggestion generator: runs every rule and ranks the combined output."""

from __future__ import annotations

import logging
from typing import Iterable

from velocity.models import (
    DropCheck,
    ErrorRateCheck,
    Intervention,
    Thresholds,
    UserProfile,
)
from velocity.rules.base import SuggestionContext, SuggestionRule
from velocity.rules.detector import DetectorRule
from velocity.rules.patterns import LowEnergyHourRule, PeakHourRule
from velocity.rules.time_of_day import LateWorkRule, MorningBoostRule
from velocity.rules.velocity import (
    ExtendedWorkRule,
    LowVelocityRule,
    PersonalizedBreakRule,
)

logger = logging.getLogger(__name__)


def default_rules() -> list[SuggestionRule]:
    """Return the standard rule set, in evaluation order."""
    return [
        DetectorRule(),
        LowVelocityRule(),
        PersonalizedBreakRule(),
        ExtendedWorkRule(),
        LowEnergyHourRule(),
        PeakHourRule(),
        LateWorkRule(),
        MorningBoostRule(),
    ]


class SuggestionGenerator:
    """Maps the current state of a user onto a ranked list of interventions.

    Rules are evaluated independently and freshly on each call; nothing is
    remembered between calls. The combined output is ordered by priority
    (high first); rules of equal priority keep their evaluation order, so
    the detector's verdict leads its priority band.

    An empty result means nothing fired ("stable performance"); it is up
    to the caller how to surface that.

    Args:
        rules: The rules to evaluate. Defaults to :func:`default_rules`.
    """

    def __init__(self, rules: Iterable[SuggestionRule] | None = None) -> None:
        self._rules = list(rules) if rules is not None else default_rules()

    def generate(self, context: SuggestionContext) -> list[Intervention]:
        """Evaluate every rule against *context* and return the ranked union."""
        results: list[Intervention] = []
        for rule in self._rules:
            results.extend(rule.evaluate(context))
        results.sort(key=lambda i: i.priority.rank)
        logger.debug(
            "Suggestions at hour %d, velocity %.1f: %s",
            context.hour,
            context.velocity,
            [i.type.value for i in results],
        )
        return results

    def suggestions(
        self,
        velocity: float,
        hour: int,
        detector_outputs: tuple[DropCheck | None, ErrorRateCheck | None] = (None, None),
        profile: UserProfile | None = None,
        thresholds: Thresholds | None = None,
        recent_intensities: Iterable[float] = (),
        break_threshold: float | None = None,
        break_duration: int = 5,
    ) -> list[Intervention]:
        """Convenience wrapper building the :class:`SuggestionContext` for :meth:`generate`.

        Raises:
            ValueError: If *hour* is outside 0-23.
        """
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {hour!r}")
        drop_check, error_check = detector_outputs
        context = SuggestionContext(
            velocity=velocity,
            hour=hour,
            profile=profile if profile is not None else UserProfile(),
            thresholds=thresholds if thresholds is not None else Thresholds(),
            drop_check=drop_check,
            error_check=error_check,
            recent_intensities=tuple(recent_intensities),
            break_threshold=break_threshold,
            break_duration=break_duration,
        )
        return self.generate(context)
