"""Abstract base class and shared context for all suggestion rules."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from velocity.models import (
    DropCheck,
    ErrorRateCheck,
    Intervention,
    Thresholds,
    UserProfile,
)


@dataclass(frozen=True)
class SuggestionContext:
    """Everything a rule may look at when deciding whether to fire.

    Attributes:
        velocity: The user's current velocity (0-100).
        hour: Local hour of day (0-23).
        profile: The user's behavioural profile.
        thresholds: The user's current thresholds.
        drop_check: Latest velocity-drop verdict, if any.
        error_check: Latest error-rate verdict, if any.
        recent_intensities: Activity intensity of the most recent windows,
            oldest first.
        break_threshold: Personal break threshold for this hour, ``None``
            before the first data point.
        break_duration: Suggested break length in minutes for a personal
            break.
    """

    velocity: float
    hour: int
    profile: UserProfile = field(default_factory=UserProfile)
    thresholds: Thresholds = field(default_factory=Thresholds)
    drop_check: DropCheck | None = None
    error_check: ErrorRateCheck | None = None
    recent_intensities: tuple[float, ...] = ()
    break_threshold: float | None = None
    break_duration: int = 5


class SuggestionRule(ABC):
    """Abstract base class for all suggestion rules.

    Each rule encapsulates one independent reason to nudge the user. The
    :class:`~velocity.suggestions.SuggestionGenerator` evaluates every rule
    on every request; several may fire at once.
    """

    @abstractmethod
    def evaluate(self, context: SuggestionContext) -> list[Intervention]:
        """Return the interventions this rule produces for *context*.

        Args:
            context: Current velocity, hour, profile and detector outputs.

        Returns:
            Zero or more interventions. Rules never raise on missing data;
            they simply do not fire.
        """
