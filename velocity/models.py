"""Core domain dataclasses shared across all velocity modules."""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Retention limits for the bounded per-user sequences
VELOCITY_HISTORY_LIMIT = 100
TRAINING_BUFFER_SIZE = 50


class InterventionType(str, Enum):
    """Kinds of suggestion the system can surface to a user."""

    TAKE_BREAK = "TAKE_BREAK"
    SWITCH_TASK = "SWITCH_TASK"
    LOW_ENERGY_HOUR = "LOW_ENERGY_HOUR"
    PEAK_HOUR = "PEAK_HOUR"
    LATE_WORK = "LATE_WORK"
    MORNING_BOOST = "MORNING_BOOST"
    NO_ACTION = "NO_ACTION"


class Priority(str, Enum):
    """Urgency of an :class:`Intervention`."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        """Sort key: higher priorities rank first."""
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class ErrorType(str, Enum):
    """Categories of user error events tracked by the engagement layer."""

    UNDO_REDO = "undo_redo"
    VALIDATION_FAILURE = "validation_failure"
    COPY_PASTE_CORRECTION = "copy_paste_correction"
    SPELL_CHECK = "spell_check"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "ErrorType":
        """Return the matching member, or :attr:`OTHER` for unknown strings."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class MetricsSample:
    """One observation window of user activity.

    Durations are in minutes. ``completion_time`` and ``total_time`` may be
    zero: the estimator treats such a sample as unusable and scores it 0
    rather than rejecting it.

    Attributes:
        completion_time: Time spent completing tasks in the window.
        idle_time: Time spent idle in the window.
        total_time: Length of the window.
        error_count: Errors observed in the window.
        clicks: Mouse clicks.
        keystrokes: Key presses.
        mouse_moves: Mouse move events.
        scrolls: Scroll events.
        hour: Local hour of day (0-23).
        day_of_week: Day of week (0-6).
        timestamp: When the window was closed.

    Raises:
        ValueError: On negative durations/counts or an out-of-range
            hour/day.
    """

    completion_time: float
    idle_time: float
    total_time: float
    error_count: int = 0
    clicks: int = 0
    keystrokes: int = 0
    mouse_moves: int = 0
    scrolls: int = 0
    hour: int = 0
    day_of_week: int = 0
    timestamp: datetime | None = None

    def __post_init__(self) -> None:
        for name in ("completion_time", "idle_time", "total_time"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)!r}")
        for name in ("error_count", "clicks", "keystrokes", "mouse_moves", "scrolls"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)!r}")
        if not 0 <= self.hour <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {self.hour!r}")
        if not 0 <= self.day_of_week <= 6:
            raise ValueError(
                f"day_of_week must be between 0 and 6, got {self.day_of_week!r}"
            )

    @property
    def intensity(self) -> float:
        """Weighted activity count used by the cold-start estimator."""
        return (
            self.clicks
            + self.keystrokes * 2
            + self.mouse_moves * 0.05
            + self.scrolls * 1.5
        )


@dataclass(frozen=True)
class VelocityReading:
    """A single velocity score (0-100) at a point in time."""

    value: float
    timestamp: datetime


@dataclass(frozen=True)
class ErrorEvent:
    """A single recorded user error."""

    error_type: ErrorType
    timestamp: datetime


@dataclass
class Weights:
    """User-specific weights of the velocity formula; always sum to 1.0.

    Attributes:
        completion: Weight of the completion-speed term (alpha).
        idle: Weight of the activity-ratio term (beta).
        error: Weight of the error-rate penalty (gamma).
    """

    completion: float = 0.40
    idle: float = 0.35
    error: float = 0.25


@dataclass
class Thresholds:
    """Per-user intervention thresholds adapted by the online learner.

    Attributes:
        drop_ratio: Fraction of baseline below which a window counts as a
            drop. Kept in [0.50, 0.85].
        error_multiplier: Multiple of the average error rate that counts as
            an error spike. Kept in [1.5, 3.0].
        consecutive_windows_required: Drops in a row needed to intervene.
        optimal_range: ``(low, high)`` velocity band the user normally
            works in.
    """

    drop_ratio: float = 0.70
    error_multiplier: float = 2.0
    consecutive_windows_required: int = 2
    optimal_range: tuple[float, float] = (60.0, 85.0)


@dataclass
class InterventionStats:
    """Running tally of how a user responds to one intervention type."""

    accepted: int = 0
    rejected: int = 0
    effectiveness: float = 0.0

    @property
    def acceptance_rate(self) -> float:
        """``accepted / (accepted + rejected + 1)``; biased low with sparse data."""
        return self.accepted / (self.accepted + self.rejected + 1)


def _default_intervention_stats() -> dict[InterventionType, InterventionStats]:
    return {
        InterventionType.TAKE_BREAK: InterventionStats(),
        InterventionType.SWITCH_TASK: InterventionStats(),
    }


@dataclass
class UserProfile:
    """Long-lived behavioural profile of a single user.

    Attributes:
        baseline_velocity: Exponential moving average of all recorded
            velocities, ``None`` until the first data point.
        peak_hours: Hours in which the user has run well above baseline.
            Grows only.
        low_energy_hours: Hours in which the user has run well below
            baseline. Grows only.
        velocity_history: The last :data:`VELOCITY_HISTORY_LIMIT` readings.
        intervention_stats: Accept/reject tallies per intervention type.
        error_patterns: Count of recorded errors per error type.
    """

    baseline_velocity: float | None = None
    peak_hours: set[int] = field(default_factory=set)
    low_energy_hours: set[int] = field(default_factory=set)
    velocity_history: deque[VelocityReading] = field(
        default_factory=lambda: deque(maxlen=VELOCITY_HISTORY_LIMIT)
    )
    intervention_stats: dict[InterventionType, InterventionStats] = field(
        default_factory=_default_intervention_stats
    )
    error_patterns: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class DataPoint:
    """One observation fed into the online learner.

    Attributes:
        timestamp: When the observation was made.
        velocity: The velocity reported to the user for that observation.
        metrics: The window the velocity was derived from, if any.
        user_state: Free-form context from the caller.
        intervention_triggered: The intervention the user responded to, if
            this point carries feedback.
        intervention_accepted: Whether the user accepted it.
        post_intervention_velocity: Velocity measured after acting on it.
    """

    timestamp: datetime
    velocity: float
    metrics: MetricsSample | None = None
    user_state: dict[str, Any] = field(default_factory=dict)
    intervention_triggered: InterventionType | None = None
    intervention_accepted: bool | None = None
    post_intervention_velocity: float | None = None


@dataclass
class UserModelState:
    """The complete personalization state of one user.

    This is the unit handed to the storage collaborator. It is created with
    defaults on first contact and mutated by
    :class:`~velocity.adapter.OnlineAdapter`.
    """

    user_id: str
    weights: Weights = field(default_factory=Weights)
    thresholds: Thresholds = field(default_factory=Thresholds)
    profile: UserProfile = field(default_factory=UserProfile)
    data_points_collected: int = 0
    is_initialized: bool = False
    last_update: datetime | None = None
    training_buffer: list[DataPoint] = field(default_factory=list)


@dataclass(frozen=True)
class Intervention:
    """A suggestion for the user, produced fresh on each request."""

    type: InterventionType
    priority: Priority
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DropCheck:
    """Outcome of :meth:`~velocity.detector.DropDetector.check_velocity_drop`."""

    should_intervene: bool
    reason: str
    current_velocity: float
    baseline: float | None = None
    threshold: float | None = None
    consecutive_drops: int = 0
    drop_percentage: float | None = None


@dataclass(frozen=True)
class ErrorRateCheck:
    """Outcome of :meth:`~velocity.detector.DropDetector.check_error_rate`."""

    should_intervene: bool
    reason: str
    current_rate: float
    average_rate: float
    threshold: float | None = None
