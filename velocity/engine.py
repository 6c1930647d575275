"""Velocity engine: the caller-facing API tying every component together."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import timezone
from typing import Any

from velocity.clock import Clock, system_clock
from velocity.detector import combined_intervention
from velocity.estimator import ColdStartEstimator, VelocityEstimator
from velocity.models import (
    DataPoint,
    DropCheck,
    ErrorRateCheck,
    ErrorType,
    Intervention,
    InterventionType,
    MetricsSample,
    Priority,
)
from velocity.rules.base import SuggestionContext
from velocity.serialization import state_to_dict
from velocity.suggestions import SuggestionGenerator
from velocity.user_state import UserSession, UserStateStore

logger = logging.getLogger(__name__)

DEFAULT_VELOCITY = 100.0

_STABLE = Intervention(
    type=InterventionType.NO_ACTION,
    priority=Priority.LOW,
    message="Performance is stable. Keep going!",
    data={"reason": "stable_performance"},
)


@dataclass(frozen=True)
class ActivityResult:
    """What the engine concluded from one observation window."""

    velocity: float
    drop_check: DropCheck
    error_check: ErrorRateCheck
    intervention: Intervention | None = None


@dataclass(frozen=True)
class Recommendations:
    """Response of :meth:`VelocityEngine.get_recommendations`."""

    velocity: float
    suggestions: list[Intervention]
    profile_summary: dict[str, Any] = field(default_factory=dict)
    confidence: str = "low"


class VelocityEngine:
    """Synchronous entry point used by the transport layer.

    Each call resolves the user's :class:`~velocity.user_state.UserSession`
    (creating a default one for an unknown user) and runs under that
    session's lock, so concurrent calls for different users never contend.

    Observation pipeline for one window::

        MetricsSample -> velocity -> BaselineTracker -> DropDetector
                                  -> OnlineAdapter (data point)

    **Cold start**: until the user's model has completed its first batch,
    windows that carry interaction counts are scored by
    :class:`~velocity.estimator.ColdStartEstimator`; afterwards (and for
    windows without counts) the personalised formula is used.

    Args:
        store: The :class:`~velocity.user_state.UserStateStore`.
        generator: The :class:`~velocity.suggestions.SuggestionGenerator`.
        clock: Source of the current time.
        default_velocity: Velocity reported before any window was seen.
        cold_start: Whether to use the cold-start estimator at all.
    """

    def __init__(
        self,
        store: UserStateStore,
        generator: SuggestionGenerator | None = None,
        clock: Clock | None = None,
        default_velocity: float = DEFAULT_VELOCITY,
        cold_start: bool = True,
    ) -> None:
        self._store = store
        self._generator = generator or SuggestionGenerator()
        self._clock = clock or system_clock()
        self._default_velocity = default_velocity
        self._cold_start = cold_start

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_activity(self, user_id: str, metrics: MetricsSample) -> ActivityResult:
        """Ingest one observation window produced by the engagement tracker.

        Args:
            user_id: The user. Must be non-empty.
            metrics: The window. A missing timestamp is filled from the clock.

        Returns:
            The velocity, both detector verdicts and the combined
            intervention (if any).

        Raises:
            ValueError: If *user_id* is empty.
        """
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            sample = self._stamp(metrics)
            session.window.observe_sample(sample)
            result = self._ingest(session, sample)
        self._store.mark_dirty(user_id)
        return result

    def record_raw_activity(
        self,
        user_id: str,
        activity_type: str,
        clicks: int = 0,
        keystrokes: int = 0,
        mouse_moves: int = 0,
        scrolls: int = 0,
    ) -> ActivityResult | None:
        """Count a raw interaction event into the user's current window.

        Returns:
            The result for the window this event closed, or ``None`` while
            the window is still open.
        """
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            closed = session.window.record_activity(
                activity_type,
                clicks=clicks,
                keystrokes=keystrokes,
                mouse_moves=mouse_moves,
                scrolls=scrolls,
            )
            result = self._ingest(session, closed) if closed is not None else None
        if result is not None:
            self._store.mark_dirty(user_id)
        return result

    def record_task_completion(
        self,
        user_id: str,
        task_id: str,
        duration: float,
        complexity: int | None = None,
    ) -> ActivityResult:
        """Record a finished task and score the window it finished in.

        Args:
            user_id: The user.
            task_id: The finished task.
            duration: Minutes the task took.
            complexity: Optional 1-5 complexity rating.

        Raises:
            ValueError: If *duration* is negative or *complexity* is outside 1-5.
        """
        if complexity is not None and not 1 <= complexity <= 5:
            raise ValueError(f"complexity must be between 1 and 5, got {complexity!r}")
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            closed = session.window.record_task_completion(task_id, duration, complexity)
            if closed is not None:
                self._ingest(session, closed)
            current = session.window.current_metrics()
            result = self._ingest(
                session,
                current,
                user_state={
                    "task_completed": True,
                    "task_id": task_id,
                    "duration": duration,
                    "complexity": complexity,
                },
            )
        self._store.mark_dirty(user_id)
        return result

    def record_error(self, user_id: str, error_type: str) -> ErrorRateCheck:
        """Record a user error; unknown error types are filed as ``"other"``.

        Returns:
            The error-rate verdict after recording the error.
        """
        parsed = ErrorType.parse(error_type)
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            now = self._clock()
            closed = session.window.record_error(parsed, now=now)
            if closed is not None:
                self._ingest(session, closed)
            session.baseline.record_error(parsed, now)
            patterns = session.state.profile.error_patterns
            patterns[parsed.value] = patterns.get(parsed.value, 0) + 1
            session.last_error_check = session.detector.check_error_rate()
            check = session.last_error_check
        self._store.mark_dirty(user_id)
        return check

    def record_intervention_feedback(
        self,
        user_id: str,
        intervention_type: InterventionType | str,
        accepted: bool,
        velocity_before: float,
        velocity_after: float | None = None,
    ) -> None:
        """Tell the learner how the user responded to a suggestion.

        Raises:
            ValueError: If *intervention_type* is not a known type.
        """
        itype = InterventionType(intervention_type)
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            session.adapter.record_data_point(
                DataPoint(
                    timestamp=self._clock(),
                    velocity=velocity_before,
                    metrics=session.last_sample,
                    user_state={"feedback": True},
                    intervention_triggered=itype,
                    intervention_accepted=accepted,
                    post_intervention_velocity=velocity_after,
                )
            )
        logger.debug(
            "Feedback for user %r: %s %s", user_id, itype.value,
            "accepted" if accepted else "rejected",
        )
        self._store.mark_dirty(user_id)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_recommendations(
        self, user_id: str, current_hour: int | None = None
    ) -> Recommendations:
        """Return the current velocity and ranked suggestions for *user_id*.

        If no rule fires, the single suggestion is NO_ACTION
        ("stable performance").

        Args:
            user_id: The user.
            current_hour: Local hour (0-23); defaults to the clock's hour.

        Raises:
            ValueError: If *current_hour* is outside 0-23.
        """
        hour = self._clock().hour if current_hour is None else current_hour
        if not 0 <= hour <= 23:
            raise ValueError(f"hour must be between 0 and 23, got {hour!r}")
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            velocity = (
                session.last_velocity
                if session.last_velocity is not None
                else self._default_velocity
            )
            adapter = session.adapter
            context = SuggestionContext(
                velocity=velocity,
                hour=hour,
                profile=session.state.profile,
                thresholds=session.state.thresholds,
                drop_check=session.last_drop_check,
                error_check=session.last_error_check,
                recent_intensities=tuple(session.window.recent_intensities),
                break_threshold=adapter.break_threshold(hour),
                break_duration=adapter.predict_break_duration(velocity),
            )
            suggestions = self._generator.generate(context) or [_STABLE]
            summary = self._profile_summary(session)
            confidence = adapter.confidence
        return Recommendations(
            velocity=velocity,
            suggestions=suggestions,
            profile_summary=summary,
            confidence=confidence,
        )

    def get_model_state(self, user_id: str) -> dict[str, Any]:
        """Return the full serialised model plus the live session state."""
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            state = state_to_dict(session.state)
            state["training_buffer_size"] = len(session.state.training_buffer)
            state["session"] = {
                "baseline": session.baseline.get_baseline(),
                "current_error_rate": session.baseline.get_current_error_rate(),
                "average_error_rate": session.baseline.get_average_error_rate(),
                "consecutive_drops": session.detector.consecutive_drops,
                "recent_velocities": [r.value for r in session.baseline.recent_readings()],
                "last_velocity": session.last_velocity,
                "window": session.window.summary(),
            }
        return state

    def check_idle(self, user_id: str) -> bool:
        session = self._store.get_or_create_session(user_id)
        with session.lock:
            return session.window.is_idle()

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def reset_user(self, user_id: str) -> None:
        """Discard everything learned about *user_id* and start over."""
        self._store.reset_user(user_id)

    def reset_session(self, user_id: str) -> None:
        """Clear the live session histories, keeping the learned model."""
        self._store.get_or_create_session(user_id).reset_ephemeral()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _stamp(self, sample: MetricsSample) -> MetricsSample:
        """Fill a missing timestamp and express it in the clock's zone.

        Naive timestamps are taken as UTC.
        """
        now = self._clock()
        if sample.timestamp is None:
            return dataclasses.replace(sample, timestamp=now)
        ts = sample.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        return dataclasses.replace(sample, timestamp=ts.astimezone(now.tzinfo))

    def _score(self, session: UserSession, sample: MetricsSample) -> float:
        state = session.state
        if self._cold_start and not state.is_initialized and sample.intensity > 0:
            return ColdStartEstimator.estimate(sample)
        return VelocityEstimator.estimate(sample, state.weights)

    def _ingest(
        self,
        session: UserSession,
        sample: MetricsSample,
        user_state: dict[str, Any] | None = None,
    ) -> ActivityResult:
        """Run one window through the whole pipeline. Caller holds the session lock."""
        sample = self._stamp(sample)
        now = sample.timestamp
        velocity = self._score(session, sample)

        session.baseline.record_velocity(velocity, now)
        drop_check = session.detector.check_velocity_drop(velocity, now=now)
        error_check = session.detector.check_error_rate(now=now)
        intervention = combined_intervention(drop_check, error_check)

        session.adapter.record_data_point(
            DataPoint(
                timestamp=now,
                velocity=velocity,
                metrics=sample,
                user_state=user_state or {},
            )
        )

        session.last_velocity = velocity
        session.last_sample = sample
        session.last_drop_check = drop_check
        session.last_error_check = error_check
        if intervention is not None:
            logger.info(
                "Intervention for user %r: %s (velocity %.1f)",
                session.user_id,
                intervention.type.value,
                velocity,
            )
        return ActivityResult(
            velocity=velocity,
            drop_check=drop_check,
            error_check=error_check,
            intervention=intervention,
        )

    @staticmethod
    def _profile_summary(session: UserSession) -> dict[str, Any]:
        state = session.state
        profile = state.profile
        return {
            "baseline_velocity": profile.baseline_velocity,
            "peak_hours": sorted(profile.peak_hours),
            "low_energy_hours": sorted(profile.low_energy_hours),
            "optimal_range": list(state.thresholds.optimal_range),
            "weights": dataclasses.asdict(state.weights),
            "drop_ratio": state.thresholds.drop_ratio,
            "error_multiplier": state.thresholds.error_multiplier,
            "is_initialized": state.is_initialized,
            "data_points_collected": state.data_points_collected,
        }
