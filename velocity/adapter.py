"""Online adaptation: per-user weights, thresholds and behavioural profile."""

from __future__ import annotations

import logging
import math
import threading

import numpy as np

from velocity.clock import Clock, system_clock
from velocity.estimator import (
    VelocityEstimator,
    vector_to_weights,
    weights_to_vector,
)
from velocity.models import (
    DataPoint,
    InterventionStats,
    InterventionType,
    TRAINING_BUFFER_SIZE,
    UserModelState,
    VelocityReading,
)

logger = logging.getLogger(__name__)

LEARNING_RATE = 0.1

# Baseline EMA blending: new = _EMA_KEEP * old + (1 - _EMA_KEEP) * velocity
_EMA_KEEP = 0.95

_PEAK_FACTOR = 1.1
_LOW_ENERGY_FACTOR = 0.8

# Threshold adaptation
_LOW_ACCEPTANCE = 0.3
_HIGH_ACCEPTANCE = 0.7
DROP_RATIO_STEP = 0.05
DROP_RATIO_BOUNDS = (0.50, 0.85)
ERROR_MULTIPLIER_STEP = 0.2
ERROR_MULTIPLIER_BOUNDS = (1.5, 3.0)

_MIN_OPTIMAL_RANGE_SAMPLES = 10
_MIN_WEIGHT = 1e-3

# Low-energy hours make the personalized break check more eager
_LOW_ENERGY_THRESHOLD_BOOST = 1.1


class OnlineAdapter:
    """Personalization loop for a single user's :class:`~velocity.models.UserModelState`.

    Every recorded :class:`~velocity.models.DataPoint` updates the profile
    straight away:

    * the baseline EMA (``0.95 · old + 0.05 · new``, seeded by the first point),
    * the peak / low-energy hour sets (velocity above ``1.1 ×`` or below
      ``0.8 ×`` the updated EMA; the sets only grow),
    * intervention accept/reject tallies and a running effectiveness
      average ``(old + improvement) / 2`` for accepted interventions.

    Once the training buffer holds *buffer_size* points a batch update runs
    (:meth:`perform_incremental_learning`): a gradient step on the formula
    weights, acceptance-driven threshold adaptation, and a fresh optimal
    range from the velocity history. The buffer is then cleared and the
    model is marked initialized for good.

    Appending, batching and clearing happen under one lock, so concurrent
    :meth:`record_data_point` calls never double-count or lose points across
    a clear.

    Args:
        state: The user's model state, mutated in place.
        clock: Source of the current time, used to stamp ``last_update``.
        learning_rate: Step size of the weight update.
        buffer_size: Number of buffered points that triggers a batch.
    """

    def __init__(
        self,
        state: UserModelState,
        clock: Clock | None = None,
        learning_rate: float = LEARNING_RATE,
        buffer_size: int = TRAINING_BUFFER_SIZE,
    ) -> None:
        if buffer_size < 1:
            raise ValueError(f"buffer_size must be >= 1, got {buffer_size!r}")
        self.state = state
        self._clock = clock or system_clock()
        self._learning_rate = learning_rate
        self._buffer_size = buffer_size
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    @property
    def confidence(self) -> str:
        """``"low"``, ``"medium"`` or ``"high"`` depending on data collected."""
        collected = self.state.data_points_collected
        if collected >= 50:
            return "high"
        if collected >= 20:
            return "medium"
        return "low"

    def record_data_point(self, point: DataPoint) -> None:
        """Buffer *point*, update the profile, and run a batch if the buffer is full."""
        with self._lock:
            self.state.training_buffer.append(point)
            self.state.data_points_collected += 1
            self._update_profile(point)
            if len(self.state.training_buffer) >= self._buffer_size:
                self.perform_incremental_learning()

    def perform_incremental_learning(self) -> None:
        """Run one batch update over the buffered points, then clear the buffer."""
        with self._lock:
            buffer = self.state.training_buffer
            if not buffer:
                return
            logger.info(
                "Learning from %d data points for user %r.",
                len(buffer),
                self.state.user_id,
            )
            self._update_weights(buffer)
            self._adapt_thresholds()
            self._update_optimal_range()

            self.state.training_buffer = []
            self.state.is_initialized = True
            self.state.last_update = self._clock()
            logger.debug(
                "Model for user %r updated: weights=%s thresholds=%s",
                self.state.user_id,
                self.state.weights,
                self.state.thresholds,
            )

    def should_suggest_break(self, velocity: float, hour: int) -> bool:
        """Return ``True`` if *velocity* is below the user's personal break threshold.

        The threshold is ``baseline_ema × drop_ratio``, raised by 10 % during a
        known low-energy hour. Always ``False`` before the first data point.
        """
        threshold = self.break_threshold(hour)
        return threshold is not None and velocity < threshold

    def break_threshold(self, hour: int) -> float | None:
        """Return the personal break threshold for *hour*, or ``None`` with no baseline yet."""
        baseline = self.state.profile.baseline_velocity
        if baseline is None:
            return None
        threshold = baseline * self.state.thresholds.drop_ratio
        if hour in self.state.profile.low_energy_hours:
            threshold *= _LOW_ENERGY_THRESHOLD_BOOST
        return threshold

    def predict_break_duration(self, velocity: float) -> int:
        """Return a break length in minutes: longer for a larger deficit."""
        baseline = self.state.profile.baseline_velocity
        if baseline is None:
            return 5
        deficit = baseline - velocity
        if deficit > 20:
            return 10
        if deficit > 10:
            return 7
        return 5

    # ------------------------------------------------------------------
    # Incremental profile updates
    # ------------------------------------------------------------------

    def _update_profile(self, point: DataPoint) -> None:
        profile = self.state.profile
        hour = point.timestamp.hour

        profile.velocity_history.append(
            VelocityReading(value=point.velocity, timestamp=point.timestamp)
        )

        if profile.baseline_velocity is None:
            profile.baseline_velocity = point.velocity
        else:
            profile.baseline_velocity = (
                _EMA_KEEP * profile.baseline_velocity + (1 - _EMA_KEEP) * point.velocity
            )

        baseline = profile.baseline_velocity
        if point.velocity > baseline * _PEAK_FACTOR:
            profile.peak_hours.add(hour)
        if point.velocity < baseline * _LOW_ENERGY_FACTOR:
            profile.low_energy_hours.add(hour)

        if point.intervention_triggered is not None:
            stats = profile.intervention_stats.setdefault(
                point.intervention_triggered, InterventionStats()
            )
            if point.intervention_accepted:
                stats.accepted += 1
                if point.post_intervention_velocity is not None:
                    improvement = point.post_intervention_velocity - point.velocity
                    stats.effectiveness = (stats.effectiveness + improvement) / 2
            else:
                stats.rejected += 1

    # ------------------------------------------------------------------
    # Batch steps
    # ------------------------------------------------------------------

    def _update_weights(self, buffer: list[DataPoint]) -> None:
        """One averaged gradient step on the formula weights, then renormalize.

        Points without a usable metrics window contribute nothing to the
        gradient but still count towards the average.
        """
        weights = self.state.weights
        gradient = np.zeros(3, dtype=np.float64)
        for point in buffer:
            if point.metrics is None or not VelocityEstimator.is_estimable(point.metrics):
                continue
            predicted = VelocityEstimator.estimate(point.metrics, weights)
            error = point.velocity - predicted
            gradient += error * VelocityEstimator.feature_vector(point.metrics)
        gradient /= len(buffer)

        updated = weights_to_vector(weights) + self._learning_rate * gradient
        self.state.weights = vector_to_weights(_normalize(updated))

    def _adapt_thresholds(self) -> None:
        """Move drop_ratio / error_multiplier by how often suggestions are accepted.

        Rarely accepted breaks lower the drop ratio (a bigger drop is needed
        before suggesting one); often accepted breaks raise it. Task-switch
        acceptance moves the error multiplier the opposite way.
        """
        thresholds = self.state.thresholds
        stats = self.state.profile.intervention_stats

        break_rate = stats.get(InterventionType.TAKE_BREAK, InterventionStats()).acceptance_rate
        if break_rate < _LOW_ACCEPTANCE:
            thresholds.drop_ratio -= DROP_RATIO_STEP
        elif break_rate > _HIGH_ACCEPTANCE:
            thresholds.drop_ratio += DROP_RATIO_STEP
        thresholds.drop_ratio = _clamp(thresholds.drop_ratio, *DROP_RATIO_BOUNDS)

        switch_rate = stats.get(InterventionType.SWITCH_TASK, InterventionStats()).acceptance_rate
        if switch_rate < _LOW_ACCEPTANCE:
            thresholds.error_multiplier += ERROR_MULTIPLIER_STEP
        elif switch_rate > _HIGH_ACCEPTANCE:
            thresholds.error_multiplier -= ERROR_MULTIPLIER_STEP
        thresholds.error_multiplier = _clamp(
            thresholds.error_multiplier, *ERROR_MULTIPLIER_BOUNDS
        )

    def _update_optimal_range(self) -> None:
        """Set the optimal range to the 25th/75th percentile of the velocity history."""
        velocities = sorted(r.value for r in self.state.profile.velocity_history)
        if len(velocities) < _MIN_OPTIMAL_RANGE_SAMPLES:
            return
        q1 = velocities[math.floor(len(velocities) * 0.25)]
        q3 = velocities[math.floor(len(velocities) * 0.75)]
        self.state.thresholds.optimal_range = (q1, q3)


def _normalize(vec: np.ndarray) -> np.ndarray:
    """Floor each weight at a small positive value and scale to sum to 1."""
    floored = np.maximum(vec, _MIN_WEIGHT)
    return floored / floored.sum()


def _clamp(value: float, low: float, high: float) -> float:
    # rounding keeps repeated ±step updates from drifting off the grid
    return max(low, min(high, round(value, 10)))
