"""Velocity estimation: the weighted linear score and the cold-start fallback."""

from __future__ import annotations

import logging

import numpy as np

from velocity.models import MetricsSample, Weights

logger = logging.getLogger(__name__)

VELOCITY_MIN = 0.0
VELOCITY_MAX = 100.0

# (lower intensity bound, velocity) pairs, checked top-down
_COLD_START_BANDS = [
    (300.0, 97.5),
    (150.0, 87.0),
    (50.0, 69.5),
    (10.0, 49.5),
]
_COLD_START_FLOOR = 24.5


def clamp_velocity(value: float) -> float:
    """Clamp *value* into ``[0, 100]``."""
    return max(VELOCITY_MIN, min(VELOCITY_MAX, value))


class VelocityEstimator:
    """Turns a :class:`~velocity.models.MetricsSample` into a 0-100 score.

    The score is::

        raw = α · (1 / completion_time)
            + β · (1 - idle_time / total_time)
            - γ · (error_count / total_time)
        velocity = clamp(raw · 100, 0, 100)

    where ``(α, β, γ)`` are the user's :class:`~velocity.models.Weights`.

    All methods are pure and deterministic. A sample with a zero
    ``completion_time`` or ``total_time`` scores ``0.0`` instead of raising.
    """

    @staticmethod
    def is_estimable(sample: MetricsSample) -> bool:
        """Return ``True`` if the formula is defined for *sample*."""
        return sample.completion_time > 0 and sample.total_time > 0

    @staticmethod
    def components(sample: MetricsSample) -> tuple[float, float, float]:
        """Return ``(completion_score, activity_ratio, error_rate)`` for *sample*.

        ``activity_ratio`` is ``1 - idle_ratio``. Callers must check
        :meth:`is_estimable` first.
        """
        completion_score = 1 / sample.completion_time
        idle_ratio = sample.idle_time / sample.total_time
        error_rate = sample.error_count / sample.total_time
        return completion_score, 1 - idle_ratio, error_rate

    @classmethod
    def estimate(cls, sample: MetricsSample, weights: Weights) -> float:
        """Return the velocity score for *sample* under *weights*.

        Args:
            sample: The observation window.
            weights: The user's formula weights.

        Returns:
            A float in ``[0, 100]``; exactly ``0.0`` when the sample has no
            completion or total time.
        """
        if not cls.is_estimable(sample):
            return 0.0
        completion_score, activity_ratio, error_rate = cls.components(sample)
        raw = (
            weights.completion * completion_score
            + weights.idle * activity_ratio
            - weights.error * error_rate
        )
        return clamp_velocity(raw * 100)

    @classmethod
    def feature_vector(cls, sample: MetricsSample) -> np.ndarray:
        """Return the per-weight partial derivatives of ``raw`` as a vector.

        Ordered ``[completion, idle, error]`` to match
        :func:`weights_to_vector`. The error entry is the positive error rate;
        the adapter uses it as the gradient direction for γ.
        """
        return np.array(cls.components(sample), dtype=np.float64)


class ColdStartEstimator:
    """Deterministic velocity for users whose model has not learned yet.

    Maps the sample's activity intensity onto fixed bands::

        intensity > 300  ->  97.5
        intensity > 150  ->  87.0
        intensity > 50   ->  69.5
        intensity > 10   ->  49.5
        otherwise        ->  24.5
    """

    @staticmethod
    def estimate(sample: MetricsSample) -> float:
        """Return the band velocity for *sample*'s activity intensity."""
        intensity = sample.intensity
        for lower, value in _COLD_START_BANDS:
            if intensity > lower:
                return value
        return _COLD_START_FLOOR


def weights_to_vector(weights: Weights) -> np.ndarray:
    """Return ``[completion, idle, error]`` as a float vector."""
    return np.array([weights.completion, weights.idle, weights.error], dtype=np.float64)


def vector_to_weights(vec: np.ndarray) -> Weights:
    """Inverse of :func:`weights_to_vector`."""
    return Weights(completion=float(vec[0]), idle=float(vec[1]), error=float(vec[2]))
