"""Rolling short-horizon baselines: mean velocity and error rates per user."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta

from velocity.clock import Clock, system_clock
from velocity.models import ErrorEvent, ErrorType, VelocityReading

logger = logging.getLogger(__name__)

VELOCITY_RETENTION_MINUTES = 60
ERROR_RETENTION_MINUTES = 30
BASELINE_WINDOW_MINUTES = 30
ERROR_WINDOW_MINUTES = 5


class BaselineTracker:
    """Time-windowed velocity and error histories for one user.

    Both histories are pruned to their retention window on every write, so
    memory stays bounded however long a session runs. Windows for the read
    methods are measured back from ``now`` (the injected clock by default).

    This is the *short* baseline used for drop detection. The long-lived
    personal baseline is the EMA kept in
    :attr:`~velocity.models.UserProfile.baseline_velocity`.

    Args:
        clock: Source of the current time.
        velocity_retention_minutes: How long velocity readings are kept.
        error_retention_minutes: How long error events are kept.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        velocity_retention_minutes: float = VELOCITY_RETENTION_MINUTES,
        error_retention_minutes: float = ERROR_RETENTION_MINUTES,
    ) -> None:
        self._clock = clock or system_clock()
        self._velocity_retention = timedelta(minutes=velocity_retention_minutes)
        self._error_retention = timedelta(minutes=error_retention_minutes)
        self._velocities: deque[VelocityReading] = deque()
        self._errors: deque[ErrorEvent] = deque()

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def record_velocity(self, value: float, timestamp: datetime | None = None) -> None:
        """Append a velocity reading and drop readings older than the retention window."""
        ts = timestamp or self._clock()
        _append_ordered(self._velocities, VelocityReading(value=value, timestamp=ts))
        _prune(self._velocities, ts - self._velocity_retention)

    def record_error(
        self, error_type: ErrorType | str, timestamp: datetime | None = None
    ) -> None:
        """Append an error event and drop events older than the retention window."""
        ts = timestamp or self._clock()
        if not isinstance(error_type, ErrorType):
            error_type = ErrorType.parse(error_type)
        _append_ordered(self._errors, ErrorEvent(error_type=error_type, timestamp=ts))
        _prune(self._errors, ts - self._error_retention)

    def clear(self) -> None:
        self._velocities.clear()
        self._errors.clear()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_baseline(
        self,
        window_minutes: float = BASELINE_WINDOW_MINUTES,
        now: datetime | None = None,
    ) -> float | None:
        """Return the mean velocity over the last *window_minutes*.

        Returns:
            The arithmetic mean, or ``None`` when no reading falls inside
            the window. ``None`` means "not enough data", never "zero".
        """
        readings = _within(self._velocities, window_minutes, now or self._clock())
        if not readings:
            return None
        return sum(r.value for r in readings) / len(readings)

    def get_current_error_rate(
        self,
        window_minutes: float = ERROR_WINDOW_MINUTES,
        now: datetime | None = None,
    ) -> float:
        """Return errors per minute over the last *window_minutes*."""
        events = _within(self._errors, window_minutes, now or self._clock())
        return len(events) / window_minutes

    def get_average_error_rate(
        self,
        window_minutes: float = BASELINE_WINDOW_MINUTES,
        now: datetime | None = None,
    ) -> float:
        """Return errors per minute over the longer comparison window."""
        events = _within(self._errors, window_minutes, now or self._clock())
        return len(events) / window_minutes

    def recent_readings(self, n: int = 10) -> list[VelocityReading]:
        """Return the last *n* velocity readings, oldest first."""
        return list(self._velocities)[-n:]

    def recent_errors(self, n: int = 20) -> list[ErrorEvent]:
        """Return the last *n* error events, oldest first."""
        return list(self._errors)[-n:]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _append_ordered(history: deque, item: VelocityReading | ErrorEvent) -> None:
    """Append *item*, keeping *history* sorted by timestamp."""
    if history and item.timestamp < history[-1].timestamp:
        ordered = sorted([*history, item], key=lambda r: r.timestamp)
        history.clear()
        history.extend(ordered)
    else:
        history.append(item)


def _prune(history: deque, cutoff: datetime) -> None:
    """Drop entries at or before *cutoff* from the left of *history*."""
    while history and history[0].timestamp <= cutoff:
        history.popleft()


def _within(history: deque, window_minutes: float, now: datetime) -> list:
    start = now - timedelta(minutes=window_minutes)
    return [r for r in history if start <= r.timestamp <= now]
