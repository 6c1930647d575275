"""Engagement tracking: accumulates raw activity events into fixed time windows."""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Any

from velocity.clock import Clock, system_clock
from velocity.models import ErrorType, MetricsSample

logger = logging.getLogger(__name__)

WINDOW_MINUTES = 1
IDLE_THRESHOLD_SECONDS = 30
INTENSITY_HISTORY_LIMIT = 12


class MetricsWindow:
    """Per-user accumulator turning raw events into :class:`~velocity.models.MetricsSample`\\ s.

    Events are counted into the current window. A window closes when an
    event arrives after *window_minutes* have elapsed (or when
    :meth:`finalize` is called); closing it yields a sample and starts a
    fresh window.

    Idle time accrues when the gap since the previous event exceeds
    *idle_threshold_seconds*; the whole gap is counted.

    The activity intensity of each closed window (and of every sample
    passed to :meth:`observe_sample`) is kept in a short bounded history,
    which the extended-work suggestion rule reads.

    Args:
        clock: Source of the current time.
        window_minutes: Length of a tracking window.
        idle_threshold_seconds: Gap after which the user counts as idle.
        intensity_history: How many window intensities to keep.
    """

    def __init__(
        self,
        clock: Clock | None = None,
        window_minutes: float = WINDOW_MINUTES,
        idle_threshold_seconds: float = IDLE_THRESHOLD_SECONDS,
        intensity_history: int = INTENSITY_HISTORY_LIMIT,
    ) -> None:
        self._clock = clock or system_clock()
        self._window = timedelta(minutes=window_minutes)
        self._idle_threshold = timedelta(seconds=idle_threshold_seconds)
        now = self._clock()
        self.session_start = now
        self.last_activity = now
        self.window_start = now
        self.total_activities = 0
        self.total_errors = 0
        self.recent_intensities: deque[float] = deque(maxlen=intensity_history)
        self._reset_counts()

    # ------------------------------------------------------------------
    # Event recording
    # ------------------------------------------------------------------

    def record_activity(
        self,
        activity_type: str,
        clicks: int = 0,
        keystrokes: int = 0,
        mouse_moves: int = 0,
        scrolls: int = 0,
        now: datetime | None = None,
    ) -> MetricsSample | None:
        """Count one activity event.

        Args:
            activity_type: Free-form label (``"click"``, ``"keydown"``, ...).
            clicks, keystrokes, mouse_moves, scrolls: Counts carried by the
                event; all must be non-negative.
            now: Event time; defaults to the clock.

        Returns:
            The sample for the window that this event closed, or ``None`` if
            the current window is still open.

        Raises:
            ValueError: If any count is negative.
        """
        for name, value in (
            ("clicks", clicks),
            ("keystrokes", keystrokes),
            ("mouse_moves", mouse_moves),
            ("scrolls", scrolls),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0, got {value!r}")

        now = now or self._clock()
        closed = None
        if now - self.window_start >= self._window:
            closed = self.finalize(now)

        gap = now - self.last_activity
        if gap > self._idle_threshold:
            self._idle += gap

        self._clicks += clicks
        self._keystrokes += keystrokes
        self._mouse_moves += mouse_moves
        self._scrolls += scrolls
        self.total_activities += 1
        self.last_activity = now
        self._events += 1
        logger.debug("Activity %r recorded (window events=%d)", activity_type, self._events)
        return closed

    def record_task_completion(
        self,
        task_id: str,
        duration: float,
        complexity: int | None = None,
        now: datetime | None = None,
    ) -> MetricsSample | None:
        """Count a finished task; *duration* (minutes) adds to the completion time.

        Raises:
            ValueError: If *duration* is negative.
        """
        if duration < 0:
            raise ValueError(f"duration must be >= 0, got {duration!r}")
        closed = self.record_activity("task_completion", now=now)
        self._tasks_completed += 1
        self._completion_minutes += duration
        return closed

    def record_error(
        self, error_type: ErrorType | str, now: datetime | None = None
    ) -> MetricsSample | None:
        """Count a user error in the current window."""
        closed = self.record_activity(f"error:{ErrorType.parse(error_type).value}", now=now)
        self._error_count += 1
        self.total_errors += 1
        return closed

    def observe_sample(self, sample: MetricsSample, now: datetime | None = None) -> None:
        """Register a window aggregated elsewhere (e.g. by the browser client)."""
        self.recent_intensities.append(sample.intensity)
        self.total_activities += 1
        self.last_activity = now or sample.timestamp or self._clock()

    # ------------------------------------------------------------------
    # Window snapshots
    # ------------------------------------------------------------------

    def finalize(self, now: datetime | None = None) -> MetricsSample:
        """Close the current window and return its sample.

        ``completion_time`` falls back to 1 minute when no task was finished
        in the window, so an activity-only window still gets a score.
        """
        now = now or self._clock()
        sample = MetricsSample(
            completion_time=self._completion_minutes or 1,
            idle_time=self._idle.total_seconds() / 60,
            total_time=max((now - self.window_start).total_seconds() / 60, 0.0),
            error_count=self._error_count,
            clicks=self._clicks,
            keystrokes=self._keystrokes,
            mouse_moves=self._mouse_moves,
            scrolls=self._scrolls,
            hour=now.hour,
            day_of_week=_day_of_week(now),
            timestamp=now,
        )
        self.recent_intensities.append(sample.intensity)
        self.window_start = now
        self._reset_counts()
        return sample

    def current_metrics(self, now: datetime | None = None) -> MetricsSample:
        """Return a snapshot of the still-open window without closing it."""
        now = now or self._clock()
        elapsed = max((now - self.window_start).total_seconds() / 60, 0.0)
        return MetricsSample(
            completion_time=self._completion_minutes or elapsed or 1,
            idle_time=self._idle.total_seconds() / 60,
            total_time=elapsed or 1,
            error_count=self._error_count,
            clicks=self._clicks,
            keystrokes=self._keystrokes,
            mouse_moves=self._mouse_moves,
            scrolls=self._scrolls,
            hour=now.hour,
            day_of_week=_day_of_week(now),
            timestamp=now,
        )

    def is_idle(self, now: datetime | None = None) -> bool:
        now = now or self._clock()
        return now - self.last_activity > self._idle_threshold

    def summary(self, now: datetime | None = None) -> dict[str, Any]:
        """Return a JSON-friendly summary of the session and open window."""
        now = now or self._clock()
        return {
            "session_minutes": (now - self.session_start).total_seconds() / 60,
            "total_activities": self.total_activities,
            "total_errors": self.total_errors,
            "current_window": {
                "elapsed_seconds": (now - self.window_start).total_seconds(),
                "events": self._events,
                "tasks_completed": self._tasks_completed,
                "completion_time": self._completion_minutes,
                "idle_time": self._idle.total_seconds() / 60,
                "error_count": self._error_count,
            },
            "recent_intensities": list(self.recent_intensities),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _reset_counts(self) -> None:
        self._events = 0
        self._tasks_completed = 0
        self._completion_minutes = 0.0
        self._idle = timedelta(0)
        self._error_count = 0
        self._clicks = 0
        self._keystrokes = 0
        self._mouse_moves = 0
        self._scrolls = 0


def _day_of_week(ts: datetime) -> int:
    """Day of week with Sunday as 0, matching the browser client."""
    return ts.isoweekday() % 7
