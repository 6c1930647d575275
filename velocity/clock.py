"""Injectable wall clock used by every time-dependent component."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone, tzinfo
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def system_clock(tz: tzinfo | str = timezone.utc) -> Clock:
    """Return a clock reading the system time in *tz*.

    Args:
        tz: A ``tzinfo`` or an IANA zone name such as ``"Europe/London"``.
            Hour-of-day logic uses this zone, so it should be the user's
            local zone.

    Returns:
        A zero-argument callable returning an aware :class:`datetime`.
    """
    zone = ZoneInfo(tz) if isinstance(tz, str) else tz

    def _now() -> datetime:
        return datetime.now(zone)

    return _now


class FixedClock:
    """A manually advanced clock for tests and deterministic replay.

    Args:
        start: The initial time. Naive datetimes are assumed UTC.
    """

    def __init__(self, start: datetime) -> None:
        self._now = start if start.tzinfo else start.replace(tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self._now

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by ``timedelta(**kwargs)`` and return the new time."""
        self._now = self._now + timedelta(**kwargs)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = when if when.tzinfo else when.replace(tzinfo=timezone.utc)
