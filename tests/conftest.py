"""Shared pytest fixtures for all velocity tests."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from velocity.clock import FixedClock
from velocity.models import MetricsSample, UserModelState
from velocity.storage import InMemoryModelStorage
from velocity.user_state import UserStateStore


TS = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_sample(**overrides) -> MetricsSample:
    """Return a valid MetricsSample (Scenario A values) with *overrides* applied."""
    fields = {
        "completion_time": 5.0,
        "idle_time": 1.0,
        "total_time": 10.0,
        "error_count": 0,
    }
    fields.update(overrides)
    return MetricsSample(**fields)


# ---------------------------------------------------------------------------
# Clock / state fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FixedClock:
    """A clock frozen at 2024-06-01 12:00 UTC."""
    return FixedClock(TS)


@pytest.fixture
def new_state() -> UserModelState:
    """A brand-new user with no history (cold-start case)."""
    return UserModelState(user_id="u_new")


@pytest.fixture
def storage() -> InMemoryModelStorage:
    return InMemoryModelStorage()


@pytest.fixture
def store(storage, clock) -> UserStateStore:
    return UserStateStore(storage, clock=clock)


# ---------------------------------------------------------------------------
# Sample fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fast_clean_sample() -> MetricsSample:
    """Scenario A: fast, clean work (velocity 39.5 under default weights)."""
    return make_sample()


@pytest.fixture
def slow_erratic_sample() -> MetricsSample:
    """Scenario B: slow, error-prone work (velocity ~12.67 under default weights)."""
    return make_sample(completion_time=15.0, idle_time=5.0, error_count=3)
