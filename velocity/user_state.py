"""User state store: per-user sessions, load-through caching and persistence."""

from __future__ import annotations

import logging
import threading
import time

from velocity.adapter import LEARNING_RATE, OnlineAdapter
from velocity.baseline import BaselineTracker
from velocity.clock import Clock, system_clock
from velocity.detector import DropDetector
from velocity.metrics_window import MetricsWindow
from velocity.models import (
    TRAINING_BUFFER_SIZE,
    DropCheck,
    ErrorRateCheck,
    MetricsSample,
    UserModelState,
)
from velocity.serialization import state_from_dict, state_to_dict
from velocity.storage import ModelStorage

logger = logging.getLogger(__name__)


class UserSession:
    """Everything the engine holds for one user.

    Only :attr:`state` is durable. The metrics window, the short-horizon
    baseline and the detector's drop counter live for the lifetime of the
    cached session.

    All access goes through :attr:`lock`; sessions of different users never
    share a lock.

    Args:
        state: The user's model state (loaded or fresh).
        clock: Source of the current time.
        learning_rate: Passed to the :class:`~velocity.adapter.OnlineAdapter`.
        buffer_size: Passed to the :class:`~velocity.adapter.OnlineAdapter`.
    """

    def __init__(
        self,
        state: UserModelState,
        clock: Clock,
        learning_rate: float = LEARNING_RATE,
        buffer_size: int = TRAINING_BUFFER_SIZE,
    ) -> None:
        self.user_id = state.user_id
        self.lock = threading.RLock()
        self._clock = clock
        self.adapter = OnlineAdapter(
            state, clock=clock, learning_rate=learning_rate, buffer_size=buffer_size
        )
        self.window = MetricsWindow(clock=clock)
        self.baseline = BaselineTracker(clock=clock)
        self.detector = DropDetector(self.baseline, lambda: self.adapter.state.thresholds)
        self.last_velocity: float | None = None
        self.last_sample: MetricsSample | None = None
        self.last_drop_check: DropCheck | None = None
        self.last_error_check: ErrorRateCheck | None = None

    @property
    def state(self) -> UserModelState:
        return self.adapter.state

    def reset_ephemeral(self) -> None:
        """Forget the session-scoped histories but keep the learned model."""
        with self.lock:
            self.baseline.clear()
            self.detector.reset()
            self.window = MetricsWindow(clock=self._clock)
            self.last_velocity = None
            self.last_sample = None
            self.last_drop_check = None
            self.last_error_check = None


class UserStateStore:
    """Thread-safe cache of :class:`UserSession` objects in front of a storage collaborator.

    The storage collaborator holds the durable copy of every
    :class:`~velocity.models.UserModelState`; this store is only a cache.
    On first contact with a user id the state is loaded from storage, or a
    fresh default state is created if storage has none (or fails).

    Modified users are marked dirty and written back by
    :meth:`persist_all_to_storage`, which a background daemon thread calls
    periodically once :meth:`start_persist_loop` has run.

    Loading happens under a per-user lock, so a slow load for one user
    never blocks requests for another.

    Args:
        storage: The :class:`~velocity.storage.ModelStorage` collaborator.
        clock: Source of the current time for every session.
        learning_rate: Learning rate for new sessions' adapters.
        buffer_size: Training buffer size for new sessions' adapters.
    """

    def __init__(
        self,
        storage: ModelStorage,
        clock: Clock | None = None,
        learning_rate: float = LEARNING_RATE,
        buffer_size: int = TRAINING_BUFFER_SIZE,
    ) -> None:
        self._storage = storage
        self._clock = clock or system_clock()
        self._learning_rate = learning_rate
        self._buffer_size = buffer_size
        self._lock = threading.RLock()
        self._sessions: dict[str, UserSession] = {}
        self._load_locks: dict[str, threading.Lock] = {}
        self._dirty: set[str] = set()
        self._persist_thread: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Session access
    # ------------------------------------------------------------------

    def get_or_create_session(self, user_id: str) -> UserSession:
        """Return the cached session for *user_id*, loading or creating it if needed.

        Raises:
            ValueError: If *user_id* is empty.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        with self._lock:
            session = self._sessions.get(user_id)
            if session is not None:
                return session
            load_lock = self._load_locks.setdefault(user_id, threading.Lock())

        with load_lock:
            with self._lock:
                session = self._sessions.get(user_id)
                if session is not None:
                    return session
            session = self._new_session(self._load_state(user_id))
            with self._lock:
                self._sessions[user_id] = session
                self._load_locks.pop(user_id, None)
            return session

    def cached_user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._sessions)

    def mark_dirty(self, user_id: str) -> None:
        with self._lock:
            self._dirty.add(user_id)

    def reset_user(self, user_id: str) -> UserSession:
        """Replace *user_id*'s state with fresh defaults and save it at once.

        Returns:
            The new session.
        """
        if not user_id:
            raise ValueError("user_id must be non-empty")
        session = self._new_session(UserModelState(user_id=user_id))
        with self._lock:
            self._sessions[user_id] = session
            self._dirty.discard(user_id)
        self._save(session)
        logger.info("Model for user %r reset to defaults.", user_id)
        return session

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist_all_to_storage(self) -> int:
        """Write every dirty user's state to storage.

        Users whose save fails stay dirty and are retried next time.

        Returns:
            The number of states saved.
        """
        with self._lock:
            dirty = list(self._dirty)
            self._dirty.clear()
            sessions = [self._sessions[u] for u in dirty if u in self._sessions]

        saved = 0
        for session in sessions:
            if self._save(session):
                saved += 1
            else:
                self.mark_dirty(session.user_id)
        if saved:
            logger.info("Persisted state for %d users to storage.", saved)
        return saved

    def persist_user(self, user_id: str) -> bool:
        """Write one cached user's state to storage immediately."""
        with self._lock:
            session = self._sessions.get(user_id)
            self._dirty.discard(user_id)
        if session is None:
            return False
        if self._save(session):
            return True
        self.mark_dirty(user_id)
        return False

    def start_persist_loop(self, interval_seconds: int = 60) -> None:
        """Start a background daemon thread that periodically persists dirty state.

        Safe to call multiple times; only one thread is started.

        Args:
            interval_seconds: Seconds between persist calls.
        """
        if self._persist_thread is not None and self._persist_thread.is_alive():
            return
        self._persist_thread = threading.Thread(
            target=self._persist_loop,
            args=(interval_seconds,),
            name="state-persist",
            daemon=True,
        )
        self._persist_thread.start()
        logger.debug("State persist loop started (interval=%ds).", interval_seconds)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _new_session(self, state: UserModelState) -> UserSession:
        return UserSession(
            state,
            clock=self._clock,
            learning_rate=self._learning_rate,
            buffer_size=self._buffer_size,
        )

    def _load_state(self, user_id: str) -> UserModelState:
        try:
            data = self._storage.load_user_model(user_id)
        except Exception:
            logger.exception(
                "Failed to load model for user %r; starting from defaults.", user_id
            )
            return UserModelState(user_id=user_id)
        if data is None:
            logger.debug("No stored model for user %r; creating defaults.", user_id)
            return UserModelState(user_id=user_id)
        try:
            state = state_from_dict({**data, "user_id": user_id})
        except (KeyError, TypeError, ValueError):
            logger.exception(
                "Stored model for user %r is malformed; starting from defaults.", user_id
            )
            return UserModelState(user_id=user_id)
        logger.debug(
            "Loaded model for user %r (%d data points).",
            user_id,
            state.data_points_collected,
        )
        return state

    def _save(self, session: UserSession) -> bool:
        with session.lock:
            payload = state_to_dict(session.state)
        try:
            self._storage.save_user_model(session.user_id, payload)
        except Exception:
            logger.exception("Failed to persist model for user %r.", session.user_id)
            return False
        return True

    def _persist_loop(self, interval_seconds: int) -> None:
        """Periodically persist dirty state. Runs in a daemon thread."""
        while True:
            time.sleep(interval_seconds)
            self.persist_all_to_storage()
