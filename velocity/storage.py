"""Persistence collaborators: where user model states are loaded from and saved to."""

from __future__ import annotations

import copy
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

import grpc
from google.protobuf import json_format
from google.protobuf.struct_pb2 import Struct

logger = logging.getLogger(__name__)

STORAGE_SERVICE = "velocity.ModelStorage"


class ModelStorage(ABC):
    """Key-value store of serialised user model states, keyed by user id.

    States are plain dicts as produced by
    :func:`~velocity.serialization.state_to_dict`.
    """

    @abstractmethod
    def load_user_model(self, user_id: str) -> dict[str, Any] | None:
        """Return the stored state for *user_id*, or ``None`` if there is none."""

    @abstractmethod
    def save_user_model(self, user_id: str, state: dict[str, Any]) -> None:
        """Store *state* for *user_id*, replacing any previous state."""


class InMemoryModelStorage(ModelStorage):
    """Thread-safe dict-backed storage for local runs and tests."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._states: dict[str, dict[str, Any]] = {}

    def load_user_model(self, user_id: str) -> dict[str, Any] | None:
        with self._lock:
            state = self._states.get(user_id)
            return copy.deepcopy(state) if state is not None else None

    def save_user_model(self, user_id: str, state: dict[str, Any]) -> None:
        with self._lock:
            self._states[user_id] = copy.deepcopy(state)

    def user_ids(self) -> list[str]:
        with self._lock:
            return sorted(self._states)


class ModelStorageClient(ModelStorage):
    """gRPC client for a remote ``velocity.ModelStorage`` service.

    Both RPCs exchange ``google.protobuf.Struct`` messages:

    * ``LoadUserModel({"user_id"})`` -> ``{"found": bool, "state": {...}}``
    * ``SaveUserModel({"user_id", "state"})`` -> ``{}``

    Args:
        channel: An open :class:`grpc.Channel` to the storage server.
        timeout_seconds: Deadline for each call.
    """

    def __init__(self, channel: grpc.Channel, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds
        self._load = channel.unary_unary(
            f"/{STORAGE_SERVICE}/LoadUserModel",
            request_serializer=Struct.SerializeToString,
            response_deserializer=Struct.FromString,
        )
        self._save = channel.unary_unary(
            f"/{STORAGE_SERVICE}/SaveUserModel",
            request_serializer=Struct.SerializeToString,
            response_deserializer=Struct.FromString,
        )

    def load_user_model(self, user_id: str) -> dict[str, Any] | None:
        response = self._load(to_struct({"user_id": user_id}), timeout=self._timeout)
        payload = from_struct(response)
        if not payload.get("found"):
            return None
        return payload.get("state")

    def save_user_model(self, user_id: str, state: dict[str, Any]) -> None:
        self._save(to_struct({"user_id": user_id, "state": state}), timeout=self._timeout)


# ---------------------------------------------------------------------------
# Struct helpers
# ---------------------------------------------------------------------------


def to_struct(payload: dict[str, Any]) -> Struct:
    """Convert a JSON-compatible dict into a ``google.protobuf.Struct``."""
    return json_format.ParseDict(payload, Struct())


def from_struct(message: Struct) -> dict[str, Any]:
    """Convert a ``google.protobuf.Struct`` back into a plain dict.

    Note that every number comes back as a float.
    """
    return json_format.MessageToDict(message)
