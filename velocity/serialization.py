"""Conversion of :class:`~velocity.models.UserModelState` to and from plain data.

The storage collaborator only ever sees JSON-compatible dicts: numbers are
floats or ints, enums are their string values, sets are sorted lists and
timestamps are ISO-8601 strings (offset preserved, so hour-of-day stays
local).
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone
from typing import Any

from velocity.models import (
    VELOCITY_HISTORY_LIMIT,
    DataPoint,
    InterventionStats,
    InterventionType,
    MetricsSample,
    Thresholds,
    UserModelState,
    UserProfile,
    VelocityReading,
    Weights,
)


def state_to_dict(state: UserModelState) -> dict[str, Any]:
    """Serialise *state* into a JSON-compatible dict."""
    profile = state.profile
    return {
        "user_id": state.user_id,
        "weights": {
            "completion": state.weights.completion,
            "idle": state.weights.idle,
            "error": state.weights.error,
        },
        "thresholds": {
            "drop_ratio": state.thresholds.drop_ratio,
            "error_multiplier": state.thresholds.error_multiplier,
            "consecutive_windows_required": state.thresholds.consecutive_windows_required,
            "optimal_range": list(state.thresholds.optimal_range),
        },
        "profile": {
            "baseline_velocity": profile.baseline_velocity,
            "peak_hours": sorted(profile.peak_hours),
            "low_energy_hours": sorted(profile.low_energy_hours),
            "velocity_history": [
                {"value": r.value, "timestamp": _dt_to_str(r.timestamp)}
                for r in profile.velocity_history
            ],
            "intervention_stats": {
                itype.value: {
                    "accepted": stats.accepted,
                    "rejected": stats.rejected,
                    "effectiveness": stats.effectiveness,
                }
                for itype, stats in profile.intervention_stats.items()
            },
            "error_patterns": dict(profile.error_patterns),
        },
        "data_points_collected": state.data_points_collected,
        "is_initialized": state.is_initialized,
        "last_update": _dt_to_str(state.last_update) if state.last_update else None,
        "training_buffer": [_point_to_dict(p) for p in state.training_buffer],
    }


def state_from_dict(data: dict[str, Any]) -> UserModelState:
    """Rebuild a :class:`UserModelState` from :func:`state_to_dict` output.

    Missing keys fall back to the defaults of a brand-new user, so partial
    or older documents still load.
    """
    weights_data = data.get("weights") or {}
    defaults = Weights()
    weights = Weights(
        completion=float(weights_data.get("completion", defaults.completion)),
        idle=float(weights_data.get("idle", defaults.idle)),
        error=float(weights_data.get("error", defaults.error)),
    )

    thresholds_data = data.get("thresholds") or {}
    t_defaults = Thresholds()
    optimal = thresholds_data.get("optimal_range") or t_defaults.optimal_range
    thresholds = Thresholds(
        drop_ratio=float(thresholds_data.get("drop_ratio", t_defaults.drop_ratio)),
        error_multiplier=float(
            thresholds_data.get("error_multiplier", t_defaults.error_multiplier)
        ),
        consecutive_windows_required=int(
            thresholds_data.get(
                "consecutive_windows_required", t_defaults.consecutive_windows_required
            )
        ),
        optimal_range=(float(optimal[0]), float(optimal[1])),
    )

    profile_data = data.get("profile") or {}
    profile = UserProfile()
    baseline = profile_data.get("baseline_velocity")
    profile.baseline_velocity = float(baseline) if baseline is not None else None
    profile.peak_hours = {int(h) for h in profile_data.get("peak_hours", [])}
    profile.low_energy_hours = {int(h) for h in profile_data.get("low_energy_hours", [])}
    profile.velocity_history = deque(
        (
            VelocityReading(value=float(r["value"]), timestamp=_str_to_dt(r["timestamp"]))
            for r in profile_data.get("velocity_history", [])
        ),
        maxlen=VELOCITY_HISTORY_LIMIT,
    )
    for type_value, stats in (profile_data.get("intervention_stats") or {}).items():
        profile.intervention_stats[InterventionType(type_value)] = InterventionStats(
            accepted=int(stats.get("accepted", 0)),
            rejected=int(stats.get("rejected", 0)),
            effectiveness=float(stats.get("effectiveness", 0.0)),
        )
    profile.error_patterns = {
        k: int(v) for k, v in (profile_data.get("error_patterns") or {}).items()
    }

    last_update = data.get("last_update")
    return UserModelState(
        user_id=data["user_id"],
        weights=weights,
        thresholds=thresholds,
        profile=profile,
        data_points_collected=int(data.get("data_points_collected", 0)),
        is_initialized=bool(data.get("is_initialized", False)),
        last_update=_str_to_dt(last_update) if last_update else None,
        training_buffer=[_point_from_dict(p) for p in data.get("training_buffer", [])],
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------


def _point_to_dict(point: DataPoint) -> dict[str, Any]:
    return {
        "timestamp": _dt_to_str(point.timestamp),
        "velocity": point.velocity,
        "metrics": _sample_to_dict(point.metrics) if point.metrics else None,
        "user_state": dict(point.user_state),
        "intervention_triggered": (
            point.intervention_triggered.value if point.intervention_triggered else None
        ),
        "intervention_accepted": point.intervention_accepted,
        "post_intervention_velocity": point.post_intervention_velocity,
    }


def _point_from_dict(data: dict[str, Any]) -> DataPoint:
    metrics = data.get("metrics")
    triggered = data.get("intervention_triggered")
    accepted = data.get("intervention_accepted")
    post = data.get("post_intervention_velocity")
    return DataPoint(
        timestamp=_str_to_dt(data["timestamp"]),
        velocity=float(data["velocity"]),
        metrics=sample_from_dict(metrics) if metrics else None,
        user_state=dict(data.get("user_state") or {}),
        intervention_triggered=InterventionType(triggered) if triggered else None,
        intervention_accepted=bool(accepted) if accepted is not None else None,
        post_intervention_velocity=float(post) if post is not None else None,
    )


def _sample_to_dict(sample: MetricsSample) -> dict[str, Any]:
    return {
        "completion_time": sample.completion_time,
        "idle_time": sample.idle_time,
        "total_time": sample.total_time,
        "error_count": sample.error_count,
        "clicks": sample.clicks,
        "keystrokes": sample.keystrokes,
        "mouse_moves": sample.mouse_moves,
        "scrolls": sample.scrolls,
        "hour": sample.hour,
        "day_of_week": sample.day_of_week,
        "timestamp": _dt_to_str(sample.timestamp) if sample.timestamp else None,
    }


def sample_from_dict(data: dict[str, Any]) -> MetricsSample:
    """Build a validated :class:`MetricsSample` from a JSON-shaped dict.

    Accepts both ``snake_case`` keys and the browser client's ``camelCase``
    keys (``completionTime``, ``mouseMoves``, ...).

    Raises:
        ValueError: If a required field is missing or a value is invalid.
    """

    def pick(snake: str, camel: str, default: Any = None) -> Any:
        if snake in data:
            return data[snake]
        return data.get(camel, default)

    completion = pick("completion_time", "completionTime")
    total = pick("total_time", "totalTime")
    if completion is None or total is None:
        raise ValueError("metrics require completion_time and total_time")
    timestamp = pick("timestamp", "timestamp")
    return MetricsSample(
        completion_time=float(completion),
        idle_time=float(pick("idle_time", "idleTime", 0.0)),
        total_time=float(total),
        error_count=int(pick("error_count", "errorCount", 0)),
        clicks=int(pick("clicks", "clicks", 0)),
        keystrokes=int(pick("keystrokes", "keystrokes", 0)),
        mouse_moves=int(pick("mouse_moves", "mouseMoves", 0)),
        scrolls=int(pick("scrolls", "scrolls", 0)),
        hour=int(pick("hour", "hour", 0)),
        day_of_week=int(pick("day_of_week", "dayOfWeek", 0)),
        timestamp=_str_to_dt(timestamp) if timestamp else None,
    )


def _dt_to_str(dt: datetime) -> str:
    return (dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)).isoformat()


def _str_to_dt(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
