"""
Canonical context feature schema.

The index <-> name table here is the single source of truth for the
layout of stored context snapshots, model weight blobs and feature
explanations. Changing the order invalidates every persisted model.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional, Tuple, Union

import numpy as np

from ..errors import InvalidContextError

# Bump when the feature layout changes
FEATURE_SCHEMA_VERSION = 1

FEATURE_GROUPS: Dict[str, Tuple[str, ...]] = {
    "temporal": (
        "hour_of_day",
        "day_of_week",
        "week_of_year",
        "is_weekend",
        "time_since_wake",
        "time_until_sleep",
    ),
    "physiological": (
        "energy_level",
        "energy_trajectory",
        "mood_level",
        "mood_trajectory",
        "fatigue_score",
        "recovery_need",
    ),
    "learning": (
        "skill_momentum",
        "practice_diversity",
        "learning_rate",
        "focus_trend",
        "pomodoros_today",
        "study_minutes_today",
    ),
    "goals": (
        "big_3_completion",
        "weekly_goal_progress",
        "assignment_urgency",
        "overdue_count",
        "streak_days",
        "goal_alignment",
    ),
    "circadian": (
        "circadian_phase",
        "peak_focus_prob",
        "optimal_creative",
        "optimal_analytical",
    ),
    "historical": (
        "similar_context_outcome",
        "same_hour_productivity",
        "same_day_energy",
        "hours_since_break",
        "hours_since_workout",
        "hours_since_checkin",
    ),
    "workload": (
        "active_assignments",
        "due_today",
        "due_this_week",
        "study_hours_week",
        "target_hours_week",
        "workload_balance",
    ),
    "interactions": (
        "energy_x_hour",
        "mood_x_workload",
        "streak_x_momentum",
        "fatigue_x_time",
        "focus_x_complexity",
        "recovery_x_intensity",
        "energy_traj_x_goals",
        "mood_traj_x_social",
        "circadian_x_task",
        "history_x_current",
    ),
}

FEATURE_NAMES: Tuple[str, ...] = tuple(
    name for group in FEATURE_GROUPS.values() for name in group
)
FEATURE_DIM = len(FEATURE_NAMES)
FEATURE_INDEX: Dict[str, int] = {name: i for i, name in enumerate(FEATURE_NAMES)}

INTERACTION_FEATURES = FEATURE_GROUPS["interactions"]

# Signed features live in [-1, 1]
SIGNED_FEATURES = frozenset({"energy_trajectory", "mood_trajectory", "focus_trend"})

# Values used when the underlying activity data is absent
FEATURE_DEFAULTS: Dict[str, float] = {name: 0.5 for name in FEATURE_NAMES}
FEATURE_DEFAULTS.update({
    "is_weekend": 0.0,
    "energy_trajectory": 0.0,
    "mood_trajectory": 0.0,
    "fatigue_score": 0.3,
    "recovery_need": 0.3,
    "focus_trend": 0.0,
    "pomodoros_today": 0.0,
    "study_minutes_today": 0.0,
    "big_3_completion": 0.0,
    "weekly_goal_progress": 0.0,
    "assignment_urgency": 0.0,
    "overdue_count": 0.0,
    "streak_days": 0.0,
    "active_assignments": 0.0,
    "due_today": 0.0,
    "due_this_week": 0.0,
    "study_hours_week": 0.0,
    "target_hours_week": 0.0,
    "workload_balance": 1.0,
})

SNAPSHOT_DTYPE = np.dtype("<f4")


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def clamp_feature(name: str, value: float) -> float:
    """Clamp a base feature to its documented range."""
    if name in SIGNED_FEATURES:
        return _clamp(value, -1.0, 1.0)
    if name == "workload_balance":
        return _clamp(value, 0.0, 2.0)
    return _clamp(value, 0.0, 1.0)


def compute_interactions(f: Mapping[str, float]) -> Dict[str, float]:
    """Derive the interaction terms from base features."""
    return {
        "energy_x_hour": f["energy_level"] * f["peak_focus_prob"],
        "mood_x_workload": f["mood_level"] * (1.0 - f["active_assignments"]),
        "streak_x_momentum": f["streak_days"] * f["skill_momentum"],
        "fatigue_x_time": f["fatigue_score"] * (1.0 - f["time_until_sleep"]),
        "focus_x_complexity": f["focus_trend"] * f["assignment_urgency"],
        "recovery_x_intensity": f["recovery_need"] * f["fatigue_score"],
        "energy_traj_x_goals": (f["energy_trajectory"] + 1.0) / 2.0 * f["assignment_urgency"],
        "mood_traj_x_social": (f["mood_trajectory"] + 1.0) / 2.0 * f["goal_alignment"],
        "circadian_x_task": f["peak_focus_prob"] * f["optimal_analytical"],
        "history_x_current": f["similar_context_outcome"] * f["energy_level"],
    }


@dataclass(frozen=True)
class ContextVector:
    """
    Fixed-length snapshot of the user's situation at one moment.

    Attributes:
        values: Exactly FEATURE_DIM floats in FEATURE_NAMES order
    """
    values: Tuple[float, ...]

    def __post_init__(self):
        values = tuple(float(v) for v in self.values)
        if len(values) != FEATURE_DIM:
            raise InvalidContextError(
                f"Context vector must have {FEATURE_DIM} features, got {len(values)}"
            )
        for i, v in enumerate(values):
            if not math.isfinite(v):
                raise InvalidContextError(f"Feature {FEATURE_NAMES[i]} is not finite: {v}")
        object.__setattr__(self, "values", values)

    @classmethod
    def from_features(cls, features: Optional[Mapping[str, float]] = None) -> "ContextVector":
        """
        Build a vector from named base features.

        Missing features take their defaults, base features are clamped
        and interaction terms are always recomputed.
        """
        features = features or {}
        unknown = set(features) - set(FEATURE_NAMES)
        if unknown:
            raise InvalidContextError(f"Unknown features: {sorted(unknown)}")

        base: Dict[str, float] = {}
        for name in FEATURE_NAMES:
            if name in INTERACTION_FEATURES:
                continue
            base[name] = clamp_feature(name, float(features.get(name, FEATURE_DEFAULTS[name])))
        base.update(compute_interactions(base))
        return cls(tuple(base[name] for name in FEATURE_NAMES))

    @classmethod
    def from_array(cls, array: Union[np.ndarray, Iterable[float]]) -> "ContextVector":
        arr = np.asarray(array, dtype=np.float64).ravel()
        return cls(tuple(arr.tolist()))

    @classmethod
    def from_bytes(cls, blob: bytes) -> Optional["ContextVector"]:
        """Decode a float32 little-endian snapshot. Returns None on bad length."""
        if len(blob) != FEATURE_DIM * SNAPSHOT_DTYPE.itemsize:
            return None
        return cls.from_array(np.frombuffer(blob, dtype=SNAPSHOT_DTYPE))

    def to_bytes(self) -> bytes:
        return np.asarray(self.values, dtype=SNAPSHOT_DTYPE).tobytes()

    def as_array(self) -> np.ndarray:
        arr = np.array(self.values, dtype=np.float64)
        arr.setflags(write=False)
        return arr

    def to_dict(self) -> Dict[str, float]:
        return dict(zip(FEATURE_NAMES, self.values))

    def __getitem__(self, key: Union[int, str]) -> float:
        if isinstance(key, str):
            return self.values[FEATURE_INDEX[key]]
        return self.values[key]

    def __len__(self) -> int:
        return FEATURE_DIM

    def with_feature(self, name: str, value: float) -> "ContextVector":
        """Return a copy with one base feature replaced and interactions recomputed."""
        if name in INTERACTION_FEATURES:
            raise InvalidContextError(f"{name} is derived and cannot be set directly")
        features = self.to_dict()
        features[name] = value
        return ContextVector.from_features(features)

    def describe(self) -> str:
        """Short natural-language summary used as a semantic memory query."""
        energy = self["energy_level"]
        mood = self["mood_level"]
        hour = self["hour_of_day"] * 23.0
        workload = self["active_assignments"]

        if energy > 0.7:
            energy_desc = "high energy"
        elif energy > 0.4:
            energy_desc = "moderate energy"
        else:
            energy_desc = "low energy"

        if mood > 0.7:
            mood_desc = "good mood"
        elif mood > 0.4:
            mood_desc = "neutral mood"
        else:
            mood_desc = "low mood"

        day_desc = "weekend" if self["is_weekend"] > 0.5 else "weekday"

        if hour < 12:
            time_desc = "morning"
        elif hour < 17:
            time_desc = "afternoon"
        elif hour < 21:
            time_desc = "evening"
        else:
            time_desc = "night"

        if workload > 0.5:
            workload_desc = "heavy workload"
        elif workload > 0.2:
            workload_desc = "moderate workload"
        else:
            workload_desc = "light workload"

        return f"{energy_desc}, {mood_desc}, {day_desc} {time_desc}, {workload_desc}"


def default_context() -> ContextVector:
    """Context with every base feature at its default."""
    return ContextVector.from_features({})


def feature_names() -> List[str]:
    return list(FEATURE_NAMES)
