"""
Turns raw activity signals into a ContextVector.

capture() is a pure function of what the ActivitySource returns; errors
from the source propagate unchanged, so a caller never sees a partially
filled vector.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, Optional, Tuple

from ..activity import ActivitySignals, ActivitySource
from .feature_schema import ContextVector

if TYPE_CHECKING:
    from ..storage import AgentStore

logger = logging.getLogger(__name__)

WAKE_HOUR = 7.0
SLEEP_HOUR = 23.0
AWAKE_SPAN_HOURS = 16.0
PEAK_FOCUS_HOURS = (9.0, 10.0, 11.0, 14.0, 15.0, 16.0)


def _ratio(value: float, scale: float) -> float:
    return min(1.0, max(0.0, value / scale))


def temporal_features(now: datetime) -> Dict[str, float]:
    hour = float(now.hour)
    weekday = now.isoweekday() % 7  # Sunday = 0
    return {
        "hour_of_day": hour / 23.0,
        "day_of_week": weekday / 6.0,
        "week_of_year": min(1.0, now.isocalendar()[1] / 52.0),
        "is_weekend": 1.0 if weekday in (0, 6) else 0.0,
        "time_since_wake": _ratio(max(0.0, hour - WAKE_HOUR), AWAKE_SPAN_HOURS),
        "time_until_sleep": _ratio(max(0.0, SLEEP_HOUR - hour), AWAKE_SPAN_HOURS),
    }


def circadian_features(now: datetime) -> Dict[str, float]:
    hour = float(now.hour)
    if any(abs(hour - h) < 1.0 for h in PEAK_FOCUS_HOURS):
        peak = 0.8
    elif 6.0 <= hour <= 20.0:
        peak = 0.5
    else:
        peak = 0.2
    return {
        "circadian_phase": _ratio(max(0.0, hour - WAKE_HOUR), AWAKE_SPAN_HOURS),
        "peak_focus_prob": peak,
        "optimal_creative": 0.8 if 6.0 <= hour <= 12.0 else 0.4,
        "optimal_analytical": 0.8 if 14.0 <= hour <= 18.0 else 0.4,
    }


def assignment_urgency(signals: ActivitySignals) -> float:
    """Max urgency over the soonest open assignments."""
    urgency = 0.0
    for due, priority in signals.upcoming_assignments:
        days_left = (due.date() - signals.now.date()).days
        if due < signals.now:
            time_urgency = 1.0
        elif days_left == 0:
            time_urgency = 0.95
        else:
            time_urgency = max(0.0, 1.0 - days_left / 14.0)
        urgency = max(urgency, time_urgency * 0.7 + (priority / 3.0) * 0.3)
    return min(1.0, urgency)


def features_from_signals(signals: ActivitySignals) -> Dict[str, float]:
    """Base feature values derived from signals; absent data is left out."""
    f: Dict[str, float] = {}
    f.update(temporal_features(signals.now))
    f.update(circadian_features(signals.now))

    # Physiological
    if signals.energy is not None:
        f["energy_level"] = (signals.energy - 1) / 9.0
        if signals.previous_energy is not None:
            f["energy_trajectory"] = (signals.energy - signals.previous_energy) / 9.0
    if signals.mood is not None:
        f["mood_level"] = (signals.mood - 1) / 9.0
        if signals.previous_mood is not None:
            f["mood_trajectory"] = (signals.mood - signals.previous_mood) / 9.0

    fatigue = _ratio(signals.recent_session_minutes, 180.0)
    since_break = (
        _ratio(signals.hours_since_break, 2.0) if signals.hours_since_break is not None else 0.0
    )
    f["fatigue_score"] = fatigue
    f["hours_since_break"] = since_break
    f["recovery_need"] = min(1.0, fatigue * 0.6 + since_break * 0.4)

    # Learning
    f["pomodoros_today"] = _ratio(signals.study_sessions_today, 12.0)
    f["study_minutes_today"] = _ratio(signals.study_minutes_today, 480.0)
    if signals.total_skills > 0:
        f["practice_diversity"] = _ratio(signals.skills_practiced_week, signals.total_skills)
        f["skill_momentum"] = _ratio(signals.practice_days_week, 7.0)

    # Goals
    if signals.big3_total > 0:
        f["big_3_completion"] = signals.big3_completed / signals.big3_total
    f["assignment_urgency"] = assignment_urgency(signals)
    f["overdue_count"] = _ratio(signals.overdue_count, 5.0)
    f["streak_days"] = _ratio(signals.checkin_streak_days, 30.0)

    # Historical
    f["hours_since_checkin"] = (
        _ratio(signals.hours_since_checkin, 24.0) if signals.hours_since_checkin is not None else 1.0
    )
    f["hours_since_workout"] = (
        _ratio(signals.hours_since_workout, 48.0) if signals.hours_since_workout is not None else 1.0
    )
    if signals.same_hour_avg_minutes is not None:
        f["same_hour_productivity"] = _ratio(signals.same_hour_avg_minutes, 60.0)
    if signals.same_weekday_avg_energy is not None:
        f["same_day_energy"] = (signals.same_weekday_avg_energy - 1.0) / 9.0

    # Workload
    f["active_assignments"] = _ratio(signals.active_assignments, 20.0)
    f["due_today"] = _ratio(signals.due_today, 5.0)
    f["due_this_week"] = _ratio(signals.due_this_week, 10.0)

    study_hours = signals.study_minutes_week / 60.0
    f["study_hours_week"] = _ratio(study_hours, 40.0)
    f["target_hours_week"] = _ratio(signals.target_hours_week, 40.0)
    if signals.target_hours_week > 0:
        progress = study_hours / signals.target_hours_week
        f["workload_balance"] = min(2.0, max(0.0, progress))
        f["weekly_goal_progress"] = min(1.0, progress)
    else:
        f["workload_balance"] = 1.0

    return f


class FeatureExtractor:
    """
    Captures the current context from an ActivitySource.

    Example:
        >>> extractor = FeatureExtractor(SQLiteActivitySource("tracker.db"))
        >>> context = extractor.capture()
        >>> context["hour_of_day"]
    """

    def __init__(
        self,
        source: ActivitySource,
        store: Optional["AgentStore"] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.source = source
        self.store = store
        self.clock = clock

    def capture(self, now: Optional[datetime] = None) -> ContextVector:
        now = now or self.clock()
        signals = self.source.read_signals(now)
        return ContextVector.from_features(features_from_signals(signals))

    def snapshot(self, context: ContextVector, now: Optional[datetime] = None) -> Optional[int]:
        """Append a vector to the snapshot log. Returns None without a store."""
        if self.store is None:
            return None
        snapshot_id = self.store.save_context(context, now or self.clock())
        logger.debug(f"Saved context snapshot {snapshot_id}")
        return snapshot_id

    def capture_and_snapshot(self, now: Optional[datetime] = None) -> Tuple[ContextVector, Optional[int]]:
        now = now or self.clock()
        context = self.capture(now)
        return context, self.snapshot(context, now)

    @staticmethod
    def enrich(context: ContextVector, similar_outcome: float) -> ContextVector:
        """Fold the semantic-memory outcome estimate into the context."""
        return context.with_feature("similar_context_outcome", similar_outcome)
