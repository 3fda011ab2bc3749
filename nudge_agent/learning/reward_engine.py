"""
Multi-timescale reward shaping.

Rewards arrive on four horizons: immediate (feedback on the nudge), daily,
weekly and monthly (how the user's day/week/month went). Delayed horizons
are backfilled by batch jobs and blended into a final reward once a record
is complete or old enough.
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from typing import TYPE_CHECKING, Dict, List, Optional

from ..activity import (
    DEFAULT_WEEKLY_TARGET_HOURS,
    ActivitySource,
    month_start_of,
    week_start_of,
)
from .learning_config import RewardWeights

if TYPE_CHECKING:
    from ..storage import AgentStore
    from ..types import RewardRecord
    from .model_repository import ModelRepository

logger = logging.getLogger(__name__)


class FeedbackType(str, Enum):
    """Where a reward signal came from."""
    EXPLICIT = "explicit"      # User rated or accepted a recommendation
    IMPLICIT = "implicit"      # User did the action on their own
    INFERRED = "inferred"      # Derived from activity data


def study_minutes_reward(minutes: float) -> float:
    """
    Daily study sweet spot: 2-6 hours is ideal.

    Below 2 hours ramps up linearly; above 6 hours decays by 1/240 per
    minute but never below 0.5.
    """
    if minutes <= 0:
        return 0.0
    if minutes < 120:
        return minutes / 120.0
    if minutes <= 360:
        return 1.0
    return max(0.5, 1.0 - (minutes - 360) / 240.0)


def progress_reward(progress: float) -> float:
    """
    Reward for progress against a target (1.0 = exactly on target).

    80-120% is ideal; under-delivery scales down linearly and
    over-delivery is capped at 0.8.
    """
    progress = min(max(progress, 0.0), 1.5)
    if progress < 0.8:
        return progress / 0.8
    if progress <= 1.2:
        return 1.0
    return 0.8


def weighted_mean(components: List[tuple]) -> float:
    """Mean of (value, weight) pairs; 0.0 when there are none."""
    total_weight = sum(w for _, w in components)
    if total_weight <= 0:
        return 0.0
    return sum(v * w for v, w in components) / total_weight


def finalize_reward(
    immediate: Optional[float],
    daily: Optional[float],
    weekly: Optional[float],
    monthly: Optional[float],
    weights: RewardWeights,
) -> Optional[float]:
    """
    Blend the horizons that are present.

    Missing horizons drop out of numerator and denominator alike, so a
    record with a single horizon finalizes to exactly that value.
    """
    present = [
        (value, weight)
        for value, weight in (
            (immediate, weights.immediate),
            (daily, weights.daily),
            (weekly, weights.weekly),
            (monthly, weights.monthly),
        )
        if value is not None
    ]
    if not present:
        return None
    if len(present) == 1:
        return present[0][0]
    if sum(w for _, w in present) <= 0:
        return sum(v for v, _ in present) / len(present)
    return weighted_mean(present)


class RewardEngine:
    """
    Computes rewards on every horizon and maintains the reward log.

    Example:
        >>> engine = RewardEngine(source, store)
        >>> engine.compute_immediate_reward(accepted=True, feedback_score=1)
        1.0
    """

    def __init__(
        self,
        source: ActivitySource,
        store: Optional["AgentStore"] = None,
        weights: Optional[RewardWeights] = None,
        cutoff_days: int = 35,
        models: Optional["ModelRepository"] = None,
        apply_finalized_rewards: bool = False,
    ):
        self.source = source
        self.store = store
        self.weights = weights or RewardWeights()
        self.cutoff_days = cutoff_days
        self.models = models
        self.apply_finalized_rewards = apply_finalized_rewards

    # ------------------------------------------------------------------
    # Horizon computations
    # ------------------------------------------------------------------

    @staticmethod
    def compute_immediate_reward(
        accepted: bool,
        feedback_score: Optional[int] = None,
        task_completed: bool = False,
        satisfaction_rating: Optional[int] = None,
    ) -> float:
        """
        Equal-weight mean of the signals present.

        accepted -> 1.0 / 0.2, feedback -1..1 -> 0..1, completion -> 1.0
        (only counted when true), satisfaction 1..5 -> 0..1.
        """
        signals = [1.0 if accepted else 0.2]
        if feedback_score is not None:
            signals.append((feedback_score + 1) / 2.0)
        if task_completed:
            signals.append(1.0)
        if satisfaction_rating is not None:
            signals.append((satisfaction_rating - 1) / 4.0)
        return sum(signals) / len(signals)

    def compute_daily_reward(self, day: date) -> float:
        stats = self.source.daily_stats(day)
        components = []
        if stats.big3_total > 0:
            components.append((stats.big3_completed / stats.big3_total, 2.0))
        components.append((1.0 if stats.checked_in else 0.0, 1.0))
        components.append((study_minutes_reward(stats.study_minutes), 1.0))
        return weighted_mean(components)

    def compute_weekly_reward(self, week_start: date) -> float:
        stats = self.source.weekly_stats(week_start)
        target_hours = stats.target_hours if stats.target_hours > 0 else DEFAULT_WEEKLY_TARGET_HOURS
        progress = stats.study_minutes / (target_hours * 60.0)
        components = [
            (progress_reward(progress), 2.0),
            (min(stats.practice_days / 5.0, 1.0), 1.0),
        ]
        return weighted_mean(components)

    def compute_monthly_reward(self, month_start: date) -> float:
        stats = self.source.monthly_stats(month_start)
        target_week = stats.target_hours_week if stats.target_hours_week > 0 else DEFAULT_WEEKLY_TARGET_HOURS
        target_minutes = target_week * 60.0 * stats.days_in_month / 7.0
        components = [
            (min(stats.checkin_days / stats.days_in_month, 1.0), 1.0),
            (progress_reward(stats.study_minutes / target_minutes), 1.0),
            (min(stats.practice_days / 20.0, 1.0), 1.0),
        ]
        return weighted_mean(components)

    def finalize(self, record: "RewardRecord") -> Optional[float]:
        return finalize_reward(
            record.immediate, record.daily, record.weekly, record.monthly, self.weights
        )

    # ------------------------------------------------------------------
    # Batch jobs over the reward log
    # ------------------------------------------------------------------

    def _require_store(self) -> "AgentStore":
        if self.store is None:
            raise RuntimeError("RewardEngine has no store configured")
        return self.store

    def backfill_daily(self, day: date) -> int:
        store = self._require_store()
        value = self.compute_daily_reward(day)
        start = datetime(day.year, day.month, day.day)
        updated = store.set_reward_horizon("daily", value, start, start + timedelta(days=1))
        logger.info(f"Daily reward for {day}: {value:.3f} ({updated} records)")
        return updated

    def backfill_weekly(self, week_start: date) -> int:
        store = self._require_store()
        week_start = week_start_of(week_start)
        value = self.compute_weekly_reward(week_start)
        start = datetime(week_start.year, week_start.month, week_start.day)
        updated = store.set_reward_horizon("weekly", value, start, start + timedelta(days=7))
        logger.info(f"Weekly reward for week of {week_start}: {value:.3f} ({updated} records)")
        return updated

    def backfill_monthly(self, month_start: date) -> int:
        store = self._require_store()
        month_start = month_start_of(month_start)
        value = self.compute_monthly_reward(month_start)
        start = datetime(month_start.year, month_start.month, 1)
        if month_start.month == 12:
            end = datetime(month_start.year + 1, 1, 1)
        else:
            end = datetime(month_start.year, month_start.month + 1, 1)
        updated = store.set_reward_horizon("monthly", value, start, end)
        logger.info(f"Monthly reward for {month_start:%Y-%m}: {value:.3f} ({updated} records)")
        return updated

    def finalize_pending(self, now: Optional[datetime] = None) -> Dict[int, float]:
        """
        Finalize records with any delayed horizon, or past the cutoff.

        Returns {record_id: total} for the records finalized in this pass.
        """
        store = self._require_store()
        now = now or datetime.now()
        cutoff = now - timedelta(days=self.cutoff_days)
        finalized: Dict[int, float] = {}

        for record in store.pending_rewards():
            has_delayed = any(h is not None for h in (record.daily, record.weekly, record.monthly))
            if not has_delayed and record.timestamp > cutoff:
                continue
            total = self.finalize(record)
            if total is None:
                continue
            store.set_reward_total(record.id, total)
            finalized[record.id] = total

            if self.apply_finalized_rewards and self.models is not None and record.context is not None:
                self.models.update(record.action_name, record.context, total)

        if finalized:
            logger.info(f"Finalized {len(finalized)} reward records")
        return finalized
