"""
Record types shared by the store, the learning layer and the agent.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from .learning.action_registry import Action
from .learning.feature_schema import ContextVector

__all__ = ["Action", "BigThreeGoal", "MemoryEvent", "RewardRecord", "RecommendationRecord"]


@dataclass(frozen=True)
class MemoryEvent:
    """A past event stored in semantic memory."""
    id: int
    timestamp: datetime
    event_type: str
    content: str
    outcome_score: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type,
            "content": self.content,
            "outcome_score": self.outcome_score,
            "metadata": dict(self.metadata),
        }


@dataclass
class RewardRecord:
    """
    One logged reward, filled in over several timescales.

    Delayed horizons stay None until their batch job runs; total is set
    once the record is finalized.
    """
    id: int
    action_name: str
    timestamp: datetime
    context: Optional[ContextVector]
    immediate: float
    daily: Optional[float] = None
    weekly: Optional[float] = None
    monthly: Optional[float] = None
    total: Optional[float] = None
    feedback_type: str = "explicit"

    @property
    def is_final(self) -> bool:
        return self.total is not None


@dataclass
class RecommendationRecord:
    """A logged recommendation and any feedback it received."""
    id: int
    timestamp: datetime
    action_name: str
    expected_reward: float
    uncertainty: float
    score: float
    context_id: Optional[int]
    explanation: Dict[str, Any] = field(default_factory=dict)
    was_accepted: Optional[bool] = None
    alternative_chosen: Optional[str] = None
    feedback_score: Optional[int] = None
    outcome_score: Optional[float] = None

    @property
    def has_feedback(self) -> bool:
        return self.was_accepted is not None


@dataclass
class BigThreeGoal:
    """One of the day's three most important tasks (priority 1 is the top)."""
    id: int
    date: str
    priority: int
    title: str
    description: Optional[str] = None
    category: Optional[str] = None
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    satisfaction_rating: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "date": self.date,
            "priority": self.priority,
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "is_completed": self.is_completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "satisfaction_rating": self.satisfaction_rating,
        }
