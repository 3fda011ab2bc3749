"""
Catalog of candidate actions.

Actions are configuration data: the default catalog is seeded into the
store once and can be enabled or disabled afterwards.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..errors import UnknownActionError

if TYPE_CHECKING:
    from ..storage import AgentStore

logger = logging.getLogger(__name__)


@dataclass
class Action:
    """
    A candidate recommendation ("arm").

    Attributes:
        name: Stable identifier, e.g. "start_pomodoro"
        category: productivity, physical, wellness, skills or reflection
        description: Human-readable text shown with the nudge
        total_pulls: Lifetime number of model updates
        total_reward: Lifetime sum of rewards
        enabled: Disabled actions are never scored
    """
    name: str
    category: str
    description: str = ""
    id: Optional[int] = None
    total_pulls: int = 0
    total_reward: float = 0.0
    enabled: bool = True
    last_pulled: Optional[datetime] = None

    @property
    def avg_reward(self) -> float:
        if self.total_pulls == 0:
            return 0.0
        return self.total_reward / self.total_pulls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "description": self.description,
            "total_pulls": self.total_pulls,
            "total_reward": self.total_reward,
            "avg_reward": self.avg_reward,
            "enabled": self.enabled,
            "last_pulled": self.last_pulled.isoformat() if self.last_pulled else None,
        }


CATEGORIES = ("productivity", "physical", "wellness", "skills", "reflection")

DEFAULT_ACTIONS: List[Action] = [
    # Productivity
    Action("start_pomodoro", "productivity", "Start a focused Pomodoro session"),
    Action("start_study_session", "productivity", "Begin a study session for a course"),
    Action("tackle_assignment", "productivity", "Work on a specific assignment"),
    Action("deep_work_block", "productivity", "Extended deep work session (90min+)"),
    # Physical
    Action("do_workout", "physical", "Complete a workout session"),
    Action("take_walk", "physical", "Go for a walk or light movement"),
    Action("stretch_break", "physical", "Take a stretching break"),
    # Wellness
    Action("do_checkin", "wellness", "Complete a mood/energy check-in"),
    Action("take_break", "wellness", "Take a recovery break"),
    Action("meditation", "wellness", "Do a meditation session"),
    # Skills
    Action("practice_skill", "skills", "Practice a tracked skill"),
    Action("learn_new", "skills", "Learn something new"),
    # Reflection
    Action("weekly_review", "reflection", "Complete weekly review"),
    Action("plan_tomorrow", "reflection", "Plan for tomorrow"),
    Action("review_goals", "reflection", "Review and adjust goals"),
]

# Tracker event types that correspond to an action
EVENT_ACTION_MAP: Dict[str, str] = {
    "study_session": "start_pomodoro",
    "pomodoro": "start_pomodoro",
    "workout": "do_workout",
    "checkin": "do_checkin",
    "skill_practice": "practice_skill",
    "assignment_completed": "tackle_assignment",
    "break": "take_break",
    "weekly_review": "weekly_review",
}


def action_for_event(event_type: str) -> Optional[str]:
    """Map a tracker event type to the action it fulfils, if any."""
    return EVENT_ACTION_MAP.get(event_type)


class ActionRegistry:
    """
    Read access to the action catalog held in the store.

    Example:
        >>> registry = ActionRegistry(store)
        >>> registry.ensure_defaults()
        >>> [a.name for a in registry.enabled()]
    """

    def __init__(self, store: "AgentStore"):
        self.store = store

    def ensure_defaults(self, actions: Optional[List[Action]] = None) -> int:
        added = self.store.seed_actions(actions if actions is not None else DEFAULT_ACTIONS)
        if added:
            logger.info(f"Seeded {added} actions into the catalog")
        return added

    def enabled(self) -> List[Action]:
        return self.store.list_actions(enabled_only=True)

    def all(self) -> List[Action]:
        return self.store.list_actions(enabled_only=False)

    def by_category(self, category: str) -> List[Action]:
        return self.store.list_actions(enabled_only=True, category=category)

    def get(self, name: str) -> Action:
        action = self.store.get_action(name)
        if action is None:
            raise UnknownActionError(name)
        return action

    def __contains__(self, name: str) -> bool:
        return self.store.get_action(name) is not None

    def set_enabled(self, name: str, enabled: bool) -> None:
        if not self.store.set_action_enabled(name, enabled):
            raise UnknownActionError(name)
        logger.info(f"Action {name} {'enabled' if enabled else 'disabled'}")
