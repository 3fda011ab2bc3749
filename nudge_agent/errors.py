"""Exceptions raised by the recommendation engine."""
from __future__ import annotations


class InvalidContextError(ValueError):
    """Context vector has the wrong dimension or non-finite values."""


class UnknownActionError(KeyError):
    """Feedback or an update referenced an action not in the registry."""

    def __init__(self, action_name: str):
        super().__init__(action_name)
        self.action_name = action_name

    def __str__(self) -> str:
        return f"Unknown action: {self.action_name}"


class RecommendationNotFoundError(KeyError):
    """Feedback referenced a recommendation id that was never logged."""

    def __init__(self, recommendation_id: int):
        super().__init__(recommendation_id)
        self.recommendation_id = recommendation_id

    def __str__(self) -> str:
        return f"Unknown recommendation: {self.recommendation_id}"


class GoalNotFoundError(KeyError):
    """A Big Three goal id that does not exist."""

    def __init__(self, goal_id: int):
        super().__init__(goal_id)
        self.goal_id = goal_id

    def __str__(self) -> str:
        return f"Unknown goal: {self.goal_id}"
