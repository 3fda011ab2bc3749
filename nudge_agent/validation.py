"""
Input validation for the recommendation engine.

Validates:
- Feedback values (outcome, feedback score, satisfaction)
- Exploration settings
- Reward weights
- Event and action names
- Big Three goals
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from .learning.learning_config import MAX_EXPLORATION_BETA, WEIGHT_SUM_TOLERANCE

MAX_BIG_THREE = 3

GOAL_CATEGORIES = ("academic", "physical", "skills", "personal")


@dataclass
class ValidationError:
    """A validation error."""
    field: str
    message: str
    value: str = ""


class ValidationResult:
    """Result of validation check."""

    def __init__(self):
        self.errors: List[ValidationError] = []

    def add_error(self, field: str, message: str, value: str = "") -> None:
        self.errors.append(ValidationError(field, message, value))

    def extend(self, other: "ValidationResult") -> "ValidationResult":
        self.errors.extend(other.errors)
        return self

    @property
    def is_valid(self) -> bool:
        return len(self.errors) == 0

    def raise_if_invalid(self, context: str = "Validation") -> None:
        if not self.is_valid:
            msgs = [f"{e.field}: {e.message}" for e in self.errors]
            raise ValueError(f"{context} failed:\n" + "\n".join(msgs))


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def validate_outcome_score(value: float) -> ValidationResult:
    """Outcome scores live in [0, 1]."""
    result = ValidationResult()
    if not _is_number(value):
        result.add_error("outcome_score", "Must be a finite number", str(value))
    elif value < 0.0 or value > 1.0:
        result.add_error("outcome_score", "Must be between 0.0 and 1.0", str(value))
    return result


def validate_feedback_score(value: Optional[int]) -> ValidationResult:
    """Explicit feedback is -1, 0 or 1."""
    result = ValidationResult()
    if value is not None and value not in (-1, 0, 1):
        result.add_error("feedback_score", "Must be -1, 0 or 1", str(value))
    return result


def validate_satisfaction_rating(value: Optional[int]) -> ValidationResult:
    """Satisfaction ratings are integers from 1 to 5."""
    result = ValidationResult()
    if value is None:
        return result
    if not isinstance(value, int) or isinstance(value, bool):
        result.add_error("satisfaction_rating", "Must be an integer", str(value))
    elif value < 1 or value > 5:
        result.add_error("satisfaction_rating", "Must be between 1 and 5", str(value))
    return result


def validate_exploration_beta(value: float) -> ValidationResult:
    result = ValidationResult()
    if not _is_number(value):
        result.add_error("exploration_beta", "Must be a finite number", str(value))
    elif value < 0.0 or value > MAX_EXPLORATION_BETA:
        result.add_error(
            "exploration_beta", f"Must be between 0.0 and {MAX_EXPLORATION_BETA}", str(value)
        )
    return result


def validate_reward_weights(weights: Dict[str, float]) -> ValidationResult:
    """Weights must cover the four horizons, be non-negative and sum to 1.0."""
    result = ValidationResult()
    expected = ("immediate", "daily", "weekly", "monthly")
    for name in expected:
        if name not in weights:
            result.add_error(name, "Missing reward weight")
        elif not _is_number(weights[name]):
            result.add_error(name, "Must be a finite number", str(weights[name]))
        elif weights[name] < 0:
            result.add_error(name, "Must be non-negative", str(weights[name]))
    unknown = set(weights) - set(expected)
    for name in sorted(unknown):
        result.add_error(name, "Unknown reward horizon")
    if result.is_valid:
        total = sum(weights[name] for name in expected)
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            result.add_error("reward_weights", "Must sum to 1.0", f"{total:.3f}")
    return result


def validate_event_type(event_type: str) -> ValidationResult:
    result = ValidationResult()
    if not event_type:
        result.add_error("event_type", "Event type cannot be empty")
    elif len(event_type) > 64:
        result.add_error("event_type", "Event type too long (max 64 chars)", event_type[:20])
    elif not re.match(r"^[a-z][a-z0-9_]*$", event_type):
        result.add_error("event_type", "Use lowercase letters, digits and underscores", event_type)
    return result


def validate_description(text: str, max_length: int = 2048) -> ValidationResult:
    result = ValidationResult()
    if not text or not text.strip():
        result.add_error("description", "Description cannot be empty")
    elif len(text) > max_length:
        result.add_error("description", f"Description too long (max {max_length})", text[:50])
    return result


def validate_recommendation_count(n: int, maximum: int = 20) -> ValidationResult:
    result = ValidationResult()
    if not isinstance(n, int) or isinstance(n, bool):
        result.add_error("count", "Must be an integer", str(n))
    elif n < 0 or n > maximum:
        result.add_error("count", f"Must be between 0 and {maximum}", str(n))
    return result


def validate_big_three(goals: List[Dict]) -> ValidationResult:
    """At most three goals, each with a title and an optional known category."""
    result = ValidationResult()
    if len(goals) > MAX_BIG_THREE:
        result.add_error("goals", f"At most {MAX_BIG_THREE} goals per day", str(len(goals)))
        return result
    for i, goal in enumerate(goals, 1):
        title = goal.get("title") or ""
        if not title.strip():
            result.add_error(f"goals[{i}].title", "Title cannot be empty")
        elif len(title) > 200:
            result.add_error(f"goals[{i}].title", "Title too long (max 200)", title[:50])
        category = goal.get("category")
        if category is not None and category not in GOAL_CATEGORIES:
            result.add_error(
                f"goals[{i}].category", f"Must be one of {', '.join(GOAL_CATEGORIES)}", category
            )
    return result


def sanitize_text(text: str) -> str:
    """Normalize free text before embedding or storage."""
    if not text:
        return ""
    text = text.replace("\x00", "")
    return " ".join(text.split()).strip()
