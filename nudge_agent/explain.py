"""
Plain-language explanations for recommendations.
"""
from __future__ import annotations

from typing import Sequence

from .learning.feature_schema import ContextVector
from .learning.selector import ActionSelection

HIGH_CONFIDENCE_UNCERTAINTY = 0.2
MEDIUM_CONFIDENCE_UNCERTAINTY = 0.5

# Average past outcome above which memory is cited as a reason
GOOD_HISTORY_OUTCOME = 0.7


def confidence_level(uncertainty: float) -> str:
    """Bucket predictive uncertainty into high / medium / low confidence."""
    if uncertainty < HIGH_CONFIDENCE_UNCERTAINTY:
        return "high"
    if uncertainty < MEDIUM_CONFIDENCE_UNCERTAINTY:
        return "medium"
    return "low"


def _feature_reason(feature: str, context: ContextVector) -> str:
    value = context[feature]
    if feature == "energy_level":
        if value > 0.7:
            return "Your energy is high right now"
        if value < 0.4:
            return "Your energy is low, so let's pick something manageable"
        return "Your energy level is moderate"
    if feature == "hour_of_day":
        if value < 0.5:
            return "Morning is a great time for focused work"
        if value < 0.75:
            return "Afternoon is ideal for this activity"
        return "Evening is good for winding down"
    if feature == "assignment_urgency":
        if value > 0.7:
            return "You have urgent deadlines approaching"
        return "Your workload is manageable"
    if feature == "peak_focus_prob":
        if value > 0.6:
            return "This is typically your peak focus time"
        return "This time is good for lighter tasks"
    if feature == "recovery_need":
        if value > 0.6:
            return "You could use some recovery time"
        return "You're well-rested"
    if feature == "streak_days":
        if value > 0.3:
            return "You're on a great streak, keep it going!"
        return "Let's build some momentum"
    return "Based on your current context"


def _category_reason(category: str, context: ContextVector) -> str:
    if category == "productivity" and context["pomodoros_today"] < 0.3:
        return "You haven't done much focused work yet today."
    if category == "physical" and context["hours_since_workout"] > 0.5:
        return "It's been a while since your last workout."
    if category == "wellness" and context["hours_since_checkin"] > 0.5:
        return "A quick check-in would help track your progress."
    return ""


def generate_explanation(
    selection: ActionSelection,
    context: ContextVector,
    similar_outcomes: Sequence[float] = (),
) -> str:
    """
    One or two sentences on why an action was picked.

    Leads with the strongest contributing feature, adds a category-specific
    nudge and cites memory when similar past situations went well.
    """
    parts = []
    if selection.explanation_features:
        parts.append(_feature_reason(selection.explanation_features[0].name, context))

    category_reason = _category_reason(selection.action.category, context)
    if category_reason:
        parts.append(category_reason)

    if similar_outcomes and sum(similar_outcomes) / len(similar_outcomes) > GOOD_HISTORY_OUTCOME:
        parts.append("Similar situations in the past led to good outcomes.")

    description = selection.action.description
    if not parts:
        return f"Recommended: {selection.action.name.replace('_', ' ')}. {description}"
    sentences = [p if p.endswith((".", "!")) else p + "." for p in parts]
    return " ".join(sentences + [description])
