"""
Tests for recommendation explanations and the action catalog.
"""
import pytest

from nudge_agent.errors import UnknownActionError
from nudge_agent.explain import confidence_level, generate_explanation
from nudge_agent.learning.action_registry import Action, action_for_event
from nudge_agent.learning.feature_schema import ContextVector
from nudge_agent.learning.selector import ActionSelection, FeatureContribution


def selection(category="productivity", feature=None, description="Start a focused Pomodoro session"):
    features = [FeatureContribution(feature, 0.9, 0.4)] if feature else []
    return ActionSelection(
        action=Action("start_pomodoro", category, description),
        expected_reward=0.4,
        uncertainty=0.3,
        ucb_score=1.0,
        explanation_features=features,
    )


class TestConfidence:

    @pytest.mark.parametrize("uncertainty, level", [
        (0.0, "high"),
        (0.19, "high"),
        (0.2, "medium"),
        (0.49, "medium"),
        (0.5, "low"),
        (1000.0, "low"),
    ])
    def test_buckets(self, uncertainty, level):
        assert confidence_level(uncertainty) == level


class TestExplanation:

    def test_leads_with_top_feature(self):
        ctx = ContextVector.from_features({"energy_level": 0.9, "pomodoros_today": 0.5})
        text = generate_explanation(selection(feature="energy_level"), ctx)
        assert text.startswith("Your energy is high right now.")
        assert text.endswith("Start a focused Pomodoro session")

    def test_category_nudge(self):
        ctx = ContextVector.from_features({"pomodoros_today": 0.0})
        text = generate_explanation(selection(), ctx)
        assert "You haven't done much focused work yet today." in text

    def test_cites_good_history(self):
        ctx = ContextVector.from_features({"pomodoros_today": 0.5})
        text = generate_explanation(selection(feature="streak_days"), ctx, [0.8, 0.9])
        assert "Similar situations in the past led to good outcomes." in text

    def test_poor_history_not_cited(self):
        ctx = ContextVector.from_features({"pomodoros_today": 0.5})
        text = generate_explanation(selection(feature="streak_days"), ctx, [0.2])
        assert "Similar situations" not in text

    def test_fallback_text(self):
        ctx = ContextVector.from_features({"pomodoros_today": 0.5})
        text = generate_explanation(selection(), ctx)
        assert text == "Recommended: start pomodoro. Start a focused Pomodoro session"


class TestActionCatalog:

    def test_event_mapping(self):
        assert action_for_event("study_session") == "start_pomodoro"
        assert action_for_event("workout") == "do_workout"
        assert action_for_event("reading") is None

    def test_registry_lookup(self, registry):
        assert registry.get("take_walk").category == "physical"
        assert "take_walk" in registry
        assert "juggle" not in registry
        with pytest.raises(UnknownActionError):
            registry.get("juggle")
        with pytest.raises(UnknownActionError):
            registry.set_enabled("juggle", True)

    def test_by_category(self, registry):
        assert [a.name for a in registry.by_category("skills")] == ["practice_skill", "learn_new"]

    def test_unknown_action_message(self):
        assert str(UnknownActionError("juggle")) == "Unknown action: juggle"
