"""
Tests for action ranking.
"""
import numpy as np
import pytest

from nudge_agent.errors import InvalidContextError
from nudge_agent.learning.action_registry import DEFAULT_ACTIONS
from nudge_agent.learning.feature_schema import FEATURE_DIM, ContextVector, default_context
from nudge_agent.learning.selector import ActionSelector


@pytest.fixture
def selector(registry, models):
    return ActionSelector(registry, models)


class TestUCB:

    def test_greedy_picks_best_mean(self, selector, models):
        ctx = default_context()
        for _ in range(3):
            models.update("take_walk", ctx, 1.0)
        best = selector.select_one(ctx, exploration_beta=0.0)
        assert best.action.name == "take_walk"
        assert best.ucb_score == pytest.approx(best.expected_reward)

    def test_ties_keep_catalog_order(self, selector):
        ranked = selector.score_all(default_context(), exploration_beta=0.0)
        assert [s.action.name for s in ranked] == [a.name for a in DEFAULT_ACTIONS]

    def test_exploration_prefers_uncertain_actions(self, selector, models):
        ctx = default_context()
        for _ in range(10):
            models.update("take_walk", ctx, 0.0)
        ranked = selector.score_all(ctx, exploration_beta=2.0)
        assert ranked[0].action.name == "start_pomodoro"
        assert ranked[-1].action.name == "take_walk"

    def test_score_formula(self, selector):
        ctx = default_context()
        pick = selector.select_one(ctx, exploration_beta=1.5)
        assert pick.ucb_score == pytest.approx(pick.expected_reward + 1.5 * pick.uncertainty)

    def test_greedy_ranking_matches_predicted_reward(self, selector, models, registry):
        ctx = ContextVector.from_features({"energy_level": 0.8, "streak_days": 0.3})
        for name, reward in [("take_walk", 0.9), ("meditation", 0.4), ("do_workout", -0.5), ("learn_new", 0.1)]:
            models.update(name, ctx, reward)

        ranked = selector.select_top(ctx, n=len(DEFAULT_ACTIONS), exploration_beta=0.0)
        by_prediction = sorted(
            registry.enabled(), key=lambda a: models.load(a.name).predict(ctx), reverse=True
        )
        assert [s.action.name for s in ranked] == [a.name for a in by_prediction]

    def test_single_pull_outranks_untried_action(self, selector, models, registry):
        for action in registry.all():
            if action.name not in ("start_pomodoro", "take_walk"):
                registry.set_enabled(action.name, False)
        ctx = np.full(FEATURE_DIM, 0.5)
        models.update("take_walk", ctx, 1.0)

        ranked = selector.select_top(ctx, n=2, exploration_beta=0.0)
        assert [s.action.name for s in ranked] == ["take_walk", "start_pomodoro"]
        assert ranked[1].expected_reward == 0.0


class TestSelectTop:

    def test_returns_n(self, selector):
        picks = selector.select_top(default_context(), n=3)
        assert len(picks) == 3
        assert len({p.action.name for p in picks}) == 3

    def test_n_larger_than_catalog(self, selector):
        assert len(selector.select_top(default_context(), n=50)) == len(DEFAULT_ACTIONS)

    def test_n_zero(self, selector):
        assert selector.select_top(default_context(), n=0) == []

    def test_no_enabled_actions(self, selector, registry):
        for action in registry.all():
            registry.set_enabled(action.name, False)
        assert selector.select_top(default_context(), n=3) == []
        assert selector.select_one(default_context()) is None

    def test_disabled_actions_skipped(self, selector, registry):
        registry.set_enabled("start_pomodoro", False)
        names = [s.action.name for s in selector.score_all(default_context())]
        assert "start_pomodoro" not in names

    def test_alternatives_on_first_only(self, selector):
        picks = selector.select_top(default_context(), n=3)
        assert [a.name for a in picks[0].alternative_actions] == [
            picks[1].action.name,
            picks[2].action.name,
        ]
        assert picks[1].alternative_actions == []

    def test_rejects_bad_context(self, selector):
        with pytest.raises(InvalidContextError):
            selector.select_top(np.zeros(10), n=3)
        with pytest.raises(InvalidContextError):
            selector.select_top(np.zeros(10), n=0)

    def test_rejects_bad_mode_and_beta(self, selector):
        with pytest.raises(ValueError):
            selector.select_top(default_context(), mode="epsilon")
        with pytest.raises(ValueError):
            selector.select_top(default_context(), exploration_beta=-1.0)


class TestExplanations:

    def test_top_features_by_magnitude(self, selector, models):
        ctx = ContextVector.from_features({"energy_level": 0.9, "streak_days": 0.4})
        models.update("take_walk", ctx, 1.0)
        pick = selector.select_one(ctx, exploration_beta=0.0)

        features = pick.explanation_features
        assert len(features) == 5
        magnitudes = [abs(f.contribution) for f in features]
        assert magnitudes == sorted(magnitudes, reverse=True)
        assert sum(pick.contributions) == pytest.approx(pick.expected_reward)

    def test_to_dict(self, selector):
        data = selector.select_one(default_context()).to_dict()
        assert data["action"] == "start_pomodoro"
        assert data["category"] == "productivity"
        assert len(data["explanation_features"]) == 5


class TestThompson:

    def test_seeded_selection_is_reproducible(self, registry, models):
        ctx = default_context()
        a = ActionSelector(registry, models, prng_seed=3)
        b = ActionSelector(registry, models, prng_seed=3)
        picks_a = a.select_top(ctx, n=5, mode="thompson")
        picks_b = b.select_top(ctx, n=5, mode="thompson")
        assert [p.action.name for p in picks_a] == [p.action.name for p in picks_b]
        assert [p.ucb_score for p in picks_a] == [p.ucb_score for p in picks_b]

    def test_scores_are_sorted(self, registry, models):
        picks = ActionSelector(registry, models, prng_seed=11).score_all(
            default_context(), mode="thompson"
        )
        scores = [p.ucb_score for p in picks]
        assert scores == sorted(scores, reverse=True)

    def test_per_call_generator(self, selector):
        ctx = default_context()
        first = selector.select_top(ctx, n=5, mode="thompson", rng=np.random.default_rng(21))
        second = selector.select_top(ctx, n=5, mode="thompson", rng=np.random.default_rng(21))
        assert [p.ucb_score for p in first] == [p.ucb_score for p in second]
