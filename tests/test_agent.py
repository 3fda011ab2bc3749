"""
Integration tests for the intelligence agent.

Each test builds a standalone agent (tracker tables in the engine
database) with a deterministic embedder.
"""
from datetime import date, datetime, timedelta

import numpy as np
import pytest

from conftest import BrokenEmbedder, FakeEmbedder
from nudge_agent.agent import RecommendationStatus, build_agent
from nudge_agent.config import AgentConfig
from nudge_agent.errors import (
    GoalNotFoundError,
    InvalidContextError,
    RecommendationNotFoundError,
    UnknownActionError,
)
from nudge_agent.learning.feature_schema import FEATURE_DIM, default_context

MORNING = datetime(2024, 3, 11, 9, 0)


@pytest.fixture
def config(tmp_path):
    return AgentConfig(data_dir=str(tmp_path / "data"), embedding_model=None)


@pytest.fixture
def agent(config):
    agent = build_agent(config, embedder=FakeEmbedder())
    yield agent
    agent.close()


class TestBuildAgent:

    def test_standalone_install(self, agent):
        assert len(agent.registry.enabled()) == 15
        assert agent.memory is not None
        assert len(agent.feature_names()) == FEATURE_DIM

    def test_memory_disabled_without_embedder(self, config):
        agent = build_agent(config)
        try:
            assert agent.memory is None
            recs = agent.get_recommendations(2)
            assert recs.memory_outcome == 0.5
            assert agent.search_similar_experiences("anything") == []
        finally:
            agent.close()


class TestRecommendations:

    def test_ranked_and_logged(self, agent):
        recs = agent.get_recommendations(3)
        assert recs.status == RecommendationStatus.OK
        assert len(recs) == 3
        assert len({r.id for r in recs}) == 3

        for rec in recs:
            stored = agent.store.get_recommendation(rec.id)
            assert stored.action_name == rec.selection.action.name
            assert stored.context_id == recs.context_id
            assert rec.explanation
            assert rec.confidence in ("high", "medium", "low")

    def test_snapshot_is_enriched_context(self, agent):
        ctx = agent.extractor.capture(MORNING)
        agent.memory.add_event("checkin", ctx.describe(), 0.9)

        recs = agent.get_recommendations(1, now=MORNING)
        assert recs.memory_outcome == pytest.approx(0.9)
        assert recs.context["similar_context_outcome"] == pytest.approx(0.9)
        snapshot = agent.store.load_context(recs.context_id)
        assert snapshot["similar_context_outcome"] == pytest.approx(0.9)
        assert len(recs.similar_experiences) == 1

    def test_zero_count(self, agent):
        recs = agent.get_recommendations(0)
        assert recs.status == RecommendationStatus.OK
        assert recs.items == []

    def test_no_enabled_actions(self, agent):
        for action in agent.registry.all():
            agent.registry.set_enabled(action.name, False)
        recs = agent.get_recommendations(3)
        assert recs.status == RecommendationStatus.NO_ENABLED_ACTIONS
        assert recs.items == []

    def test_count_validated(self, agent):
        with pytest.raises(ValueError):
            agent.get_recommendations(25)

    def test_thompson_mode(self, agent):
        recs = agent.get_recommendations(3, mode="thompson")
        assert len(recs) == 3

    def test_to_dict(self, agent):
        data = agent.get_recommendations(2).to_dict()
        assert data["status"] == "ok"
        assert len(data["recommendations"]) == 2
        assert "explanation" in data["recommendations"][0]

    def test_memory_failure_falls_back_to_neutral(self, config):
        agent = build_agent(config, embedder=BrokenEmbedder())
        try:
            agent.memory.add_event("checkin", "seed", 0.9, embedding=np.ones(32, dtype=np.float32))
            recs = agent.get_recommendations(2)
            assert recs.status == RecommendationStatus.OK
            assert recs.memory_outcome == 0.5
        finally:
            agent.close()


class TestFeedback:

    def test_accepted_feedback_trains_on_snapshot(self, agent):
        rec = agent.get_recommendations(1).items[0]
        result = agent.record_feedback(rec.id, accepted=True, feedback_score=1)

        assert result.immediate_reward == pytest.approx(1.0)
        assert result.applied_reward == pytest.approx(1.0)

        action = agent.store.get_action(rec.selection.action.name)
        assert action.total_pulls == 1
        snapshot = agent.store.load_context(agent.store.get_recommendation(rec.id).context_id)
        assert agent.models.load(action.name).predict(snapshot) > 0

    def test_outcome_is_training_reward(self, agent):
        rec = agent.get_recommendations(1).items[0]
        result = agent.record_feedback(rec.id, accepted=True, outcome_score=0.3)
        assert result.applied_reward == pytest.approx(0.3)
        # Low outcome is not a completed task
        assert result.immediate_reward == pytest.approx(1.0)

    def test_completed_task_signal(self, agent):
        rec = agent.get_recommendations(1).items[0]
        result = agent.record_feedback(rec.id, accepted=False, outcome_score=0.9)
        assert result.immediate_reward == pytest.approx((0.2 + 1.0) / 2)

    def test_feedback_stored(self, agent):
        rec = agent.get_recommendations(1).items[0]
        agent.record_feedback(rec.id, accepted=False, alternative_chosen="took a nap")
        stored = agent.store.get_recommendation(rec.id)
        assert stored.was_accepted is False
        assert stored.alternative_chosen == "took a nap"

    def test_unknown_recommendation(self, agent):
        with pytest.raises(RecommendationNotFoundError):
            agent.record_feedback(999, accepted=True)
        with pytest.raises(KeyError):
            agent.record_feedback(999, accepted=True)

    def test_invalid_feedback_rejected_before_update(self, agent):
        rec = agent.get_recommendations(1).items[0]
        with pytest.raises(ValueError):
            agent.record_feedback(rec.id, accepted=True, feedback_score=2)
        with pytest.raises(ValueError):
            agent.record_feedback(rec.id, accepted=True, satisfaction_rating=9)
        assert agent.store.total_samples() == 0


class TestOutcomes:

    def test_record_outcome(self, agent):
        result = agent.record_outcome("take_walk", default_context(), 0.8)
        assert result.applied_reward == 0.8
        assert agent.store.get_reward(result.reward_log_id).feedback_type == "implicit"

    def test_record_outcome_from_list(self, agent):
        agent.record_outcome("take_walk", list(default_context().values), 0.8)
        assert agent.store.get_action("take_walk").total_pulls == 1

    def test_unknown_action(self, agent):
        with pytest.raises(UnknownActionError):
            agent.record_outcome("juggle", default_context(), 0.5)
        assert agent.store.pending_rewards() == []

    def test_bad_context(self, agent):
        with pytest.raises(InvalidContextError):
            agent.record_outcome("take_walk", [0.1] * 10, 0.5)
        assert agent.store.total_samples() == 0

    def test_bad_outcome(self, agent):
        with pytest.raises(ValueError):
            agent.record_outcome("take_walk", default_context(), 1.5)


class TestCompletedActions:

    def test_mapped_event(self, agent):
        result = agent.record_action_completed("workout", "30 minute run", 0.9)
        assert result.action_name == "do_workout"
        assert agent.store.get_action("do_workout").total_pulls == 1
        assert agent.memory.count() == 1

        found = agent.search_similar_experiences("30 minute run")
        assert found[0].event.content == "workout: 30 minute run"

    def test_training_context_excludes_own_event(self, agent):
        result = agent.record_action_completed("workout", "30 minute run", 1.0, now=MORNING)
        trained_on = agent.store.get_reward(result.reward_log_id).context
        assert trained_on["similar_context_outcome"] == 0.5
        assert agent.memory.count() == 1

    def test_later_context_sees_earlier_events(self, agent):
        agent.record_action_completed("workout", "30 minute run", 1.0, now=MORNING)
        result = agent.record_action_completed("workout", "45 minute run", 0.2, now=MORNING)
        trained_on = agent.store.get_reward(result.reward_log_id).context
        assert trained_on["similar_context_outcome"] == pytest.approx(1.0)

    def test_unmapped_event_is_still_remembered(self, agent):
        assert agent.record_action_completed("reading", "two chapters", 0.6) is None
        assert agent.memory.count() == 1
        assert agent.store.total_samples() == 0

    def test_invalid_event_type(self, agent):
        with pytest.raises(ValueError):
            agent.record_action_completed("Bad Type", "text", 0.5)

    def test_memory_failure_does_not_block_learning(self, config):
        agent = build_agent(config, embedder=BrokenEmbedder())
        try:
            result = agent.record_action_completed("workout", "run", 0.9)
            assert result.action_name == "do_workout"
            assert agent.memory.count() == 0
        finally:
            agent.close()


class TestBigThree:

    def test_set_and_get(self, agent):
        goals = agent.set_big_three(
            [{"title": "  Finish   problem set ", "category": "academic"}, {"title": "Evening run"}],
            day=MORNING.date(),
        )
        assert [g.title for g in goals] == ["Finish problem set", "Evening run"]
        assert [g.priority for g in agent.get_big_three(MORNING.date())] == [1, 2]

    def test_more_than_three_rejected(self, agent):
        with pytest.raises(ValueError):
            agent.set_big_three([{"title": str(i)} for i in range(4)], day=MORNING.date())
        assert agent.get_big_three(MORNING.date()) == []

    def test_unknown_category_rejected(self, agent):
        with pytest.raises(ValueError):
            agent.set_big_three([{"title": "x", "category": "hobbies"}], day=MORNING.date())

    def test_complete(self, agent):
        goal = agent.set_big_three([{"title": "Finish problem set"}], day=MORNING.date())[0]
        done = agent.complete_big_three(goal.id, satisfaction_rating=5)
        assert done.is_completed
        assert done.satisfaction_rating == 5

    def test_complete_unknown(self, agent):
        with pytest.raises(GoalNotFoundError):
            agent.complete_big_three(42)

    def test_bad_satisfaction(self, agent):
        goal = agent.set_big_three([{"title": "x"}], day=MORNING.date())[0]
        with pytest.raises(ValueError):
            agent.complete_big_three(goal.id, satisfaction_rating=9)
        assert not agent.get_big_three(MORNING.date())[0].is_completed

    def test_completion_feeds_context(self, agent):
        goals = agent.set_big_three(
            [{"title": "a"}, {"title": "b"}, {"title": "c"}], day=MORNING.date()
        )
        agent.complete_big_three(goals[0].id)
        ctx = agent.extractor.capture(MORNING)
        assert ctx["big_3_completion"] == pytest.approx(1 / 3)


class TestSettings:

    def test_exploration_beta_persists(self, agent, config):
        agent.set_exploration_beta(1.0)
        other = build_agent(config)
        try:
            assert other.exploration_beta == 1.0
        finally:
            other.close()

    def test_exploration_beta_bounds(self, agent):
        with pytest.raises(ValueError):
            agent.set_exploration_beta(6.0)
        assert agent.exploration_beta == 2.0

    def test_reward_weights_persist(self, agent, config):
        weights = {"immediate": 0.25, "daily": 0.25, "weekly": 0.25, "monthly": 0.25}
        agent.set_reward_weights(weights)
        other = build_agent(config)
        try:
            assert other.rewards.weights.to_dict() == weights
        finally:
            other.close()

    def test_invalid_reward_weights(self, agent):
        with pytest.raises(ValueError):
            agent.set_reward_weights(
                {"immediate": 0.5, "daily": 0.5, "weekly": 0.5, "monthly": 0.5}
            )
        assert agent.rewards.weights.immediate == 0.2


class TestStatusAndMaintenance:

    def test_status_without_feedback(self, agent):
        status = agent.get_status()
        assert status.acceptance_rate == 0.5
        assert status.total_samples == 0
        assert status.enabled_actions == 15
        assert status.mode == "linear"
        assert not status.ready_for_neural

    def test_status_after_feedback(self, agent):
        rec = agent.get_recommendations(1).items[0]
        agent.record_feedback(rec.id, accepted=True)
        status = agent.get_status()
        assert status.acceptance_rate == 1.0
        assert status.total_samples == 1

    def test_first_monday_of_month(self, agent):
        report = agent.daily_maintenance(date(2024, 4, 1))
        assert {"daily", "weekly", "monthly", "finalized"} <= set(report)

    def test_regular_day(self, agent):
        report = agent.daily_maintenance(date(2024, 4, 2))
        assert "weekly" not in report
        assert "monthly" not in report

    def test_old_records_finalized(self, agent):
        agent.record_outcome("take_walk", default_context(), 0.8)
        report = agent.daily_maintenance(date.today() + timedelta(days=40))
        assert report["finalized"] == 1
        assert agent.store.pending_rewards() == []
