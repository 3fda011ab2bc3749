"""
Intelligence agent: the recommendation engine's public entry point.

Wires feature extraction, semantic memory, action selection and reward
shaping together. Construct one agent at startup with build_agent() and
share it; every component is passed in explicitly.
"""
from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from .activity import (
    ActivitySource,
    SQLiteActivitySource,
    create_tracker_schema,
    month_start_of,
    week_start_of,
)
from .config import AgentConfig
from .errors import GoalNotFoundError, RecommendationNotFoundError
from .explain import confidence_level, generate_explanation
from .learning.action_registry import ActionRegistry, action_for_event
from .learning.feature_extractor import FeatureExtractor
from .learning.feature_schema import FEATURE_NAMES, ContextVector
from .learning.learning_config import LearningConfig, RewardWeights
from .learning.model_repository import ModelRepository
from .learning.reward_engine import FeedbackType, RewardEngine
from .learning.selector import ActionSelection, ActionSelector
from .logging_config import get_logger
from .semantic_memory import (
    NEUTRAL_OUTCOME,
    Embedder,
    EmbeddingWorkerPool,
    MemorySearchResult,
    SemanticMemoryIndex,
    SentenceTransformerEmbedder,
    is_semantic_available,
)
from .storage import AgentStore
from .types import BigThreeGoal
from .validation import (
    sanitize_text,
    validate_big_three,
    validate_description,
    validate_event_type,
    validate_exploration_beta,
    validate_feedback_score,
    validate_outcome_score,
    validate_recommendation_count,
    validate_reward_weights,
    validate_satisfaction_rating,
)

logger = get_logger(__name__)

STATE_EXPLORATION_BETA = "exploration_beta"
STATE_REWARD_WEIGHTS = "reward_weights"
STATE_MODE = "bandit_mode"

# Outcome above which a feedback is counted as a completed task
TASK_COMPLETED_OUTCOME = 0.7


class RecommendationStatus(str, Enum):
    OK = "ok"
    NO_ENABLED_ACTIONS = "no_enabled_actions"


@dataclass
class Recommendation:
    """A ranked action ready to show the user."""
    id: int
    selection: ActionSelection
    explanation: str
    confidence: str

    def to_dict(self) -> Dict[str, Any]:
        data = self.selection.to_dict()
        data.update({
            "id": self.id,
            "explanation": self.explanation,
            "confidence": self.confidence,
        })
        return data


@dataclass
class Recommendations:
    """
    Result of one recommendation request.

    status is NO_ENABLED_ACTIONS (with no items) when the catalog has
    nothing to offer; that is an expected state, not an error.
    """
    status: RecommendationStatus
    items: List[Recommendation] = field(default_factory=list)
    context_id: Optional[int] = None
    context: Optional[ContextVector] = None
    memory_outcome: float = NEUTRAL_OUTCOME
    similar_experiences: List[MemorySearchResult] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "context_id": self.context_id,
            "memory_outcome": self.memory_outcome,
            "recommendations": [r.to_dict() for r in self.items],
            "similar_experiences": [s.to_dict() for s in self.similar_experiences],
        }


@dataclass
class FeedbackResult:
    recommendation_id: Optional[int]
    action_name: str
    immediate_reward: float
    applied_reward: float
    reward_log_id: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recommendation_id": self.recommendation_id,
            "action": self.action_name,
            "immediate_reward": self.immediate_reward,
            "applied_reward": self.applied_reward,
            "reward_log_id": self.reward_log_id,
        }


@dataclass
class AgentStatus:
    mode: str
    total_samples: int
    ready_for_neural: bool
    memory_events: int
    acceptance_rate: float
    exploration_beta: float
    enabled_actions: int
    reward_weights: Dict[str, float]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "mode": self.mode,
            "total_samples": self.total_samples,
            "ready_for_neural": self.ready_for_neural,
            "memory_events": self.memory_events,
            "acceptance_rate": self.acceptance_rate,
            "exploration_beta": self.exploration_beta,
            "enabled_actions": self.enabled_actions,
            "reward_weights": self.reward_weights,
        }


class IntelligenceAgent:
    """
    Recommends actions and learns from the outcomes.

    Example:
        >>> agent = build_agent(AgentConfig(data_dir="./.nudge"))
        >>> recs = agent.get_recommendations(3)
        >>> agent.record_feedback(recs.items[0].id, accepted=True, feedback_score=1)
    """

    def __init__(
        self,
        store: AgentStore,
        extractor: FeatureExtractor,
        registry: ActionRegistry,
        models: ModelRepository,
        selector: ActionSelector,
        rewards: RewardEngine,
        memory: Optional[SemanticMemoryIndex] = None,
        learning: Optional[LearningConfig] = None,
        memory_search_k: int = 5,
        pool: Optional[EmbeddingWorkerPool] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.registry = registry
        self.models = models
        self.selector = selector
        self.rewards = rewards
        self.memory = memory
        self.learning = learning or LearningConfig()
        self.memory_search_k = memory_search_k
        self._pool = pool

        stored_weights = store.get_state(STATE_REWARD_WEIGHTS)
        if stored_weights:
            try:
                self.rewards.weights = RewardWeights.from_dict(stored_weights)
            except (TypeError, ValueError) as e:
                logger.warning(f"Ignoring invalid stored reward weights: {e}")
        else:
            self.rewards.weights = self.learning.reward_weights

    # ------------------------------------------------------------------
    # Settings
    # ------------------------------------------------------------------

    @property
    def exploration_beta(self) -> float:
        value = self.store.get_state(STATE_EXPLORATION_BETA)
        if value is None or not validate_exploration_beta(value).is_valid:
            return self.learning.exploration_beta
        return float(value)

    def set_exploration_beta(self, beta: float) -> None:
        validate_exploration_beta(beta).raise_if_invalid("Exploration")
        self.store.set_state(STATE_EXPLORATION_BETA, float(beta))
        logger.event("settings_changed", f"Exploration beta set to {beta}", subsystem="agent")

    def set_reward_weights(self, weights: Union[RewardWeights, Dict[str, float]]) -> RewardWeights:
        if isinstance(weights, dict):
            validate_reward_weights(weights).raise_if_invalid("Reward weights")
            weights = RewardWeights.from_dict(weights)
        self.store.set_state(STATE_REWARD_WEIGHTS, weights.to_dict())
        self.rewards.weights = weights
        logger.event("settings_changed", f"Reward weights set to {weights.to_dict()}", subsystem="agent")
        return weights

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def _memory_outcome(self, context: ContextVector):
        """Outcome estimate from similar past situations; neutral on any failure."""
        if self.memory is None:
            return NEUTRAL_OUTCOME, []
        try:
            return self.memory.get_similar_context_outcomes(context.describe(), self.memory_search_k)
        except Exception as e:
            logger.warning(f"Semantic memory lookup failed, using neutral prior: {e}")
            return NEUTRAL_OUTCOME, []

    def current_context(self, now: Optional[datetime] = None) -> ContextVector:
        """Current context, enriched with the memory outcome estimate."""
        context = self.extractor.capture(now)
        outcome, _ = self._memory_outcome(context)
        return self.extractor.enrich(context, outcome)

    def get_recommendations(
        self,
        n: int = 3,
        mode: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Recommendations:
        """
        Rank the catalog for the current moment and log what is shown.
        """
        validate_recommendation_count(n).raise_if_invalid("Recommendations")
        start = time.perf_counter()
        now = now or self.extractor.clock()

        context = self.extractor.capture(now)
        memory_outcome, similar = self._memory_outcome(context)
        context = self.extractor.enrich(context, memory_outcome)
        context_id = self.extractor.snapshot(context, now)

        selections = self.selector.select_top(
            context,
            n,
            exploration_beta=self.exploration_beta,
            mode=mode or self.learning.selection_mode,
        )
        if not selections:
            status = (
                RecommendationStatus.OK if n == 0 else RecommendationStatus.NO_ENABLED_ACTIONS
            )
            return Recommendations(
                status=status,
                context_id=context_id,
                context=context,
                memory_outcome=memory_outcome,
                similar_experiences=similar,
            )

        similar_outcomes = [
            s.event.outcome_score for s in similar if s.event.outcome_score is not None
        ]
        items: List[Recommendation] = []
        for selection in selections:
            explanation = generate_explanation(selection, context, similar_outcomes)
            confidence = confidence_level(selection.uncertainty)
            rec_id = self.store.record_recommendation(
                action_name=selection.action.name,
                expected_reward=selection.expected_reward,
                uncertainty=selection.uncertainty,
                score=selection.ucb_score,
                context_id=context_id,
                explanation={
                    "text": explanation,
                    "confidence": confidence,
                    "top_features": [f.to_dict() for f in selection.explanation_features],
                },
                when=now,
            )
            items.append(Recommendation(rec_id, selection, explanation, confidence))

        logger.latency(
            "get_recommendations",
            (time.perf_counter() - start) * 1000,
            subsystem="agent",
            action=items[0].selection.action.name,
        )
        return Recommendations(
            status=RecommendationStatus.OK,
            items=items,
            context_id=context_id,
            context=context,
            memory_outcome=memory_outcome,
            similar_experiences=similar,
        )

    # ------------------------------------------------------------------
    # Feedback
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        action_name: str,
        context: Union[ContextVector, List[float]],
        outcome_score: float,
        feedback_type: FeedbackType = FeedbackType.IMPLICIT,
    ) -> FeedbackResult:
        """
        Apply an observed outcome for an action taken in a context.

        The context and score are validated before any model is touched.
        """
        if not isinstance(context, ContextVector):
            context = ContextVector.from_array(context)
        validate_outcome_score(outcome_score).raise_if_invalid("Outcome")
        self.registry.get(action_name)

        self.models.update(action_name, context, outcome_score)
        log_id = self.store.log_reward(action_name, context, outcome_score, feedback_type.value)
        logger.event(
            "outcome_recorded",
            f"Outcome {outcome_score:.2f} recorded",
            subsystem="agent",
            action=action_name,
        )
        return FeedbackResult(None, action_name, outcome_score, outcome_score, log_id)

    def record_feedback(
        self,
        recommendation_id: int,
        accepted: bool,
        alternative_chosen: Optional[str] = None,
        feedback_score: Optional[int] = None,
        outcome_score: Optional[float] = None,
        satisfaction_rating: Optional[int] = None,
    ) -> FeedbackResult:
        """
        Record the user's response to a recommendation and learn from it.

        The model is updated with the context the recommendation was made
        in. The outcome score, when given, is the training reward; otherwise
        the immediate reward is.
        """
        validate_feedback_score(feedback_score).raise_if_invalid("Feedback")
        validate_satisfaction_rating(satisfaction_rating).raise_if_invalid("Feedback")
        if outcome_score is not None:
            validate_outcome_score(outcome_score).raise_if_invalid("Feedback")

        rec = self.store.get_recommendation(recommendation_id)
        if rec is None:
            raise RecommendationNotFoundError(recommendation_id)

        context = self.store.load_context(rec.context_id) if rec.context_id is not None else None
        if context is None:
            logger.warning(
                f"No stored context for recommendation {recommendation_id}, using current context"
            )
            context = self.current_context()

        self.store.record_recommendation_feedback(
            recommendation_id, accepted, alternative_chosen, feedback_score, outcome_score
        )

        immediate = self.rewards.compute_immediate_reward(
            accepted=accepted,
            feedback_score=feedback_score,
            task_completed=outcome_score is not None and outcome_score > TASK_COMPLETED_OUTCOME,
            satisfaction_rating=satisfaction_rating,
        )
        reward = outcome_score if outcome_score is not None else immediate

        self.models.update(rec.action_name, context, reward)
        log_id = self.store.log_reward(rec.action_name, context, immediate, FeedbackType.EXPLICIT.value)

        logger.event(
            "feedback_recorded",
            f"accepted={accepted} reward={reward:.2f}",
            subsystem="agent",
            action=rec.action_name,
            recommendation_id=recommendation_id,
        )
        return FeedbackResult(recommendation_id, rec.action_name, immediate, reward, log_id)

    def record_action_completed(
        self,
        event_type: str,
        description: str,
        outcome_score: float,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Optional[FeedbackResult]:
        """
        Remember a completed activity and credit the matching action.

        Returns None when the event type maps to no action.
        """
        validate_event_type(event_type).raise_if_invalid("Event")
        validate_description(description).raise_if_invalid("Event")
        validate_outcome_score(outcome_score).raise_if_invalid("Event")
        description = sanitize_text(description)

        action_name = action_for_event(event_type)
        if action_name is not None and action_name not in self.registry:
            action_name = None
        # Captured before the event joins memory so its own outcome is not in the context
        context = self.current_context(now) if action_name is not None else None

        if self.memory is not None:
            try:
                self.memory.add_event(
                    event_type,
                    f"{event_type}: {description}",
                    outcome_score=outcome_score,
                    metadata=metadata,
                    when=now,
                )
            except Exception as e:
                logger.warning(f"Could not store memory event: {e}")

        if action_name is None:
            logger.debug(f"No action mapped for event type {event_type}")
            return None

        return self.record_outcome(action_name, context, outcome_score, FeedbackType.IMPLICIT)

    def search_similar_experiences(
        self,
        query: str,
        limit: int = 5,
        event_type: Optional[str] = None,
    ) -> List[MemorySearchResult]:
        if self.memory is None:
            return []
        return self.memory.search_similar(sanitize_text(query), limit, event_type)

    # ------------------------------------------------------------------
    # Big Three goals
    # ------------------------------------------------------------------

    def get_big_three(self, day: Optional[date] = None) -> List[BigThreeGoal]:
        """The day's goals in priority order (today by default)."""
        return self.store.get_big_three(day or self.extractor.clock().date())

    def set_big_three(
        self,
        goals: List[Dict[str, Any]],
        day: Optional[date] = None,
    ) -> List[BigThreeGoal]:
        """
        Replace the day's goals with up to three new ones.

        Each goal is a dict with a title and optional description and
        category; list order sets the priority.
        """
        validate_big_three(goals).raise_if_invalid("Big Three")
        day = day or self.extractor.clock().date()
        cleaned = [
            {
                "title": sanitize_text(g["title"]),
                "description": sanitize_text(g["description"]) if g.get("description") else None,
                "category": g.get("category"),
            }
            for g in goals
        ]
        saved = self.store.set_big_three(day, cleaned)
        logger.event("big_three_set", f"{len(saved)} goals set for {day.isoformat()}", subsystem="agent")
        return saved

    def complete_big_three(
        self,
        goal_id: int,
        satisfaction_rating: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BigThreeGoal:
        validate_satisfaction_rating(satisfaction_rating).raise_if_invalid("Big Three")
        goal = self.store.complete_big_three(goal_id, satisfaction_rating, now)
        if goal is None:
            raise GoalNotFoundError(goal_id)
        logger.event("big_three_completed", f"Goal {goal_id} completed", subsystem="agent")
        return goal

    # ------------------------------------------------------------------
    # Status and maintenance
    # ------------------------------------------------------------------

    def get_status(self, now: Optional[datetime] = None) -> AgentStatus:
        now = now or datetime.now()
        total = self.store.total_samples()
        rate = self.store.acceptance_rate(now - timedelta(days=7))
        return AgentStatus(
            mode=self.store.get_state(STATE_MODE, "linear"),
            total_samples=total,
            ready_for_neural=total >= self.learning.min_samples_for_neural,
            memory_events=self.store.count_memory_events(),
            acceptance_rate=rate if rate is not None else 0.5,
            exploration_beta=self.exploration_beta,
            enabled_actions=len(self.registry.enabled()),
            reward_weights=self.rewards.weights.to_dict(),
        )

    def daily_maintenance(self, today: Optional[date] = None) -> Dict[str, Any]:
        """
        Backfill delayed rewards and finalize complete records.

        Yesterday's daily reward always; the previous week's on Mondays;
        the previous month's on the 1st.
        """
        today = today or date.today()
        yesterday = today - timedelta(days=1)
        report: Dict[str, Any] = {"daily": self.rewards.backfill_daily(yesterday)}

        if today.weekday() == 0:
            report["weekly"] = self.rewards.backfill_weekly(week_start_of(yesterday))
        if today.day == 1:
            report["monthly"] = self.rewards.backfill_monthly(month_start_of(yesterday))

        now = datetime(today.year, today.month, today.day)
        report["finalized"] = len(self.rewards.finalize_pending(now))

        status = self.get_status(now)
        report["ready_for_neural"] = status.ready_for_neural
        if status.ready_for_neural and status.mode == "linear":
            logger.info(f"Agent ready for a larger model with {status.total_samples} samples")

        logger.event("maintenance", f"Daily maintenance done: {report}", subsystem="rewards")
        return report

    @staticmethod
    def feature_names() -> List[str]:
        return list(FEATURE_NAMES)

    def close(self) -> None:
        if self._pool is not None:
            self._pool.shutdown(wait=False)


def build_agent(
    config: AgentConfig,
    source: Optional[ActivitySource] = None,
    embedder: Optional[Embedder] = None,
) -> IntelligenceAgent:
    """
    Construct every component once and wire them together.

    Without an explicit embedder, a sentence-transformers model is used
    when config.embedding_model is set and the semantic extra is
    installed; otherwise semantic memory is disabled.
    """
    learning = config.learning
    store = AgentStore(config.resolved_db_path)
    registry = ActionRegistry(store)
    registry.ensure_defaults()

    if source is None:
        if config.resolved_tracker_db_path == config.resolved_db_path:
            # Standalone install: tracker tables live beside the engine's
            create_tracker_schema(config.resolved_db_path)
        source = SQLiteActivitySource(
            config.resolved_tracker_db_path, goals_path=config.resolved_db_path
        )
    extractor = FeatureExtractor(source, store)
    models = ModelRepository(
        store,
        prior_precision=learning.prior_precision,
        noise_precision=learning.noise_precision,
        gradient_step=learning.gradient_step,
    )
    selector = ActionSelector(
        registry, models, top_features=learning.top_features, prng_seed=learning.prng_seed
    )
    rewards = RewardEngine(
        source,
        store,
        weights=learning.reward_weights,
        cutoff_days=learning.reward_cutoff_days,
        models=models,
        apply_finalized_rewards=learning.apply_finalized_rewards,
    )

    if embedder is None and config.embedding_model:
        if is_semantic_available():
            embedder = SentenceTransformerEmbedder(config.embedding_model)
        else:
            logger.warning(
                "sentence-transformers not installed; semantic memory disabled. "
                "Install with: pip install nudge-agent[semantic]"
            )

    pool = None
    memory = None
    if embedder is not None:
        pool = EmbeddingWorkerPool(embedder, max_workers=config.embedding_workers)
        memory = SemanticMemoryIndex(store, pool, embed_timeout=config.embedding_timeout)

    return IntelligenceAgent(
        store=store,
        extractor=extractor,
        registry=registry,
        models=models,
        selector=selector,
        rewards=rewards,
        memory=memory,
        learning=learning,
        memory_search_k=config.memory_search_k,
        pool=pool,
    )
