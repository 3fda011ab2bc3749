"""
Ranks enabled actions for a context.

UCB mode scores each action as predict(x) + beta * uncertainty(x);
Thompson mode scores each action with one posterior sample. Both sort
descending with ties kept in catalog order.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

import numpy as np

from .action_registry import Action, ActionRegistry
from .bayes_linear import as_feature_array
from .feature_schema import FEATURE_NAMES
from .learning_config import DEFAULT_EXPLORATION_BETA
from .model_repository import ModelRepository

if TYPE_CHECKING:
    from .feature_schema import ContextVector

logger = logging.getLogger(__name__)

SELECTION_MODES = ("ucb", "thompson")


@dataclass(frozen=True)
class FeatureContribution:
    """How much one feature pushed an action's expected reward."""
    name: str
    value: float
    contribution: float

    @property
    def direction(self) -> str:
        return "positive" if self.contribution >= 0 else "negative"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "value": self.value,
            "contribution": self.contribution,
            "direction": self.direction,
        }


@dataclass(frozen=True)
class AlternativeAction:
    name: str
    expected_reward: float
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "expected_reward": self.expected_reward, "reason": self.reason}


@dataclass
class ActionSelection:
    """
    One scored action.

    Attributes:
        action: The catalog entry
        expected_reward: Posterior mean prediction
        uncertainty: Predictive standard deviation
        ucb_score: Ranking score (UCB value, or the Thompson sample)
        explanation_features: Top contributions by absolute value
        contributions: Full per-feature contribution vector; sums to expected_reward
        alternative_actions: Other candidates (filled on the top selection only)
    """
    action: Action
    expected_reward: float
    uncertainty: float
    ucb_score: float
    explanation_features: List[FeatureContribution] = field(default_factory=list)
    contributions: Tuple[float, ...] = ()
    alternative_actions: List[AlternativeAction] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action.name,
            "category": self.action.category,
            "description": self.action.description,
            "expected_reward": self.expected_reward,
            "uncertainty": self.uncertainty,
            "ucb_score": self.ucb_score,
            "explanation_features": [f.to_dict() for f in self.explanation_features],
            "alternative_actions": [a.to_dict() for a in self.alternative_actions],
        }


def top_contributions(
    x: np.ndarray, contributions: np.ndarray, k: int = 5
) -> List[FeatureContribution]:
    """The k largest contributions by magnitude, ties in feature order."""
    order = sorted(range(len(contributions)), key=lambda i: -abs(contributions[i]))
    return [
        FeatureContribution(
            name=FEATURE_NAMES[i],
            value=float(x[i]),
            contribution=float(contributions[i]),
        )
        for i in order[:k]
    ]


class ActionSelector:
    """
    Scores every enabled action against a context.

    Example:
        >>> selector = ActionSelector(registry, models)
        >>> picks = selector.select_top(context, n=3)
        >>> picks[0].action.name
        'start_pomodoro'
    """

    def __init__(
        self,
        registry: ActionRegistry,
        models: ModelRepository,
        top_features: int = 5,
        prng_seed: Optional[int] = None,
    ):
        self.registry = registry
        self.models = models
        self.top_features = top_features
        self._rng = np.random.default_rng(prng_seed)
        self._rng_lock = threading.Lock()

    def _score(
        self,
        action: Action,
        x: np.ndarray,
        beta: float,
        mode: str,
        rng: Optional[np.random.Generator] = None,
    ) -> ActionSelection:
        model = self.models.load(action.name)
        expected = model.predict(x)
        uncertainty = model.uncertainty(x)
        if mode == "thompson":
            if rng is not None:
                score = model.thompson_sample(x, rng)
            else:
                with self._rng_lock:
                    score = model.thompson_sample(x, self._rng)
        else:
            score = expected + beta * uncertainty
        contributions = model.feature_contributions(x)
        return ActionSelection(
            action=action,
            expected_reward=expected,
            uncertainty=uncertainty,
            ucb_score=score,
            explanation_features=top_contributions(x, contributions, self.top_features),
            contributions=tuple(float(c) for c in contributions),
        )

    def score_all(
        self,
        context: "ContextVector",
        exploration_beta: float = DEFAULT_EXPLORATION_BETA,
        mode: str = "ucb",
        rng: Optional[np.random.Generator] = None,
    ) -> List[ActionSelection]:
        """
        Score every enabled action, best first.

        Thompson draws use rng when given, else the selector's own generator.
        """
        if mode not in SELECTION_MODES:
            raise ValueError(f"Unknown selection mode: {mode}")
        if exploration_beta < 0:
            raise ValueError("exploration_beta must be non-negative")

        # Reject malformed contexts before any model is loaded
        x = as_feature_array(context)

        scored = [
            self._score(action, x, exploration_beta, mode, rng)
            for action in self.registry.enabled()
        ]
        # sorted() is stable, so ties keep catalog order
        return sorted(scored, key=lambda s: s.ucb_score, reverse=True)

    def select_top(
        self,
        context: "ContextVector",
        n: int = 3,
        exploration_beta: float = DEFAULT_EXPLORATION_BETA,
        mode: str = "ucb",
        rng: Optional[np.random.Generator] = None,
    ) -> List[ActionSelection]:
        """
        Top-n actions for a context.

        Returns an empty list when n <= 0 or no action is enabled.
        """
        if n <= 0:
            as_feature_array(context)
            return []

        ranked = self.score_all(context, exploration_beta, mode, rng)
        if not ranked:
            logger.info("No enabled actions to select from")
            return []

        picks = ranked[:n]
        best = picks[0]
        best.alternative_actions = [
            AlternativeAction(
                name=s.action.name,
                expected_reward=s.expected_reward,
                reason=f"Also a good fit: {s.action.description}",
            )
            for s in picks[1:]
        ]
        return picks

    def select_one(
        self,
        context: "ContextVector",
        exploration_beta: float = DEFAULT_EXPLORATION_BETA,
        mode: str = "ucb",
        rng: Optional[np.random.Generator] = None,
    ) -> Optional[ActionSelection]:
        picks = self.select_top(context, 1, exploration_beta, mode, rng)
        return picks[0] if picks else None
