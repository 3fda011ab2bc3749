"""
Learning configuration and reward weighting.

Controls exploration, the model prior and how reward horizons are
blended, through bounded parameters with sensible defaults.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

DEFAULT_EXPLORATION_BETA = 2.0
MAX_EXPLORATION_BETA = 5.0

# Allowed drift of the weight sum away from 1.0
WEIGHT_SUM_TOLERANCE = 0.01


@dataclass(frozen=True)
class RewardWeights:
    """
    Weights for blending reward horizons into a final reward.

    Must be non-negative and sum to 1.0 (within 0.01).
    """
    immediate: float = 0.2
    daily: float = 0.3
    weekly: float = 0.3
    monthly: float = 0.2

    def __post_init__(self):
        values = self.to_dict()
        negative = [k for k, v in values.items() if v < 0]
        if negative:
            raise ValueError(f"Reward weights must be non-negative: {', '.join(negative)}")
        total = sum(values.values())
        if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
            raise ValueError(f"Reward weights must sum to 1.0, got {total:.3f}")

    def to_dict(self) -> Dict[str, float]:
        return {
            "immediate": self.immediate,
            "daily": self.daily,
            "weekly": self.weekly,
            "monthly": self.monthly,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "RewardWeights":
        return cls(**{k: float(v) for k, v in data.items() if k in cls.__annotations__})


@dataclass
class LearningConfig:
    """
    Configuration for action selection and model updates.

    Attributes:
        exploration_beta: UCB exploration weight (0 = greedy, max 5)
        selection_mode: "ucb" or "thompson"
        prior_precision: Prior precision alpha of every action model
        noise_precision: Observation noise precision tau
        gradient_step: Step size of the singular-matrix fallback update
        top_features: Number of features in each explanation
        reward_weights: Horizon blend weights
        reward_cutoff_days: Age after which pending rewards are finalized as-is
        apply_finalized_rewards: Feed finalized totals back into the models
        min_samples_for_neural: Sample count reported as "ready" for a larger model
        prng_seed: Seed for Thompson sampling (None = random)
    """
    # Exploration
    exploration_beta: float = DEFAULT_EXPLORATION_BETA
    selection_mode: str = "ucb"

    # Model prior
    prior_precision: float = 1.0
    noise_precision: float = 1.0
    gradient_step: float = 0.01

    # Explanations
    top_features: int = 5

    # Rewards
    reward_weights: RewardWeights = field(default_factory=RewardWeights)
    reward_cutoff_days: int = 35
    apply_finalized_rewards: bool = False

    min_samples_for_neural: int = 100

    # Determinism
    prng_seed: Optional[int] = None

    def __post_init__(self):
        """Clamp parameters to safe ranges."""
        self.exploration_beta = max(0.0, min(MAX_EXPLORATION_BETA, float(self.exploration_beta)))
        if self.selection_mode not in ("ucb", "thompson"):
            self.selection_mode = "ucb"
        self.prior_precision = max(1e-6, float(self.prior_precision))
        self.noise_precision = max(1e-6, float(self.noise_precision))
        self.gradient_step = max(0.0, min(1.0, float(self.gradient_step)))
        self.top_features = max(1, min(50, int(self.top_features)))
        self.reward_cutoff_days = max(1, int(self.reward_cutoff_days))
        self.min_samples_for_neural = max(1, int(self.min_samples_for_neural))
        if isinstance(self.reward_weights, dict):
            self.reward_weights = RewardWeights.from_dict(self.reward_weights)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "exploration_beta": self.exploration_beta,
            "selection_mode": self.selection_mode,
            "prior_precision": self.prior_precision,
            "noise_precision": self.noise_precision,
            "gradient_step": self.gradient_step,
            "top_features": self.top_features,
            "reward_weights": self.reward_weights.to_dict(),
            "reward_cutoff_days": self.reward_cutoff_days,
            "apply_finalized_rewards": self.apply_finalized_rewards,
            "min_samples_for_neural": self.min_samples_for_neural,
            "prng_seed": self.prng_seed,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "LearningConfig":
        """Deserialize from dictionary."""
        return cls(**{k: v for k, v in data.items() if k in cls.__annotations__})


DEFAULT_LEARNING_CONFIG = LearningConfig()


class LearningPresets:
    """Pre-configured learning presets."""

    @staticmethod
    def default() -> LearningConfig:
        return LearningConfig()

    @staticmethod
    def exploratory() -> LearningConfig:
        """Wider confidence bonus, for new users with little history."""
        return LearningConfig(exploration_beta=3.5)

    @staticmethod
    def greedy() -> LearningConfig:
        """Pure exploitation of the current posterior means."""
        return LearningConfig(exploration_beta=0.0)

    @staticmethod
    def thompson() -> LearningConfig:
        return LearningConfig(selection_mode="thompson")

    @staticmethod
    def deterministic_test(seed: int = 42) -> LearningConfig:
        """Deterministic configuration for testing."""
        return LearningConfig(selection_mode="thompson", prng_seed=seed)
