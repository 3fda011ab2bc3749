"""
Learning layer for the recommendation engine.

Key principles:
- One Bayesian linear model per action, never shared
- Exploration comes from posterior uncertainty, not random noise
- Every update is serialized per action; reads never block
- Rewards are shaped on several timescales and blended late

Design:
- Contextual bandit (UCB or Thompson sampling) over a 50-feature context
- Conjugate Gaussian updates with a gradient fallback for singular cases
- Fixed binary layout for persisted parameters
"""

from .feature_schema import (
    FEATURE_DIM,
    FEATURE_GROUPS,
    FEATURE_NAMES,
    FEATURE_SCHEMA_VERSION,
    ContextVector,
)
from .feature_extractor import FeatureExtractor
from .bayes_linear import BayesianLinearModel, MAX_UNCERTAINTY
from .action_registry import Action, ActionRegistry, DEFAULT_ACTIONS, action_for_event
from .model_repository import ModelRepository
from .selector import ActionSelection, ActionSelector, AlternativeAction, FeatureContribution
from .reward_engine import FeedbackType, RewardEngine, finalize_reward
from .learning_config import (
    DEFAULT_LEARNING_CONFIG,
    LearningConfig,
    LearningPresets,
    RewardWeights,
)

__all__ = [
    # Context
    "FEATURE_DIM",
    "FEATURE_GROUPS",
    "FEATURE_NAMES",
    "FEATURE_SCHEMA_VERSION",
    "ContextVector",
    "FeatureExtractor",
    # Models
    "BayesianLinearModel",
    "MAX_UNCERTAINTY",
    "ModelRepository",
    # Actions and selection
    "Action",
    "ActionRegistry",
    "DEFAULT_ACTIONS",
    "action_for_event",
    "ActionSelection",
    "ActionSelector",
    "AlternativeAction",
    "FeatureContribution",
    # Rewards
    "FeedbackType",
    "RewardEngine",
    "finalize_reward",
    # Config
    "DEFAULT_LEARNING_CONFIG",
    "LearningConfig",
    "LearningPresets",
    "RewardWeights",
]
