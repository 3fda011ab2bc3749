"""
Action name -> model handle mapping with serialized updates.

Reads never lock. Each action has its own lock that guards the
load-update-save cycle, so concurrent updates to one action are never
lost and updates to different actions never contend.
"""
from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Dict, Optional

from ..errors import UnknownActionError
from .bayes_linear import BayesianLinearModel, as_feature_array

if TYPE_CHECKING:
    from ..storage import AgentStore

logger = logging.getLogger(__name__)


class ModelRepository:
    """Loads, creates and updates per-action Bayesian models."""

    def __init__(
        self,
        store: "AgentStore",
        prior_precision: float = 1.0,
        noise_precision: float = 1.0,
        gradient_step: float = 0.01,
    ):
        self.store = store
        self.prior_precision = prior_precision
        self.noise_precision = noise_precision
        self.gradient_step = gradient_step
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, action_name: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(action_name)
            if lock is None:
                lock = threading.Lock()
                self._locks[action_name] = lock
            return lock

    def _prior(self) -> BayesianLinearModel:
        return BayesianLinearModel(
            prior_precision=self.prior_precision,
            noise_precision=self.noise_precision,
            gradient_step=self.gradient_step,
        )

    def load(self, action_name: str) -> BayesianLinearModel:
        """
        Current model for an action.

        Actions that were never updated get a fresh prior. Malformed stored
        parameters also fall back to the prior, with a warning.
        """
        blobs = self.store.load_model_blobs(action_name)
        if blobs is None:
            raise UnknownActionError(action_name)

        theta, precision, prior_precision, noise_precision = blobs
        if theta is None or precision is None:
            return self._prior()

        model = BayesianLinearModel.from_bytes(
            bytes(theta), bytes(precision), prior_precision, noise_precision
        )
        if model is None:
            logger.warning(f"Stored parameters for {action_name} are invalid, using prior")
            return self._prior()
        model.gradient_step = self.gradient_step
        return model

    def update(self, action_name: str, context, reward: float) -> BayesianLinearModel:
        """
        Apply one observation and persist the result.

        The context is validated before any model is loaded.
        """
        x = as_feature_array(context)
        with self._lock_for(action_name):
            model = self.load(action_name)
            model.update(x, reward)
            self.store.save_model_update(
                action_name,
                model.mu_bytes(),
                model.precision_bytes(),
                model.prior_precision,
                model.noise_precision,
                float(reward),
            )
        logger.debug(f"Updated {action_name} with reward {reward:.3f}")
        return model

    def reset(self, action_name: Optional[str] = None) -> int:
        """Drop learned parameters (one action or all) back to the prior."""
        if action_name is not None:
            with self._lock_for(action_name):
                return self.store.reset_models(action_name)
        return self.store.reset_models()
