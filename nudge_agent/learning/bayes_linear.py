"""
Per-action Bayesian linear regression.

Each action's expected reward is modelled as mu . x with a Gaussian
posterior N(mu, Lambda^-1) over the weights. The prior is N(0, alpha^-1 I)
and observation noise has precision tau.
"""
from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..errors import InvalidContextError
from .feature_schema import FEATURE_DIM, ContextVector

logger = logging.getLogger(__name__)

PRIOR_PRECISION = 1.0
NOISE_PRECISION = 1.0
GRADIENT_STEP = 0.01

# Returned when the precision matrix cannot be inverted
MAX_UNCERTAINTY = 1000.0

# Above this condition number the precision is treated as singular
_MAX_CONDITION = 1e12

BLOB_DTYPE = np.dtype("<f8")
MU_BLOB_SIZE = FEATURE_DIM * BLOB_DTYPE.itemsize
PRECISION_BLOB_SIZE = FEATURE_DIM * FEATURE_DIM * BLOB_DTYPE.itemsize


def as_feature_array(x) -> np.ndarray:
    """Coerce a context into a float64 array, rejecting wrong dimensions."""
    if isinstance(x, ContextVector):
        return x.as_array()
    arr = np.asarray(x, dtype=np.float64)
    if arr.shape != (FEATURE_DIM,):
        raise InvalidContextError(
            f"Context must have shape ({FEATURE_DIM},), got {arr.shape}"
        )
    if not np.all(np.isfinite(arr)):
        raise InvalidContextError("Context contains non-finite values")
    return arr


class BayesianLinearModel:
    """
    Posterior over linear reward weights for one action.

    Features:
    - Closed-form conjugate update
    - Predictive mean and standard deviation
    - Thompson sampling from the weight posterior
    - Fixed binary layout for persistence

    Example:
        >>> model = BayesianLinearModel()
        >>> model.update(context, reward=1.0)
        >>> model.predict(context) > 0
        True
    """

    def __init__(
        self,
        prior_precision: float = PRIOR_PRECISION,
        noise_precision: float = NOISE_PRECISION,
        mu: Optional[np.ndarray] = None,
        precision: Optional[np.ndarray] = None,
        gradient_step: float = GRADIENT_STEP,
    ):
        if prior_precision <= 0 or noise_precision <= 0:
            raise ValueError("prior_precision and noise_precision must be positive")

        self.prior_precision = float(prior_precision)
        self.noise_precision = float(noise_precision)
        self.gradient_step = gradient_step

        self.mu = (
            np.zeros(FEATURE_DIM, dtype=np.float64)
            if mu is None
            else np.array(mu, dtype=np.float64).reshape(FEATURE_DIM)
        )
        self.precision = (
            np.eye(FEATURE_DIM, dtype=np.float64) * self.prior_precision
            if precision is None
            else np.array(precision, dtype=np.float64).reshape(FEATURE_DIM, FEATURE_DIM)
        )
        self._covariance: Optional[np.ndarray] = None
        self._covariance_valid = False

    def covariance(self) -> Optional[np.ndarray]:
        """Lambda^-1, or None when the precision is (numerically) singular."""
        if not self._covariance_valid:
            self._covariance = self._invert(self.precision)
            self._covariance_valid = True
        return self._covariance

    @staticmethod
    def _invert(matrix: np.ndarray) -> Optional[np.ndarray]:
        try:
            if np.linalg.cond(matrix) > _MAX_CONDITION:
                return None
            inverse = np.linalg.inv(matrix)
        except np.linalg.LinAlgError:
            return None
        if not np.all(np.isfinite(inverse)):
            return None
        return inverse

    def predict(self, x) -> float:
        """Expected reward mu . x."""
        return float(self.mu @ as_feature_array(x))

    def uncertainty(self, x) -> float:
        """Predictive standard deviation sqrt(x^T Lambda^-1 x / tau)."""
        arr = as_feature_array(x)
        cov = self.covariance()
        if cov is None:
            return MAX_UNCERTAINTY
        variance = float(arr @ cov @ arr) / self.noise_precision
        return float(np.sqrt(max(variance, 0.0)))

    def thompson_sample(self, x, rng: Optional[np.random.Generator] = None) -> float:
        """
        Draw weights from the posterior and score x with them.

        Falls back to predict() when the covariance has no Cholesky factor.
        """
        arr = as_feature_array(x)
        rng = rng or np.random.default_rng()
        cov = self.covariance()
        if cov is None:
            return self.predict(arr)
        try:
            chol = np.linalg.cholesky(cov)
        except np.linalg.LinAlgError:
            return self.predict(arr)
        z = rng.standard_normal(FEATURE_DIM)
        sampled = self.mu + chol @ z
        return float(sampled @ arr)

    def update(self, x, reward: float) -> None:
        """
        Conjugate posterior update with one (context, reward) observation.

        Lambda' = Lambda + tau x x^T
        mu'     = Lambda'^-1 (Lambda mu + tau r x)
        """
        arr = as_feature_array(x)
        reward = float(reward)

        old_precision = self.precision
        new_precision = old_precision + self.noise_precision * np.outer(arr, arr)
        new_cov = self._invert(new_precision)

        if new_cov is None:
            # Singular posterior: small gradient step on the squared error
            error = reward - float(self.mu @ arr)
            self.mu = self.mu + self.gradient_step * error * arr
            logger.warning("Precision matrix not invertible, used gradient fallback")
        else:
            rhs = old_precision @ self.mu + self.noise_precision * reward * arr
            self.mu = new_cov @ rhs

        self.precision = new_precision
        self._covariance = new_cov
        self._covariance_valid = True

    def feature_contributions(self, x) -> np.ndarray:
        """Per-feature x_i * mu_i; sums to predict(x)."""
        return as_feature_array(x) * self.mu

    def mu_bytes(self) -> bytes:
        return self.mu.astype(BLOB_DTYPE).tobytes()

    def precision_bytes(self) -> bytes:
        return np.ascontiguousarray(self.precision, dtype=BLOB_DTYPE).tobytes()

    @classmethod
    def from_bytes(
        cls,
        mu_blob: bytes,
        precision_blob: bytes,
        prior_precision: float = PRIOR_PRECISION,
        noise_precision: float = NOISE_PRECISION,
    ) -> Optional["BayesianLinearModel"]:
        """
        Decode persisted state. Returns None when either blob has the wrong length.
        """
        if len(mu_blob) != MU_BLOB_SIZE or len(precision_blob) != PRECISION_BLOB_SIZE:
            logger.warning(
                f"Model blob size mismatch: mu={len(mu_blob)} precision={len(precision_blob)}"
            )
            return None
        mu = np.frombuffer(mu_blob, dtype=BLOB_DTYPE)
        precision = np.frombuffer(precision_blob, dtype=BLOB_DTYPE).reshape(FEATURE_DIM, FEATURE_DIM)
        if not (np.all(np.isfinite(mu)) and np.all(np.isfinite(precision))):
            logger.warning("Model blob contains non-finite values")
            return None
        return cls(
            prior_precision=prior_precision,
            noise_precision=noise_precision,
            mu=mu,
            precision=precision,
        )

    def copy(self) -> "BayesianLinearModel":
        return BayesianLinearModel(
            prior_precision=self.prior_precision,
            noise_precision=self.noise_precision,
            mu=self.mu.copy(),
            precision=self.precision.copy(),
            gradient_step=self.gradient_step,
        )
