"""
Tests for the per-action Bayesian linear model.
"""
import numpy as np
import pytest

from nudge_agent.errors import InvalidContextError
from nudge_agent.learning.bayes_linear import (
    MAX_UNCERTAINTY,
    MU_BLOB_SIZE,
    PRECISION_BLOB_SIZE,
    BayesianLinearModel,
)
from nudge_agent.learning.feature_schema import FEATURE_DIM, ContextVector, default_context


@pytest.fixture
def x():
    return default_context().as_array()


class TestPrior:

    def test_prior_predicts_zero(self, x):
        model = BayesianLinearModel()
        assert model.predict(x) == 0.0

    def test_prior_uncertainty(self, x):
        model = BayesianLinearModel(prior_precision=1.0, noise_precision=1.0)
        assert model.uncertainty(x) == pytest.approx(np.sqrt(x @ x))

    def test_rejects_non_positive_precisions(self):
        with pytest.raises(ValueError):
            BayesianLinearModel(prior_precision=0.0)

    def test_accepts_context_vector(self):
        model = BayesianLinearModel()
        assert model.predict(default_context()) == 0.0


class TestUpdate:

    def test_positive_reward_raises_prediction(self, x):
        model = BayesianLinearModel()
        model.update(x, 1.0)
        assert model.predict(x) > 0

    def test_zero_reward_keeps_prediction_at_or_below_zero(self, x):
        model = BayesianLinearModel()
        model.update(x, 0.0)
        assert model.predict(x) <= 1e-12

    def test_matches_closed_form(self, x):
        # With alpha = tau = 1: mu = r x / (1 + x.x)
        model = BayesianLinearModel()
        model.update(x, 0.8)
        assert np.allclose(model.mu, 0.8 * x / (1.0 + x @ x))
        assert np.allclose(model.precision, np.eye(FEATURE_DIM) + np.outer(x, x))

    def test_uncertainty_shrinks(self, x):
        model = BayesianLinearModel()
        before = model.uncertainty(x)
        for _ in range(5):
            model.update(x, 0.5)
        assert model.uncertainty(x) < before

    def test_repeated_rewards_converge(self, x):
        model = BayesianLinearModel()
        for _ in range(200):
            model.update(x, 0.7)
        assert model.predict(x) == pytest.approx(0.7, abs=0.01)

    def test_wrong_dimension_rejected(self):
        model = BayesianLinearModel()
        with pytest.raises(InvalidContextError):
            model.update(np.ones(10), 1.0)
        assert np.all(model.mu == 0)

    def test_non_finite_rejected(self, x):
        model = BayesianLinearModel()
        bad = x.copy()
        bad[0] = np.inf
        with pytest.raises(InvalidContextError):
            model.predict(bad)


class TestSingularPrecision:
    """Fallbacks when the precision matrix cannot be inverted."""

    def test_max_uncertainty(self, x):
        model = BayesianLinearModel(precision=np.zeros((FEATURE_DIM, FEATURE_DIM)))
        assert model.covariance() is None
        assert model.uncertainty(x) == MAX_UNCERTAINTY

    def test_gradient_fallback(self, x):
        model = BayesianLinearModel(precision=np.zeros((FEATURE_DIM, FEATURE_DIM)))
        model.update(x, 1.0)
        assert np.allclose(model.mu, 0.01 * x)

    def test_thompson_falls_back_to_mean(self, x):
        model = BayesianLinearModel(
            mu=np.full(FEATURE_DIM, 0.1),
            precision=np.zeros((FEATURE_DIM, FEATURE_DIM)),
        )
        assert model.thompson_sample(x, np.random.default_rng(0)) == pytest.approx(model.predict(x))


class TestThompson:

    def test_seeded_samples_repeat(self, x):
        a = BayesianLinearModel()
        b = BayesianLinearModel()
        sa = a.thompson_sample(x, np.random.default_rng(7))
        sb = b.thompson_sample(x, np.random.default_rng(7))
        assert sa == sb

    def test_samples_vary(self, x):
        model = BayesianLinearModel()
        rng = np.random.default_rng(1)
        samples = {model.thompson_sample(x, rng) for _ in range(5)}
        assert len(samples) == 5


class TestContributions:

    def test_contributions_sum_to_prediction(self, x):
        model = BayesianLinearModel()
        model.update(x, 1.0)
        other = ContextVector.from_features({"energy_level": 0.9}).as_array()
        model.update(other, 0.2)
        contributions = model.feature_contributions(x)
        assert contributions.shape == (FEATURE_DIM,)
        assert contributions.sum() == pytest.approx(model.predict(x))


class TestSerialization:

    def test_blob_sizes(self):
        model = BayesianLinearModel()
        assert len(model.mu_bytes()) == MU_BLOB_SIZE == 400
        assert len(model.precision_bytes()) == PRECISION_BLOB_SIZE == 20000

    def test_round_trip(self, x):
        model = BayesianLinearModel(prior_precision=2.0, noise_precision=0.5)
        model.update(x, 0.6)
        restored = BayesianLinearModel.from_bytes(
            model.mu_bytes(), model.precision_bytes(), 2.0, 0.5
        )
        assert np.array_equal(restored.mu, model.mu)
        assert np.array_equal(restored.precision, model.precision)
        assert restored.predict(x) == model.predict(x)

    def test_size_mismatch_returns_none(self):
        model = BayesianLinearModel()
        assert BayesianLinearModel.from_bytes(b"\x00" * 8, model.precision_bytes()) is None
        assert BayesianLinearModel.from_bytes(model.mu_bytes(), b"\x00" * 16) is None

    def test_non_finite_blob_returns_none(self):
        model = BayesianLinearModel()
        mu = np.full(FEATURE_DIM, np.nan).astype("<f8").tobytes()
        assert BayesianLinearModel.from_bytes(mu, model.precision_bytes()) is None

    def test_copy_is_independent(self, x):
        model = BayesianLinearModel()
        clone = model.copy()
        clone.update(x, 1.0)
        assert model.predict(x) == 0.0
