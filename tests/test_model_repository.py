"""
Tests for per-action model persistence and serialized updates.
"""
import threading

import numpy as np
import pytest

from nudge_agent.errors import InvalidContextError, UnknownActionError
from nudge_agent.learning.feature_schema import FEATURE_DIM, default_context
from nudge_agent.learning.model_repository import ModelRepository


class TestModelRepository:

    def test_unknown_action(self, models):
        with pytest.raises(UnknownActionError):
            models.load("juggle")
        with pytest.raises(UnknownActionError):
            models.update("juggle", default_context(), 1.0)

    def test_never_updated_action_gets_prior(self, models):
        model = models.load("take_walk")
        assert np.all(model.mu == 0)
        assert np.array_equal(model.precision, np.eye(FEATURE_DIM))

    def test_update_persists(self, store, models):
        ctx = default_context()
        updated = models.update("take_walk", ctx, 1.0)

        # A fresh repository over the same store sees the same posterior
        reloaded = ModelRepository(store).load("take_walk")
        assert np.array_equal(reloaded.mu, updated.mu)
        assert reloaded.predict(ctx) > 0

        action = store.get_action("take_walk")
        assert action.total_pulls == 1
        assert action.total_reward == pytest.approx(1.0)
        assert action.last_pulled is not None

    def test_invalid_context_touches_nothing(self, store, models):
        with pytest.raises(InvalidContextError):
            models.update("take_walk", np.ones(3), 1.0)
        assert store.get_action("take_walk").total_pulls == 0

    def test_corrupt_blob_falls_back_to_prior(self, store, models):
        store.save_model_update("take_walk", b"abc", b"defg", 1.0, 1.0, 0.0)
        model = models.load("take_walk")
        assert np.all(model.mu == 0)

    def test_concurrent_updates_are_not_lost(self, store, models):
        ctx = default_context()
        x = ctx.as_array()
        threads_n, per_thread = 8, 5

        def worker():
            for _ in range(per_thread):
                models.update("start_pomodoro", ctx, 0.5)

        threads = [threading.Thread(target=worker) for _ in range(threads_n)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        total = threads_n * per_thread
        assert store.get_action("start_pomodoro").total_pulls == total
        model = models.load("start_pomodoro")
        assert np.allclose(model.precision, np.eye(FEATURE_DIM) + total * np.outer(x, x))

    def test_updates_to_different_actions(self, store, models):
        ctx = default_context()
        models.update("take_walk", ctx, 1.0)
        models.update("meditation", ctx, 0.0)
        assert models.load("take_walk").predict(ctx) > models.load("meditation").predict(ctx)
        assert store.total_samples() == 2

    def test_reset_one_action(self, store, models):
        ctx = default_context()
        models.update("take_walk", ctx, 1.0)
        models.update("meditation", ctx, 1.0)

        assert models.reset("take_walk") == 1
        assert models.load("take_walk").predict(ctx) == 0.0
        assert models.load("meditation").predict(ctx) > 0
        assert store.get_action("take_walk").total_pulls == 0

    def test_reset_all(self, store, models):
        models.update("take_walk", default_context(), 1.0)
        assert models.reset() == 15
        assert store.total_samples() == 0
