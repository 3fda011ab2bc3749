"""
Tests for configuration loading and presets.
"""
import json
import os

import pytest

from nudge_agent.config import AgentConfig, PRESETS, get_preset, list_presets
from nudge_agent.learning.learning_config import LearningConfig, LearningPresets, RewardWeights


class TestAgentConfig:

    def test_defaults(self):
        config = AgentConfig()
        assert config.resolved_db_path == os.path.join(".nudge", "agent.db")
        assert config.resolved_tracker_db_path == config.resolved_db_path
        assert config.learning.exploration_beta == 2.0

    def test_separate_tracker_db(self):
        config = AgentConfig(data_dir="/srv/nudge", tracker_db_path="/srv/tracker.db")
        assert config.resolved_db_path == os.path.join("/srv/nudge", "agent.db")
        assert config.resolved_tracker_db_path == "/srv/tracker.db"

    def test_from_dict_builds_learning(self):
        config = AgentConfig.from_dict({
            "data_dir": "x",
            "unknown_key": 1,
            "learning": {
                "exploration_beta": 1.5,
                "reward_weights": {"immediate": 0.25, "daily": 0.25, "weekly": 0.25, "monthly": 0.25},
            },
        })
        assert isinstance(config.learning, LearningConfig)
        assert config.learning.exploration_beta == 1.5
        assert isinstance(config.learning.reward_weights, RewardWeights)
        assert config.learning.reward_weights.daily == 0.25

    def test_clamping(self):
        config = AgentConfig(embedding_workers=100, memory_search_k=0, log_level="debug")
        assert config.embedding_workers == 8
        assert config.memory_search_k == 1
        assert config.log_level == "DEBUG"

    def test_json_round_trip(self, tmp_path):
        path = str(tmp_path / "conf" / "nudge.json")
        config = AgentConfig(data_dir="/data", embedding_model=None)
        config.learning.exploration_beta = 3.0
        config.save(path)

        loaded = AgentConfig.load(path)
        assert loaded.to_dict() == config.to_dict()

    def test_yaml(self, tmp_path):
        path = tmp_path / "nudge.yaml"
        path.write_text(
            "data_dir: /var/lib/nudge\n"
            "embedding_model: null\n"
            "learning:\n"
            "  selection_mode: thompson\n"
            "  prng_seed: 7\n"
        )
        config = AgentConfig.load(str(path))
        assert config.data_dir == "/var/lib/nudge"
        assert config.embedding_model is None
        assert config.learning.selection_mode == "thompson"
        assert config.learning.prng_seed == 7

    def test_missing_file(self, tmp_path):
        assert AgentConfig.load(str(tmp_path / "nope.yaml")) is None

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("learning: [1, 2\n")
        with pytest.raises(ValueError):
            AgentConfig.load(str(path))

    def test_malformed_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ValueError):
            AgentConfig.load(str(path))

    def test_non_mapping(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text(json.dumps([1, 2, 3]))
        with pytest.raises(ValueError):
            AgentConfig.load(str(path))


class TestLearningConfig:

    def test_clamps(self):
        config = LearningConfig(exploration_beta=10, selection_mode="epsilon", top_features=0)
        assert config.exploration_beta == 5.0
        assert config.selection_mode == "ucb"
        assert config.top_features == 1
        assert LearningConfig(exploration_beta=-1).exploration_beta == 0.0

    def test_round_trip(self):
        config = LearningConfig(exploration_beta=1.0, prng_seed=3)
        assert LearningConfig.from_dict(config.to_dict()) == config

    def test_invalid_weights(self):
        with pytest.raises(ValueError):
            LearningConfig(reward_weights={"immediate": 1.0, "daily": 1.0, "weekly": 0.0, "monthly": 0.0})

    def test_deterministic_preset(self):
        config = LearningPresets.deterministic_test(seed=5)
        assert config.selection_mode == "thompson"
        assert config.prng_seed == 5


class TestPresets:

    def test_list(self):
        assert set(list_presets()) == {"default", "exploratory", "greedy", "thompson"}

    def test_get_is_case_insensitive(self):
        assert get_preset("GREEDY").exploration_beta == 0.0

    def test_get_returns_copy(self):
        preset = get_preset("default")
        preset.exploration_beta = 4.0
        assert PRESETS["default"].exploration_beta == 2.0

    def test_unknown(self):
        assert get_preset("reckless") is None
