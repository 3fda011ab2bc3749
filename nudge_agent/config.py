"""
Application configuration.

Load engine settings from YAML or JSON files so deployments can tune
paths, the embedding model and learning parameters without code changes.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import yaml

from .learning.learning_config import LearningConfig, LearningPresets
from .semantic_memory import (
    DEFAULT_EMBEDDING_DIM,
    DEFAULT_EMBEDDING_MODEL,
    EMBEDDING_MAX_CONCURRENT_TASKS,
)

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = ".nudge"


@dataclass
class AgentConfig:
    """
    Configuration for one engine instance.

    Attributes:
        data_dir: Directory for the engine database and logs
        db_path: Engine-owned SQLite database (default: <data_dir>/agent.db)
        tracker_db_path: Life tracker database to read activity from
            (default: same file as db_path)
        embedding_model: sentence-transformers model name, or None to
            disable semantic memory
        embedding_dim: Embedding length used when no model is loaded
        embedding_workers: Max concurrent embedding jobs
        embedding_timeout: Seconds to wait for one embedding
        memory_search_k: Neighbours consulted for the context outcome estimate
        log_level: Root log level
        log_dir: Directory for rotating log files (None = console only)
        learning: Learning and reward parameters
    """
    data_dir: str = DEFAULT_DATA_DIR
    db_path: Optional[str] = None
    tracker_db_path: Optional[str] = None

    embedding_model: Optional[str] = DEFAULT_EMBEDDING_MODEL
    embedding_dim: int = DEFAULT_EMBEDDING_DIM
    embedding_workers: int = EMBEDDING_MAX_CONCURRENT_TASKS
    embedding_timeout: float = 30.0
    memory_search_k: int = 5

    log_level: str = "INFO"
    log_dir: Optional[str] = None

    learning: LearningConfig = field(default_factory=LearningConfig)

    def __post_init__(self):
        if isinstance(self.learning, dict):
            self.learning = LearningConfig.from_dict(self.learning)
        self.embedding_workers = max(1, min(8, int(self.embedding_workers)))
        self.embedding_timeout = max(0.1, float(self.embedding_timeout))
        self.memory_search_k = max(1, min(50, int(self.memory_search_k)))
        self.log_level = str(self.log_level).upper()

    @property
    def resolved_db_path(self) -> str:
        return self.db_path or os.path.join(self.data_dir, "agent.db")

    @property
    def resolved_tracker_db_path(self) -> str:
        return self.tracker_db_path or self.resolved_db_path

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "data_dir": self.data_dir,
            "db_path": self.db_path,
            "tracker_db_path": self.tracker_db_path,
            "embedding_model": self.embedding_model,
            "embedding_dim": self.embedding_dim,
            "embedding_workers": self.embedding_workers,
            "embedding_timeout": self.embedding_timeout,
            "memory_search_k": self.memory_search_k,
            "log_level": self.log_level,
            "log_dir": self.log_dir,
            "learning": self.learning.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AgentConfig":
        """Create from dictionary, ignoring unknown keys."""
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def save(self, path: str) -> None:
        """Save config to a JSON file."""
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)

    @classmethod
    def load(cls, path: str) -> Optional["AgentConfig"]:
        """
        Load config from a JSON or YAML file.

        Returns None when the file does not exist. Malformed files raise
        ValueError so a bad deployment fails at startup.
        """
        if not os.path.exists(path):
            return None

        with open(path, "r", encoding="utf-8") as f:
            content = f.read()

        try:
            if path.endswith((".yaml", ".yml")):
                data = yaml.safe_load(content) or {}
            else:
                data = json.loads(content)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ValueError(f"Failed to parse config {path}: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Config {path} must contain a mapping")

        config = cls.from_dict(data)
        logger.info(f"Loaded config from {path}")
        return config


PRESETS: Dict[str, LearningConfig] = {
    "default": LearningPresets.default(),
    "exploratory": LearningPresets.exploratory(),
    "greedy": LearningPresets.greedy(),
    "thompson": LearningPresets.thompson(),
}


def get_preset(name: str) -> Optional[LearningConfig]:
    """Get a copy of a learning preset by name (case-insensitive)."""
    preset = PRESETS.get(name.lower())
    return LearningConfig.from_dict(preset.to_dict()) if preset else None


def list_presets() -> list:
    return list(PRESETS.keys())
