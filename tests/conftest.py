"""
Shared fixtures and test doubles.
"""
import dataclasses
import logging
import re
import sqlite3
import zlib

import numpy as np
import pytest

from nudge_agent.activity import (
    ActivitySignals,
    ActivitySource,
    DailyStats,
    MonthlyStats,
    WeeklyStats,
    create_tracker_schema,
)
from nudge_agent.learning.action_registry import ActionRegistry
from nudge_agent.learning.model_repository import ModelRepository
from nudge_agent.logging_config import HumanFormatter, JSONFormatter
from nudge_agent.semantic_memory import Embedder
from nudge_agent.storage import AgentStore


class FakeEmbedder(Embedder):
    """Deterministic hashed bag-of-words embedder."""

    def __init__(self, dim: int = 32):
        self._dim = dim

    @property
    def dimension(self) -> int:
        return self._dim

    def embed(self, text: str) -> np.ndarray:
        vec = np.zeros(self._dim, dtype=np.float32)
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vec[zlib.crc32(word.encode()) % self._dim] += 1.0
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec


class BrokenEmbedder(FakeEmbedder):
    """Embedder whose every call fails."""

    def embed(self, text: str) -> np.ndarray:
        raise RuntimeError("embedding backend unavailable")


class StaticActivitySource(ActivitySource):
    """ActivitySource returning fixed signals and stats."""

    def __init__(self, signals=None, daily=None, weekly=None, monthly=None):
        self.signals = signals
        self.daily = daily
        self.weekly = weekly
        self.monthly = monthly

    def read_signals(self, now):
        if self.signals is None:
            return ActivitySignals(now=now)
        return dataclasses.replace(self.signals, now=now)

    def daily_stats(self, day):
        if self.daily is None:
            return DailyStats(day=day)
        return dataclasses.replace(self.daily, day=day)

    def weekly_stats(self, week_start):
        if self.weekly is None:
            return WeeklyStats(week_start=week_start)
        return dataclasses.replace(self.weekly, week_start=week_start)

    def monthly_stats(self, month_start):
        if self.monthly is None:
            return MonthlyStats(month_start=month_start)
        return dataclasses.replace(self.monthly, month_start=month_start)


def insert_rows(path, sql, rows):
    """Insert tracker rows directly."""
    conn = sqlite3.connect(path)
    try:
        conn.executemany(sql, rows)
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def store(tmp_path):
    return AgentStore(str(tmp_path / "agent.db"))


@pytest.fixture
def registry(store):
    registry = ActionRegistry(store)
    registry.ensure_defaults()
    return registry


@pytest.fixture
def models(store, registry):
    return ModelRepository(store)


@pytest.fixture
def tracker_path(tmp_path):
    path = str(tmp_path / "tracker.db")
    create_tracker_schema(path)
    return path


@pytest.fixture
def restore_root_logger():
    """Undo configure_logging() on the root logger after a test."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler.formatter, (HumanFormatter, JSONFormatter)):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)
