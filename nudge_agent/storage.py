"""
SQLite persistence for engine-owned state.

Tables:
- agent_linear_bandit: action catalog, model blobs and lifetime counters
- agent_rich_context: append-only context snapshots
- agent_reward_log: multi-timescale reward records
- agent_recommendations: shown recommendations and their feedback
- agent_memory_events: semantic memory events with embeddings
- agent_state: small JSON settings (weights, exploration)
- agent_big_three: the day's three most important tasks

Every call opens its own connection, so the store can be shared across
threads.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from .activity import BIG_THREE_SCHEMA
from .learning.feature_schema import FEATURE_SCHEMA_VERSION, ContextVector
from .types import Action, BigThreeGoal, MemoryEvent, RecommendationRecord, RewardRecord

logger = logging.getLogger(__name__)

DB_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

REWARD_HORIZONS = ("daily", "weekly", "monthly")

SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_linear_bandit (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action_name TEXT NOT NULL UNIQUE,
    category TEXT,
    description TEXT,
    theta BLOB,
    precision_matrix BLOB,
    prior_precision REAL DEFAULT 1.0,
    noise_precision REAL DEFAULT 1.0,
    total_pulls INTEGER DEFAULT 0,
    total_reward REAL DEFAULT 0.0,
    avg_reward REAL DEFAULT 0.0,
    last_pulled TEXT,
    is_enabled INTEGER DEFAULT 1,
    created_at TEXT DEFAULT (datetime('now', 'localtime'))
);

CREATE TABLE IF NOT EXISTS agent_rich_context (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    captured_at TEXT NOT NULL,
    schema_version INTEGER NOT NULL,
    features BLOB NOT NULL
);

CREATE TABLE IF NOT EXISTS agent_reward_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    action_name TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    context_features BLOB,
    reward_immediate REAL DEFAULT 0,
    reward_daily REAL,
    reward_weekly REAL,
    reward_monthly REAL,
    reward_total REAL,
    feedback_type TEXT
);
CREATE INDEX IF NOT EXISTS idx_reward_log_time ON agent_reward_log(timestamp);

CREATE TABLE IF NOT EXISTS agent_recommendations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    action_recommended TEXT NOT NULL,
    expected_reward REAL,
    uncertainty REAL,
    ucb_score REAL,
    context_id INTEGER,
    was_accepted INTEGER,
    alternative_chosen TEXT,
    feedback_score INTEGER,
    outcome_score REAL,
    explanation_json TEXT,
    FOREIGN KEY (context_id) REFERENCES agent_rich_context(id)
);
CREATE INDEX IF NOT EXISTS idx_recommendations_time ON agent_recommendations(timestamp);

CREATE TABLE IF NOT EXISTS agent_memory_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    content TEXT NOT NULL,
    embedding BLOB,
    metadata_json TEXT,
    outcome_score REAL
);
CREATE INDEX IF NOT EXISTS idx_memory_events_type ON agent_memory_events(event_type);

CREATE TABLE IF NOT EXISTS agent_state (
    key TEXT PRIMARY KEY,
    value_json TEXT NOT NULL,
    updated_at TEXT
);
"""


def to_db_time(dt: datetime) -> str:
    return dt.strftime(DB_TIME_FORMAT)


def from_db_time(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp ("YYYY-MM-DD HH:MM:SS" or ISO 8601)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", ""))
    except ValueError:
        return datetime.strptime(value[:19], DB_TIME_FORMAT)


class AgentStore:
    """
    Thread-safe SQLite store for the recommendation engine.

    Example:
        >>> store = AgentStore("/tmp/agent.db")
        >>> store.seed_actions(DEFAULT_ACTIONS)
        >>> store.list_actions()
    """

    def __init__(self, path: str, timeout: float = 30.0):
        self.path = path
        self.timeout = timeout
        directory = os.path.dirname(os.path.abspath(path))
        os.makedirs(directory, exist_ok=True)
        self.init_schema()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.executescript(SCHEMA)
            conn.executescript(BIG_THREE_SCHEMA)

    # ------------------------------------------------------------------
    # Actions and model parameters
    # ------------------------------------------------------------------

    def seed_actions(self, actions: Iterable[Action]) -> int:
        """Insert actions that are not yet known. Returns the number added."""
        added = 0
        with self._connect() as conn:
            for action in actions:
                cur = conn.execute(
                    "INSERT OR IGNORE INTO agent_linear_bandit "
                    "(action_name, category, description, is_enabled) VALUES (?, ?, ?, ?)",
                    (action.name, action.category, action.description, int(action.enabled)),
                )
                added += cur.rowcount
        return added

    @staticmethod
    def _row_to_action(row: sqlite3.Row) -> Action:
        return Action(
            id=row["id"],
            name=row["action_name"],
            category=row["category"] or "",
            description=row["description"] or "",
            total_pulls=row["total_pulls"] or 0,
            total_reward=row["total_reward"] or 0.0,
            enabled=bool(row["is_enabled"]),
            last_pulled=from_db_time(row["last_pulled"]),
        )

    def list_actions(self, enabled_only: bool = True, category: Optional[str] = None) -> List[Action]:
        query = (
            "SELECT id, action_name, category, description, total_pulls, total_reward, "
            "is_enabled, last_pulled FROM agent_linear_bandit WHERE 1=1"
        )
        params: List[Any] = []
        if enabled_only:
            query += " AND is_enabled = 1"
        if category is not None:
            query += " AND category = ?"
            params.append(category)
        query += " ORDER BY id"
        with self._connect() as conn:
            return [self._row_to_action(r) for r in conn.execute(query, params)]

    def get_action(self, name: str) -> Optional[Action]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT id, action_name, category, description, total_pulls, total_reward, "
                "is_enabled, last_pulled FROM agent_linear_bandit WHERE action_name = ?",
                (name,),
            ).fetchone()
        return self._row_to_action(row) if row else None

    def set_action_enabled(self, name: str, enabled: bool) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE agent_linear_bandit SET is_enabled = ? WHERE action_name = ?",
                (int(enabled), name),
            )
            return cur.rowcount > 0

    def load_model_blobs(
        self, name: str
    ) -> Optional[Tuple[Optional[bytes], Optional[bytes], float, float]]:
        """(theta, precision, prior_precision, noise_precision) or None if unknown."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT theta, precision_matrix, prior_precision, noise_precision "
                "FROM agent_linear_bandit WHERE action_name = ?",
                (name,),
            ).fetchone()
        if row is None:
            return None
        return (
            row["theta"],
            row["precision_matrix"],
            row["prior_precision"] if row["prior_precision"] is not None else 1.0,
            row["noise_precision"] if row["noise_precision"] is not None else 1.0,
        )

    def save_model_update(
        self,
        name: str,
        theta: bytes,
        precision: bytes,
        prior_precision: float,
        noise_precision: float,
        reward: float,
        when: Optional[datetime] = None,
    ) -> None:
        """Persist new parameters and bump the lifetime counters in one transaction."""
        when = when or datetime.now()
        with self._connect() as conn:
            conn.execute(
                """
                UPDATE agent_linear_bandit SET
                    theta = ?,
                    precision_matrix = ?,
                    prior_precision = ?,
                    noise_precision = ?,
                    total_pulls = total_pulls + 1,
                    total_reward = total_reward + ?,
                    avg_reward = (total_reward + ?) / (total_pulls + 1),
                    last_pulled = ?
                WHERE action_name = ?
                """,
                (
                    sqlite3.Binary(theta),
                    sqlite3.Binary(precision),
                    prior_precision,
                    noise_precision,
                    reward,
                    reward,
                    to_db_time(when),
                    name,
                ),
            )

    def reset_models(self, name: Optional[str] = None) -> int:
        """Drop learned parameters and counters (all actions, or one)."""
        query = (
            "UPDATE agent_linear_bandit SET theta = NULL, precision_matrix = NULL, "
            "total_pulls = 0, total_reward = 0.0, avg_reward = 0.0, last_pulled = NULL"
        )
        params: Tuple[Any, ...] = ()
        if name is not None:
            query += " WHERE action_name = ?"
            params = (name,)
        with self._connect() as conn:
            return conn.execute(query, params).rowcount

    def total_samples(self) -> int:
        with self._connect() as conn:
            row = conn.execute("SELECT COALESCE(SUM(total_pulls), 0) FROM agent_linear_bandit").fetchone()
        return int(row[0])

    # ------------------------------------------------------------------
    # Context snapshots
    # ------------------------------------------------------------------

    def save_context(self, context: ContextVector, when: Optional[datetime] = None) -> int:
        when = when or datetime.now()
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO agent_rich_context (captured_at, schema_version, features) VALUES (?, ?, ?)",
                (to_db_time(when), FEATURE_SCHEMA_VERSION, sqlite3.Binary(context.to_bytes())),
            )
            return int(cur.lastrowid)

    def load_context(self, context_id: int) -> Optional[ContextVector]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT schema_version, features FROM agent_rich_context WHERE id = ?",
                (context_id,),
            ).fetchone()
        if row is None:
            return None
        if row["schema_version"] != FEATURE_SCHEMA_VERSION:
            logger.warning(
                f"Context {context_id} has schema v{row['schema_version']}, "
                f"expected v{FEATURE_SCHEMA_VERSION}"
            )
            return None
        context = ContextVector.from_bytes(bytes(row["features"]))
        if context is None:
            logger.warning(f"Context {context_id} has a malformed feature blob")
        return context

    def count_contexts(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM agent_rich_context").fetchone()[0])

    # ------------------------------------------------------------------
    # Reward log
    # ------------------------------------------------------------------

    def log_reward(
        self,
        action_name: str,
        context: Optional[ContextVector],
        immediate: float,
        feedback_type: str = "explicit",
        when: Optional[datetime] = None,
    ) -> int:
        when = when or datetime.now()
        blob = sqlite3.Binary(context.to_bytes()) if context is not None else None
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO agent_reward_log "
                "(action_name, timestamp, context_features, reward_immediate, feedback_type) "
                "VALUES (?, ?, ?, ?, ?)",
                (action_name, to_db_time(when), blob, immediate, feedback_type),
            )
            return int(cur.lastrowid)

    @staticmethod
    def _row_to_reward(row: sqlite3.Row) -> RewardRecord:
        blob = row["context_features"]
        return RewardRecord(
            id=row["id"],
            action_name=row["action_name"],
            timestamp=from_db_time(row["timestamp"]),
            context=ContextVector.from_bytes(bytes(blob)) if blob is not None else None,
            immediate=row["reward_immediate"] or 0.0,
            daily=row["reward_daily"],
            weekly=row["reward_weekly"],
            monthly=row["reward_monthly"],
            total=row["reward_total"],
            feedback_type=row["feedback_type"] or "explicit",
        )

    def get_reward(self, reward_id: int) -> Optional[RewardRecord]:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM agent_reward_log WHERE id = ?", (reward_id,)).fetchone()
        return self._row_to_reward(row) if row else None

    def rewards_between(self, start: datetime, end: datetime) -> List[RewardRecord]:
        """Records with start <= timestamp < end."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agent_reward_log WHERE timestamp >= ? AND timestamp < ? ORDER BY id",
                (to_db_time(start), to_db_time(end)),
            ).fetchall()
        return [self._row_to_reward(r) for r in rows]

    def set_reward_horizon(self, horizon: str, value: float, start: datetime, end: datetime) -> int:
        """Fill one delayed horizon for every record in [start, end)."""
        if horizon not in REWARD_HORIZONS:
            raise ValueError(f"Unknown reward horizon: {horizon}")
        with self._connect() as conn:
            cur = conn.execute(
                f"UPDATE agent_reward_log SET reward_{horizon} = ? "
                "WHERE timestamp >= ? AND timestamp < ?",
                (value, to_db_time(start), to_db_time(end)),
            )
            return cur.rowcount

    def pending_rewards(self) -> List[RewardRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agent_reward_log WHERE reward_total IS NULL ORDER BY id"
            ).fetchall()
        return [self._row_to_reward(r) for r in rows]

    def set_reward_total(self, reward_id: int, total: float) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE agent_reward_log SET reward_total = ? WHERE id = ?",
                (total, reward_id),
            )

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def record_recommendation(
        self,
        action_name: str,
        expected_reward: float,
        uncertainty: float,
        score: float,
        context_id: Optional[int],
        explanation: Optional[dict] = None,
        when: Optional[datetime] = None,
    ) -> int:
        when = when or datetime.now()
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO agent_recommendations "
                "(timestamp, action_recommended, expected_reward, uncertainty, ucb_score, "
                "context_id, explanation_json) VALUES (?, ?, ?, ?, ?, ?, ?)",
                (
                    to_db_time(when),
                    action_name,
                    expected_reward,
                    uncertainty,
                    score,
                    context_id,
                    json.dumps(explanation or {}),
                ),
            )
            return int(cur.lastrowid)

    def get_recommendation(self, recommendation_id: int) -> Optional[RecommendationRecord]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM agent_recommendations WHERE id = ?", (recommendation_id,)
            ).fetchone()
        if row is None:
            return None
        return RecommendationRecord(
            id=row["id"],
            timestamp=from_db_time(row["timestamp"]),
            action_name=row["action_recommended"],
            expected_reward=row["expected_reward"] or 0.0,
            uncertainty=row["uncertainty"] or 0.0,
            score=row["ucb_score"] or 0.0,
            context_id=row["context_id"],
            explanation=json.loads(row["explanation_json"] or "{}"),
            was_accepted=None if row["was_accepted"] is None else bool(row["was_accepted"]),
            alternative_chosen=row["alternative_chosen"],
            feedback_score=row["feedback_score"],
            outcome_score=row["outcome_score"],
        )

    def record_recommendation_feedback(
        self,
        recommendation_id: int,
        accepted: bool,
        alternative_chosen: Optional[str] = None,
        feedback_score: Optional[int] = None,
        outcome_score: Optional[float] = None,
    ) -> bool:
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE agent_recommendations SET was_accepted = ?, alternative_chosen = ?, "
                "feedback_score = ?, outcome_score = ? WHERE id = ?",
                (int(accepted), alternative_chosen, feedback_score, outcome_score, recommendation_id),
            )
            return cur.rowcount > 0

    def acceptance_rate(self, since: datetime) -> Optional[float]:
        """Share of recommendations with feedback since `since` that were accepted."""
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(was_accepted), 0) FROM agent_recommendations "
                "WHERE was_accepted IS NOT NULL AND timestamp >= ?",
                (to_db_time(since),),
            ).fetchone()
        total, accepted = int(row[0]), int(row[1])
        if total == 0:
            return None
        return accepted / total

    # ------------------------------------------------------------------
    # Memory events
    # ------------------------------------------------------------------

    def add_memory_event(
        self,
        event_type: str,
        content: str,
        embedding: Optional[bytes] = None,
        outcome_score: Optional[float] = None,
        metadata: Optional[dict] = None,
        when: Optional[datetime] = None,
    ) -> MemoryEvent:
        when = when or datetime.now()
        metadata = metadata or {}
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO agent_memory_events "
                "(timestamp, event_type, content, embedding, metadata_json, outcome_score) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (
                    to_db_time(when),
                    event_type,
                    content,
                    sqlite3.Binary(embedding) if embedding is not None else None,
                    json.dumps(metadata),
                    outcome_score,
                ),
            )
            event_id = int(cur.lastrowid)
        return MemoryEvent(
            id=event_id,
            timestamp=from_db_time(to_db_time(when)),
            event_type=event_type,
            content=content,
            outcome_score=outcome_score,
            metadata=metadata,
        )

    def load_memory_events(self) -> List[Tuple[MemoryEvent, Optional[bytes]]]:
        """All events in insertion order, with their raw embedding blobs."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, timestamp, event_type, content, embedding, metadata_json, outcome_score "
                "FROM agent_memory_events ORDER BY id"
            ).fetchall()
        events = []
        for row in rows:
            try:
                metadata = json.loads(row["metadata_json"] or "{}")
            except json.JSONDecodeError:
                logger.warning(f"Memory event {row['id']} has malformed metadata")
                metadata = {}
            event = MemoryEvent(
                id=row["id"],
                timestamp=from_db_time(row["timestamp"]),
                event_type=row["event_type"],
                content=row["content"],
                outcome_score=row["outcome_score"],
                metadata=metadata,
            )
            blob = row["embedding"]
            events.append((event, bytes(blob) if blob is not None else None))
        return events

    def count_memory_events(self) -> int:
        with self._connect() as conn:
            return int(conn.execute("SELECT COUNT(*) FROM agent_memory_events").fetchone()[0])

    # ------------------------------------------------------------------
    # Big Three goals
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_goal(row: sqlite3.Row) -> BigThreeGoal:
        return BigThreeGoal(
            id=row["id"],
            date=row["date"],
            priority=row["priority"],
            title=row["title"],
            description=row["description"],
            category=row["category"],
            is_completed=bool(row["is_completed"]),
            completed_at=from_db_time(row["completed_at"]),
            satisfaction_rating=row["satisfaction_rating"],
        )

    def get_big_three(self, day: date) -> List[BigThreeGoal]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM agent_big_three WHERE date = ? ORDER BY priority", (day.isoformat(),)
            ).fetchall()
        return [self._row_to_goal(r) for r in rows]

    def set_big_three(self, day: date, goals: List[Dict[str, Any]]) -> List[BigThreeGoal]:
        """
        Replace a day's goals in one transaction.

        List order sets priority (1..3); entries past the third are ignored.
        """
        with self._connect() as conn:
            conn.execute("DELETE FROM agent_big_three WHERE date = ?", (day.isoformat(),))
            for priority, goal in enumerate(goals[:3], 1):
                conn.execute(
                    "INSERT INTO agent_big_three (date, priority, title, description, category) "
                    "VALUES (?, ?, ?, ?, ?)",
                    (
                        day.isoformat(),
                        priority,
                        goal["title"],
                        goal.get("description"),
                        goal.get("category"),
                    ),
                )
        return self.get_big_three(day)

    def complete_big_three(
        self,
        goal_id: int,
        satisfaction_rating: Optional[int] = None,
        when: Optional[datetime] = None,
    ) -> Optional[BigThreeGoal]:
        """Mark a goal done. Returns None for an unknown id."""
        when = when or datetime.now()
        with self._connect() as conn:
            cur = conn.execute(
                "UPDATE agent_big_three SET is_completed = 1, completed_at = ?, satisfaction_rating = ? "
                "WHERE id = ?",
                (to_db_time(when), satisfaction_rating, goal_id),
            )
            if cur.rowcount == 0:
                return None
            row = conn.execute("SELECT * FROM agent_big_three WHERE id = ?", (goal_id,)).fetchone()
        return self._row_to_goal(row)

    # ------------------------------------------------------------------
    # Agent state
    # ------------------------------------------------------------------

    def get_state(self, key: str, default: Any = None) -> Any:
        with self._connect() as conn:
            row = conn.execute("SELECT value_json FROM agent_state WHERE key = ?", (key,)).fetchone()
        if row is None:
            return default
        try:
            return json.loads(row["value_json"])
        except json.JSONDecodeError:
            logger.warning(f"Agent state {key!r} is not valid JSON")
            return default

    def set_state(self, key: str, value: Any) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO agent_state (key, value_json, updated_at) VALUES (?, ?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value_json = excluded.value_json, "
                "updated_at = excluded.updated_at",
                (key, json.dumps(value), to_db_time(datetime.now())),
            )
