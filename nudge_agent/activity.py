"""
Read-only boundary to the life tracker's activity data.

The recommendation engine never writes tracker tables. Everything it
needs is pulled through an ActivitySource: raw signals for feature
extraction and per-day/week/month aggregates for delayed rewards.
"""
from __future__ import annotations

import calendar
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Iterator, List, Optional, Tuple

logger = logging.getLogger(__name__)

TRACKER_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

PRIORITY_LEVELS = {"low": 1, "medium": 2, "high": 3}

DEFAULT_WEEKLY_TARGET_HOURS = 20.0


@dataclass
class ActivitySignals:
    """
    Raw activity facts at one moment.

    None means "no data" and makes the feature extractor fall back to
    the feature default.
    """
    now: datetime

    # Check-ins (1..10 scales)
    energy: Optional[int] = None
    mood: Optional[int] = None
    previous_energy: Optional[int] = None
    previous_mood: Optional[int] = None
    hours_since_checkin: Optional[float] = None
    checkin_streak_days: int = 0
    same_weekday_avg_energy: Optional[float] = None

    # Study sessions
    study_sessions_today: int = 0
    study_minutes_today: float = 0.0
    study_minutes_week: float = 0.0
    target_hours_week: float = 0.0
    recent_session_minutes: float = 0.0
    hours_since_break: Optional[float] = None
    same_hour_avg_minutes: Optional[float] = None

    # Skills
    skills_practiced_week: int = 0
    total_skills: int = 0
    practice_days_week: int = 0

    # Goals and assignments
    big3_total: int = 0
    big3_completed: int = 0
    upcoming_assignments: List[Tuple[datetime, int]] = field(default_factory=list)
    overdue_count: int = 0
    active_assignments: int = 0
    due_today: int = 0
    due_this_week: int = 0

    # Workouts
    hours_since_workout: Optional[float] = None


@dataclass
class DailyStats:
    day: date
    big3_total: int = 0
    big3_completed: int = 0
    checked_in: bool = False
    study_minutes: float = 0.0


@dataclass
class WeeklyStats:
    week_start: date
    study_minutes: float = 0.0
    target_hours: float = 0.0
    practice_days: int = 0


@dataclass
class MonthlyStats:
    month_start: date
    days_in_month: int = 30
    checkin_days: int = 0
    study_minutes: float = 0.0
    target_hours_week: float = 0.0
    practice_days: int = 0


class ActivitySource(ABC):
    """Interface the engine uses to read tracker data."""

    @abstractmethod
    def read_signals(self, now: datetime) -> ActivitySignals:
        """Raw signals for feature extraction at `now`."""

    @abstractmethod
    def daily_stats(self, day: date) -> DailyStats:
        """Aggregates for one calendar day."""

    @abstractmethod
    def weekly_stats(self, week_start: date) -> WeeklyStats:
        """Aggregates for the 7 days starting at `week_start`."""

    @abstractmethod
    def monthly_stats(self, month_start: date) -> MonthlyStats:
        """Aggregates for the calendar month starting at `month_start`."""


def week_start_of(day: date) -> date:
    """Monday of the ISO week containing `day`."""
    return day - timedelta(days=day.weekday())


def month_start_of(day: date) -> date:
    return day.replace(day=1)


def _fmt(dt: datetime) -> str:
    return dt.strftime(TRACKER_TIME_FORMAT)


def _day_start(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def _parse(value) -> Optional[datetime]:
    if value is None:
        return None
    text = str(value).replace("T", " ").replace("Z", "")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        try:
            return datetime.strptime(text[:19], TRACKER_TIME_FORMAT)
        except ValueError:
            try:
                return datetime.strptime(text[:10], "%Y-%m-%d")
            except ValueError:
                logger.warning(f"Unparseable tracker timestamp: {value!r}")
                return None


def _hours_since(now: datetime, then: Optional[datetime]) -> Optional[float]:
    if then is None:
        return None
    return max(0.0, (now - then).total_seconds() / 3600.0)


def _priority_level(value) -> int:
    if isinstance(value, (int, float)):
        return max(1, min(3, int(value)))
    return PRIORITY_LEVELS.get(str(value).lower(), 2)


class SQLiteActivitySource(ActivitySource):
    """
    Reads the tracker's SQLite tables.

    Expects the tracker schema: sessions, check_ins, workouts, assignments,
    courses, skills and practice_logs. Big Three goals are engine-owned and
    read from goals_path (the tracker database unless given). Query errors
    (missing tables, locked database) propagate to the caller.
    """

    def __init__(self, path: str, timeout: float = 30.0, goals_path: Optional[str] = None):
        self.path = path
        self.goals_path = goals_path or path
        self.timeout = timeout

    @contextmanager
    def _connect(self, path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(path or self.path, timeout=self.timeout)
        try:
            yield conn
        finally:
            conn.close()

    def _big_three_counts(self, day: date) -> Tuple[int, int]:
        """(goals set, goals completed) for one day."""
        with self._connect(self.goals_path) as conn:
            row = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(is_completed), 0) FROM agent_big_three WHERE date = ?",
                (day.isoformat(),),
            ).fetchone()
        return int(row[0]), int(row[1])

    @staticmethod
    def _scalar(conn: sqlite3.Connection, query: str, params=()) -> object:
        row = conn.execute(query, params).fetchone()
        return row[0] if row else None

    def read_signals(self, now: datetime) -> ActivitySignals:
        today = now.date()
        day_start = _day_start(today)
        tomorrow = day_start + timedelta(days=1)
        week_ago = now - timedelta(days=7)
        signals = ActivitySignals(now=now)
        signals.big3_total, signals.big3_completed = self._big_three_counts(today)

        with self._connect() as conn:
            # Check-ins
            row = conn.execute(
                "SELECT mood, energy FROM check_ins WHERE checked_in_at >= ? AND checked_in_at < ? "
                "ORDER BY checked_in_at DESC LIMIT 1",
                (_fmt(day_start), _fmt(tomorrow)),
            ).fetchone()
            if row:
                signals.mood, signals.energy = row[0], row[1]
                prev = conn.execute(
                    "SELECT mood, energy FROM check_ins WHERE checked_in_at >= ? AND checked_in_at < ? "
                    "ORDER BY checked_in_at DESC LIMIT 1",
                    (_fmt(day_start - timedelta(days=1)), _fmt(day_start)),
                ).fetchone()
                if prev:
                    signals.previous_mood, signals.previous_energy = prev[0], prev[1]

            last_checkin = self._scalar(
                conn,
                "SELECT MAX(checked_in_at) FROM check_ins WHERE checked_in_at <= ?",
                (_fmt(now),),
            )
            signals.hours_since_checkin = _hours_since(now, _parse(last_checkin))
            signals.checkin_streak_days = self._checkin_streak(conn, today)

            avg_energy = self._scalar(
                conn,
                "SELECT AVG(energy) FROM check_ins WHERE checked_in_at >= ? AND checked_in_at < ? "
                "AND CAST(strftime('%w', checked_in_at) AS INTEGER) = ?",
                (_fmt(day_start - timedelta(days=56)), _fmt(day_start), (today.isoweekday() % 7)),
            )
            signals.same_weekday_avg_energy = float(avg_energy) if avg_energy is not None else None

            # Study sessions
            row = conn.execute(
                "SELECT COUNT(*), COALESCE(SUM(duration_minutes), 0) FROM sessions "
                "WHERE session_type = 'study' AND started_at >= ? AND started_at < ?",
                (_fmt(day_start), _fmt(tomorrow)),
            ).fetchone()
            signals.study_sessions_today = int(row[0])
            signals.study_minutes_today = float(row[1])

            week_start = _day_start(week_start_of(today))
            signals.study_minutes_week = float(self._scalar(
                conn,
                "SELECT COALESCE(SUM(duration_minutes), 0) FROM sessions "
                "WHERE session_type = 'study' AND started_at >= ? AND started_at <= ?",
                (_fmt(week_start), _fmt(now)),
            ))
            signals.target_hours_week = self._target_hours(conn)

            signals.recent_session_minutes = float(self._scalar(
                conn,
                "SELECT COALESCE(SUM(duration_minutes), 0) FROM sessions "
                "WHERE started_at >= ? AND started_at <= ?",
                (_fmt(now - timedelta(hours=4)), _fmt(now)),
            ))
            last_end = self._scalar(
                conn,
                "SELECT MAX(ended_at) FROM sessions WHERE ended_at IS NOT NULL AND ended_at <= ?",
                (_fmt(now),),
            )
            signals.hours_since_break = _hours_since(now, _parse(last_end))

            same_hour = self._scalar(
                conn,
                "SELECT AVG(duration_minutes) FROM sessions WHERE session_type = 'study' "
                "AND started_at >= ? AND started_at < ? "
                "AND CAST(strftime('%H', started_at) AS INTEGER) = ?",
                (_fmt(day_start - timedelta(days=28)), _fmt(day_start), now.hour),
            )
            signals.same_hour_avg_minutes = float(same_hour) if same_hour is not None else None

            # Skills
            signals.total_skills = int(self._scalar(conn, "SELECT COUNT(*) FROM skills"))
            row = conn.execute(
                "SELECT COUNT(DISTINCT skill_id), COUNT(DISTINCT date(logged_at)) FROM practice_logs "
                "WHERE logged_at >= ? AND logged_at <= ?",
                (_fmt(week_ago), _fmt(now)),
            ).fetchone()
            signals.skills_practiced_week = int(row[0])
            signals.practice_days_week = int(row[1])

            # Assignments
            open_rows = conn.execute(
                "SELECT due_date, priority FROM assignments "
                "WHERE is_completed = 0 AND due_date IS NOT NULL ORDER BY due_date ASC"
            ).fetchall()
            signals.active_assignments = int(self._scalar(
                conn, "SELECT COUNT(*) FROM assignments WHERE is_completed = 0"
            ))

            week_ahead = day_start + timedelta(days=7)
            for due_raw, priority in open_rows:
                due = _parse(due_raw)
                if due is None:
                    continue
                if len(signals.upcoming_assignments) < 5:
                    signals.upcoming_assignments.append((due, _priority_level(priority)))
                if due < now:
                    signals.overdue_count += 1
                if day_start <= due < tomorrow:
                    signals.due_today += 1
                if now <= due < week_ahead:
                    signals.due_this_week += 1

            # Workouts
            last_workout = self._scalar(
                conn, "SELECT MAX(logged_at) FROM workouts WHERE logged_at <= ?", (_fmt(now),)
            )
            signals.hours_since_workout = _hours_since(now, _parse(last_workout))

        return signals

    @staticmethod
    def _checkin_streak(conn: sqlite3.Connection, today: date) -> int:
        """Consecutive days with a check-in, ending today (0 if none today)."""
        rows = conn.execute(
            "SELECT DISTINCT date(checked_in_at) FROM check_ins WHERE checked_in_at >= ?",
            (_fmt(_day_start(today - timedelta(days=100))),),
        ).fetchall()
        days = {r[0] for r in rows if r[0]}
        streak = 0
        cursor = today
        while cursor.isoformat() in days and streak < 100:
            streak += 1
            cursor -= timedelta(days=1)
        return streak

    @staticmethod
    def _target_hours(conn: sqlite3.Connection) -> float:
        total = conn.execute(
            "SELECT COALESCE(SUM(target_weekly_hours), 0) FROM courses WHERE is_active = 1"
        ).fetchone()[0]
        return float(total or 0.0)

    def daily_stats(self, day: date) -> DailyStats:
        start = _day_start(day)
        end = start + timedelta(days=1)
        big3_total, big3_completed = self._big_three_counts(day)
        with self._connect() as conn:
            checkins = self._scalar(
                conn,
                "SELECT COUNT(*) FROM check_ins WHERE checked_in_at >= ? AND checked_in_at < ?",
                (_fmt(start), _fmt(end)),
            )
            minutes = self._scalar(
                conn,
                "SELECT COALESCE(SUM(duration_minutes), 0) FROM sessions "
                "WHERE session_type = 'study' AND started_at >= ? AND started_at < ?",
                (_fmt(start), _fmt(end)),
            )
        return DailyStats(
            day=day,
            big3_total=big3_total,
            big3_completed=big3_completed,
            checked_in=int(checkins) > 0,
            study_minutes=float(minutes),
        )

    def weekly_stats(self, week_start: date) -> WeeklyStats:
        start = _day_start(week_start)
        end = start + timedelta(days=7)
        with self._connect() as conn:
            minutes = self._scalar(
                conn,
                "SELECT COALESCE(SUM(duration_minutes), 0) FROM sessions "
                "WHERE session_type = 'study' AND started_at >= ? AND started_at < ?",
                (_fmt(start), _fmt(end)),
            )
            practice_days = self._scalar(
                conn,
                "SELECT COUNT(DISTINCT date(logged_at)) FROM practice_logs "
                "WHERE logged_at >= ? AND logged_at < ?",
                (_fmt(start), _fmt(end)),
            )
            target = self._target_hours(conn)
        return WeeklyStats(
            week_start=week_start,
            study_minutes=float(minutes),
            target_hours=target,
            practice_days=int(practice_days),
        )

    def monthly_stats(self, month_start: date) -> MonthlyStats:
        days = calendar.monthrange(month_start.year, month_start.month)[1]
        start = _day_start(month_start)
        end = start + timedelta(days=days)
        with self._connect() as conn:
            checkin_days = self._scalar(
                conn,
                "SELECT COUNT(DISTINCT date(checked_in_at)) FROM check_ins "
                "WHERE checked_in_at >= ? AND checked_in_at < ?",
                (_fmt(start), _fmt(end)),
            )
            minutes = self._scalar(
                conn,
                "SELECT COALESCE(SUM(duration_minutes), 0) FROM sessions "
                "WHERE session_type = 'study' AND started_at >= ? AND started_at < ?",
                (_fmt(start), _fmt(end)),
            )
            practice_days = self._scalar(
                conn,
                "SELECT COUNT(DISTINCT date(logged_at)) FROM practice_logs "
                "WHERE logged_at >= ? AND logged_at < ?",
                (_fmt(start), _fmt(end)),
            )
            target = self._target_hours(conn)
        return MonthlyStats(
            month_start=month_start,
            days_in_month=days,
            checkin_days=int(checkin_days),
            study_minutes=float(minutes),
            target_hours_week=target,
            practice_days=int(practice_days),
        )


BIG_THREE_SCHEMA = """
CREATE TABLE IF NOT EXISTS agent_big_three (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    date TEXT NOT NULL,
    priority INTEGER NOT NULL CHECK(priority >= 1 AND priority <= 3),
    title TEXT NOT NULL,
    description TEXT,
    category TEXT,
    is_completed INTEGER DEFAULT 0,
    completed_at TEXT,
    satisfaction_rating INTEGER,
    created_at TEXT DEFAULT (datetime('now', 'localtime')),
    UNIQUE(date, priority)
);
CREATE INDEX IF NOT EXISTS idx_big_three_date ON agent_big_three(date);
"""

TRACKER_SCHEMA = """
CREATE TABLE IF NOT EXISTS courses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    target_weekly_hours REAL DEFAULT 6.0,
    is_active INTEGER DEFAULT 1
);
CREATE TABLE IF NOT EXISTS assignments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id INTEGER,
    title TEXT NOT NULL,
    due_date TIMESTAMP,
    priority TEXT DEFAULT 'medium',
    is_completed INTEGER DEFAULT 0
);
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_type TEXT NOT NULL,
    started_at TIMESTAMP NOT NULL,
    ended_at TIMESTAMP,
    duration_minutes INTEGER
);
CREATE TABLE IF NOT EXISTS skills (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS practice_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    skill_id INTEGER NOT NULL,
    duration_minutes INTEGER NOT NULL,
    logged_at TIMESTAMP
);
CREATE TABLE IF NOT EXISTS workouts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    duration_minutes INTEGER,
    logged_at TIMESTAMP
);
CREATE TABLE IF NOT EXISTS check_ins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    mood INTEGER CHECK(mood >= 1 AND mood <= 10),
    energy INTEGER CHECK(energy >= 1 AND energy <= 10),
    checked_in_at TIMESTAMP
);
""" + BIG_THREE_SCHEMA


def create_tracker_schema(path: str) -> None:
    """
    Create the minimal tracker tables the engine reads.

    Used for standalone installs and tests; an existing tracker database
    already has these tables.
    """
    conn = sqlite3.connect(path)
    try:
        conn.executescript(TRACKER_SCHEMA)
        conn.commit()
    finally:
        conn.close()
