"""
Structured logging configuration.

Emits both human-readable and JSON logs.
JSON logs include:
- Timestamp
- Level
- Subsystem
- Action name
- Recommendation ID
- Event type
- Latency metrics
"""
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Optional

_STRUCTURED_FIELDS = ("subsystem", "action", "recommendation_id", "event_type", "latency_ms")


class JSONFormatter(logging.Formatter):
    """Format log records as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "ts": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        subsystem = getattr(record, "subsystem", None)
        if subsystem:
            log_data["subsystem"] = subsystem
        action = getattr(record, "action", None)
        if action:
            log_data["action"] = action
        rec_id = getattr(record, "recommendation_id", None)
        if rec_id is not None:
            log_data["recommendation_id"] = rec_id
        event_type = getattr(record, "event_type", None)
        if event_type:
            log_data["event"] = event_type
        latency = getattr(record, "latency_ms", None)
        if latency is not None:
            log_data["latency_ms"] = latency
        extra = getattr(record, "extra_data", None)
        if extra:
            log_data.update(extra)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanFormatter(logging.Formatter):
    """Human-readable format with colors."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_colors: bool = True):
        super().__init__()
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S.%f")[:-3]
        prefix_parts = [f"{timestamp} {record.levelname[:4]}"]

        subsystem = getattr(record, "subsystem", None)
        if subsystem and subsystem != "general":
            prefix_parts.append(f"[{subsystem}]")
        action = getattr(record, "action", None)
        if action:
            prefix_parts.append(f"action={action}")
        rec_id = getattr(record, "recommendation_id", None)
        if rec_id is not None:
            prefix_parts.append(f"rec={rec_id}")

        message = record.getMessage()
        latency = getattr(record, "latency_ms", None)
        if latency is not None:
            message = f"{message} ({latency:.1f}ms)"

        line = f"{' '.join(prefix_parts)}: {message}"

        if self.use_colors and sys.stderr.isatty():
            color = self.COLORS.get(record.levelname, "")
            line = f"{color}{line}{self.RESET}"

        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)

        return line


class StructuredLogger(logging.Logger):
    """Logger with structured logging methods."""

    def _log_structured(
        self,
        level: int,
        msg: str,
        subsystem: str = "general",
        action: Optional[str] = None,
        recommendation_id: Optional[int] = None,
        event_type: Optional[str] = None,
        latency_ms: Optional[float] = None,
        **extra,
    ) -> None:
        if not self.isEnabledFor(level):
            return
        record = self.makeRecord(self.name, level, "", 0, msg, (), None)
        record.subsystem = subsystem
        record.action = action
        record.recommendation_id = recommendation_id
        record.event_type = event_type
        record.latency_ms = latency_ms
        record.extra_data = extra
        self.handle(record)

    def event(self, event_type: str, msg: str, **kwargs) -> None:
        """Log an event."""
        self._log_structured(logging.INFO, msg, event_type=event_type, **kwargs)

    def latency(self, operation: str, latency_ms: float, **kwargs) -> None:
        """Log a latency measurement."""
        self._log_structured(logging.DEBUG, f"{operation} completed", latency_ms=latency_ms, **kwargs)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[str] = None,
    json_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> None:
    """
    Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        log_dir: Directory for log files
        json_file: Path for JSON logs (in log_dir if relative)
        max_bytes: Max size per log file
        backup_count: Number of backup files to keep
    """
    logging.setLoggerClass(StructuredLogger)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(HumanFormatter())
    root_logger.addHandler(console)

    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

        human_handler = RotatingFileHandler(
            os.path.join(log_dir, "nudge.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        human_handler.setFormatter(HumanFormatter(use_colors=False))
        root_logger.addHandler(human_handler)

        json_path = json_file or "nudge.json.log"
        if not os.path.isabs(json_path):
            json_path = os.path.join(log_dir, json_path)
        json_handler = RotatingFileHandler(
            json_path,
            maxBytes=max_bytes,
            backupCount=backup_count,
        )
        json_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(json_handler)


def get_logger(name: str) -> StructuredLogger:
    """
    Get a structured logger.

    Works whether or not configure_logging() ran first: loggers created
    before it are plain Loggers, so they are wrapped in an adapter that
    provides the same event()/latency() helpers.
    """
    logger = logging.getLogger(name)
    if isinstance(logger, StructuredLogger):
        return logger
    return _StructuredAdapter(logger)  # type: ignore[return-value]


class _StructuredAdapter:
    """event()/latency() on top of a plain Logger."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def __getattr__(self, name):
        return getattr(self._logger, name)

    def _log_structured(self, level: int, msg: str, **kwargs) -> None:
        if not self._logger.isEnabledFor(level):
            return
        fields = {k: kwargs.pop(k) for k in _STRUCTURED_FIELDS if k in kwargs}
        fields.setdefault("subsystem", "general")
        fields["extra_data"] = kwargs
        self._logger.log(level, msg, extra=fields)

    def event(self, event_type: str, msg: str, **kwargs) -> None:
        self._log_structured(logging.INFO, msg, event_type=event_type, **kwargs)

    def latency(self, operation: str, latency_ms: float, **kwargs) -> None:
        self._log_structured(logging.DEBUG, f"{operation} completed", latency_ms=latency_ms, **kwargs)
