"""
Health check utilities for monitoring system status.

Provides:
- Component health checks
- Dependency verification
- Store diagnostics
"""
from __future__ import annotations

import importlib
import logging
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Callable, Dict, List

if TYPE_CHECKING:
    from .storage import AgentStore

logger = logging.getLogger(__name__)

REQUIRED_MODULES = ("numpy", "faiss", "yaml")
OPTIONAL_MODULES = ("sentence_transformers", "fastapi", "uvicorn")


@dataclass
class HealthStatus:
    """Status of a health check."""
    name: str
    healthy: bool
    message: str = ""
    latency_ms: float = 0.0
    details: Dict = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Overall system health."""
    healthy: bool
    checks: List[HealthStatus]
    timestamp: str

    def to_dict(self) -> Dict:
        return {
            "healthy": self.healthy,
            "timestamp": self.timestamp,
            "checks": [
                {
                    "name": c.name,
                    "healthy": c.healthy,
                    "message": c.message,
                    "latency_ms": round(c.latency_ms, 2),
                    **c.details,
                }
                for c in self.checks
            ],
        }


class HealthChecker:
    """
    Runs health checks on system components.

    Example:
        >>> checker = HealthChecker()
        >>> checker.add_check("store", lambda: check_store_health(store))
        >>> health = checker.run_all()
        >>> print(health.healthy)
    """

    def __init__(self):
        self._checks: Dict[str, Callable[[], HealthStatus]] = {}
        self._add_default_checks()

    def _add_default_checks(self) -> None:
        self.add_check("python_version", self._check_python_version)
        self.add_check("dependencies", self._check_dependencies)

    def add_check(self, name: str, check_fn: Callable[[], HealthStatus]) -> None:
        self._checks[name] = check_fn

    def run_check(self, name: str) -> HealthStatus:
        """Run a single health check; a raising check reports unhealthy."""
        if name not in self._checks:
            return HealthStatus(name=name, healthy=False, message=f"Unknown check: {name}")

        start = time.perf_counter()
        try:
            status = self._checks[name]()
            status.latency_ms = (time.perf_counter() - start) * 1000
            return status
        except Exception as e:
            logger.warning(f"Health check {name} failed: {e}")
            return HealthStatus(
                name=name,
                healthy=False,
                message=f"Check failed: {e}",
                latency_ms=(time.perf_counter() - start) * 1000,
            )

    def run_all(self) -> SystemHealth:
        checks = [self.run_check(name) for name in self._checks]
        return SystemHealth(
            healthy=all(c.healthy for c in checks),
            checks=checks,
            timestamp=datetime.now().isoformat(),
        )

    def _check_python_version(self) -> HealthStatus:
        version = sys.version_info
        required = (3, 9)
        return HealthStatus(
            name="python_version",
            healthy=version >= required,
            message=f"Python {version.major}.{version.minor}.{version.micro}",
            details={"required": f"{required[0]}.{required[1]}+"},
        )

    def _check_dependencies(self) -> HealthStatus:
        missing = [m for m in REQUIRED_MODULES if not _importable(m)]
        optional_missing = [m for m in OPTIONAL_MODULES if not _importable(m)]
        return HealthStatus(
            name="dependencies",
            healthy=not missing,
            message="OK" if not missing else f"Missing: {', '.join(missing)}",
            details={
                "semantic_available": "sentence_transformers" not in optional_missing,
                "api_available": "fastapi" not in optional_missing,
                "optional_missing": optional_missing,
            },
        )


def _importable(module: str) -> bool:
    try:
        importlib.import_module(module)
        return True
    except ImportError:
        return False


def check_store_health(store: "AgentStore") -> HealthStatus:
    """Store is reachable and the action catalog is populated."""
    actions = store.list_actions(enabled_only=False)
    enabled = sum(1 for a in actions if a.enabled)
    return HealthStatus(
        name="store",
        healthy=True,
        message=f"{enabled}/{len(actions)} actions enabled",
        details={
            "path": store.path,
            "actions": len(actions),
            "enabled_actions": enabled,
            "total_samples": store.total_samples(),
        },
    )
