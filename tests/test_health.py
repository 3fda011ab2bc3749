"""
Tests for health check module.
"""
from nudge_agent.health import HealthChecker, HealthStatus, check_store_health


class TestHealthChecker:
    """Test health checker functionality."""

    def test_default_checks(self):
        health = HealthChecker().run_all()
        names = {c.name for c in health.checks}
        assert names == {"python_version", "dependencies"}
        assert health.healthy

    def test_dependency_details(self):
        status = HealthChecker().run_check("dependencies")
        assert status.healthy
        assert "semantic_available" in status.details
        assert "api_available" in status.details

    def test_custom_check(self):
        checker = HealthChecker()
        checker.add_check("custom", lambda: HealthStatus("custom", True, "fine"))
        status = checker.run_check("custom")
        assert status.healthy
        assert status.latency_ms >= 0

    def test_raising_check_is_unhealthy(self):
        checker = HealthChecker()

        def broken():
            raise RuntimeError("disk on fire")

        checker.add_check("broken", broken)
        health = checker.run_all()
        assert not health.healthy
        failed = [c for c in health.checks if c.name == "broken"][0]
        assert "disk on fire" in failed.message

    def test_unknown_check(self):
        status = HealthChecker().run_check("nope")
        assert not status.healthy

    def test_to_dict(self):
        data = HealthChecker().run_all().to_dict()
        assert data["healthy"] is True
        assert {c["name"] for c in data["checks"]} == {"python_version", "dependencies"}


class TestStoreHealth:

    def test_seeded_store(self, store, registry):
        registry.set_enabled("meditation", False)
        status = check_store_health(store)
        assert status.healthy
        assert status.details["actions"] == 15
        assert status.details["enabled_actions"] == 14
        assert status.details["total_samples"] == 0
