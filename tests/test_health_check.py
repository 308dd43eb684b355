"""
Tests for health check functionality
"""
import time
from unittest.mock import Mock, MagicMock, AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from infinite_pages.config import config
from infinite_pages.services.health_check import (
    ComponentHealth,
    HealthChecker,
    HealthStatus,
    aggregate_status,
)


def session_factory(scalar=1, error=None, delay=0):
    """Build a session factory whose SELECT 1 returns scalar or raises error"""
    def _factory():
        session = Mock()

        def _execute(statement):
            if delay:
                time.sleep(delay)
            if error:
                raise error
            result = Mock()
            result.scalar.return_value = scalar
            return result

        session.execute.side_effect = _execute
        return session
    return _factory


class TestAggregateStatus:
    """Test overall status determination"""

    def test_all_ok(self):
        assert aggregate_status([HealthStatus.OK, HealthStatus.OK]) == HealthStatus.OK

    def test_any_down(self):
        statuses = [HealthStatus.OK, HealthStatus.DEGRADED, HealthStatus.DOWN]
        assert aggregate_status(statuses) == HealthStatus.DOWN

    def test_degraded(self):
        assert aggregate_status([HealthStatus.OK, HealthStatus.DEGRADED]) == HealthStatus.DEGRADED


class TestComponentHealth:
    def test_to_dict(self):
        component = ComponentHealth("redis", HealthStatus.OK, "fine", response_time_ms=1.23456)
        data = component.to_dict()

        assert data["status"] == "ok"
        assert data["response_time_ms"] == 1.23
        assert "details" not in data
        assert data["checked_at"] is not None


class TestHealthChecker:
    """Test HealthChecker service"""

    @pytest.mark.asyncio
    async def test_check_database_success(self):
        checker = HealthChecker(timeout_seconds=5, session_factory=session_factory())

        result = await checker.check_database()

        assert result.name == "database"
        assert result.status == HealthStatus.OK
        assert result.details == {"connection": "active"}
        assert result.response_time_ms is not None

    @pytest.mark.asyncio
    async def test_check_database_unexpected_result(self):
        checker = HealthChecker(session_factory=session_factory(scalar=0))
        result = await checker.check_database()
        assert result.status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_check_database_failure(self):
        error = OperationalError("SELECT 1", {}, Exception("connection refused"))
        checker = HealthChecker(session_factory=session_factory(error=error))

        result = await checker.check_database()

        assert result.status == HealthStatus.DOWN
        assert result.details["error_type"] == "OperationalError"
        # Connection details stay out of the response
        assert "refused" not in result.message

    @pytest.mark.asyncio
    async def test_check_database_timeout(self):
        checker = HealthChecker(timeout_seconds=0.05, session_factory=session_factory(delay=0.5))

        result = await checker.check_database()

        assert result.status == HealthStatus.DOWN
        assert "timed out" in result.message

    @pytest.mark.asyncio
    async def test_check_redis_not_configured(self):
        with patch.object(config, "REDIS_URL", None):
            result = await HealthChecker().check_redis()

        assert result.status == HealthStatus.OK
        assert result.details["configured"] is False

    @pytest.mark.asyncio
    async def test_check_redis_unreachable(self):
        with patch.object(config, "REDIS_URL", "redis://localhost:6379/0"), \
                patch("infinite_pages.services.redis_cache.get_redis_client", return_value=None):
            result = await HealthChecker().check_redis()

        assert result.status == HealthStatus.DEGRADED
        assert result.details["optional"] is True

    @pytest.mark.asyncio
    async def test_check_redis_ping(self):
        redis_client = MagicMock()
        redis_client.ping.return_value = True

        with patch.object(config, "REDIS_URL", "redis://localhost:6379/0"), \
                patch("infinite_pages.services.redis_cache.get_redis_client", return_value=redis_client):
            result = await HealthChecker().check_redis()

        assert result.status == HealthStatus.OK
        redis_client.ping.assert_called_once()

    @pytest.mark.asyncio
    async def test_check_stripe(self):
        assert (await HealthChecker().check_stripe()).status == HealthStatus.OK

        with patch.object(config, "STRIPE_WEBHOOK_SECRET", None):
            result = await HealthChecker().check_stripe()

        assert result.status == HealthStatus.DEGRADED
        assert result.details["missing"] == ["STRIPE_WEBHOOK_SECRET"]

    @pytest.mark.asyncio
    async def test_check_anthropic(self):
        assert (await HealthChecker().check_anthropic()).status == HealthStatus.OK

        with patch.object(config, "ANTHROPIC_API_KEY", None):
            result = await HealthChecker().check_anthropic()
        assert result.status == HealthStatus.DEGRADED

    @pytest.mark.asyncio
    async def test_check_all_components(self):
        checker = HealthChecker(session_factory=session_factory())

        with patch.object(config, "REDIS_URL", None):
            result = await checker.check_all()

        assert result["status"] == "ok"
        assert set(result["components"]) == {"database", "redis", "stripe", "anthropic"}
        assert result["response_time_ms"] >= 0

    @pytest.mark.asyncio
    async def test_check_exception_marks_component_down(self):
        checker = HealthChecker()
        checker.check_database = AsyncMock(side_effect=RuntimeError("boom"))

        with patch.object(config, "REDIS_URL", None):
            result = await checker.check_all()

        assert result["status"] == "down"
        assert result["components"]["database"]["status"] == "down"


class TestHealthEndpoint:
    """Test /health endpoints"""

    def test_liveness(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["env"] == "test"

    def test_detailed_healthy(self, client):
        checker = HealthChecker(session_factory=session_factory())

        with patch("infinite_pages.health_routes.get_health_checker", return_value=checker), \
                patch.object(config, "REDIS_URL", None):
            response = client.get("/health/detailed")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["components"]["database"]["status"] == "ok"
        assert "version" in data

    def test_detailed_database_down(self, client):
        error = OperationalError("SELECT 1", {}, Exception("no route to host"))
        checker = HealthChecker(session_factory=session_factory(error=error))

        with patch("infinite_pages.health_routes.get_health_checker", return_value=checker), \
                patch.object(config, "REDIS_URL", None):
            response = client.get("/health/detailed")

        assert response.status_code == 503
        assert response.json()["status"] == "down"
