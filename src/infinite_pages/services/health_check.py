"""
Health Check Service
Health checks for the database, Redis and the external providers, with strict timeouts
"""
import logging
import asyncio
import time
from typing import Dict, Any, Optional, List
from enum import Enum
from datetime import datetime

from sqlalchemy import text

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    """Health status levels"""
    OK = "ok"
    DEGRADED = "degraded"
    DOWN = "down"


class ComponentHealth:
    """Health information for a single component"""

    def __init__(
        self,
        name: str,
        status: HealthStatus,
        message: str = "",
        details: Optional[Dict[str, Any]] = None,
        response_time_ms: Optional[float] = None
    ):
        self.name = name
        self.status = status
        self.message = message
        self.details = details or {}
        self.response_time_ms = response_time_ms
        self.checked_at = datetime.utcnow().isoformat()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON response"""
        result = {
            "status": self.status.value,
            "message": self.message,
            "checked_at": self.checked_at
        }

        if self.response_time_ms is not None:
            result["response_time_ms"] = round(self.response_time_ms, 2)

        if self.details:
            result["details"] = self.details

        return result


def aggregate_status(statuses: List[HealthStatus]) -> HealthStatus:
    """ok when every component is ok, down when any is down, degraded otherwise"""
    if all(s == HealthStatus.OK for s in statuses):
        return HealthStatus.OK
    if any(s == HealthStatus.DOWN for s in statuses):
        return HealthStatus.DOWN
    return HealthStatus.DEGRADED


class HealthChecker:
    """
    Health checker for all system components

    The database is required; Redis, Stripe and Anthropic only degrade the
    overall status when unavailable.
    """

    def __init__(self, timeout_seconds: int = 3, session_factory=None):
        self.timeout_seconds = timeout_seconds
        self._session_factory = session_factory

    def _ping_database(self):
        if self._session_factory is None:
            from ..db.engine import SessionLocal
            self._session_factory = SessionLocal

        db = self._session_factory()
        try:
            return db.execute(text("SELECT 1")).scalar()
        finally:
            db.close()

    async def check_database(self) -> ComponentHealth:
        """Check database connectivity with SELECT 1"""
        start_time = time.time()

        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(self._ping_database),
                timeout=self.timeout_seconds
            )
            response_time = (time.time() - start_time) * 1000

            if result == 1:
                return ComponentHealth(
                    name="database",
                    status=HealthStatus.OK,
                    message="Database is accessible",
                    response_time_ms=response_time,
                    details={"connection": "active"}
                )
            return ComponentHealth(
                name="database",
                status=HealthStatus.DEGRADED,
                message="Database query returned unexpected result",
                response_time_ms=response_time
            )

        except asyncio.TimeoutError:
            return ComponentHealth(
                name="database",
                status=HealthStatus.DOWN,
                message="Database health check timed out",
                details={"timeout_seconds": self.timeout_seconds}
            )

        except Exception as e:
            response_time = (time.time() - start_time) * 1000
            logger.error(f"Database health check failed: {e}")

            return ComponentHealth(
                name="database",
                status=HealthStatus.DOWN,
                message="Database is not accessible",
                response_time_ms=response_time,
                details={"error_type": type(e).__name__}
            )

    async def check_redis(self) -> ComponentHealth:
        """Check Redis connectivity (if configured)"""
        from ..config import config
        from .redis_cache import get_redis_client

        if not config.REDIS_URL:
            return ComponentHealth(
                name="redis",
                status=HealthStatus.OK,
                message="Redis not configured (optional)",
                details={"configured": False}
            )

        start_time = time.time()
        try:
            redis_client = await asyncio.wait_for(
                asyncio.to_thread(get_redis_client),
                timeout=self.timeout_seconds
            )
            if redis_client is None:
                return ComponentHealth(
                    name="redis",
                    status=HealthStatus.DEGRADED,
                    message="Redis is not accessible",
                    response_time_ms=(time.time() - start_time) * 1000,
                    details={"optional": True}
                )

            result = await asyncio.wait_for(
                asyncio.to_thread(redis_client.ping),
                timeout=self.timeout_seconds
            )
            response_time = (time.time() - start_time) * 1000

            if result:
                return ComponentHealth(
                    name="redis",
                    status=HealthStatus.OK,
                    message="Redis is accessible",
                    response_time_ms=response_time,
                    details={"connection": "active"}
                )
            return ComponentHealth(
                name="redis",
                status=HealthStatus.DEGRADED,
                message="Redis ping returned false",
                response_time_ms=response_time
            )

        except asyncio.TimeoutError:
            return ComponentHealth(
                name="redis",
                status=HealthStatus.DEGRADED,
                message="Redis health check timed out",
                details={"timeout_seconds": self.timeout_seconds, "optional": True}
            )

        except Exception as e:
            response_time = (time.time() - start_time) * 1000
            logger.warning(f"Redis health check failed: {e}")

            # Redis is optional, so degraded not down
            return ComponentHealth(
                name="redis",
                status=HealthStatus.DEGRADED,
                message="Redis is not accessible",
                response_time_ms=response_time,
                details={"error_type": type(e).__name__, "optional": True}
            )

    async def check_stripe(self) -> ComponentHealth:
        """Stripe is healthy when a secret key and webhook secret are configured"""
        from ..config import config

        missing = [
            name for name, value in (
                ("STRIPE_SECRET_KEY", config.STRIPE_SECRET_KEY),
                ("STRIPE_WEBHOOK_SECRET", config.STRIPE_WEBHOOK_SECRET),
            ) if not value
        ]
        if missing:
            return ComponentHealth(
                name="stripe",
                status=HealthStatus.DEGRADED,
                message="Stripe is not fully configured",
                details={"missing": missing}
            )
        return ComponentHealth(
            name="stripe",
            status=HealthStatus.OK,
            message="Stripe is configured",
            details={"connect_webhooks": bool(config.STRIPE_CONNECT_WEBHOOK_SECRET)}
        )

    async def check_anthropic(self) -> ComponentHealth:
        """Anthropic is healthy when an API key is configured"""
        from ..config import config

        if not config.ANTHROPIC_API_KEY:
            return ComponentHealth(
                name="anthropic",
                status=HealthStatus.DEGRADED,
                message="Anthropic API key not configured",
                details={"model": config.ANTHROPIC_MODEL}
            )
        return ComponentHealth(
            name="anthropic",
            status=HealthStatus.OK,
            message="Anthropic is configured",
            details={"model": config.ANTHROPIC_MODEL}
        )

    async def check_all(self) -> Dict[str, Any]:
        """
        Check all system components

        Returns:
            Dict with overall status and component details
        """
        start_time = time.time()

        names = ["database", "redis", "stripe", "anthropic"]
        components = await asyncio.gather(
            self.check_database(),
            self.check_redis(),
            self.check_stripe(),
            self.check_anthropic(),
            return_exceptions=True
        )

        total_time = (time.time() - start_time) * 1000

        component_results = []
        for name, component in zip(names, components):
            if isinstance(component, Exception):
                logger.error(f"Health check exception for {name}: {component}")
                component_results.append(ComponentHealth(
                    name=name,
                    status=HealthStatus.DOWN,
                    message="Health check failed with exception",
                    details={"error": str(component)}
                ))
            else:
                component_results.append(component)

        overall_status = aggregate_status([c.status for c in component_results])

        return {
            "status": overall_status.value,
            "timestamp": datetime.utcnow().isoformat(),
            "response_time_ms": round(total_time, 2),
            "components": {
                component.name: component.to_dict()
                for component in component_results
            }
        }


def get_health_checker() -> HealthChecker:
    """Get a health checker configured from the environment"""
    from ..config import config

    return HealthChecker(timeout_seconds=config.HEALTHCHECK_TIMEOUT_SECONDS)
