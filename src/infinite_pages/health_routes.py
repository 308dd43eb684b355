"""
Health endpoints
"""
from datetime import datetime

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from .config import config
from .services.health_check import get_health_checker, HealthStatus

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    """Liveness check; touches no dependencies"""
    return {
        "status": "ok",
        "env": config.ENV,
        "version": config.BUILD_VERSION,
        "timestamp": datetime.utcnow().isoformat(),
    }


@router.get("/health/detailed")
async def health_detailed():
    """Component checks; 503 when a required component is down"""
    result = await get_health_checker().check_all()
    result["version"] = config.BUILD_VERSION
    result["commit"] = config.BUILD_COMMIT
    status_code = 503 if result["status"] == HealthStatus.DOWN.value else 200
    return JSONResponse(content=result, status_code=status_code)
