"""Health check endpoints."""

from fastapi import APIRouter, Request, Response, status

from src.config import get_settings
from src.core.database import AsyncCassandraConnection
from src.core.redis import get_redis


router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def liveness() -> dict[str, str]:
    """Liveness check - the process is up."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness(request: Request, response: Response) -> dict[str, object]:
    """Readiness check.

    Ready once Cassandra is connected and the governance engine is wired.
    Redis is reported but optional: only real-time events depend on it.
    """
    checks = {
        "cassandra": AsyncCassandraConnection.is_connected(),
        "governance_engine": getattr(request.app.state, "governance_engine", None)
        is not None,
        "redis": get_redis() is not None,
    }
    ready = checks["cassandra"] and checks["governance_engine"]
    if not ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return {
        "status": "ready" if ready else "not_ready",
        "environment": get_settings().environment,
        "checks": checks,
    }


@router.get("")
async def health() -> dict[str, str]:
    """General health check endpoint."""
    settings = get_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
    }
