"""Probes for the container orchestrator and the API root."""

from typing import Any

from fastapi import APIRouter, Request
from redis.asyncio import Redis

from ganj.core.database import check_db_connection
from ganj.core.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def check_redis_connection(redis: Redis | None) -> bool:
    """Ping Redis. False when unreachable or not configured."""
    if redis is None:
        return False
    try:
        await redis.ping()
        return True
    except Exception as e:
        logger.error("redis_health_check_failed", error=str(e))
        return False


@router.get("/health/live", tags=["Health"], summary="Liveness probe")
async def liveness() -> dict[str, str]:
    return {"status": "ok"}


@router.get(
    "/health/ready",
    tags=["Health"],
    summary="Readiness probe",
    description="Checks that the database and Redis answer. Always 200; see `status`.",
)
async def readiness(request: Request) -> dict[str, Any]:
    checks = {
        "database": await check_db_connection(),
        "redis": await check_redis_connection(getattr(request.app.state, "redis", None)),
    }
    return {
        "status": "ok" if all(checks.values()) else "error",
        "checks": {name: "ok" if ok else "error" for name, ok in checks.items()},
    }


@router.get("/", tags=["Root"], summary="Service information")
async def root(request: Request) -> dict[str, str]:
    settings = request.app.state.settings
    return {
        "service": settings.app_name,
        "version": settings.app_version,
        "docs": "/docs",
        "health": "/health/live",
    }
