"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from hookgate.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

APP_VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": APP_VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Redis only backs the idempotency cache and alert cooldowns, so it is
    checked only when the Redis cache backend is selected.
    """
    from hookgate.config import get_settings
    checks = {"database": False}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))

    if get_settings().idempotency_cache_backend == "redis":
        checks["redis"] = False
        try:
            from hookgate.utils.dedup import get_redis
            redis = await get_redis()
            await redis.ping()
            checks["redis"] = True
        except Exception as e:
            logger.warning("Redis health check failed: %s", str(e))

    all_healthy = all(checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
