"""Health check endpoints.

Provides standard and Kubernetes-style health probes:
- /health - Basic health check
- /health/db - Database connectivity
- /health/ready - Kubernetes readiness probe
- /health/live - Kubernetes liveness probe
- /health/detailed - Full service status with call registry stats
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from callease.api.deps import Services
from callease.core.config import settings
from callease.db.session import get_db

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check() -> dict[str, str]:
    """Basic health check endpoint."""
    return {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
    }


@router.get("/health/db")
async def health_check_db(response: Response, db: AsyncSession = Depends(get_db)) -> dict[str, str]:
    """Database health check endpoint."""
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"status": "healthy", "database": "connected"}
    except Exception as e:
        logger.exception("Database health check failed")
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "unhealthy", "database": str(e)}


@router.get("/health/ready")
async def readiness_probe(
    response: Response,
    db: AsyncSession = Depends(get_db),
) -> dict[str, str]:
    """Kubernetes readiness probe.

    Returns 503 if the database is unavailable.
    """
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
    except Exception as e:
        logger.warning("Readiness check failed: database", exc_info=True)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return {"status": "not_ready", "reason": f"database: {e}"}

    return {"status": "ready"}


@router.get("/health/live")
async def liveness_probe() -> dict[str, str]:
    """Kubernetes liveness probe.

    Returns 200 if the service is alive.
    This should be a simple, fast check that doesn't depend on external services.
    """
    return {"status": "alive"}


@router.get("/health/detailed")
async def detailed_health(
    response: Response,
    services: Services,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Detailed health check with call registry stats.

    Returns comprehensive status including:
    - Database status
    - Tracked and in-progress call counts
    - Realtime subscriber count
    - CRM sync worker state
    - Feature flags
    """
    result: dict[str, Any] = {
        "status": "healthy",
        "app": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "services": {},
        "features": {
            "prometheus_metrics": settings.ENABLE_PROMETHEUS_METRICS,
            "crm_sync": settings.ENABLE_CRM_SYNC and services.crm_client.enabled,
            "call_answer_policy": settings.CALL_ANSWER_POLICY,
        },
    }

    try:
        db_result = await db.execute(text("SELECT 1"))
        db_result.scalar()
        result["services"]["database"] = "healthy"
    except Exception as e:
        logger.warning("Detailed health: database unhealthy", exc_info=True)
        result["services"]["database"] = f"unhealthy: {e}"
        result["status"] = "degraded"

    result["calls"] = {
        "tracked": len(services.registry),
        "active": services.registry.count_in_progress(),
        "subscribers": services.broadcaster.subscriber_count,
    }
    result["crm_sync"] = {
        "running": services.crm_queue.running,
        "pending": services.crm_queue.pending,
    }

    if result["status"] != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return result
