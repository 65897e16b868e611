"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import os
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ..models import HealthStatus
from ..deps import get_db, get_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])

# Version from environment or default
VERSION = os.getenv("APP_VERSION", "0.1.0")


@router.get("", response_model=HealthStatus)
async def health_check():
    """
    Basic health check endpoint.

    The database is required; Redis is optional (in-memory fallback).
    """
    services = {}
    overall_healthy = True

    # Check database
    try:
        start = time.time()
        db = get_db()
        with db.get_session() as session:
            session.execute(text("SELECT 1"))
        latency = (time.time() - start) * 1000
        services["database"] = f"healthy ({latency:.1f}ms)"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        services["database"] = "unhealthy"
        overall_healthy = False

    # Check Redis
    try:
        redis_client = get_redis_client()
        if redis_client:
            start = time.time()
            redis_client.ping()
            latency = (time.time() - start) * 1000
            services["redis"] = f"healthy ({latency:.1f}ms)"
        else:
            services["redis"] = "fallback_mode (in-memory)"
    except Exception as e:
        # Redis failure is not critical - we have in-memory fallback
        logger.warning(f"Redis health check failed: {e}")
        services["redis"] = "unhealthy"

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=VERSION,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """Liveness probe. Returns 200 if the service is running."""
    return {"status": "alive"}


@router.get("/ready")
async def readiness():
    """Readiness probe. Returns 503 until the database answers."""
    try:
        db = get_db()
        with db.get_session() as session:
            session.execute(text("SELECT 1"))
        return {"status": "ready"}
    except Exception as e:
        logger.error(f"Readiness check failed: {e}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready"},
        )
