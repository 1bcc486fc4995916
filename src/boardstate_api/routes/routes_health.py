"""Health check endpoints for monitoring application status."""

from datetime import datetime
from datetime import timezone

from fastapi import APIRouter
from fastapi import Depends
from fastapi import Request
from fastapi import status
from fastapi.responses import JSONResponse
from loguru import logger

from boardstate_api.dependencies import get_settings
from boardstate_api.settings import Settings

ROUTER_HEALTH = APIRouter(tags=["Health"])


@ROUTER_HEALTH.get(
    "/health",
    summary="Health check endpoint",
    description="Basic health check that returns application status and metadata",
    responses={
        status.HTTP_200_OK: {
            "description": "Application is healthy",
            "content": {
                "application/json": {
                    "example": {
                        "status": "healthy",
                        "timestamp": "2026-01-05T12:00:00.000000Z",
                        "service": "Board State API",
                        "version": "v1",
                    }
                }
            },
        }
    },
)
async def health_check(settings: Settings = Depends(get_settings)):
    """
    Basic health check endpoint.

    Returns application status and metadata. This endpoint is lightweight
    and does not perform any external dependency checks.
    """
    response_data = {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.service_name,
        "version": "v1",
    }

    logger.debug("Health check requested", status="healthy")

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=response_data,
    )


@ROUTER_HEALTH.get(
    "/health/live",
    summary="Liveness probe",
    description="Returns 200 while the process is serving requests",
)
async def liveness_check():
    return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "alive"})


@ROUTER_HEALTH.get(
    "/health/ready",
    summary="Readiness probe",
    description="Checks the state database, the cache and the backup scheduler",
    responses={
        status.HTTP_200_OK: {"description": "Ready to serve state requests"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "State database unavailable"},
    },
)
async def readiness_check(request: Request):
    """
    Readiness probe.

    - database: pool exists and answers SELECT 1
    - cache: enabled or disabled (an in-process cache cannot be unreachable)
    - backup_scheduler: which cadences are running
    """
    db_pool = getattr(request.app.state, "state_db_pool", None)
    cache = getattr(request.app.state, "state_cache", None)
    scheduler = getattr(request.app.state, "backup_scheduler", None)

    database_ok = bool(db_pool is not None and await db_pool.health_check())

    checks = {
        "database": "ok" if database_ok else "unavailable",
        "cache": "enabled" if cache is not None else "disabled",
        "backup_scheduler": scheduler.running if scheduler is not None else {},
    }

    if not database_ok:
        logger.warning("Readiness check failed", checks=checks)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unavailable",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "checks": checks,
            },
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content={
            "status": "ready",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "checks": checks,
        },
    )
