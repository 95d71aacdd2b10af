"""
Health check endpoints for container orchestration.

- ``/health`` and ``/healthz``: liveness, 200 while the process runs
- ``/ready``: readiness, 200 only when the Ghost database answers
"""

import logging
import time

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from ghost_sso.dependencies import AppState, get_app_state
from ghost_sso.errors import DataAccessError
from ghost_sso.models import HealthResponse, ReadinessResponse

logger = logging.getLogger(__name__)

health_router = APIRouter(tags=["System"])


def _liveness(app_state: AppState) -> HealthResponse:
    return HealthResponse(status="ok", uptime=round(time.monotonic() - app_state.started_at, 3))


@health_router.get("/health", response_model=HealthResponse)
async def health(app_state: AppState = Depends(get_app_state)) -> HealthResponse:
    logger.debug("Liveness check called")
    return _liveness(app_state)


@health_router.get("/healthz", response_model=HealthResponse)
async def healthz(app_state: AppState = Depends(get_app_state)) -> HealthResponse:
    return _liveness(app_state)


@health_router.get("/ready", response_model=ReadinessResponse)
async def ready(app_state: AppState = Depends(get_app_state)):
    """
    Readiness probe.

    Also reports whether Ghost has an active staff user yet, which is
    false on an install that still needs its setup wizard.
    """
    checks = {"database": False}

    if app_state.gateway is not None:
        checks["database"] = await app_state.gateway.ping()

    if not checks["database"]:
        logger.warning("Readiness check failed: database unavailable")
        body = ReadinessResponse(status="not ready", checks=checks, reason="Database connection failed")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(mode="json"),
        )

    try:
        checks["staff_configured"] = not await app_state.gateway.is_staff_empty()
    except DataAccessError:
        checks["staff_configured"] = False

    return ReadinessResponse(status="ready", checks=checks)
