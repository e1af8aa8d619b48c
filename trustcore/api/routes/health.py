"""Health Check Endpoints.

Liveness and readiness probes for orchestrators and load balancers.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from trustcore.core.config import settings

logger = structlog.get_logger(__name__)

router = APIRouter()

# Startup time tracking
_startup_time: Optional[datetime] = None


def set_startup_time() -> None:
    """Set the application startup time."""
    global _startup_time
    _startup_time = datetime.now(timezone.utc)


def get_startup_time() -> Optional[datetime]:
    """Get the application startup time."""
    return _startup_time


# ============================================================================
# SCHEMAS
# ============================================================================


class LivenessResponse(BaseModel):
    """Liveness check response."""

    alive: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ReadinessResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str = settings.app_version
    uptime_seconds: Optional[float] = None
    checks: dict[str, bool] = Field(default_factory=dict)
    audit_pending: int = 0


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.get("/health/live", response_model=LivenessResponse, summary="Liveness probe")
async def liveness() -> LivenessResponse:
    """The process is up and serving requests."""
    return LivenessResponse(alive=True)


@router.get("/health/ready", response_model=ReadinessResponse, summary="Readiness probe")
async def readiness(request: Request):
    """
    Ready once services are wired.

    The audit retry queue depth is reported but never fails readiness.
    """
    services = getattr(request.app.state, "services", None)
    uptime = None
    if _startup_time is not None:
        uptime = (datetime.now(timezone.utc) - _startup_time).total_seconds()

    checks = {"services": services is not None}
    response = ReadinessResponse(
        ready=all(checks.values()),
        uptime_seconds=uptime,
        checks=checks,
        audit_pending=services.audit.pending if services is not None else 0,
    )

    if not response.ready:
        logger.warning("readiness_check_failed", checks=checks)
        return JSONResponse(status_code=503, content=response.model_dump(mode="json"))
    return response
