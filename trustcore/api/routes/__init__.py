"""API Routes.

Aggregates all API routers.
"""

from fastapi import APIRouter

from trustcore.core.config import settings
from trustcore.api.routes.health import router as health_router
from trustcore.api.routes.metrics import router as metrics_router
from trustcore.api.routes.admin import router as admin_router
from trustcore.api.routes.dashboard import router as dashboard_router
from trustcore.api.routes.registration import router as registration_router

router = APIRouter()

router.include_router(health_router, tags=["Health"])
if settings.metrics_enabled:
    router.include_router(metrics_router, tags=["Metrics"])
router.include_router(admin_router, prefix="/admin", tags=["Admin Access"])
router.include_router(dashboard_router, prefix="/admin", tags=["Admin Access"])
router.include_router(registration_router, prefix="/registration", tags=["Registration"])

__all__ = ["router"]
