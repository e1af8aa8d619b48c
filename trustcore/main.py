"""TRUSTCORE - Main Application Entry Point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from trustcore.audit.schemas import REDACTED, is_sensitive
from trustcore.common.exceptions import register_exception_handlers
from trustcore.common.metrics import set_service_info
from trustcore.core.config import settings
from trustcore.core.middleware import setup_middleware
from trustcore.core.services import build_services
from trustcore.api.routes import router as api_router
from trustcore.api.routes.health import set_startup_time


# Configure structlog with request context injection
def add_request_context(logger, method_name, event_dict):
    """Add request context to logs."""
    from trustcore.core.middleware import request_id_var, correlation_id_var, user_id_var

    request_id = request_id_var.get()
    if request_id:
        event_dict["request_id"] = request_id

    correlation_id = correlation_id_var.get()
    if correlation_id:
        event_dict["correlation_id"] = correlation_id

    user_id = user_id_var.get()
    if user_id and "user_id" not in event_dict:
        event_dict["user_id"] = user_id

    return event_dict


def redact_sensitive(logger, method_name, event_dict):
    """Replace values of secret-looking keys before rendering."""
    for key in list(event_dict):
        if key != "event" and is_sensitive(key):
            event_dict[key] = REDACTED
    return event_dict


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        redact_sensitive,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer() if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# LIFESPAN
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info(
        "trustcore_starting",
        version=settings.app_version,
        environment=settings.environment,
    )

    set_startup_time()
    set_service_info(settings.app_version, settings.environment)

    # Tests may install services before startup
    if getattr(app.state, "services", None) is None:
        app.state.services = await build_services(settings)
    services = app.state.services
    await services.start()

    logger.info(
        "trustcore_ready",
        host=settings.host,
        port=settings.port,
        docs_url="/docs",
    )

    yield

    logger.info("trustcore_shutting_down")
    await services.close()
    logger.info("trustcore_stopped")


# ============================================================================
# APP FACTORY
# ============================================================================


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="""
# TRUSTCORE - Trust-Decision Core

Decides, for every sensitive action, whether to allow, challenge or block
the requester.

## API Sections

- **Admin Access**: admin access validation and dashboard gatekeeping
- **Registration**: duplicate, per-IP quota and fraud checks with CAPTCHA gating
- **Health**: liveness and readiness probes
        """,
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_tags=[
            {"name": "Health", "description": "Health and readiness checks"},
            {"name": "Metrics", "description": "Prometheus metrics"},
            {"name": "Admin Access", "description": "Admin access and dashboard decisions"},
            {"name": "Registration", "description": "Registration fraud prevention"},
        ],
        lifespan=lifespan,
    )

    setup_middleware(app)

    # CORS middleware (outermost, so preflights never reach the routes)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=settings.cors_allow_headers,
    )

    register_exception_handlers(app)

    app.include_router(api_router, prefix=settings.api_prefix)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint - service info."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
            "status": "operational",
            "environment": settings.environment,
            "docs": "/docs",
            "api": settings.api_prefix,
        }

    return app


# Create app instance
app = create_app()


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "trustcore.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
