"""
FastAPI Middleware Stack.

Provides:
1. Request ID generation and propagation
2. Request/Response logging with masked client IPs
3. Error handling for anything the routes did not render
4. Security headers
"""

import time
import uuid
from typing import Callable, Optional
from contextvars import ContextVar

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

from trustcore.core.config import settings
from trustcore.common.exceptions import TrustCoreError
from trustcore.common.metrics import record_http_request

logger = structlog.get_logger(__name__)

# Context variables for request-scoped data
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

LOOPBACK = "127.0.0.1"


def get_request_id() -> Optional[str]:
    """Get current request ID from context."""
    return request_id_var.get()


def get_correlation_id() -> Optional[str]:
    """Get current correlation ID from context."""
    return correlation_id_var.get()


def get_user_id() -> Optional[str]:
    """Get the verified user of the current request, if any."""
    return user_id_var.get()


# ============================================================================
# CLIENT IP
# ============================================================================


def get_client_ip(request: Request) -> str:
    """
    Resolve the caller's IP from proxy headers.

    Priority: first X-Forwarded-For entry, X-Real-IP, CF-Connecting-IP,
    then loopback.
    """
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()

    return LOOPBACK


def mask_ip(ip: str) -> str:
    """Mask IP for privacy (keep first two octets)."""
    if ip in ("unknown", LOOPBACK):
        return ip

    parts = ip.split(".")
    if len(parts) == 4:
        return f"{parts[0]}.{parts[1]}.*.*"

    return ip[:8] + "***"


UNMATCHED_ROUTE = "unmatched"


def normalize_path(request: Request) -> str:
    """Route template for metrics labels; paths no route matched share one label."""
    route = request.scope.get("route")
    return getattr(route, "path_format", None) or getattr(route, "path", None) or UNMATCHED_ROUTE


# ============================================================================
# REQUEST ID MIDDLEWARE
# ============================================================================


class RequestIdMiddleware(BaseHTTPMiddleware):
    """
    Adds unique request ID to every request.

    - Generates X-Request-ID if not provided
    - Propagates X-Correlation-ID for distributed tracing
    - Makes IDs available via context variables
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or f"req_{uuid.uuid4().hex[:16]}"
        correlation_id = request.headers.get("X-Correlation-ID") or f"corr_{uuid.uuid4().hex[:16]}"

        request_id_var.set(request_id)
        correlation_id_var.set(correlation_id)
        user_id_var.set(None)

        request.state.request_id = request_id
        request.state.correlation_id = correlation_id

        response = await call_next(request)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Correlation-ID"] = correlation_id

        return response


# ============================================================================
# LOGGING MIDDLEWARE
# ============================================================================


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs all requests with timing and a masked client IP."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        logger.info(
            "request_started",
            method=request.method,
            path=request.url.path,
            client_ip=mask_ip(get_client_ip(request)),
        )

        response = await call_next(request)

        duration_ms = (time.time() - start_time) * 1000

        logger.info(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )

        record_http_request(
            method=request.method,
            endpoint=normalize_path(request),
            status_code=response.status_code,
            duration=duration_ms / 1000,
        )

        response.headers["X-Response-Time"] = f"{duration_ms:.2f}ms"

        return response


# ============================================================================
# ERROR HANDLING MIDDLEWARE
# ============================================================================


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Last-resort error handler.

    The decision endpoints render their own failure bodies; this only sees
    errors that escaped a route.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await call_next(request)
        except TrustCoreError as e:
            return self._handle_trustcore_error(e)
        except Exception as e:
            return self._handle_unexpected_error(e)

    def _handle_trustcore_error(self, error: TrustCoreError) -> JSONResponse:
        request_id = get_request_id()

        logger.warning(
            "request_error",
            error_code=error.code.value,
            message=error.message,
            details=error.details,
        )

        return JSONResponse(
            status_code=error.status_code,
            content={
                "error": error.code.value,
                "message": error.message,
                "details": error.details,
                "request_id": request_id,
            },
        )

    def _handle_unexpected_error(self, error: Exception) -> JSONResponse:
        request_id = get_request_id()

        logger.error(
            "unexpected_error",
            error_type=type(error).__name__,
            error=str(error),
            exc_info=True,
        )

        # Don't expose internal errors in production
        if settings.is_production:
            message = "An unexpected error occurred"
            details = {}
        else:
            message = str(error)
            details = {"type": type(error).__name__}

        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_error",
                "message": message,
                "details": details,
                "request_id": request_id,
            },
        )


# ============================================================================
# SECURITY HEADERS MIDDLEWARE
# ============================================================================


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Adds security headers to all responses."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)

        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        response.headers["Cache-Control"] = "no-store"

        # HSTS only in production
        if settings.is_production:
            response.headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"

        return response


# ============================================================================
# SETUP FUNCTION
# ============================================================================


def setup_middleware(app: FastAPI) -> None:
    """
    Setup all middleware in correct order.

    Middleware is applied bottom-to-top: the last one added is outermost.
    """
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware)

    # Request ID (outermost - sets context for all other middleware)
    app.add_middleware(RequestIdMiddleware)

    logger.info("middleware_configured")
