"""
Application Exceptions Module.

Centralized exception definitions with:
- Structured error responses
- HTTP status code mapping
- Error codes for client handling

Terminal errors (authentication, verification, blocking) propagate to the
route layer. Degraded non-critical oracles never raise past the decision
engines; they are replaced with safe defaults.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone
from enum import Enum

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

logger = structlog.get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Application error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"

    # Authentication / authorization errors (2xxx)
    UNAUTHORIZED = "E2000"
    VERIFICATION_FAILED = "E2010"
    ACCESS_BLOCKED = "E2011"

    # Rate limiting errors (3xxx)
    RATE_LIMIT_EXCEEDED = "E3000"

    # Session errors (4xxx)
    RECOVERY_EXHAUSTED = "E4000"

    # External service errors (5xxx)
    ORACLE_UNAVAILABLE = "E5000"


# ============================================================================
# ERROR RESPONSE MODEL
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """
    Standard error response.

    Used for errors raised outside the three decision endpoints, which render
    their own failure bodies.
    """

    error: ErrorDetail
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class TrustCoreError(Exception):
    """Base exception for the trust-decision core."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                details=self.details,
            ),
            request_id=request_id,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )


# ============================================================================
# SPECIFIC EXCEPTIONS
# ============================================================================


class ValidationError(TrustCoreError):
    """Missing or malformed request fields."""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details,
        )


class AuthenticationError(TrustCoreError):
    """No credential, or the credential does not resolve to an identity."""

    def __init__(
        self,
        message: str = "Authentication required",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.UNAUTHORIZED,
            status_code=401,
            details=details,
        )


class VerificationFailedError(TrustCoreError):
    """
    The eligibility oracle errored.

    Distinct from a legitimate deny: the caller cannot tell whether the
    requester is an admin, so the request fails with 500.
    """

    def __init__(
        self,
        message: str = "Admin verification failed",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VERIFICATION_FAILED,
            status_code=500,
            details=details,
        )


class AccessBlockedError(TrustCoreError):
    """A non-admin was flagged by the privilege-escalation risk engine."""

    def __init__(
        self,
        decision: Any = None,
        message: str = "Access blocked due to suspicious activity",
    ):
        self.decision = decision
        super().__init__(
            message=message,
            code=ErrorCode.ACCESS_BLOCKED,
            status_code=403,
            details={"blocked": True},
        )


class RateLimitError(TrustCoreError):
    """Rate limit exceeded error."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.RATE_LIMIT_EXCEEDED,
            status_code=429,
            details=details,
        )


class OracleUnavailableError(TrustCoreError):
    """An external oracle or store could not answer."""

    def __init__(
        self,
        oracle: str,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.oracle = oracle
        super().__init__(
            message=f"Oracle error ({oracle}): {message}",
            code=ErrorCode.ORACLE_UNAVAILABLE,
            status_code=503,
            details={"oracle": oracle, **(details or {})},
        )


class RecoveryExhaustedError(TrustCoreError):
    """
    The session manager could not restore a dropped credential.

    Delivered to failure listeners as a re-authentication requirement,
    never raised into request handling.
    """

    def __init__(
        self,
        message: str = "Session could not be recovered; sign in again",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.RECOVERY_EXHAUSTED,
            status_code=401,
            details=details,
        )


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def trustcore_exception_handler(
    request: Request,
    exc: TrustCoreError,
) -> JSONResponse:
    """Handle TrustCoreError exceptions."""
    request_id = getattr(request.state, "request_id", None)

    logger.error(
        "trustcore_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        request_id=request_id,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle generic exceptions."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "unhandled_exception",
        error=str(exc),
        request_id=request_id,
    )

    error = TrustCoreError(
        message="An internal error occurred",
        code=ErrorCode.INTERNAL_ERROR,
        status_code=500,
    )

    return JSONResponse(
        status_code=500,
        content=error.to_response(request_id).model_dump(),
    )


def register_exception_handlers(app):
    """Register exception handlers with FastAPI app."""
    app.add_exception_handler(TrustCoreError, trustcore_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
