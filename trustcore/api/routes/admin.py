"""Admin Access Validation Endpoint.

Resolves the bearer credential, runs the admin decision engine and renders
the decision, or a `{isValid: false, error, blocked?}` failure body.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.responses import JSONResponse

from trustcore.api.deps import get_access_engine, get_identity_verifier
from trustcore.common.exceptions import (
    AccessBlockedError,
    AuthenticationError,
    OracleUnavailableError,
    RateLimitError,
    VerificationFailedError,
)
from trustcore.core.middleware import get_client_ip, user_id_var
from trustcore.decisions.admin import AccessDecisionEngine
from trustcore.identity.verifier import IdentityVerifier

logger = structlog.get_logger(__name__)

router = APIRouter()


def _failure(status_code: int, error: str, blocked: bool = False) -> JSONResponse:
    content = {"isValid": False, "error": error}
    if blocked:
        content["blocked"] = True
    return JSONResponse(status_code=status_code, content=content)


@router.options("/access-validate", include_in_schema=False)
async def access_validate_preflight() -> Response:
    return Response(status_code=200)


@router.api_route(
    "/access-validate",
    methods=["GET", "POST"],
    summary="Validate admin access",
    description="Decide whether the bearer of the token may use the admin surface",
)
async def access_validate(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    user_agent: Optional[str] = Header(default=None),
    x_client_class: Optional[str] = Header(default=None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    engine: AccessDecisionEngine = Depends(get_access_engine),
) -> JSONResponse:
    """
    Admin access check.

    Returns 200 with the decision (valid or plain deny), 401 when the
    credential does not resolve, 403 when blocked, 429 when throttled and
    500 when eligibility could not be verified.
    """
    ip_address = get_client_ip(request)

    try:
        identity = await verifier.verify(authorization, user_agent, x_client_class)
    except AuthenticationError as e:
        logger.info("admin_access_unauthenticated", reason=e.message)
        return _failure(401, e.message)

    user_id_var.set(identity.id)

    try:
        decision = await engine.evaluate(identity, ip_address=ip_address)
    except AccessBlockedError as e:
        return _failure(403, e.message, blocked=True)
    except RateLimitError as e:
        return _failure(429, e.message)
    except VerificationFailedError as e:
        return _failure(500, e.message)
    except OracleUnavailableError as e:
        logger.error("admin_access_oracle_error", error=e.message)
        return _failure(500, "Internal server error")

    return JSONResponse(content=decision.to_response())
