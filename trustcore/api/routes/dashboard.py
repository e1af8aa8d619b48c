"""Admin Dashboard Access Endpoint."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.responses import JSONResponse

from trustcore.api.deps import get_dashboard_service, get_identity_verifier
from trustcore.common.exceptions import (
    AuthenticationError,
    OracleUnavailableError,
    VerificationFailedError,
)
from trustcore.core.middleware import get_client_ip, user_id_var
from trustcore.decisions.dashboard import DashboardAccessService
from trustcore.identity.verifier import BEARER_PREFIX, IdentityVerifier

logger = structlog.get_logger(__name__)

router = APIRouter()


def _failure(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "canAccess": False, "message": message},
    )


@router.options("/dashboard-access", include_in_schema=False)
async def dashboard_access_preflight() -> Response:
    return Response(status_code=200)


@router.api_route(
    "/dashboard-access",
    methods=["GET", "POST"],
    summary="Check admin dashboard access",
)
async def dashboard_access(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    user_agent: Optional[str] = Header(default=None),
    x_client_class: Optional[str] = Header(default=None),
    verifier: IdentityVerifier = Depends(get_identity_verifier),
    service: DashboardAccessService = Depends(get_dashboard_service),
) -> JSONResponse:
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return _failure(401, "Authorization token required")

    try:
        identity = await verifier.verify(authorization, user_agent, x_client_class)
    except AuthenticationError:
        return _failure(401, "Invalid or expired token")

    user_id_var.set(identity.id)

    try:
        access = await service.evaluate(
            identity,
            ip_address=get_client_ip(request),
            user_agent=user_agent,
        )
    except VerificationFailedError as e:
        return _failure(500, e.message)
    except OracleUnavailableError as e:
        logger.error("dashboard_access_oracle_error", error=e.message)
        return _failure(500, "Internal server error")

    return JSONResponse(content=access.to_response())
