"""Registration Validation Endpoint."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request, Response
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, SecretStr

from trustcore.api.deps import get_registration_guard
from trustcore.common.exceptions import OracleUnavailableError
from trustcore.core.middleware import get_client_ip
from trustcore.registration.guard import (
    MSG_INTERNAL_ERROR,
    RegistrationAttempt,
    RegistrationGuard,
)

logger = structlog.get_logger(__name__)

router = APIRouter()


class RegistrationRequest(BaseModel):
    """Registration validation payload."""

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    institutional_user: Optional[str] = None
    display_name: Optional[str] = None
    pin: Optional[str] = None
    user_agent: Optional[str] = None


async def _read_body(request: Request) -> RegistrationRequest:
    """Parse the payload; anything unreadable counts as an empty request."""
    try:
        return RegistrationRequest.model_validate(await request.json())
    except ValueError:
        return RegistrationRequest()


@router.options("/validate", include_in_schema=False)
async def validate_registration_preflight() -> Response:
    return Response(status_code=200)


@router.post(
    "/validate",
    summary="Validate a registration",
    description="Duplicate, per-IP quota and fraud checks before account creation",
)
async def validate_registration(
    request: Request,
    user_agent: Optional[str] = Header(default=None),
    guard: RegistrationGuard = Depends(get_registration_guard),
) -> JSONResponse:
    body = await _read_body(request)

    attempt = RegistrationAttempt(
        institutional_user=body.institutional_user,
        display_name=body.display_name,
        pin=SecretStr(body.pin) if body.pin else None,
        ip_address=get_client_ip(request),
        user_agent=body.user_agent or user_agent or "",
    )

    try:
        decision = await guard.evaluate(attempt)
    except OracleUnavailableError as e:
        logger.error("registration_validation_failed", error=e.message)
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "canRegister": False,
                "requiresCaptcha": False,
                "message": MSG_INTERNAL_ERROR,
            },
        )

    return JSONResponse(status_code=decision.status_code, content=decision.to_response())
