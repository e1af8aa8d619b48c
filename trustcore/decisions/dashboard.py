"""Admin dashboard access check."""

from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict

from trustcore.audit.schemas import AuditAction, AuditRecord, AuditSeverity
from trustcore.audit.sink import AuditSink
from trustcore.common.exceptions import OracleUnavailableError, VerificationFailedError
from trustcore.common.metrics import DASHBOARD_DECISIONS
from trustcore.oracles.base import ProfileDirectory, RiskOracle
from trustcore.oracles.schemas import Identity, UserProfile

logger = structlog.get_logger(__name__)

ACCESS_GRANTED = "Access granted"
ACCESS_DENIED = "Access denied - insufficient privileges"


class DashboardAccess(BaseModel):
    """Outcome of a dashboard access check."""

    model_config = ConfigDict(frozen=True)

    can_access: bool
    message: str
    user_profile: Optional[UserProfile] = None

    def to_response(self) -> dict:
        profile = None
        if self.can_access and self.user_profile is not None:
            profile = {
                "role": self.user_profile.role,
                "displayName": self.user_profile.display_name,
                "isAdmin": self.user_profile.is_admin,
            }
        return {
            "success": True,
            "canAccess": self.can_access,
            "message": self.message,
            "userProfile": profile,
        }


class DashboardAccessService:
    """
    Gatekeeper for the admin dashboard.

    Both the dashboard procedure and the profile lookup are critical: if
    either fails the caller gets VerificationFailedError, never a silent deny.
    """

    def __init__(self, risk_oracle: RiskOracle, profiles: ProfileDirectory, audit: AuditSink):
        self._oracle = risk_oracle
        self._profiles = profiles
        self._audit = audit

    async def evaluate(
        self,
        identity: Identity,
        ip_address: str = "127.0.0.1",
        user_agent: Optional[str] = None,
    ) -> DashboardAccess:
        user_id = identity.id

        try:
            can_access = await self._oracle.can_access_dashboard(user_id)
        except OracleUnavailableError as e:
            logger.error("dashboard_access_check_failed", user_id=user_id, error=e.message)
            raise VerificationFailedError("Failed to verify permissions") from e

        try:
            profile = await self._profiles.get_profile(user_id)
        except OracleUnavailableError as e:
            logger.error("dashboard_profile_lookup_failed", user_id=user_id, error=e.message)
            raise VerificationFailedError("Failed to load user profile") from e

        await self._audit.record(AuditRecord.create(
            AuditAction.DASHBOARD_ACCESS_ATTEMPT,
            user_id,
            ip_address=ip_address,
            severity=AuditSeverity.MEDIUM if can_access else AuditSeverity.HIGH,
            user_agent=user_agent,
            access_granted=can_access,
            profile_role=profile.role if profile else None,
            profile_admin=profile.is_admin if profile else None,
        ))

        DASHBOARD_DECISIONS.labels(granted=str(can_access).lower()).inc()
        logger.info("dashboard_access_evaluated", user_id=user_id, can_access=can_access)

        if not can_access:
            return DashboardAccess(can_access=False, message=ACCESS_DENIED)
        return DashboardAccess(can_access=True, message=ACCESS_GRANTED, user_profile=profile)
