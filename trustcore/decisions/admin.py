"""
Admin Access Decision Engine.

Combines the eligibility oracle and the privilege-escalation risk report
into one immutable AccessDecision per request.

Rules (first match wins):
1. not eligible and should_block  ->  BLOCK (AccessBlockedError, 403)
2. otherwise                      ->  is_valid = eligible

Eligible admins are never blocked, whatever their risk score. The
eligibility call is critical: if it fails the request fails with
VerificationFailedError. The risk call is not: a failure is replaced with
RiskReport.safe_default().

Audit trail per request: one "admin_access_check" record before anything
is evaluated, then exactly one terminal record (granted, denied, blocked or
throttled).
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from trustcore.audit.schemas import AuditAction, AuditRecord, AuditSeverity
from trustcore.audit.sink import AuditSink
from trustcore.common.exceptions import (
    AccessBlockedError,
    OracleUnavailableError,
    RateLimitError,
    VerificationFailedError,
)
from trustcore.common.metrics import ADMIN_DECISIONS
from trustcore.decisions.tokens import mint_validation_token
from trustcore.oracles.base import RiskOracle, with_safe_default
from trustcore.oracles.schemas import Identity, RiskReport
from trustcore.ratelimit.limiter import ADMIN_OPERATIONS, RateLimiter

logger = structlog.get_logger(__name__)


# ============================================================================
# DECISION
# ============================================================================


class AccessOutcome(str, Enum):
    """Final outcome of an admin access check."""

    ALLOW = "allow"
    DENY = "deny"
    BLOCK = "block"


class AccessDecision(BaseModel):
    """Immutable result of one admin access evaluation."""

    model_config = ConfigDict(frozen=True)

    outcome: AccessOutcome
    is_valid: bool
    user_id: str
    risk_score: float = 0.0
    is_suspicious: bool = False
    validation_token: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_token_matches_validity(self) -> "AccessDecision":
        if self.is_valid != (self.validation_token is not None):
            raise ValueError("validation_token must be present exactly when is_valid")
        if self.is_valid and self.outcome != AccessOutcome.ALLOW:
            raise ValueError("a valid decision must have outcome ALLOW")
        return self

    def to_response(self) -> dict:
        """camelCase body for the access-validate endpoint."""
        return {
            "isValid": self.is_valid,
            "userId": self.user_id,
            "timestamp": self.timestamp.isoformat(),
            "riskScore": self.risk_score,
            "isSuspicious": self.is_suspicious,
            "validationToken": self.validation_token,
        }


# ============================================================================
# ENGINE
# ============================================================================


class AccessDecisionEngine:
    """Evaluates admin access for a verified identity."""

    def __init__(
        self,
        risk_oracle: RiskOracle,
        audit: AuditSink,
        rate_limiter: Optional[RateLimiter] = None,
        token_factory: Callable[[str], str] = mint_validation_token,
    ):
        self._oracle = risk_oracle
        self._audit = audit
        self._rate_limiter = rate_limiter
        self._mint = token_factory

    async def evaluate(self, identity: Identity, ip_address: str = "unknown") -> AccessDecision:
        """
        Decide whether identity may use the admin surface.

        Raises:
            RateLimitError: too many checks by this user in the admin window
            VerificationFailedError: the eligibility oracle could not answer
            AccessBlockedError: non-admin flagged by the risk engine
        """
        user_id = identity.id

        await self._audit.record(AuditRecord.create(
            AuditAction.ADMIN_ACCESS_CHECK,
            user_id,
            ip_address=ip_address,
            severity=AuditSeverity.LOW,
            source="admin_access_validator",
        ))

        if self._rate_limiter is not None:
            if not await self._rate_limiter.check(ADMIN_OPERATIONS, user_id):
                await self._terminal(
                    AuditAction.ADMIN_ACCESS_THROTTLED,
                    user_id,
                    ip_address,
                    AuditSeverity.HIGH,
                    outcome="throttled",
                    reason="too_many_attempts",
                )
                raise RateLimitError("Too many admin access attempts")

        try:
            eligible = await self._oracle.check_eligibility(user_id)
        except OracleUnavailableError as e:
            await self._terminal(
                AuditAction.ADMIN_ACCESS_DENIED,
                user_id,
                ip_address,
                AuditSeverity.HIGH,
                outcome="error",
                reason="admin_verification_error",
                error=e.message,
            )
            logger.error("admin_verification_failed", user_id=user_id, error=e.message)
            raise VerificationFailedError() from e

        risk = await with_safe_default(
            self._oracle.check_risk(user_id),
            RiskReport.safe_default(),
            oracle="check_risk",
        )

        if not eligible and risk.should_block:
            decision = AccessDecision(
                outcome=AccessOutcome.BLOCK,
                is_valid=False,
                user_id=user_id,
                risk_score=risk.risk_score,
                is_suspicious=risk.is_suspicious,
            )
            await self._terminal(
                AuditAction.ADMIN_ACCESS_BLOCKED,
                user_id,
                ip_address,
                AuditSeverity.CRITICAL,
                outcome=decision.outcome.value,
                risk_score=risk.risk_score,
                is_suspicious=risk.is_suspicious,
            )
            logger.warning(
                "admin_access_blocked",
                user_id=user_id,
                risk_score=risk.risk_score,
            )
            raise AccessBlockedError(decision=decision)

        decision = AccessDecision(
            outcome=AccessOutcome.ALLOW if eligible else AccessOutcome.DENY,
            is_valid=eligible,
            user_id=user_id,
            risk_score=risk.risk_score,
            is_suspicious=risk.is_suspicious,
            validation_token=self._mint(user_id) if eligible else None,
        )

        if eligible:
            await self._terminal(
                AuditAction.ADMIN_ACCESS_GRANTED,
                user_id,
                ip_address,
                AuditSeverity.MEDIUM,
                outcome=decision.outcome.value,
                risk_score=risk.risk_score,
                is_suspicious=risk.is_suspicious,
            )
        else:
            await self._terminal(
                AuditAction.ADMIN_ACCESS_DENIED,
                user_id,
                ip_address,
                AuditSeverity.HIGH,
                outcome=decision.outcome.value,
                reason="not_admin",
                risk_score=risk.risk_score,
            )

        logger.info(
            "admin_access_evaluated",
            user_id=user_id,
            is_valid=decision.is_valid,
            risk_score=decision.risk_score,
        )
        return decision

    async def _terminal(
        self,
        action: str,
        user_id: str,
        ip_address: str,
        severity: AuditSeverity,
        outcome: str,
        **details,
    ) -> None:
        ADMIN_DECISIONS.labels(outcome=outcome).inc()
        await self._audit.record(AuditRecord.create(
            action,
            user_id,
            ip_address=ip_address,
            severity=severity,
            outcome=outcome,
            **details,
        ))
