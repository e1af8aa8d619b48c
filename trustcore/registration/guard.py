"""
Registration Guard.

Fraud prevention for new account registration. Checks run in a fixed order
and short-circuit:

1. required fields present                 (else DENY, 400)
2. institutional user not taken            (else DENY, no captcha)
3. per-IP attempt throttle                 (else DENY, too_many_attempts)
4. per-IP quota oracle                     (critical)
5. fraud-pattern oracle                    (degrades to low risk)
6. resolution, first match wins:
     blocked IP          -> DENY
     limit_exceeded      -> DENY
     repeat IP or medium -> CHALLENGE (captcha)
     high fraud risk     -> DENY
     otherwise           -> ALLOW

Every attempt that gets past the uniqueness check is logged for fraud
analytics with success=False; account creation happens elsewhere.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, SecretStr

from trustcore.common.exceptions import OracleUnavailableError
from trustcore.common.metrics import REGISTRATION_DECISIONS
from trustcore.oracles.base import ProfileDirectory, RiskOracle, with_safe_default
from trustcore.oracles.schemas import FraudReport, FraudRiskLevel, IpQuotaReport
from trustcore.ratelimit.limiter import REGISTRATION_ATTEMPTS, RateLimiter

logger = structlog.get_logger(__name__)


# ============================================================================
# MESSAGES
# ============================================================================

MSG_MISSING_FIELDS = "Required fields not provided"
MSG_DUPLICATE = "Institutional user already registered"
MSG_THROTTLED = "Too many registration attempts, try again later"
MSG_IP_BLOCKED = "IP temporarily blocked due to multiple attempts"
MSG_LIMIT_EXCEEDED = "Registration limit per IP reached (max 3)"
MSG_CAPTCHA = "Additional verification required"
MSG_SUSPICIOUS = "Suspicious activity detected"
MSG_OK = "Validation complete"
MSG_INTERNAL_ERROR = "Internal system error"

REASON_LIMIT_EXCEEDED = "limit_exceeded"
REASON_TOO_MANY_ATTEMPTS = "too_many_attempts"


# ============================================================================
# INPUT / OUTPUT
# ============================================================================


class RegistrationAttempt(BaseModel):
    """A candidate registration. The PIN never leaves this object in clear."""

    model_config = ConfigDict(frozen=True)

    institutional_user: Optional[str] = None
    display_name: Optional[str] = None
    pin: Optional[SecretStr] = None
    ip_address: str = "127.0.0.1"
    user_agent: str = ""
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def normalized_user(self) -> str:
        return (self.institutional_user or "").strip().lower()

    def missing_fields(self) -> list[str]:
        missing = []
        if not (self.institutional_user or "").strip():
            missing.append("institutional_user")
        if not (self.display_name or "").strip():
            missing.append("display_name")
        if self.pin is None or not self.pin.get_secret_value():
            missing.append("pin")
        return missing


class RegistrationOutcome(str, Enum):
    """Registration decision classes."""

    ALLOW = "allow"
    CHALLENGE = "challenge"
    DENY = "deny"


class RegistrationDecision(BaseModel):
    """Immutable registration verdict."""

    model_config = ConfigDict(frozen=True)

    outcome: RegistrationOutcome
    can_register: bool
    requires_captcha: bool = False
    message: str
    reason: Optional[str] = None
    blocked_until: Optional[datetime] = None
    success: bool = True
    status_code: int = 200

    @classmethod
    def missing_fields(cls) -> "RegistrationDecision":
        return cls(
            outcome=RegistrationOutcome.DENY,
            can_register=False,
            message=MSG_MISSING_FIELDS,
            reason="missing_fields",
            success=False,
            status_code=400,
        )

    @classmethod
    def duplicate(cls) -> "RegistrationDecision":
        return cls(
            outcome=RegistrationOutcome.DENY,
            can_register=False,
            message=MSG_DUPLICATE,
            reason="duplicate_identity",
            success=False,
        )

    @classmethod
    def throttled(cls) -> "RegistrationDecision":
        return cls(
            outcome=RegistrationOutcome.DENY,
            can_register=False,
            message=MSG_THROTTLED,
            reason=REASON_TOO_MANY_ATTEMPTS,
            success=False,
        )

    def to_response(self) -> dict:
        """camelCase body for the registration endpoint."""
        body = {
            "success": self.success,
            "canRegister": self.can_register,
            "requiresCaptcha": self.requires_captcha,
            "message": self.message,
        }
        if self.reason is not None:
            body["reason"] = self.reason
        if self.blocked_until is not None:
            body["blockedUntil"] = self.blocked_until.isoformat()
        return body


def resolve_registration(quota: IpQuotaReport, fraud: FraudReport) -> RegistrationDecision:
    """Apply the resolution rules to one quota/fraud snapshot."""
    common = {"reason": quota.reason, "blocked_until": quota.blocked_until}

    if quota.is_blocked:
        return RegistrationDecision(
            outcome=RegistrationOutcome.DENY,
            can_register=False,
            message=MSG_IP_BLOCKED,
            **common,
        )

    if quota.reason == REASON_LIMIT_EXCEEDED:
        return RegistrationDecision(
            outcome=RegistrationOutcome.DENY,
            can_register=False,
            message=MSG_LIMIT_EXCEEDED,
            **common,
        )

    if quota.registration_count >= 1 or fraud.risk_level == FraudRiskLevel.MEDIUM:
        return RegistrationDecision(
            outcome=RegistrationOutcome.CHALLENGE,
            can_register=quota.can_register,
            requires_captcha=True,
            message=MSG_CAPTCHA,
            **common,
        )

    if fraud.risk_level == FraudRiskLevel.HIGH:
        return RegistrationDecision(
            outcome=RegistrationOutcome.DENY,
            can_register=False,
            message=MSG_SUSPICIOUS,
            **common,
        )

    return RegistrationDecision(
        outcome=RegistrationOutcome.ALLOW if quota.can_register else RegistrationOutcome.DENY,
        can_register=quota.can_register,
        message=MSG_OK,
        **common,
    )


# ============================================================================
# GUARD
# ============================================================================


class RegistrationGuard:
    """Runs the registration checks against the oracles."""

    def __init__(
        self,
        risk_oracle: RiskOracle,
        profiles: ProfileDirectory,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self._oracle = risk_oracle
        self._profiles = profiles
        self._rate_limiter = rate_limiter

    async def evaluate(self, attempt: RegistrationAttempt) -> RegistrationDecision:
        """
        Decide whether a registration may proceed.

        Raises:
            OracleUnavailableError: uniqueness or IP-quota lookup failed
        """
        ip_address = attempt.ip_address

        missing = attempt.missing_fields()
        if missing:
            logger.info("registration_missing_fields", fields=missing)
            return self._count(RegistrationDecision.missing_fields())

        if await self._profiles.identity_exists(attempt.normalized_user):
            logger.info("registration_duplicate_identity", ip_address=ip_address)
            return self._count(RegistrationDecision.duplicate())

        if self._rate_limiter is not None:
            if not await self._rate_limiter.check(REGISTRATION_ATTEMPTS, ip_address):
                await self._log_attempt(attempt)
                return self._count(RegistrationDecision.throttled())

        quota = await self._oracle.check_ip_quota(ip_address)
        fraud = await with_safe_default(
            self._oracle.check_fraud(ip_address),
            FraudReport.safe_default(),
            oracle="check_fraud",
        )

        decision = resolve_registration(quota, fraud)
        await self._log_attempt(attempt)

        logger.info(
            "registration_evaluated",
            ip_address=ip_address,
            outcome=decision.outcome.value,
            registration_count=quota.registration_count,
            risk_level=fraud.risk_level.value,
        )
        return self._count(decision)

    async def _log_attempt(self, attempt: RegistrationAttempt) -> None:
        try:
            await self._profiles.log_registration_attempt(
                attempt.ip_address,
                attempt.user_agent,
                success=False,
                user_id=None,
            )
        except OracleUnavailableError as e:
            logger.warning(
                "registration_attempt_log_failed",
                ip_address=attempt.ip_address,
                error=e.message,
            )

    def _count(self, decision: RegistrationDecision) -> RegistrationDecision:
        REGISTRATION_DECISIONS.labels(
            outcome=decision.outcome.value,
            reason=decision.reason or "none",
        ).inc()
        return decision
