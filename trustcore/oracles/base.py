"""
Oracle capability interfaces.

Every external dependency of the decision engines is one of these ABCs, so
policy code can run against deterministic stand-ins in tests and against the
identity store in production.
"""

from abc import ABC, abstractmethod
from typing import Awaitable, Optional, TypeVar

import structlog

from trustcore.common.exceptions import OracleUnavailableError
from trustcore.oracles.schemas import (
    FraudReport,
    Identity,
    IpQuotaReport,
    RiskReport,
    UserProfile,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class IdentityProvider(ABC):
    """Resolves bearer credentials to identities."""

    @abstractmethod
    async def get_user(self, token: str) -> Optional[Identity]:
        """Return the identity for a token, or None if the token is invalid."""
        pass


class RiskOracle(ABC):
    """Risk and limit procedures of the external store."""

    @abstractmethod
    async def check_eligibility(self, user_id: str) -> bool:
        """Authoritative answer to "is this identity a valid admin"."""
        pass

    @abstractmethod
    async def check_risk(self, user_id: str) -> RiskReport:
        """Privilege-escalation analysis."""
        pass

    @abstractmethod
    async def check_ip_quota(self, ip_address: str) -> IpQuotaReport:
        """Registration quota for an IP. May mutate the store's IP state."""
        pass

    @abstractmethod
    async def check_fraud(self, ip_address: str) -> FraudReport:
        """Fraud-pattern score for an IP."""
        pass

    @abstractmethod
    async def can_access_dashboard(self, user_id: str) -> bool:
        """Dashboard-specific admin check."""
        pass


class ProfileDirectory(ABC):
    """Profile lookups and registration attempt logging."""

    @abstractmethod
    async def identity_exists(self, institutional_user: str) -> bool:
        """Whether a profile already uses this (normalized) institutional user."""
        pass

    @abstractmethod
    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        """Profile for a user id, if any."""
        pass

    @abstractmethod
    async def log_registration_attempt(
        self,
        ip_address: str,
        user_agent: str,
        success: bool,
        user_id: Optional[str] = None,
    ) -> None:
        """Record a registration attempt for fraud analytics."""
        pass


async def with_safe_default(call: Awaitable[T], default: T, oracle: str) -> T:
    """
    Await a non-critical oracle call, substituting default on failure.

    Only OracleUnavailableError is absorbed; programming errors propagate.
    """
    try:
        return await call
    except OracleUnavailableError as e:
        logger.warning(
            "oracle_degraded",
            oracle=oracle,
            error=e.message,
            default=repr(default),
        )
        return default
