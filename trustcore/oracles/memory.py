"""
In-memory oracle implementations.

Deterministic stand-ins for the identity store. Each one records the calls
it receives and can be told to fail, so tests can drive every branch of the
decision engines.
"""

from typing import Iterable, Optional

from trustcore.common.exceptions import OracleUnavailableError
from trustcore.oracles.base import IdentityProvider, ProfileDirectory, RiskOracle
from trustcore.oracles.schemas import (
    FraudReport,
    Identity,
    IpQuotaReport,
    RiskReport,
    UserProfile,
)


class _FailureInjection:
    """Shared failure switches for the stand-ins."""

    def __init__(self):
        self.failing: set[str] = set()
        self.calls: list[tuple[str, str]] = []

    def fail(self, *operations: str) -> None:
        """Make the named operations raise OracleUnavailableError."""
        self.failing.update(operations)

    def recover(self, *operations: str) -> None:
        """Stop failing the named operations (all when none given)."""
        if operations:
            self.failing.difference_update(operations)
        else:
            self.failing.clear()

    def called(self, operation: str) -> int:
        """How many times an operation was invoked."""
        return sum(1 for name, _ in self.calls if name == operation)

    def _enter(self, operation: str, argument: str) -> None:
        self.calls.append((operation, argument))
        if operation in self.failing:
            raise OracleUnavailableError(operation, "injected failure")


class InMemoryIdentityProvider(_FailureInjection, IdentityProvider):
    """Token -> identity map, optionally flaky for the first N lookups."""

    def __init__(self, identities: Optional[dict[str, Identity]] = None, flaky_calls: int = 0):
        super().__init__()
        self._identities = dict(identities or {})
        self._flaky_calls = flaky_calls

    def add(self, token: str, identity: Identity) -> None:
        self._identities[token] = identity

    async def get_user(self, token: str) -> Optional[Identity]:
        self._enter("get_user", token)
        if self._flaky_calls > 0:
            self._flaky_calls -= 1
            raise OracleUnavailableError("get_user", "connection reset")
        return self._identities.get(token)


class StaticRiskOracle(_FailureInjection, RiskOracle):
    """Risk oracle answering from fixed tables."""

    def __init__(
        self,
        admins: Iterable[str] = (),
        risk: Optional[dict[str, RiskReport]] = None,
        ip_quota: Optional[dict[str, IpQuotaReport]] = None,
        fraud: Optional[dict[str, FraudReport]] = None,
        dashboard_users: Optional[Iterable[str]] = None,
    ):
        super().__init__()
        self.admins = set(admins)
        self.risk = dict(risk or {})
        self.ip_quota = dict(ip_quota or {})
        self.fraud = dict(fraud or {})
        self.dashboard_users = set(dashboard_users) if dashboard_users is not None else None

    async def check_eligibility(self, user_id: str) -> bool:
        self._enter("check_eligibility", user_id)
        return user_id in self.admins

    async def check_risk(self, user_id: str) -> RiskReport:
        self._enter("check_risk", user_id)
        return self.risk.get(user_id, RiskReport())

    async def check_ip_quota(self, ip_address: str) -> IpQuotaReport:
        self._enter("check_ip_quota", ip_address)
        return self.ip_quota.get(ip_address, IpQuotaReport())

    async def check_fraud(self, ip_address: str) -> FraudReport:
        self._enter("check_fraud", ip_address)
        return self.fraud.get(ip_address, FraudReport())

    async def can_access_dashboard(self, user_id: str) -> bool:
        self._enter("can_access_dashboard", user_id)
        if self.dashboard_users is None:
            return user_id in self.admins
        return user_id in self.dashboard_users


class InMemoryProfileDirectory(_FailureInjection, ProfileDirectory):
    """Profile table kept in memory."""

    def __init__(self, profiles: Iterable[UserProfile] = ()):
        super().__init__()
        self._profiles = {p.user_id: p for p in profiles}
        self.registration_attempts: list[dict] = []

    def add(self, profile: UserProfile) -> None:
        self._profiles[profile.user_id] = profile

    async def identity_exists(self, institutional_user: str) -> bool:
        self._enter("identity_exists", institutional_user)
        wanted = institutional_user.strip().lower()
        return any(
            p.institutional_user.strip().lower() == wanted
            for p in self._profiles.values()
        )

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        self._enter("get_profile", user_id)
        return self._profiles.get(user_id)

    async def log_registration_attempt(
        self,
        ip_address: str,
        user_agent: str,
        success: bool,
        user_id: Optional[str] = None,
    ) -> None:
        self._enter("log_registration_attempt", ip_address)
        self.registration_attempts.append({
            "ip_address": ip_address,
            "user_agent": user_agent,
            "success": success,
            "user_id": user_id,
        })
