"""
Pytest Configuration and Fixtures.

Provides reusable fixtures for testing TRUSTCORE components: deterministic
oracles, an in-memory audit trail and a rate limiter on a controllable clock.
"""

import os

import pytest

# Set testing mode before importing app
os.environ["TESTING"] = "true"
os.environ["ENVIRONMENT"] = "testing"
os.environ["ORACLE_BACKEND"] = "memory"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["LOG_FORMAT"] = "console"

from trustcore.audit.sink import AuditSink
from trustcore.audit.store import InMemoryAuditStore
from trustcore.core.config import Settings
from trustcore.oracles.memory import (
    InMemoryIdentityProvider,
    InMemoryProfileDirectory,
    StaticRiskOracle,
)
from trustcore.oracles.schemas import Identity, RiskReport, UserProfile
from trustcore.ratelimit.limiter import RateLimiter, build_policies
from trustcore.ratelimit.store import InMemoryRateLimitStore


ADMIN_TOKEN = "admin-token"
USER_TOKEN = "user-token"
RISKY_TOKEN = "risky-token"


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start_ms: float = 1_700_000_000_000):
        self.now = start_ms

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds * 1000


# ============================================================================
# SETTINGS
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with small limits so tests can reach them quickly."""
    return Settings(
        environment="testing",
        oracle_backend="memory",
        rate_limit_backend="memory",
        rate_limit_admin_max_attempts=3,
        rate_limit_admin_window_seconds=60,
        rate_limit_registration_max_attempts=5,
        rate_limit_registration_window_seconds=60,
        identity_retry_delay_seconds=0.01,
    )


# ============================================================================
# ORACLE FIXTURES
# ============================================================================


@pytest.fixture
def identity_provider() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider({
        ADMIN_TOKEN: Identity(id="admin-1", email="admin@example.edu", is_admin_flag=True),
        USER_TOKEN: Identity(id="user-1", email="user@example.edu"),
        RISKY_TOKEN: Identity(id="user-2", email="risky@example.edu"),
    })


@pytest.fixture
def risk_oracle() -> StaticRiskOracle:
    """admin-1 is an admin with a high risk score; user-2 is a flagged non-admin."""
    return StaticRiskOracle(
        admins={"admin-1"},
        risk={
            "admin-1": RiskReport(risk_score=87, is_suspicious=True, should_block=True),
            "user-2": RiskReport(risk_score=95, is_suspicious=True, should_block=True),
        },
    )


@pytest.fixture
def profiles() -> InMemoryProfileDirectory:
    return InMemoryProfileDirectory([
        UserProfile(
            user_id="admin-1",
            institutional_user="admin.root",
            display_name="Root Admin",
            role="admin",
            is_admin=True,
        ),
        UserProfile(
            user_id="user-3",
            institutional_user="vitor.souza",
            display_name="Vitor Souza",
        ),
    ])


# ============================================================================
# AUDIT / RATE LIMIT FIXTURES
# ============================================================================


@pytest.fixture
def audit_store() -> InMemoryAuditStore:
    return InMemoryAuditStore()


@pytest.fixture
def audit_sink(audit_store) -> AuditSink:
    return AuditSink(audit_store, max_queue_size=10, max_attempts=3)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def rate_limit_store(clock) -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore(clock=clock)


@pytest.fixture
def rate_limiter(rate_limit_store, test_settings) -> RateLimiter:
    return RateLimiter(rate_limit_store, policies=build_policies(test_settings))
