"""
Tests for the Admin Access Decision Engine.

Tests:
- Admins are granted regardless of risk score
- Flagged non-admins are blocked
- Plain non-admins are denied without a token
- Eligibility failure is a verification error, not a deny
- Risk failure degrades to a zero-risk report
- Audit trail: one check record plus exactly one terminal record
- Per-user throttling
"""

import pytest

from trustcore.audit.schemas import AuditAction, AuditSeverity
from trustcore.common.exceptions import (
    AccessBlockedError,
    RateLimitError,
    VerificationFailedError,
)
from trustcore.decisions.admin import AccessDecision, AccessDecisionEngine, AccessOutcome
from trustcore.decisions.tokens import decode_validation_token
from trustcore.oracles.schemas import Identity, RiskReport

TERMINAL_ACTIONS = {
    AuditAction.ADMIN_ACCESS_GRANTED,
    AuditAction.ADMIN_ACCESS_DENIED,
    AuditAction.ADMIN_ACCESS_BLOCKED,
    AuditAction.ADMIN_ACCESS_THROTTLED,
}


# ============================================================================
# FIXTURES
# ============================================================================


@pytest.fixture
def engine(risk_oracle, audit_sink):
    return AccessDecisionEngine(risk_oracle, audit_sink)


@pytest.fixture
def throttled_engine(risk_oracle, audit_sink, rate_limiter):
    return AccessDecisionEngine(risk_oracle, audit_sink, rate_limiter=rate_limiter)


def terminal_records(audit_store, user_id):
    return [r for r in audit_store.records if r.user_id == user_id and r.action in TERMINAL_ACTIONS]


# ============================================================================
# DECISIONS
# ============================================================================


class TestDecisions:
    """Outcome rules."""

    @pytest.mark.asyncio
    async def test_admin_with_high_risk_is_granted(self, engine):
        decision = await engine.evaluate(Identity(id="admin-1"), ip_address="203.0.113.7")

        assert decision.outcome == AccessOutcome.ALLOW
        assert decision.is_valid is True
        assert decision.risk_score == 87
        assert decision.is_suspicious is True
        assert decision.validation_token is not None
        assert decode_validation_token(decision.validation_token).user_id == "admin-1"

    @pytest.mark.asyncio
    async def test_flagged_non_admin_is_blocked(self, engine):
        with pytest.raises(AccessBlockedError) as exc_info:
            await engine.evaluate(Identity(id="user-2"))

        decision = exc_info.value.decision
        assert decision.outcome == AccessOutcome.BLOCK
        assert decision.is_valid is False
        assert decision.validation_token is None
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_plain_non_admin_is_denied(self, engine):
        decision = await engine.evaluate(Identity(id="user-1"))

        assert decision.outcome == AccessOutcome.DENY
        assert decision.is_valid is False
        assert decision.validation_token is None
        assert decision.to_response()["validationToken"] is None

    @pytest.mark.asyncio
    async def test_suspicious_but_not_blocking_non_admin_is_denied(self, engine, risk_oracle):
        risk_oracle.risk["user-1"] = RiskReport(risk_score=60, is_suspicious=True, should_block=False)

        decision = await engine.evaluate(Identity(id="user-1"))

        assert decision.outcome == AccessOutcome.DENY
        assert decision.is_suspicious is True

    @pytest.mark.asyncio
    async def test_tokens_are_unique_per_decision(self, engine):
        first = await engine.evaluate(Identity(id="admin-1"))
        second = await engine.evaluate(Identity(id="admin-1"))
        assert first.validation_token != second.validation_token


# ============================================================================
# ORACLE FAILURES
# ============================================================================


class TestOracleFailures:
    """Critical versus non-critical oracle calls."""

    @pytest.mark.asyncio
    async def test_eligibility_failure_raises_verification_failed(self, engine, risk_oracle, audit_store):
        risk_oracle.fail("check_eligibility")

        with pytest.raises(VerificationFailedError):
            await engine.evaluate(Identity(id="admin-1"))

        terminal = terminal_records(audit_store, "admin-1")
        assert len(terminal) == 1
        assert terminal[0].action == AuditAction.ADMIN_ACCESS_DENIED
        assert terminal[0].details["reason"] == "admin_verification_error"
        assert risk_oracle.called("check_risk") == 0

    @pytest.mark.asyncio
    async def test_risk_failure_degrades_to_safe_default(self, engine, risk_oracle):
        risk_oracle.fail("check_risk")

        decision = await engine.evaluate(Identity(id="admin-1"))

        assert decision.is_valid is True
        assert decision.risk_score == 0
        assert decision.is_suspicious is False

    @pytest.mark.asyncio
    async def test_risk_failure_never_blocks(self, engine, risk_oracle):
        risk_oracle.fail("check_risk")

        decision = await engine.evaluate(Identity(id="user-2"))

        assert decision.outcome == AccessOutcome.DENY


# ============================================================================
# AUDIT TRAIL
# ============================================================================


class TestAuditTrail:
    """One check record and exactly one terminal record per evaluation."""

    @pytest.mark.asyncio
    async def test_granted_trail(self, engine, audit_store):
        await engine.evaluate(Identity(id="admin-1"), ip_address="203.0.113.7")

        assert audit_store.actions("admin-1") == [
            AuditAction.ADMIN_ACCESS_CHECK,
            AuditAction.ADMIN_ACCESS_GRANTED,
        ]
        granted = audit_store.records[-1]
        assert granted.severity == AuditSeverity.MEDIUM
        assert granted.ip_address == "203.0.113.7"

    @pytest.mark.asyncio
    async def test_denied_trail(self, engine, audit_store):
        await engine.evaluate(Identity(id="user-1"))

        assert audit_store.actions("user-1") == [
            AuditAction.ADMIN_ACCESS_CHECK,
            AuditAction.ADMIN_ACCESS_DENIED,
        ]
        assert audit_store.records[-1].severity == AuditSeverity.HIGH
        assert audit_store.records[-1].details["reason"] == "not_admin"

    @pytest.mark.asyncio
    async def test_blocked_trail(self, engine, audit_store):
        with pytest.raises(AccessBlockedError):
            await engine.evaluate(Identity(id="user-2"))

        assert audit_store.actions("user-2") == [
            AuditAction.ADMIN_ACCESS_CHECK,
            AuditAction.ADMIN_ACCESS_BLOCKED,
        ]
        assert audit_store.records[-1].severity == AuditSeverity.CRITICAL

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_change_decision(self, engine, audit_store, audit_sink):
        audit_store.fail_next(2)

        decision = await engine.evaluate(Identity(id="admin-1"))

        assert decision.is_valid is True
        assert audit_sink.pending == 2
        await audit_sink.flush()
        assert audit_store.actions("admin-1") == [
            AuditAction.ADMIN_ACCESS_CHECK,
            AuditAction.ADMIN_ACCESS_GRANTED,
        ]


# ============================================================================
# THROTTLING
# ============================================================================


class TestThrottling:
    """Admin operations are limited per user."""

    @pytest.mark.asyncio
    async def test_throttled_after_limit(self, throttled_engine, audit_store, risk_oracle):
        for _ in range(3):
            await throttled_engine.evaluate(Identity(id="admin-1"))

        with pytest.raises(RateLimitError):
            await throttled_engine.evaluate(Identity(id="admin-1"))

        assert audit_store.actions("admin-1")[-2:] == [
            AuditAction.ADMIN_ACCESS_CHECK,
            AuditAction.ADMIN_ACCESS_THROTTLED,
        ]
        assert risk_oracle.called("check_eligibility") == 3

    @pytest.mark.asyncio
    async def test_throttle_is_per_user(self, throttled_engine):
        for _ in range(3):
            await throttled_engine.evaluate(Identity(id="admin-1"))

        decision = await throttled_engine.evaluate(Identity(id="user-1"))
        assert decision.outcome == AccessOutcome.DENY


# ============================================================================
# DECISION MODEL
# ============================================================================


class TestAccessDecision:
    """Invariants enforced by the model itself."""

    def test_valid_decision_requires_token(self):
        with pytest.raises(ValueError):
            AccessDecision(outcome=AccessOutcome.ALLOW, is_valid=True, user_id="u")

    def test_invalid_decision_rejects_token(self):
        with pytest.raises(ValueError):
            AccessDecision(
                outcome=AccessOutcome.DENY,
                is_valid=False,
                user_id="u",
                validation_token="abc",
            )

    def test_response_is_camel_case(self):
        decision = AccessDecision(
            outcome=AccessOutcome.ALLOW,
            is_valid=True,
            user_id="u",
            risk_score=12.5,
            validation_token="abc",
        )
        body = decision.to_response()
        assert set(body) == {
            "isValid", "userId", "timestamp", "riskScore", "isSuspicious", "validationToken",
        }
        assert body["riskScore"] == 12.5
