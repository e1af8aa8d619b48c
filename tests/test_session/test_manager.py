"""
Tests for the Session Continuity Manager.

Tests:
- Sign-in starts monitoring
- Unexpected sign-out recovers through refresh, then through storage
- Recovery exhaustion fails once and stops retrying
- A new sign-in restarts a failed manager
- Debounce collapses bursts of sign-out events
- Heartbeat detection of a dead session
- Inert manager on reliable clients
"""

import asyncio

import pytest
import pytest_asyncio

from trustcore.common.exceptions import OracleUnavailableError, RecoveryExhaustedError
from trustcore.common.resilience import RetryConfig
from trustcore.session import build_session_manager
from trustcore.session.backend import SessionBackend
from trustcore.session.manager import (
    REFRESH_RETRYABLE,
    SessionContinuityManager,
    SessionEvent,
    SessionState,
)

IOS_SAFARI_UA = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_0 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.0 Mobile/15E148 Safari/604.1"
)
DESKTOP_UA = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)

FAST_RETRY = RetryConfig.fixed(
    max_attempts=2,
    delay_seconds=0.01,
    retryable_exceptions=REFRESH_RETRYABLE,
)


class FakeBackend(SessionBackend):
    """Scriptable credential backend."""

    def __init__(self, live=True, refresh_results=(), restore_result=False):
        self.live = live
        self.refresh_results = list(refresh_results)
        self.restore_result = restore_result
        self.refresh_calls = 0
        self.restore_calls = 0
        self.heartbeat_error = None

    async def refresh_if_needed(self) -> None:
        if self.heartbeat_error is not None:
            raise self.heartbeat_error

    async def has_session(self) -> bool:
        return self.live

    async def refresh_session(self) -> bool:
        self.refresh_calls += 1
        result = self.refresh_results.pop(0) if self.refresh_results else False
        if isinstance(result, Exception):
            raise result
        if result:
            self.live = True
        return result

    async def restore_from_storage(self) -> bool:
        self.restore_calls += 1
        if isinstance(self.restore_result, Exception):
            raise self.restore_result
        if self.restore_result:
            self.live = True
        return self.restore_result


async def wait_until(predicate, timeout=1.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.005)


# ============================================================================
# FIXTURES
# ============================================================================


@pytest_asyncio.fixture
async def make_manager():
    """Factory for managers with short timers, stopped after the test."""
    managers = []

    def _make(backend, **kwargs):
        options = {
            "heartbeat_seconds": 60.0,
            "debounce_seconds": 0.02,
            "refresh_retry": FAST_RETRY,
        }
        options.update(kwargs)
        manager = SessionContinuityManager(backend, **options)
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        await manager.stop()


async def monitoring(make_manager, backend, **kwargs):
    manager = make_manager(backend, **kwargs)
    await manager.start()
    await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)
    return manager


# ============================================================================
# SIGN-IN
# ============================================================================


class TestSignIn:

    @pytest.mark.asyncio
    async def test_existing_session_starts_monitoring(self, make_manager):
        manager = await monitoring(make_manager, FakeBackend(live=True))
        assert manager.state == SessionState.MONITORING

    @pytest.mark.asyncio
    async def test_no_session_stays_idle(self, make_manager):
        manager = make_manager(FakeBackend(live=False))
        await manager.start()
        await manager.settle()
        assert manager.state == SessionState.IDLE

    @pytest.mark.asyncio
    async def test_user_sign_out_returns_to_idle(self, make_manager):
        backend = FakeBackend(live=True)
        manager = await monitoring(make_manager, backend)

        manager.post(SessionEvent.USER_SIGNED_OUT)
        await manager.settle()

        assert manager.state == SessionState.IDLE
        await asyncio.sleep(0.05)
        assert backend.refresh_calls == 0


# ============================================================================
# RECOVERY
# ============================================================================


class TestRecovery:

    @pytest.mark.asyncio
    async def test_recovers_through_refresh(self, make_manager):
        backend = FakeBackend(live=True, refresh_results=[True])
        manager = await monitoring(make_manager, backend)
        failures = []
        manager.add_failure_listener(failures.append)

        backend.live = False
        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.RECOVERING, timeout=1.0)
        await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)

        assert backend.refresh_calls == 1
        assert backend.restore_calls == 0
        assert failures == []

    @pytest.mark.asyncio
    async def test_refresh_retries_transient_errors(self, make_manager):
        backend = FakeBackend(
            live=True,
            refresh_results=[OracleUnavailableError("refresh_session", "timeout"), True],
        )
        manager = await monitoring(make_manager, backend)

        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.RECOVERING, timeout=1.0)
        await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)

        assert backend.refresh_calls == 2

    @pytest.mark.asyncio
    async def test_falls_back_to_storage(self, make_manager):
        backend = FakeBackend(live=True, refresh_results=[False, False], restore_result=True)
        manager = await monitoring(make_manager, backend)

        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.RECOVERING, timeout=1.0)
        await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)

        assert backend.refresh_calls == 2
        assert backend.restore_calls == 1
        assert manager.transitions[-1].reason == "restored from storage"

    @pytest.mark.asyncio
    async def test_exhaustion_fails_once_and_stops(self, make_manager):
        backend = FakeBackend(live=True)
        manager = await monitoring(make_manager, backend)
        failures = []
        manager.add_failure_listener(failures.append)

        backend.live = False
        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.FAILED, timeout=1.0)
        await asyncio.sleep(0.1)

        assert len(failures) == 1
        assert isinstance(failures[0], RecoveryExhaustedError)
        assert backend.refresh_calls == 2
        assert backend.restore_calls == 1

        manager.post(SessionEvent.SIGNED_OUT)
        manager.post(SessionEvent.HEARTBEAT)
        await manager.settle()
        await asyncio.sleep(0.05)

        assert manager.state == SessionState.FAILED
        assert backend.refresh_calls == 2
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_unexpected_refresh_error_still_fails_once(self, make_manager):
        backend = FakeBackend(live=True, refresh_results=[ValueError("not json")])
        manager = await monitoring(make_manager, backend)
        failures = []
        manager.add_failure_listener(failures.append)

        backend.live = False
        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.FAILED, timeout=1.0)
        await manager.settle()

        assert len(failures) == 1
        assert backend.refresh_calls == 1
        assert backend.restore_calls == 1

        backend.live = True
        manager.post(SessionEvent.SIGNED_IN)
        await manager.settle()

        assert manager.state == SessionState.MONITORING

    @pytest.mark.asyncio
    async def test_unexpected_restore_error_still_fails_once(self, make_manager):
        backend = FakeBackend(live=True, restore_result=OSError("disk gone"))
        manager = await monitoring(make_manager, backend)
        failures = []
        manager.add_failure_listener(failures.append)

        backend.live = False
        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.FAILED, timeout=1.0)
        await manager.settle()

        assert len(failures) == 1
        assert isinstance(failures[0], RecoveryExhaustedError)

    @pytest.mark.asyncio
    async def test_handler_error_keeps_consumer_running(self, make_manager):
        backend = FakeBackend(live=True)
        manager = await monitoring(make_manager, backend)

        async def broken_heartbeat():
            raise RuntimeError("handler bug")

        manager._heartbeat = broken_heartbeat
        manager.post(SessionEvent.HEARTBEAT)
        await manager.settle()

        manager.post(SessionEvent.USER_SIGNED_OUT)
        await manager.settle()

        assert manager.state == SessionState.IDLE
        await manager.stop()

    @pytest.mark.asyncio
    async def test_new_sign_in_after_failure(self, make_manager):
        backend = FakeBackend(live=True)
        manager = await monitoring(make_manager, backend)

        backend.live = False
        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.FAILED, timeout=1.0)

        backend.live = True
        manager.post(SessionEvent.SIGNED_IN)
        await manager.settle()

        assert manager.state == SessionState.MONITORING
        states = [t.to_state for t in manager.transitions[-2:]]
        assert states == [SessionState.IDLE, SessionState.MONITORING]

    @pytest.mark.asyncio
    async def test_sign_out_burst_is_debounced(self, make_manager):
        backend = FakeBackend(live=True, refresh_results=[True])
        manager = await monitoring(make_manager, backend, debounce_seconds=0.05)

        for _ in range(5):
            manager.post(SessionEvent.SIGNED_OUT)
            await asyncio.sleep(0.01)
        await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)
        await asyncio.sleep(0.1)

        assert backend.refresh_calls == 1

    @pytest.mark.asyncio
    async def test_sign_in_during_debounce_cancels_recovery(self, make_manager):
        backend = FakeBackend(live=True)
        manager = await monitoring(make_manager, backend, debounce_seconds=0.05)

        manager.post(SessionEvent.SIGNED_OUT)
        manager.post(SessionEvent.SIGNED_IN)
        await manager.settle()
        await asyncio.sleep(0.1)

        assert manager.state == SessionState.MONITORING
        assert backend.refresh_calls == 0

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_manager(self, make_manager):
        backend = FakeBackend(live=True)
        manager = await monitoring(make_manager, backend)

        def explode(_):
            raise RuntimeError("listener bug")

        manager.add_transition_listener(explode)
        manager.add_failure_listener(explode)

        backend.live = False
        manager.post(SessionEvent.SIGNED_OUT)
        await manager.wait_for_state(SessionState.FAILED, timeout=1.0)


# ============================================================================
# HEARTBEAT
# ============================================================================


class TestHeartbeat:

    @pytest.mark.asyncio
    async def test_dead_session_triggers_recovery(self, make_manager):
        backend = FakeBackend(live=True, refresh_results=[True])
        manager = await monitoring(make_manager, backend, heartbeat_seconds=0.01)

        backend.live = False
        await wait_until(lambda: backend.refresh_calls == 1)
        await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)

        reasons = [t.reason for t in manager.transitions]
        assert "heartbeat found no session" in reasons

    @pytest.mark.asyncio
    async def test_heartbeat_error_keeps_monitoring(self, make_manager):
        backend = FakeBackend(live=True)
        backend.heartbeat_error = OracleUnavailableError("refresh_session", "timeout")
        manager = await monitoring(make_manager, backend, heartbeat_seconds=0.01)

        await asyncio.sleep(0.05)

        assert manager.state == SessionState.MONITORING


# ============================================================================
# CLIENT CLASS
# ============================================================================


class TestClientClass:

    @pytest.mark.asyncio
    async def test_reliable_client_is_inert(self):
        backend = FakeBackend(live=True)
        manager = SessionContinuityManager.for_client(backend, DESKTOP_UA)

        await manager.start()
        manager.post(SessionEvent.SIGNED_OUT)
        await asyncio.sleep(0.02)

        assert manager.active is False
        assert manager.state == SessionState.IDLE
        assert backend.refresh_calls == 0
        await manager.stop()

    @pytest.mark.asyncio
    async def test_ios_safari_is_monitored(self, test_settings):
        manager = build_session_manager(FakeBackend(live=True), test_settings, IOS_SAFARI_UA)
        try:
            await manager.start()
            await manager.wait_for_state(SessionState.MONITORING, timeout=1.0)
            assert manager.active is True
        finally:
            await manager.stop()

    def test_client_hint_activates(self, test_settings):
        manager = build_session_manager(FakeBackend(), test_settings, DESKTOP_UA, client_hint="unreliable")
        assert manager.active is True
