"""
Session Continuity Manager.

Watchdog that keeps a long-lived credential alive on clients known to drop
background network sessions.

States:
- IDLE: no credential held
- MONITORING: heartbeat every heartbeat_seconds refreshes the credential if
  near expiry and confirms the session is still live
- RECOVERING: after an unexpected sign-out (or a dead heartbeat), wait out
  the debounce delay, then refresh with bounded backoff, then fall back to
  re-hydrating from storage
- FAILED: recovery exhausted; listeners receive one RecoveryExhaustedError
  and nothing is retried until the next sign-in

Events arrive through post() into a queue consumed by a single task, so
transitions never interleave. The heartbeat and the debounce delay are timer
tasks that post HEARTBEAT / DEBOUNCE_ELAPSED back into the same queue.

On reliable clients the manager is inert: it stays IDLE and ignores events.
"""

import asyncio
import inspect
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, List, Optional

import structlog
from pydantic import BaseModel, Field

from trustcore.common.exceptions import OracleUnavailableError, RecoveryExhaustedError
from trustcore.common.metrics import SESSION_TRANSITIONS
from trustcore.common.resilience import RetryConfig, RetryExhaustedError, RetryPolicy
from trustcore.identity.client import is_unreliable_client
from trustcore.session.backend import SessionBackend

logger = structlog.get_logger(__name__)


# ============================================================================
# ENUMS
# ============================================================================


class SessionState(str, Enum):
    """Watchdog states."""

    IDLE = "idle"
    MONITORING = "monitoring"
    RECOVERING = "recovering"
    FAILED = "failed"


class SessionEvent(str, Enum):
    """Inputs to the watchdog."""

    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"            # unexpected: the client lost the session
    USER_SIGNED_OUT = "user_signed_out"  # deliberate sign-out
    HEARTBEAT = "heartbeat"
    DEBOUNCE_ELAPSED = "debounce_elapsed"


class SessionTransition(BaseModel):
    """Record of a state change."""

    from_state: SessionState
    to_state: SessionState
    event: SessionEvent
    reason: str
    triggered_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RefreshRejected(Exception):
    """refresh_session() answered False."""


REFRESH_RETRYABLE = (RefreshRejected, OracleUnavailableError)


# ============================================================================
# MANAGER
# ============================================================================


class SessionContinuityManager:
    """Event-driven session watchdog."""

    def __init__(
        self,
        backend: SessionBackend,
        active: bool = True,
        heartbeat_seconds: float = 240.0,
        debounce_seconds: float = 1.0,
        refresh_retry: Optional[RetryConfig] = None,
    ):
        self._backend = backend
        self._active = active
        self._heartbeat_seconds = heartbeat_seconds
        self._debounce_seconds = debounce_seconds
        self._refresh_policy = RetryPolicy(refresh_retry or RetryConfig(
            max_attempts=2,
            initial_delay_seconds=1.0,
            max_delay_seconds=4.0,
            retryable_exceptions=REFRESH_RETRYABLE,
        ))

        self._state = SessionState.IDLE
        self._state_changed = asyncio.Condition()
        self._queue: asyncio.Queue[SessionEvent] = asyncio.Queue()
        self._transitions: List[SessionTransition] = []

        self._consumer_task: Optional[asyncio.Task] = None
        self._heartbeat_task: Optional[asyncio.Task] = None
        self._debounce_task: Optional[asyncio.Task] = None
        self._debounce_pending = False

        self._failure_listeners: List[Callable[[RecoveryExhaustedError], Any]] = []
        self._transition_listeners: List[Callable[[SessionTransition], Any]] = []

    @classmethod
    def for_client(
        cls,
        backend: SessionBackend,
        user_agent: Optional[str],
        client_hint: Optional[str] = None,
        **kwargs,
    ) -> "SessionContinuityManager":
        """Manager that is active only for unreliable client classes."""
        return cls(backend, active=is_unreliable_client(user_agent, client_hint), **kwargs)

    # ========================================================================
    # PROPERTIES
    # ========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def active(self) -> bool:
        return self._active

    @property
    def transitions(self) -> List[SessionTransition]:
        return self._transitions.copy()

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    async def start(self) -> None:
        """Start consuming events. Picks up an already signed-in session."""
        if not self._active:
            logger.info("session_monitor_inactive")
            return
        if self._consumer_task is not None:
            return

        self._consumer_task = asyncio.create_task(self._consume())
        logger.info("session_monitor_started", heartbeat_seconds=self._heartbeat_seconds)

        if await self._backend.has_session():
            self.post(SessionEvent.SIGNED_IN)

    async def stop(self) -> None:
        """Cancel timers and the consumer."""
        self._cancel_heartbeat()
        self._cancel_debounce()
        if self._consumer_task is not None:
            self._consumer_task.cancel()
            try:
                await self._consumer_task
            except asyncio.CancelledError:
                pass
            self._consumer_task = None
            logger.info("session_monitor_stopped", state=self._state.value)

    def post(self, event: SessionEvent) -> None:
        """Queue an event for the consumer."""
        if not self._active:
            return
        self._queue.put_nowait(event)

    async def settle(self) -> None:
        """Wait until every queued event has been handled."""
        await self._queue.join()

    async def wait_for_state(self, state: SessionState, timeout: Optional[float] = None) -> None:
        """Block until the manager reaches state."""
        async with self._state_changed:
            await asyncio.wait_for(
                self._state_changed.wait_for(lambda: self._state == state),
                timeout,
            )

    def add_failure_listener(self, callback: Callable[[RecoveryExhaustedError], Any]) -> None:
        self._failure_listeners.append(callback)

    def add_transition_listener(self, callback: Callable[[SessionTransition], Any]) -> None:
        self._transition_listeners.append(callback)

    # ========================================================================
    # EVENT HANDLING
    # ========================================================================

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._handle(event)
            except Exception as e:
                logger.error(
                    "session_event_failed",
                    event=event.value,
                    state=self._state.value,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                self._queue.task_done()

    async def _handle(self, event: SessionEvent) -> None:
        state = self._state

        if event == SessionEvent.USER_SIGNED_OUT:
            self._cancel_heartbeat()
            self._cancel_debounce()
            if state != SessionState.IDLE:
                await self._transition(SessionState.IDLE, event, "user signed out")

        elif event == SessionEvent.SIGNED_IN:
            self._cancel_debounce()
            if state == SessionState.FAILED:
                await self._transition(SessionState.IDLE, event, "new sign-in after failure")
            if self._state != SessionState.MONITORING:
                await self._transition(SessionState.MONITORING, event, "signed in")
            self._start_heartbeat()

        elif event == SessionEvent.SIGNED_OUT:
            if state == SessionState.MONITORING:
                self._cancel_heartbeat()
                await self._transition(SessionState.RECOVERING, event, "unexpected sign-out")
                self._start_debounce()
            elif state == SessionState.RECOVERING:
                self._start_debounce()

        elif event == SessionEvent.HEARTBEAT:
            if state == SessionState.MONITORING:
                await self._heartbeat()

        elif event == SessionEvent.DEBOUNCE_ELAPSED:
            if state == SessionState.RECOVERING and self._debounce_pending:
                self._debounce_pending = False
                await self._recover()

    async def _heartbeat(self) -> None:
        try:
            await self._backend.refresh_if_needed()
            live = await self._backend.has_session()
        except Exception as e:
            # The watchdog must outlive a bad heartbeat; the next one retries.
            logger.error("session_heartbeat_failed", error=str(e))
            return

        if not live:
            self._cancel_heartbeat()
            await self._transition(
                SessionState.RECOVERING,
                SessionEvent.HEARTBEAT,
                "heartbeat found no session",
            )
            self._start_debounce()

    async def _recover(self) -> None:
        logger.info("session_recovery_started")

        try:
            await self._refresh_policy.execute(self._refresh_once)
            await self._transition(SessionState.MONITORING, SessionEvent.DEBOUNCE_ELAPSED, "refreshed")
            self._start_heartbeat()
            return
        except RetryExhaustedError as e:
            logger.warning("session_refresh_exhausted", attempts=e.attempts, error=str(e.last_exception))
        except Exception as e:
            logger.error("session_refresh_failed", error=str(e), error_type=type(e).__name__)

        try:
            restored = await self._backend.restore_from_storage()
        except OracleUnavailableError as e:
            logger.warning("session_restore_failed", error=e.message)
            restored = False
        except Exception as e:
            logger.error("session_restore_failed", error=str(e), error_type=type(e).__name__)
            restored = False

        if restored:
            await self._transition(
                SessionState.MONITORING,
                SessionEvent.DEBOUNCE_ELAPSED,
                "restored from storage",
            )
            self._start_heartbeat()
            return

        await self._transition(SessionState.FAILED, SessionEvent.DEBOUNCE_ELAPSED, "recovery exhausted")
        await self._notify_failure(RecoveryExhaustedError())

    async def _refresh_once(self) -> None:
        if not await self._backend.refresh_session():
            raise RefreshRejected("refresh_session returned False")

    # ========================================================================
    # TIMERS
    # ========================================================================

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_seconds)
            self.post(SessionEvent.HEARTBEAT)

    async def _debounce_timer(self) -> None:
        await asyncio.sleep(self._debounce_seconds)
        self.post(SessionEvent.DEBOUNCE_ELAPSED)

    def _start_heartbeat(self) -> None:
        self._cancel_heartbeat()
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

    def _cancel_heartbeat(self) -> None:
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None

    def _start_debounce(self) -> None:
        self._cancel_debounce()
        self._debounce_pending = True
        self._debounce_task = asyncio.create_task(self._debounce_timer())

    def _cancel_debounce(self) -> None:
        self._debounce_pending = False
        if self._debounce_task is not None:
            self._debounce_task.cancel()
            self._debounce_task = None

    # ========================================================================
    # TRANSITIONS
    # ========================================================================

    async def _transition(self, to_state: SessionState, event: SessionEvent, reason: str) -> None:
        from_state = self._state
        transition = SessionTransition(
            from_state=from_state,
            to_state=to_state,
            event=event,
            reason=reason,
        )

        self._transitions.append(transition)
        if len(self._transitions) > 100:
            self._transitions = self._transitions[-100:]

        async with self._state_changed:
            self._state = to_state
            self._state_changed.notify_all()

        SESSION_TRANSITIONS.labels(from_state=from_state.value, to_state=to_state.value).inc()
        log = logger.warning if to_state == SessionState.FAILED else logger.info
        log(
            "session_state_changed",
            from_state=from_state.value,
            to_state=to_state.value,
            trigger=event.value,
            reason=reason,
        )

        for callback in self._transition_listeners:
            await self._invoke(callback, transition)

    async def _notify_failure(self, error: RecoveryExhaustedError) -> None:
        for callback in self._failure_listeners:
            await self._invoke(callback, error)

    async def _invoke(self, callback: Callable, arg: Any) -> None:
        try:
            if inspect.iscoroutinefunction(callback):
                await callback(arg)
            else:
                callback(arg)
        except Exception as e:
            logger.error("session_listener_failed", error=str(e))
