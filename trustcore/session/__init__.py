"""Client-side session continuity."""

from typing import Optional

from trustcore.common.resilience import RetryConfig
from trustcore.session.backend import (
    FileSessionStore,
    HttpSessionBackend,
    SessionBackend,
    SessionMaterial,
)
from trustcore.session.manager import (
    SessionContinuityManager,
    SessionEvent,
    SessionState,
    SessionTransition,
    REFRESH_RETRYABLE,
)


def build_session_manager(
    backend: SessionBackend,
    settings,
    user_agent: Optional[str],
    client_hint: Optional[str] = None,
) -> SessionContinuityManager:
    """Manager configured from settings, active only for unreliable clients."""
    return SessionContinuityManager.for_client(
        backend,
        user_agent,
        client_hint,
        heartbeat_seconds=settings.session_heartbeat_seconds,
        debounce_seconds=settings.session_debounce_seconds,
        refresh_retry=RetryConfig(
            max_attempts=settings.session_refresh_attempts,
            initial_delay_seconds=settings.session_refresh_backoff_seconds,
            max_delay_seconds=settings.session_refresh_backoff_max_seconds,
            retryable_exceptions=REFRESH_RETRYABLE,
        ),
    )


__all__ = [
    "FileSessionStore",
    "HttpSessionBackend",
    "SessionBackend",
    "SessionContinuityManager",
    "SessionEvent",
    "SessionMaterial",
    "SessionState",
    "SessionTransition",
    "build_session_manager",
]
