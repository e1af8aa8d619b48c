"""
Rate Limiter.

Fixed-window-with-reset attempt counter shared by the admin and
registration pipelines:

    limiter = RateLimiter(InMemoryRateLimitStore())
    if not await limiter.check(ADMIN_OPERATIONS, user_id):
        ...

Store failures fail open: a broken counter store must not lock every user
out, so the attempt is allowed and the failure is logged and counted.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import redis.asyncio as redis
import structlog

from trustcore.common.metrics import RATE_LIMIT_CHECKS, RATE_LIMIT_ERRORS
from trustcore.ratelimit.store import RateLimitStore

logger = structlog.get_logger(__name__)


# ============================================================================
# POLICIES
# ============================================================================


@dataclass(frozen=True)
class RateLimitPolicy:
    """A named limit: at most max_attempts per window_seconds per subject."""

    name: str
    max_attempts: int
    window_seconds: float

    @property
    def window_ms(self) -> float:
        return self.window_seconds * 1000

    def identifier(self, subject: str) -> str:
        return f"{self.name}:{subject}"


ADMIN_OPERATIONS = "admin_operations"
REGISTRATION_ATTEMPTS = "registration_attempts"


def build_policies(settings) -> dict[str, RateLimitPolicy]:
    """Policy table from configuration."""
    return {
        ADMIN_OPERATIONS: RateLimitPolicy(
            ADMIN_OPERATIONS,
            settings.rate_limit_admin_max_attempts,
            settings.rate_limit_admin_window_seconds,
        ),
        REGISTRATION_ATTEMPTS: RateLimitPolicy(
            REGISTRATION_ATTEMPTS,
            settings.rate_limit_registration_max_attempts,
            settings.rate_limit_registration_window_seconds,
        ),
    }


# ============================================================================
# LIMITER
# ============================================================================


class RateLimiter:
    """Attempt counter over a RateLimitStore, with a housekeeping sweep."""

    def __init__(
        self,
        store: RateLimitStore,
        policies: Optional[dict[str, RateLimitPolicy]] = None,
        sweep_interval_seconds: float = 600.0,
    ):
        self._store = store
        self._policies = dict(policies or {})
        self._sweep_interval = sweep_interval_seconds
        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def policy(self, name: str) -> Optional[RateLimitPolicy]:
        return self._policies.get(name)

    async def allow(self, identifier: str, max_attempts: int, window_ms: float) -> bool:
        """
        Register one attempt for identifier.

        Returns False once max_attempts have been made within the window.
        """
        key_type = identifier.split(":")[0] if ":" in identifier else "unknown"

        try:
            allowed, record = await self._store.increment(identifier, max_attempts, window_ms)
        except (redis.RedisError, ConnectionError, TimeoutError) as e:
            logger.error("rate_limit_store_error", error=str(e), identifier=identifier)
            RATE_LIMIT_ERRORS.inc()
            return True

        RATE_LIMIT_CHECKS.labels(policy=key_type, allowed=str(allowed).lower()).inc()

        if not allowed:
            logger.warning(
                "rate_limit_exceeded",
                identifier=identifier,
                count=record.count,
                max_attempts=max_attempts,
                reset_time=record.reset_time,
            )
        return allowed

    async def check(self, policy: str, subject: str) -> bool:
        """
        Apply a named policy to a subject.

        Unknown policy names are treated as unlimited.
        """
        rule = self._policies.get(policy)
        if rule is None:
            return True
        return await self.allow(rule.identifier(subject), rule.max_attempts, rule.window_ms)

    # =========================================================================
    # HOUSEKEEPING
    # =========================================================================

    async def sweep(self) -> int:
        """Evict every record whose window has elapsed."""
        evicted = await self._store.evict()
        if evicted:
            logger.debug("rate_limit_sweep", evicted=evicted)
        return evicted

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._sweep_interval)
            try:
                await self.sweep()
            except (redis.RedisError, ConnectionError) as e:
                logger.error("rate_limit_sweep_failed", error=str(e))

    async def start(self) -> None:
        """Start the periodic sweep."""
        if self._sweep_task is None:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
            logger.info("rate_limiter_started", sweep_interval_seconds=self._sweep_interval)

    async def stop(self) -> None:
        """Stop the periodic sweep."""
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
            logger.info("rate_limiter_stopped")
