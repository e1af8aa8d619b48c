"""
Resilience patterns for external calls.

Implements:
- Retry with fixed or exponential backoff
- Bounded delays (max_delay_seconds)
- Optional jitter

Identity resolution on flaky mobile clients and session recovery both go
through RetryPolicy so their delays stay bounded and observable.
"""

import asyncio
import random
from dataclasses import dataclass
from functools import wraps
from typing import Awaitable, Callable, Optional, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


# ============================================================================
# CONFIGURATION
# ============================================================================


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 1.0
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: tuple = (Exception,)

    @classmethod
    def fixed(
        cls,
        max_attempts: int,
        delay_seconds: float,
        retryable_exceptions: tuple = (Exception,),
    ) -> "RetryConfig":
        """Constant delay between attempts, no jitter."""
        return cls(
            max_attempts=max_attempts,
            initial_delay_seconds=delay_seconds,
            max_delay_seconds=delay_seconds,
            exponential_base=1.0,
            jitter=False,
            retryable_exceptions=retryable_exceptions,
        )

    def delay_for(self, attempt: int) -> float:
        """Delay to wait after the given (1-based) failed attempt."""
        delay = min(
            self.initial_delay_seconds * (self.exponential_base ** (attempt - 1)),
            self.max_delay_seconds,
        )
        if self.jitter:
            delay = min(delay * (0.5 + random.random()), self.max_delay_seconds)
        return delay


class RetryExhaustedError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception, attempts: int):
        self.last_exception = last_exception
        self.attempts = attempts
        super().__init__(f"{message} after {attempts} attempts: {last_exception}")


# ============================================================================
# RETRY
# ============================================================================


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    *args,
    config: Optional[RetryConfig] = None,
    **kwargs,
) -> T:
    """
    Execute a function with retry and backoff.

    Args:
        func: Async function to execute
        config: Retry configuration
        *args, **kwargs: Arguments for func

    Returns:
        Result of successful function call

    Raises:
        RetryExhaustedError: All attempts failed
    """
    config = config or RetryConfig()
    last_exception = None

    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)

        except config.retryable_exceptions as e:
            last_exception = e

            if attempt == config.max_attempts:
                break

            delay = config.delay_for(attempt)

            logger.warning(
                "retry_attempt",
                function=getattr(func, "__name__", repr(func)),
                attempt=attempt,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 3),
                error_type=type(e).__name__,
                error=str(e)[:200],
            )

            await asyncio.sleep(delay)

    raise RetryExhaustedError(
        f"Function {getattr(func, '__name__', repr(func))} failed",
        last_exception,
        config.max_attempts,
    )


class RetryPolicy:
    """
    Retry policy for automatic retries with backoff.

    Can be used as a decorator or with explicit execute() call.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()

    def __call__(self, func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        """Use as decorator."""
        @wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await retry_with_backoff(func, *args, config=self.config, **kwargs)
        return wrapper

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args,
        **kwargs,
    ) -> T:
        """Execute with retry policy."""
        return await retry_with_backoff(func, *args, config=self.config, **kwargs)
