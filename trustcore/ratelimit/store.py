"""
Rate Limit Stores.

A store owns the counters behind RateLimiter and performs the
reset-or-increment-with-cap step atomically:

    no record, or now > reset_time  ->  count = 1, reset_time = now + window, allow
    count >= max_attempts           ->  deny (record untouched)
    otherwise                       ->  count += 1, allow

InMemoryRateLimitStore guards that step with an asyncio.Lock; the Redis store
runs it as a Lua script so every process sharing the Redis instance shares
the same counts.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)

Clock = Callable[[], float]


def wall_clock_ms() -> float:
    """Wall clock in milliseconds."""
    return time.time() * 1000


# ============================================================================
# RECORD
# ============================================================================


@dataclass(frozen=True)
class RateLimitRecord:
    """Counter for one identifier within its current window."""

    identifier: str
    count: int
    reset_time: float  # epoch milliseconds

    def expired(self, now_ms: float) -> bool:
        return now_ms > self.reset_time


# ============================================================================
# STORE INTERFACE
# ============================================================================


class RateLimitStore(ABC):
    """Abstract base class for rate limit counter stores."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock: Clock = clock or wall_clock_ms

    @abstractmethod
    async def get(self, identifier: str) -> Optional[RateLimitRecord]:
        """Current record for an identifier, if any."""
        pass

    @abstractmethod
    async def increment(
        self,
        identifier: str,
        max_attempts: int,
        window_ms: float,
    ) -> tuple[bool, RateLimitRecord]:
        """Atomically apply one attempt. Returns (allowed, record after the attempt)."""
        pass

    @abstractmethod
    async def evict(self, now_ms: Optional[float] = None) -> int:
        """Drop records whose window has elapsed. Returns how many were dropped."""
        pass


# ============================================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================================


class InMemoryRateLimitStore(RateLimitStore):
    """Process-local store for tests and single-process deployments."""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._records: dict[str, RateLimitRecord] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, identifier: str) -> Optional[RateLimitRecord]:
        return self._records.get(identifier)

    async def increment(
        self,
        identifier: str,
        max_attempts: int,
        window_ms: float,
    ) -> tuple[bool, RateLimitRecord]:
        async with self._lock:
            now = self.clock()
            record = self._records.get(identifier)

            if record is None or record.expired(now):
                record = RateLimitRecord(identifier, 1, now + window_ms)
                self._records[identifier] = record
                return True, record

            if record.count >= max_attempts:
                return False, record

            record = RateLimitRecord(identifier, record.count + 1, record.reset_time)
            self._records[identifier] = record
            return True, record

    async def evict(self, now_ms: Optional[float] = None) -> int:
        async with self._lock:
            now = self.clock() if now_ms is None else now_ms
            expired = [k for k, r in self._records.items() if r.expired(now)]
            for key in expired:
                del self._records[key]
            return len(expired)


# ============================================================================
# REDIS IMPLEMENTATION
# ============================================================================


# KEYS[1] = counter key; ARGV = now_ms, max_attempts, window_ms
_INCREMENT_SCRIPT = """
local count = tonumber(redis.call('HGET', KEYS[1], 'count'))
local reset = tonumber(redis.call('HGET', KEYS[1], 'reset'))
local now = tonumber(ARGV[1])
local max_attempts = tonumber(ARGV[2])
local window = tonumber(ARGV[3])

if (not count) or (not reset) or now > reset then
    reset = now + window
    redis.call('HSET', KEYS[1], 'count', 1, 'reset', reset)
    redis.call('PEXPIRE', KEYS[1], window + 1000)
    return {1, 1, reset}
end

if count >= max_attempts then
    return {0, count, reset}
end

count = redis.call('HINCRBY', KEYS[1], 'count', 1)
return {1, count, reset}
"""


class RedisRateLimitStore(RateLimitStore):
    """
    Shared store backed by Redis.

    Keys carry a TTL slightly longer than their window, so Redis expires them
    itself and evict() has nothing to do.
    """

    def __init__(
        self,
        redis_client: redis.Redis,
        key_prefix: str = "trustcore:ratelimit:",
        clock: Optional[Clock] = None,
    ):
        super().__init__(clock)
        self._redis = redis_client
        self._prefix = key_prefix
        self._increment = redis_client.register_script(_INCREMENT_SCRIPT)

    def _make_key(self, identifier: str) -> str:
        return f"{self._prefix}{identifier}"

    async def get(self, identifier: str) -> Optional[RateLimitRecord]:
        data = await self._redis.hgetall(self._make_key(identifier))
        if not data:
            return None
        return RateLimitRecord(
            identifier=identifier,
            count=int(data.get("count", 0)),
            reset_time=float(data.get("reset", 0)),
        )

    async def increment(
        self,
        identifier: str,
        max_attempts: int,
        window_ms: float,
    ) -> tuple[bool, RateLimitRecord]:
        allowed, count, reset = await self._increment(
            keys=[self._make_key(identifier)],
            args=[int(self.clock()), max_attempts, int(window_ms)],
        )
        return bool(allowed), RateLimitRecord(identifier, int(count), float(reset))

    async def evict(self, now_ms: Optional[float] = None) -> int:
        return 0

    async def close(self) -> None:
        await self._redis.aclose()


# ============================================================================
# FACTORY
# ============================================================================


async def create_rate_limit_store(backend: str, redis_url: Optional[str] = None) -> RateLimitStore:
    """
    Build the configured store.

    A Redis store that cannot be reached at startup falls back to memory,
    so a cache outage degrades to per-process limits instead of no service.
    """
    if backend == "redis" and redis_url:
        try:
            redis_client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            await redis_client.ping()
            logger.info("rate_limit_store_initialized", backend="redis")
            return RedisRateLimitStore(redis_client)
        except (redis.RedisError, OSError) as e:
            logger.warning("rate_limit_store_fallback_to_memory", error=str(e))

    logger.info("rate_limit_store_initialized", backend="memory")
    return InMemoryRateLimitStore()
