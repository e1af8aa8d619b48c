"""
Tests for the Rate Limiter.

Tests:
- Fixed window: allow up to max_attempts, deny after
- Window reset once reset_time has passed
- Named policies and unknown policies
- Sweep eviction of expired records
- Concurrent attempts never exceed the cap
- Fail-open on store errors
"""

import asyncio

import pytest

from trustcore.ratelimit.limiter import (
    ADMIN_OPERATIONS,
    REGISTRATION_ATTEMPTS,
    RateLimiter,
    RateLimitPolicy,
)
from trustcore.ratelimit.store import InMemoryRateLimitStore, create_rate_limit_store


class BrokenStore(InMemoryRateLimitStore):
    """Store whose counter backend is unreachable."""

    async def increment(self, identifier, max_attempts, window_ms):
        raise ConnectionError("counter store down")


# ============================================================================
# FIXED WINDOW
# ============================================================================


class TestFixedWindow:
    """Allow, deny and reset behaviour of allow()."""

    @pytest.mark.asyncio
    async def test_allows_up_to_max_attempts(self, rate_limiter):
        results = [await rate_limiter.allow("login:alice", 3, 60_000) for _ in range(4)]
        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_denied_attempt_does_not_increment(self, rate_limiter, rate_limit_store):
        for _ in range(5):
            await rate_limiter.allow("login:alice", 3, 60_000)

        record = await rate_limit_store.get("login:alice")
        assert record.count == 3

    @pytest.mark.asyncio
    async def test_window_resets_after_reset_time(self, rate_limiter, clock):
        for _ in range(3):
            await rate_limiter.allow("login:alice", 3, 60_000)
        assert await rate_limiter.allow("login:alice", 3, 60_000) is False

        clock.advance(60.001)

        assert await rate_limiter.allow("login:alice", 3, 60_000) is True

    @pytest.mark.asyncio
    async def test_reset_time_is_inclusive(self, rate_limiter, clock):
        """At exactly reset_time the window is still closed."""
        for _ in range(3):
            await rate_limiter.allow("login:alice", 3, 60_000)

        clock.advance(60)

        assert await rate_limiter.allow("login:alice", 3, 60_000) is False

    @pytest.mark.asyncio
    async def test_new_window_starts_at_count_one(self, rate_limiter, rate_limit_store, clock):
        await rate_limiter.allow("login:alice", 3, 60_000)
        clock.advance(61)
        await rate_limiter.allow("login:alice", 3, 60_000)

        record = await rate_limit_store.get("login:alice")
        assert record.count == 1
        assert record.reset_time == clock.now + 60_000

    @pytest.mark.asyncio
    async def test_identifiers_are_independent(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.allow("login:alice", 3, 60_000)

        assert await rate_limiter.allow("login:alice", 3, 60_000) is False
        assert await rate_limiter.allow("login:bob", 3, 60_000) is True


# ============================================================================
# POLICIES
# ============================================================================


class TestPolicies:
    """Named policy lookup via check()."""

    @pytest.mark.asyncio
    async def test_admin_policy_uses_configured_limit(self, rate_limiter):
        results = [await rate_limiter.check(ADMIN_OPERATIONS, "admin-1") for _ in range(4)]
        assert results == [True, True, True, False]

    @pytest.mark.asyncio
    async def test_policies_count_separately(self, rate_limiter):
        for _ in range(3):
            await rate_limiter.check(ADMIN_OPERATIONS, "same-subject")

        assert await rate_limiter.check(REGISTRATION_ATTEMPTS, "same-subject") is True

    @pytest.mark.asyncio
    async def test_unknown_policy_is_unlimited(self, rate_limiter):
        for _ in range(20):
            assert await rate_limiter.check("no_such_policy", "x") is True

    def test_policy_identifier(self):
        policy = RateLimitPolicy("login", 5, 900)
        assert policy.identifier("alice") == "login:alice"
        assert policy.window_ms == 900_000


# ============================================================================
# SWEEP
# ============================================================================


class TestSweep:
    """Housekeeping eviction."""

    @pytest.mark.asyncio
    async def test_sweep_evicts_only_expired(self, rate_limiter, rate_limit_store, clock):
        await rate_limiter.allow("login:old", 3, 10_000)
        clock.advance(5)
        await rate_limiter.allow("login:new", 3, 60_000)
        clock.advance(6)

        evicted = await rate_limiter.sweep()

        assert evicted == 1
        assert await rate_limit_store.get("login:old") is None
        assert await rate_limit_store.get("login:new") is not None

    @pytest.mark.asyncio
    async def test_start_and_stop(self, rate_limit_store):
        limiter = RateLimiter(rate_limit_store, sweep_interval_seconds=0.01)
        await limiter.start()
        await asyncio.sleep(0.03)
        await limiter.stop()
        await limiter.stop()


# ============================================================================
# CONCURRENCY / FAILURE
# ============================================================================


class TestConcurrency:
    """Atomic increment under concurrent callers."""

    @pytest.mark.asyncio
    async def test_concurrent_attempts_respect_cap(self, rate_limiter, rate_limit_store):
        results = await asyncio.gather(*[
            rate_limiter.allow("registration_attempts:10.0.0.1", 5, 60_000)
            for _ in range(25)
        ])

        assert results.count(True) == 5
        record = await rate_limit_store.get("registration_attempts:10.0.0.1")
        assert record.count == 5


class TestFailOpen:
    """Store errors never lock users out."""

    @pytest.mark.asyncio
    async def test_store_error_allows(self):
        limiter = RateLimiter(BrokenStore())
        for _ in range(10):
            assert await limiter.allow("login:alice", 1, 60_000) is True

    @pytest.mark.asyncio
    async def test_unreachable_redis_falls_back_to_memory(self):
        store = await create_rate_limit_store("redis", "redis://127.0.0.1:1/0")
        assert isinstance(store, InMemoryRateLimitStore)

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        store = await create_rate_limit_store("memory")
        assert isinstance(store, InMemoryRateLimitStore)
