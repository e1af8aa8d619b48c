"""Attempt throttling for the decision pipelines."""

from trustcore.ratelimit.limiter import (
    ADMIN_OPERATIONS,
    REGISTRATION_ATTEMPTS,
    RateLimiter,
    RateLimitPolicy,
    build_policies,
)
from trustcore.ratelimit.store import (
    InMemoryRateLimitStore,
    RateLimitRecord,
    RateLimitStore,
    RedisRateLimitStore,
    create_rate_limit_store,
)

__all__ = [
    "ADMIN_OPERATIONS",
    "REGISTRATION_ATTEMPTS",
    "InMemoryRateLimitStore",
    "RateLimitPolicy",
    "RateLimitRecord",
    "RateLimitStore",
    "RateLimiter",
    "RedisRateLimitStore",
    "build_policies",
    "create_rate_limit_store",
]
