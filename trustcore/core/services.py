"""
Service wiring.

Builds the decision components for the configured backends and owns their
background tasks (rate-limit sweep, audit flush) and connections.
"""

from dataclasses import dataclass
from typing import Optional

import structlog

from trustcore.audit.sink import AuditSink
from trustcore.audit.store import AuditStore, InMemoryAuditStore
from trustcore.core.config import Settings
from trustcore.decisions.admin import AccessDecisionEngine
from trustcore.decisions.dashboard import DashboardAccessService
from trustcore.identity.verifier import IdentityVerifier
from trustcore.oracles.base import IdentityProvider, ProfileDirectory, RiskOracle
from trustcore.oracles.http import (
    HttpAuditStore,
    HttpIdentityProvider,
    HttpProfileDirectory,
    HttpRiskOracle,
    IdentityStoreClient,
)
from trustcore.oracles.memory import (
    InMemoryIdentityProvider,
    InMemoryProfileDirectory,
    StaticRiskOracle,
)
from trustcore.ratelimit.limiter import RateLimiter, build_policies
from trustcore.ratelimit.store import RateLimitStore, RedisRateLimitStore, create_rate_limit_store
from trustcore.registration.guard import RegistrationGuard

logger = structlog.get_logger(__name__)


@dataclass
class Services:
    """Everything the routes need, built once per application."""

    verifier: IdentityVerifier
    admin_engine: AccessDecisionEngine
    dashboard: DashboardAccessService
    registration: RegistrationGuard
    rate_limiter: RateLimiter
    audit: AuditSink
    identity_store: Optional[IdentityStoreClient] = None

    async def start(self) -> None:
        await self.rate_limiter.start()
        await self.audit.start()
        logger.info("services_started")

    async def close(self) -> None:
        await self.rate_limiter.stop()
        await self.audit.stop()
        if isinstance(self.rate_limiter.store, RedisRateLimitStore):
            await self.rate_limiter.store.close()
        if self.identity_store is not None:
            await self.identity_store.disconnect()
        logger.info("services_closed")


async def build_services(
    settings: Settings,
    identity_provider: Optional[IdentityProvider] = None,
    risk_oracle: Optional[RiskOracle] = None,
    profiles: Optional[ProfileDirectory] = None,
    audit_store: Optional[AuditStore] = None,
    rate_limit_store: Optional[RateLimitStore] = None,
) -> Services:
    """
    Build services for settings.

    Explicit collaborators override the configured backend, which is how
    tests inject deterministic oracles.
    """
    client = None
    if settings.oracle_backend == "http":
        client = IdentityStoreClient(
            settings.identity_store_url,
            settings.identity_store_service_key,
            timeout_seconds=settings.oracle_timeout_seconds,
        )
        identity_provider = identity_provider or HttpIdentityProvider(client)
        risk_oracle = risk_oracle or HttpRiskOracle(client)
        profiles = profiles or HttpProfileDirectory(client)
        audit_store = audit_store or HttpAuditStore(client)
    else:
        identity_provider = identity_provider or InMemoryIdentityProvider()
        risk_oracle = risk_oracle or StaticRiskOracle()
        profiles = profiles or InMemoryProfileDirectory()
        audit_store = audit_store or InMemoryAuditStore()

    if rate_limit_store is None:
        rate_limit_store = await create_rate_limit_store(
            settings.rate_limit_backend,
            settings.redis_url,
        )

    rate_limiter = RateLimiter(
        rate_limit_store,
        policies=build_policies(settings),
        sweep_interval_seconds=settings.rate_limit_sweep_seconds,
    )
    audit = AuditSink(
        audit_store,
        max_queue_size=settings.audit_retry_queue_size,
        max_attempts=settings.audit_max_write_attempts,
        flush_interval_seconds=settings.audit_flush_seconds,
    )

    logger.info(
        "services_built",
        oracle_backend=settings.oracle_backend,
        rate_limit_store=type(rate_limit_store).__name__,
    )

    return Services(
        verifier=IdentityVerifier(
            identity_provider,
            unreliable_retries=settings.identity_unreliable_retries,
            retry_delay_seconds=settings.identity_retry_delay_seconds,
        ),
        admin_engine=AccessDecisionEngine(risk_oracle, audit, rate_limiter=rate_limiter),
        dashboard=DashboardAccessService(risk_oracle, profiles, audit),
        registration=RegistrationGuard(risk_oracle, profiles, rate_limiter=rate_limiter),
        rate_limiter=rate_limiter,
        audit=audit,
        identity_store=client,
    )
