"""
Identity Verifier.

Resolves the bearer credential of a request to an Identity.

Unreliable clients (see trustcore.identity.client) get a couple of extra
attempts with a short fixed delay; other clients fail fast. The verifier
does not log decisions; that is the job of the engines that consume it.
"""

from typing import Optional

from trustcore.common.exceptions import AuthenticationError, OracleUnavailableError
from trustcore.common.resilience import RetryConfig, RetryExhaustedError, RetryPolicy
from trustcore.identity.client import is_unreliable_client
from trustcore.oracles.base import IdentityProvider
from trustcore.oracles.schemas import Identity

BEARER_PREFIX = "Bearer "


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Strip the bearer scheme. Returns None when nothing usable remains."""
    if not authorization:
        return None
    scheme, _, credential = authorization.strip().partition(" ")
    if scheme.lower() == BEARER_PREFIX.strip().lower():
        return credential.strip() or None
    return authorization.strip() or None


class _UnresolvedIdentity(Exception):
    """The provider answered, but with no identity."""


class IdentityVerifier:
    """Token -> Identity with client-aware retry."""

    def __init__(
        self,
        provider: IdentityProvider,
        unreliable_retries: int = 2,
        retry_delay_seconds: float = 0.3,
    ):
        self._provider = provider
        retryable = (OracleUnavailableError, _UnresolvedIdentity)
        self._unreliable_policy = RetryPolicy(
            RetryConfig.fixed(
                max_attempts=1 + unreliable_retries,
                delay_seconds=retry_delay_seconds,
                retryable_exceptions=retryable,
            )
        )
        self._reliable_policy = RetryPolicy(
            RetryConfig.fixed(
                max_attempts=1,
                delay_seconds=0.0,
                retryable_exceptions=retryable,
            )
        )

    async def verify(
        self,
        authorization: Optional[str],
        user_agent: Optional[str] = None,
        client_hint: Optional[str] = None,
    ) -> Identity:
        """
        Resolve an authorization header value to an Identity.

        Raises:
            AuthenticationError: no credential, or every attempt failed
        """
        if not authorization:
            raise AuthenticationError("No authorization provided")

        token = extract_bearer_token(authorization)
        if token is None:
            raise AuthenticationError("Invalid authentication")

        policy = (
            self._unreliable_policy
            if is_unreliable_client(user_agent, client_hint)
            else self._reliable_policy
        )

        try:
            return await policy.execute(self._resolve, token)
        except RetryExhaustedError as e:
            raise AuthenticationError(
                "Invalid authentication",
                details={"attempts": e.attempts},
            ) from e.last_exception

    async def _resolve(self, token: str) -> Identity:
        identity = await self._provider.get_user(token)
        if identity is None:
            raise _UnresolvedIdentity("token did not resolve to a user")
        return identity
