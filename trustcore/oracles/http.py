"""
Identity Store Client.

httpx clients for a PostgREST-style identity store:
- GET  /auth/v1/user                 token -> identity
- POST /rest/v1/rpc/<procedure>      risk and limit procedures
- GET  /rest/v1/profiles             profile lookups
- POST /rest/v1/<audit table>        audit log inserts

Transport errors and non-2xx responses raise OracleUnavailableError; the
decision engines decide whether that is fatal or degrades to a safe default.
"""

from typing import Any, Optional

import httpx
import structlog
from pydantic import ValidationError as PydanticValidationError

from trustcore.audit.schemas import AuditRecord
from trustcore.audit.store import AuditStore
from trustcore.common.exceptions import OracleUnavailableError
from trustcore.common.metrics import record_oracle_call
from trustcore.oracles.base import IdentityProvider, ProfileDirectory, RiskOracle
from trustcore.oracles.schemas import (
    FraudReport,
    Identity,
    IpQuotaReport,
    RiskReport,
    UserProfile,
)

logger = structlog.get_logger(__name__)


# ============================================================================
# TRANSPORT
# ============================================================================


class IdentityStoreClient:
    """Shared HTTP connection to the identity store."""

    def __init__(
        self,
        base_url: str,
        service_key: Optional[str],
        timeout_seconds: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._service_key = service_key or ""
        self._timeout = timeout_seconds
        self._transport = transport
        self._http_client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self) -> "IdentityStoreClient":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.disconnect()
        return False

    async def connect(self):
        """Initialize HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=httpx.Timeout(self._timeout),
                headers={
                    "apikey": self._service_key,
                    "Authorization": f"Bearer {self._service_key}",
                    "Content-Type": "application/json",
                },
                transport=self._transport,
            )
            logger.info("identity_store_client_connected", base_url=self._base_url)

    async def disconnect(self):
        """Close HTTP client."""
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
            logger.info("identity_store_client_disconnected")

    async def request(
        self,
        oracle: str,
        method: str,
        path: str,
        **kwargs: Any,
    ) -> httpx.Response:
        """Send a request, mapping every failure to OracleUnavailableError."""
        await self.connect()
        try:
            response = await self._http_client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            record_oracle_call(oracle, success=False)
            raise OracleUnavailableError(
                oracle,
                f"HTTP {e.response.status_code}",
                details={"status_code": e.response.status_code},
            ) from e
        except httpx.HTTPError as e:
            record_oracle_call(oracle, success=False)
            raise OracleUnavailableError(oracle, type(e).__name__) from e

        record_oracle_call(oracle, success=True)
        return response

    async def rpc(self, procedure: str, **params: Any) -> Any:
        """Call a stored procedure and return its JSON result."""
        response = await self.request(
            procedure,
            "POST",
            f"/rest/v1/rpc/{procedure}",
            json=params,
        )
        return response.json()


def _parse(model, data: Any, oracle: str):
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as e:
        record_oracle_call(oracle, success=False)
        raise OracleUnavailableError(oracle, "malformed response") from e


# ============================================================================
# CAPABILITIES
# ============================================================================


class HttpIdentityProvider(IdentityProvider):
    """Resolves user tokens through /auth/v1/user."""

    def __init__(self, client: IdentityStoreClient):
        self._client = client

    async def get_user(self, token: str) -> Optional[Identity]:
        try:
            response = await self._client.request(
                "get_user",
                "GET",
                "/auth/v1/user",
                headers={"Authorization": f"Bearer {token}"},
            )
        except OracleUnavailableError as e:
            # The store answers 401/403 for tokens it does not recognise.
            if e.details.get("status_code") in (401, 403):
                return None
            raise

        data = response.json() or {}
        if not data.get("id"):
            return None

        metadata = data.get("app_metadata") or {}
        return Identity(
            id=data["id"],
            email=data.get("email"),
            is_admin_flag=bool(metadata.get("is_admin", False)),
            role=data.get("role") or "authenticated",
        )


class HttpRiskOracle(RiskOracle):
    """Risk and limit procedures of the identity store."""

    def __init__(self, client: IdentityStoreClient):
        self._client = client

    async def check_eligibility(self, user_id: str) -> bool:
        result = await self._client.rpc("is_admin_secure_v2", p_user_id=user_id)
        return result is True

    async def check_risk(self, user_id: str) -> RiskReport:
        result = await self._client.rpc("detect_privilege_escalation", p_user_id=user_id)
        return _parse(RiskReport, result, "detect_privilege_escalation")

    async def check_ip_quota(self, ip_address: str) -> IpQuotaReport:
        result = await self._client.rpc("check_ip_registration_limit", p_ip_address=ip_address)
        return _parse(IpQuotaReport, result, "check_ip_registration_limit")

    async def check_fraud(self, ip_address: str) -> FraudReport:
        result = await self._client.rpc("detect_ip_fraud_patterns", p_ip_address=ip_address)
        return _parse(FraudReport, result, "detect_ip_fraud_patterns")

    async def can_access_dashboard(self, user_id: str) -> bool:
        result = await self._client.rpc("can_access_admin_dashboard", p_user_id=user_id)
        return bool(result)


class HttpProfileDirectory(ProfileDirectory):
    """Profile table and registration log of the identity store."""

    PROFILE_COLUMNS = "user_id,institutional_user,display_name,role,is_admin,status"

    def __init__(self, client: IdentityStoreClient):
        self._client = client

    async def identity_exists(self, institutional_user: str) -> bool:
        response = await self._client.request(
            "profiles",
            "GET",
            "/rest/v1/profiles",
            params={
                "select": "institutional_user",
                "institutional_user": f"eq.{institutional_user.strip().lower()}",
                "limit": "1",
            },
        )
        return bool(response.json())

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        response = await self._client.request(
            "profiles",
            "GET",
            "/rest/v1/profiles",
            params={
                "select": self.PROFILE_COLUMNS,
                "user_id": f"eq.{user_id}",
                "limit": "1",
            },
        )
        rows = response.json()
        if not rows:
            return None
        return _parse(UserProfile, rows[0], "profiles")

    async def log_registration_attempt(
        self,
        ip_address: str,
        user_agent: str,
        success: bool,
        user_id: Optional[str] = None,
    ) -> None:
        await self._client.rpc(
            "log_registration_attempt",
            p_ip_address=ip_address,
            p_user_agent=user_agent,
            p_success=success,
            p_user_id=user_id,
        )


class HttpAuditStore(AuditStore):
    """Appends audit records to the store's audit table."""

    def __init__(self, client: IdentityStoreClient, table: str = "security_audit_log"):
        self._client = client
        self._table = table

    async def write(self, record: AuditRecord) -> None:
        await self._client.request(
            "audit_log",
            "POST",
            f"/rest/v1/{self._table}",
            json=record.model_dump(mode="json"),
            headers={"Prefer": "return=minimal"},
        )
