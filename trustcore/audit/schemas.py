"""
Audit record schemas.

One AuditRecord is written per decision point (check, allow, deny, block,
error). Records are immutable and append-only.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


SENSITIVE_FIELDS = (
    "password",
    "pin",
    "pin_hash",
    "access_token",
    "refresh_token",
    "token",
    "authorization",
    "secret",
    "key",
    "private",
)

REDACTED = "[SANITIZED]"


class AuditSeverity(str, Enum):
    """Severity attached to an audit record."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AuditAction:
    """Action names written to the audit log."""

    ADMIN_ACCESS_CHECK = "admin_access_check"
    ADMIN_ACCESS_GRANTED = "admin_access_granted"
    ADMIN_ACCESS_DENIED = "admin_access_denied"
    ADMIN_ACCESS_BLOCKED = "admin_access_blocked"
    ADMIN_ACCESS_THROTTLED = "admin_access_throttled"
    DASHBOARD_ACCESS_ATTEMPT = "admin_dashboard_access_attempt"


def is_sensitive(key: str) -> bool:
    """Whether a field name looks like it carries a secret."""
    lowered = key.lower()
    return any(field in lowered for field in SENSITIVE_FIELDS)


def sanitize(data: Any) -> Any:
    """Redact values stored under sensitive keys, recursively."""
    if isinstance(data, dict):
        return {
            k: REDACTED if is_sensitive(str(k)) else sanitize(v)
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize(item) for item in data]
    return data


class AuditRecord(BaseModel):
    """A single append-only audit entry."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str]
    action: str
    details: dict[str, Any] = Field(default_factory=dict)
    ip_address: str = "unknown"
    severity: AuditSeverity = AuditSeverity.LOW
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def create(
        cls,
        action: str,
        user_id: Optional[str],
        ip_address: str = "unknown",
        severity: AuditSeverity = AuditSeverity.LOW,
        **details: Any,
    ) -> "AuditRecord":
        """Build a record with sanitized details."""
        return cls(
            user_id=user_id,
            action=action,
            details=sanitize(details),
            ip_address=ip_address,
            severity=severity,
        )
