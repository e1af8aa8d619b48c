"""
Oracle data contracts.

Shapes returned by the external identity store and its stored procedures.
The core reads these; it never mutates them.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Identity(BaseModel):
    """A user resolved from a bearer credential."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: Optional[str] = None
    is_admin_flag: bool = False
    role: str = "authenticated"


class RiskReport(BaseModel):
    """Privilege-escalation analysis for one user."""

    model_config = ConfigDict(frozen=True)

    risk_score: float = Field(default=0.0, ge=0)
    is_suspicious: bool = False
    should_block: bool = False

    @classmethod
    def safe_default(cls) -> "RiskReport":
        """Report used when the risk oracle is unavailable."""
        return cls(risk_score=0.0, is_suspicious=False, should_block=False)


class IpQuotaReport(BaseModel):
    """Per-IP registration quota state, as reported by the store."""

    model_config = ConfigDict(frozen=True)

    can_register: bool = True
    is_blocked: bool = False
    registration_count: int = Field(default=0, ge=0)
    reason: Optional[str] = None
    blocked_until: Optional[datetime] = None


class FraudRiskLevel(str, Enum):
    """Heuristic fraud risk for an IP."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class FraudReport(BaseModel):
    """Fraud-pattern analysis for an IP."""

    model_config = ConfigDict(frozen=True)

    risk_level: FraudRiskLevel = FraudRiskLevel.LOW
    fraud_score: float = 0.0

    @classmethod
    def safe_default(cls) -> "FraudReport":
        """Report used when the fraud oracle is unavailable."""
        return cls(risk_level=FraudRiskLevel.LOW, fraud_score=0.0)


class UserProfile(BaseModel):
    """Profile row for an existing user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    institutional_user: str
    display_name: Optional[str] = None
    role: str = "user"
    is_admin: bool = False
    status: str = "approved"
