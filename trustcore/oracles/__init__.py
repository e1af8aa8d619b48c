"""External collaborators as capability interfaces."""

from trustcore.oracles.base import (
    IdentityProvider,
    ProfileDirectory,
    RiskOracle,
    with_safe_default,
)
from trustcore.oracles.schemas import (
    FraudReport,
    FraudRiskLevel,
    Identity,
    IpQuotaReport,
    RiskReport,
    UserProfile,
)

__all__ = [
    "FraudReport",
    "FraudRiskLevel",
    "Identity",
    "IdentityProvider",
    "IpQuotaReport",
    "ProfileDirectory",
    "RiskOracle",
    "RiskReport",
    "UserProfile",
    "with_safe_default",
]
