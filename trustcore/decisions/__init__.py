"""Admin access and dashboard decisions."""

from trustcore.decisions.admin import AccessDecision, AccessDecisionEngine, AccessOutcome
from trustcore.decisions.dashboard import DashboardAccess, DashboardAccessService
from trustcore.decisions.tokens import (
    ValidationTokenClaims,
    decode_validation_token,
    mint_validation_token,
)

__all__ = [
    "AccessDecision",
    "AccessDecisionEngine",
    "AccessOutcome",
    "DashboardAccess",
    "DashboardAccessService",
    "ValidationTokenClaims",
    "decode_validation_token",
    "mint_validation_token",
]
