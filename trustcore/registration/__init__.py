"""Registration fraud prevention."""

from trustcore.registration.guard import (
    RegistrationAttempt,
    RegistrationDecision,
    RegistrationGuard,
    RegistrationOutcome,
    resolve_registration,
)

__all__ = [
    "RegistrationAttempt",
    "RegistrationDecision",
    "RegistrationGuard",
    "RegistrationOutcome",
    "resolve_registration",
]
