"""Route dependencies. Tests replace these through app.dependency_overrides."""

from fastapi import Depends, Request

from trustcore.audit.sink import AuditSink
from trustcore.core.services import Services
from trustcore.decisions.admin import AccessDecisionEngine
from trustcore.decisions.dashboard import DashboardAccessService
from trustcore.identity.verifier import IdentityVerifier
from trustcore.registration.guard import RegistrationGuard


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_identity_verifier(services: Services = Depends(get_services)) -> IdentityVerifier:
    return services.verifier


def get_access_engine(services: Services = Depends(get_services)) -> AccessDecisionEngine:
    return services.admin_engine


def get_dashboard_service(services: Services = Depends(get_services)) -> DashboardAccessService:
    return services.dashboard


def get_registration_guard(services: Services = Depends(get_services)) -> RegistrationGuard:
    return services.registration


def get_audit_sink(services: Services = Depends(get_services)) -> AuditSink:
    return services.audit
