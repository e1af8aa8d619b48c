"""Append-only audit trail."""

from trustcore.audit.schemas import AuditAction, AuditRecord, AuditSeverity, sanitize
from trustcore.audit.sink import AuditSink
from trustcore.audit.store import AuditStore, InMemoryAuditStore

__all__ = [
    "AuditAction",
    "AuditRecord",
    "AuditSeverity",
    "AuditSink",
    "AuditStore",
    "InMemoryAuditStore",
    "sanitize",
]
