"""Audit storage backends."""

from abc import ABC, abstractmethod
from typing import Optional

from trustcore.audit.schemas import AuditRecord


class AuditStore(ABC):
    """Append-only destination for audit records."""

    @abstractmethod
    async def write(self, record: AuditRecord) -> None:
        """Persist one record. Raises on failure."""
        pass


class InMemoryAuditStore(AuditStore):
    """In-memory audit store for testing and the memory backend."""

    def __init__(self, fail_times: int = 0):
        self.records: list[AuditRecord] = []
        self._fail_times = fail_times

    def fail_next(self, times: int = 1) -> None:
        """Make the next `times` writes raise."""
        self._fail_times = times

    async def write(self, record: AuditRecord) -> None:
        if self._fail_times > 0:
            self._fail_times -= 1
            raise ConnectionError("audit store unavailable")
        self.records.append(record)

    def actions(self, user_id: Optional[str] = None) -> list[str]:
        """Actions written so far, optionally for one user."""
        return [
            r.action for r in self.records
            if user_id is None or r.user_id == user_id
        ]
