"""
Audit Sink - best-effort, observable audit delivery.

Audit writes must never block or fail a decision, and must never be lost
silently:

    sink = AuditSink(store)
    await sink.record(AuditRecord.create("admin_access_check", user_id))

- record() runs the write as its own task and awaits it through
  asyncio.shield, so a cancelled request still completes its write.
- A failed write goes to a bounded retry queue; flush() retries it until
  max_attempts is reached, then counts it as lost.
- Overflowing the queue drops the oldest entry and counts it as dropped.
- pending / dropped / lost and the trustcore_audit_* metrics expose audit
  loss to monitoring.
"""

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Optional

import structlog

from trustcore.audit.schemas import AuditRecord
from trustcore.audit.store import AuditStore
from trustcore.common.metrics import AUDIT_PENDING, AUDIT_WRITES

logger = structlog.get_logger(__name__)


@dataclass
class _RetryEntry:
    """A record waiting for another write attempt."""

    record: AuditRecord
    attempts: int
    last_error: str


class AuditSink:
    """Asynchronous audit writer with a bounded retry queue."""

    def __init__(
        self,
        store: AuditStore,
        max_queue_size: int = 1000,
        max_attempts: int = 3,
        flush_interval_seconds: float = 30.0,
    ):
        self._store = store
        self._queue: deque[_RetryEntry] = deque()
        self._max_queue_size = max_queue_size
        self._max_attempts = max_attempts
        self._flush_interval = flush_interval_seconds
        self._inflight: set[asyncio.Task] = set()
        self._flush_task: Optional[asyncio.Task] = None

        self.dropped = 0
        self.lost = 0
        self.failures = 0

    @property
    def pending(self) -> int:
        """Records waiting in the retry queue."""
        return len(self._queue)

    # =========================================================================
    # WRITING
    # =========================================================================

    async def record(self, record: AuditRecord) -> bool:
        """
        Write a record, surviving cancellation of the caller.

        Returns True if the first attempt succeeded. A False return means
        the record is queued for retry, not that it was discarded.
        """
        task = asyncio.ensure_future(self._attempt(record, attempts=0))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return await asyncio.shield(task)

    async def _attempt(self, record: AuditRecord, attempts: int) -> bool:
        try:
            await self._store.write(record)
        except Exception as e:
            self.failures += 1
            self._requeue(_RetryEntry(record, attempts + 1, str(e)))
            return False

        AUDIT_WRITES.labels(status="written" if attempts == 0 else "retried").inc()
        return True

    def _requeue(self, entry: _RetryEntry) -> None:
        if entry.attempts >= self._max_attempts:
            self.lost += 1
            AUDIT_WRITES.labels(status="failed").inc()
            logger.error(
                "audit_record_lost",
                action=entry.record.action,
                user_id=entry.record.user_id,
                attempts=entry.attempts,
                error=entry.last_error,
            )
            return

        if len(self._queue) >= self._max_queue_size:
            oldest = self._queue.popleft()
            self.dropped += 1
            AUDIT_WRITES.labels(status="dropped").inc()
            logger.error(
                "audit_record_dropped",
                action=oldest.record.action,
                user_id=oldest.record.user_id,
                queue_size=self._max_queue_size,
            )

        self._queue.append(entry)
        AUDIT_PENDING.set(len(self._queue))
        logger.warning(
            "audit_write_failed",
            action=entry.record.action,
            user_id=entry.record.user_id,
            attempts=entry.attempts,
            error=entry.last_error,
        )

    # =========================================================================
    # RETRY QUEUE
    # =========================================================================

    async def flush(self) -> int:
        """Retry every queued record once. Returns how many were written."""
        batch = list(self._queue)
        self._queue.clear()
        AUDIT_PENDING.set(0)

        written = 0
        for entry in batch:
            if await self._attempt(entry.record, entry.attempts):
                written += 1

        if batch:
            logger.info(
                "audit_queue_flushed",
                attempted=len(batch),
                written=written,
                pending=self.pending,
            )
        return written

    async def drain(self) -> None:
        """Wait for in-flight writes, then retry the queue once."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
        await self.flush()

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self._flush_interval)
            await self.flush()

    async def start(self) -> None:
        """Start periodic flushing of the retry queue."""
        if self._flush_task is None:
            self._flush_task = asyncio.create_task(self._flush_loop())
            logger.info("audit_sink_started", flush_interval_seconds=self._flush_interval)

    async def stop(self) -> None:
        """Stop periodic flushing and drain what is left."""
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        await self.drain()
        logger.info(
            "audit_sink_stopped",
            pending=self.pending,
            dropped=self.dropped,
            lost=self.lost,
        )
