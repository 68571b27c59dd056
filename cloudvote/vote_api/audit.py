"""
Append-only audit log and its background dispatcher.

The write path never waits on an audit insert: it hands the event to
AuditDispatcher.submit(), and worker tasks perform the insert. Failures are
logged, counted and reported to an optional hook, but never reach the voter.
"""
import asyncio
import logging
from typing import Callable, List, Optional, Tuple

from prometheus_client import Counter

from ..shared.errors import AuditAppendError, QueryError
from ..shared.models import AuditEntry, EventType
from .database import QueryExecutor

logger = logging.getLogger(__name__)

INSERT_AUDIT = """
    INSERT INTO system_logs (event_type, message, pod_id)
    VALUES ($1, $2, $3)
    RETURNING id, event_type, message, pod_id, created_at
"""

SELECT_AUDIT_TAIL = """
    SELECT id, event_type, message, pod_id, created_at
    FROM system_logs
    ORDER BY created_at DESC, id DESC
    LIMIT $1
"""

# Prometheus metrics
audit_append_failures = Counter(
    "audit_append_failures_total",
    "Total number of audit inserts that failed"
)
audit_events_dropped = Counter(
    "audit_events_dropped_total",
    "Total number of audit events dropped before reaching the store"
)

AuditEvent = Tuple[str, str, str]


class AuditLog:
    """Audit log backed by the system_logs table."""

    def __init__(self, executor: QueryExecutor):
        self.executor = executor

    async def append(self, event_type, message: str, origin_id: str) -> AuditEntry:
        """
        Insert one audit entry.

        Args:
            event_type: Event tag (EventType or plain string)
            message: Human readable description
            origin_id: Pod that produced the event

        Returns:
            AuditEntry: The stored entry with its store-assigned timestamp

        Raises:
            AuditAppendError: If the insert failed
        """
        tag = event_type.value if isinstance(event_type, EventType) else str(event_type)
        try:
            rows = await self.executor.execute(INSERT_AUDIT, tag, message, origin_id)
        except QueryError as e:
            raise AuditAppendError(f"Audit append failed: {e}") from e
        entry = AuditEntry.from_record(rows[0])
        logger.debug(f"Audit entry {entry.id} appended: {entry.message}")
        return entry

    async def tail(self, limit: int) -> List[AuditEntry]:
        """
        Read the most recent entries, newest first.

        Each call runs the bounded query fresh.

        Raises:
            QueryError: If the read failed
        """
        if limit <= 0:
            return []
        rows = await self.executor.execute(SELECT_AUDIT_TAIL, limit)
        return [AuditEntry.from_record(row) for row in rows[:limit]]


class AuditDispatcher:
    """Background workers performing detached audit appends."""

    def __init__(
        self,
        audit_log: AuditLog,
        queue_size: int = 1000,
        workers: int = 1,
        drain_timeout: float = 10.0,
        on_error: Optional[Callable[[AuditEvent, AuditAppendError], None]] = None,
    ):
        self.audit_log = audit_log
        self.queue_size = queue_size
        self.worker_count = max(1, workers)
        self.drain_timeout = drain_timeout
        self.on_error = on_error
        self.queue: Optional[asyncio.Queue] = None
        self._tasks: List[asyncio.Task] = []
        self.running = False

    async def start(self):
        """Start the worker tasks."""
        if self.running:
            return
        self.queue = asyncio.Queue(maxsize=self.queue_size)
        self._tasks = [
            asyncio.create_task(self._worker_loop(i), name=f"audit-worker-{i}")
            for i in range(self.worker_count)
        ]
        self.running = True
        logger.info(f"Audit dispatcher started with {self.worker_count} worker(s)")

    def submit(self, event_type, message: str, origin_id: str) -> bool:
        """
        Queue an audit event without waiting for it to be stored.

        Returns:
            bool: True if queued, False if the event was dropped
        """
        if not self.running:
            logger.warning(f"Audit dispatcher not running, dropping event: {message}")
            audit_events_dropped.inc()
            return False
        try:
            self.queue.put_nowait((event_type, message, origin_id))
            return True
        except asyncio.QueueFull:
            logger.warning(
                f"Audit queue full ({self.queue_size}), dropping event: {message}"
            )
            audit_events_dropped.inc()
            return False

    async def join(self):
        """Wait until every queued event has been processed."""
        if self.queue is not None:
            await self.queue.join()

    async def _worker_loop(self, worker_id: int):
        while True:
            event = await self.queue.get()
            try:
                await self.audit_log.append(*event)
            except AuditAppendError as e:
                self._report_failure(event, e)
            except Exception as e:
                logger.error(f"Unexpected error in audit worker {worker_id}: {e}", exc_info=True)
                self._report_failure(event, AuditAppendError(str(e)))
            finally:
                self.queue.task_done()

    def _report_failure(self, event: AuditEvent, error: AuditAppendError):
        audit_append_failures.inc()
        logger.error(f"Audit append failed for event {event[0]} ({event[1]}): {error}")
        if self.on_error is None:
            return
        try:
            self.on_error(event, error)
        except Exception as e:
            logger.error(f"Audit error hook raised: {e}", exc_info=True)

    async def stop(self):
        """
        Drain pending events, then stop the workers.

        Draining is bounded by drain_timeout. Events still queued at the
        deadline are dropped and counted.
        """
        if not self.running:
            return
        self.running = False

        pending = self.queue.qsize()
        if pending:
            logger.info(f"Draining {pending} pending audit event(s)")
        try:
            await asyncio.wait_for(self.queue.join(), self.drain_timeout)
        except asyncio.TimeoutError:
            remaining = self.queue.qsize()
            logger.warning(
                f"Audit drain timed out after {self.drain_timeout}s, dropping {remaining} event(s)"
            )
            audit_events_dropped.inc(remaining)

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("Audit dispatcher stopped")
