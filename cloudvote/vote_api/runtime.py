"""Process-scoped construction of the pool and the components that share it."""
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..shared.errors import QueryError
from .aggregation import AggregationView
from .audit import AuditDispatcher, AuditLog
from .config import Settings
from .database import ConnectionPool, QueryExecutor
from .ledger import VoteLedger

logger = logging.getLogger(__name__)


@dataclass
class VoteServices:
    """Components owned by one process, handed to request handlers by reference."""
    settings: Settings
    pool: ConnectionPool
    executor: QueryExecutor
    audit_log: AuditLog
    dispatcher: AuditDispatcher
    ledger: VoteLedger
    view: AggregationView

    @property
    def pod_id(self) -> str:
        return self.settings.pod_id

    async def close(self):
        """Drain the audit queue, then close the pool."""
        await self.dispatcher.stop()
        await self.pool.close()


async def build_services(
    settings: Settings,
    pool_factory: Optional[Callable[..., Awaitable[Any]]] = None,
) -> VoteServices:
    """
    Open the connection pool and wire every component to it.

    Schema creation failures are logged but do not stop startup, so the
    process stays live while the store is unreachable.
    """
    pool = ConnectionPool(
        settings.postgres_dsn,
        min_size=settings.POSTGRES_POOL_MIN_SIZE,
        max_size=settings.POSTGRES_POOL_MAX_SIZE,
        timeout=settings.POSTGRES_POOL_TIMEOUT,
        queue_limit=settings.POSTGRES_POOL_QUEUE_LIMIT,
        pool_factory=pool_factory,
    )
    await pool.open()

    executor = QueryExecutor(pool)
    if settings.AUTO_CREATE_SCHEMA:
        try:
            await executor.ensure_schema()
        except QueryError as e:
            logger.error(f"Schema bootstrap failed, continuing without it: {e}")

    audit_log = AuditLog(executor)
    dispatcher = AuditDispatcher(
        audit_log,
        queue_size=settings.AUDIT_QUEUE_SIZE,
        workers=settings.AUDIT_WORKERS,
        drain_timeout=settings.AUDIT_DRAIN_TIMEOUT,
    )
    await dispatcher.start()

    return VoteServices(
        settings=settings,
        pool=pool,
        executor=executor,
        audit_log=audit_log,
        dispatcher=dispatcher,
        ledger=VoteLedger(executor, dispatcher),
        view=AggregationView(executor, audit_log, tail_limit=settings.AUDIT_TAIL_LIMIT),
    )
