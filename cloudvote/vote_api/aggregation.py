"""Aggregation view: the read path."""
import asyncio
import logging

from ..shared.errors import ConnectivityError, QueryError
from ..shared.models import Candidate, CANDIDATES, Snapshot, Tally
from .audit import AuditLog
from .database import QueryExecutor

logger = logging.getLogger(__name__)

SELECT_TALLY = """
    SELECT candidate, COUNT(*) AS count
    FROM votes
    GROUP BY candidate
"""


class AggregationView:
    """Builds live snapshots from the tally and the audit tail."""

    def __init__(self, executor: QueryExecutor, audit_log: AuditLog, tail_limit: int = 50):
        self.executor = executor
        self.audit_log = audit_log
        self.tail_limit = tail_limit

    async def tally(self) -> Tally:
        """
        Count votes per candidate.

        Raises:
            QueryError: If the read failed
        """
        rows = await self.executor.execute(SELECT_TALLY)

        counts = {c: 0 for c in Candidate}
        for row in rows:
            if row["candidate"] not in CANDIDATES:
                logger.warning(f"Ignoring votes for unknown candidate {row['candidate']!r}")
                continue
            counts[Candidate(row["candidate"])] = int(row["count"])
        return Tally(counts=counts)

    async def snapshot(self) -> Snapshot:
        """
        Read the tally and the recent audit entries concurrently.

        Both queries are issued before either is awaited. They are not
        joined in a transaction, so the two halves may reflect different
        moments.

        Raises:
            ConnectivityError: If either query failed (no partial snapshot)
        """
        try:
            tally, recent = await asyncio.gather(
                self.tally(),
                self.audit_log.tail(self.tail_limit),
            )
        except QueryError as e:
            logger.error(f"Snapshot failed: {e}")
            if isinstance(e, ConnectivityError):
                raise
            raise ConnectivityError(f"Snapshot failed: {e}") from e

        return Snapshot(tally=tally, recent_audit=recent)
