"""Vote ledger: the write path."""
import logging
from typing import Optional

from prometheus_client import Counter

from ..shared.errors import PersistenceError, QueryError, ValidationError
from ..shared.models import EventType, Vote, validate_candidate
from .audit import AuditDispatcher
from .database import QueryExecutor

logger = logging.getLogger(__name__)

INSERT_VOTE = """
    INSERT INTO votes (candidate)
    VALUES ($1)
    RETURNING id, candidate, created_at
"""

# Prometheus metrics
vote_counter = Counter(
    "votes_submitted_total",
    "Total number of votes persisted",
    ["candidate"]
)
vote_errors = Counter(
    "vote_errors_total",
    "Total number of vote submission errors",
    ["error_type"]
)


class VoteLedger:
    """Validates and persists votes, then hands the confirmation to the audit dispatcher."""

    def __init__(self, executor: QueryExecutor, dispatcher: AuditDispatcher):
        self.executor = executor
        self.dispatcher = dispatcher

    async def cast_vote(
        self,
        candidate_id,
        origin_id: str,
        client_address: Optional[str] = None
    ) -> Vote:
        """
        Record one vote.

        The insert is awaited and is the durability boundary for the
        returned acknowledgement. The audit append is queued afterwards and
        its outcome never changes the result. Repeated votes from the same
        client are counted independently.

        Args:
            candidate_id: Raw candidate identifier from the request
            origin_id: Pod handling the request
            client_address: Network origin of the voter, for the audit message only

        Returns:
            Vote: The persisted vote

        Raises:
            ValidationError: Unknown candidate (no store I/O performed)
            PersistenceError: The vote row could not be written
        """
        try:
            candidate = validate_candidate(candidate_id)
        except ValidationError:
            vote_errors.labels(error_type="validation_error").inc()
            logger.info(f"Rejected vote for invalid candidate {candidate_id!r}")
            raise

        try:
            rows = await self.executor.execute(INSERT_VOTE, candidate.value)
        except QueryError as e:
            vote_errors.labels(error_type="persistence_error").inc()
            logger.error(f"Transaction failed for candidate {candidate.value}: {e}")
            raise PersistenceError(f"Vote write failed: {e}") from e

        vote = Vote.from_record(rows[0])
        vote_counter.labels(candidate=candidate.value).inc()

        message = (
            f"Vote confirmed for {candidate.value.upper()} "
            f"via {client_address or 'unknown'}"
        )
        self.dispatcher.submit(EventType.VOTE_TX, message, origin_id)

        logger.info(f"Vote recorded: id={vote.id}, candidate={candidate.value}, pod={origin_id}")
        return vote
