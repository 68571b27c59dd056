"""Error taxonomy shared by the write path, the read path and the store seams."""


class CloudVoteError(Exception):
    """Base class for all CloudVote errors."""
    pass


class ValidationError(CloudVoteError):
    """Candidate identifier outside the fixed candidate set. No I/O was performed."""
    pass


class QueryError(CloudVoteError):
    """A single round trip to the store failed."""
    pass


class ConnectivityError(QueryError):
    """Store unreachable, pool exhausted, or a round trip exceeded its timeout."""
    pass


class PersistenceError(CloudVoteError):
    """The vote row could not be written; no acknowledgement was given."""
    pass


class AuditAppendError(CloudVoteError):
    """Best-effort audit insert failed. Logged for operators, never surfaced to voters."""
    pass
