"""
Shared models and errors for the CloudVote service.

This package contains code used by both the write and the read path:
- Data models (Vote, AuditEntry, Tally, Snapshot, enums)
- Candidate validation
- The error taxonomy
"""

from .errors import (
    CloudVoteError,
    ValidationError,
    QueryError,
    ConnectivityError,
    PersistenceError,
    AuditAppendError,
)
from .models import (
    Candidate,
    EventType,
    CANDIDATES,
    Vote,
    AuditEntry,
    Tally,
    Snapshot,
    validate_candidate,
)

__all__ = [
    'CloudVoteError',
    'ValidationError',
    'QueryError',
    'ConnectivityError',
    'PersistenceError',
    'AuditAppendError',
    'Candidate',
    'EventType',
    'CANDIDATES',
    'Vote',
    'AuditEntry',
    'Tally',
    'Snapshot',
    'validate_candidate',
]
