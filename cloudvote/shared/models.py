"""
Shared data models for the CloudVote service.

This module contains:
- Candidate / EventType: the fixed enumerations
- Vote, AuditEntry: immutable facts read back from the store
- Tally, Snapshot: derived read-path results, never persisted
- validate_candidate: the single candidate check used by the write path
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping

from .errors import ValidationError


class Candidate(str, Enum):
    """Valid voting options."""
    AWS = "aws"
    AZURE = "azure"


class EventType(str, Enum):
    """Audit event tags."""
    VOTE_TX = "VOTE_TX"


CANDIDATES = tuple(c.value for c in Candidate)


def validate_candidate(candidate_id: Any) -> Candidate:
    """
    Resolve a raw candidate identifier to a Candidate.

    Matching is exact: no trimming and no case folding.

    Args:
        candidate_id: Identifier as received from the client

    Returns:
        Candidate: The matching candidate

    Raises:
        ValidationError: If the identifier is not in the candidate set
    """
    if not isinstance(candidate_id, str) or candidate_id not in CANDIDATES:
        raise ValidationError("Invalid candidate")
    return Candidate(candidate_id)


@dataclass(frozen=True)
class Vote:
    """A persisted vote row."""
    id: int
    candidate: Candidate
    created_at: datetime

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> 'Vote':
        return cls(
            id=row["id"],
            candidate=Candidate(row["candidate"]),
            created_at=row["created_at"],
        )


@dataclass(frozen=True)
class AuditEntry:
    """
    A persisted audit log row.

    Attributes:
        id: Store-assigned serial
        event_type: Event tag (VOTE_TX for vote confirmations)
        message: Human readable description
        origin_id: Identity of the pod that produced the entry (column pod_id)
        created_at: Store-assigned timestamp
    """
    id: int
    event_type: str
    message: str
    origin_id: str
    created_at: datetime

    @classmethod
    def from_record(cls, row: Mapping[str, Any]) -> 'AuditEntry':
        return cls(
            id=row["id"],
            event_type=row["event_type"],
            message=row["message"],
            origin_id=row["pod_id"],
            created_at=row["created_at"],
        )

    def to_dict(self) -> Dict[str, Any]:
        """Wire format used by the live-data endpoint."""
        return {
            "id": self.id,
            "event_type": self.event_type,
            "message": self.message,
            "pod_id": self.origin_id,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Tally:
    """Per-candidate vote counts. Every candidate is present, zero filled."""
    counts: Dict[Candidate, int] = field(
        default_factory=lambda: {c: 0 for c in Candidate}
    )

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def count(self, candidate: Candidate) -> int:
        return self.counts.get(candidate, 0)

    def to_dict(self) -> Dict[str, int]:
        votes = {c.value: self.counts.get(c, 0) for c in Candidate}
        votes["total"] = self.total
        return votes


@dataclass(frozen=True)
class Snapshot:
    """
    One tally read merged with one audit tail read.

    The two halves are not transactionally joined and may reflect
    slightly different moments.
    """
    tally: Tally
    recent_audit: List[AuditEntry]
