"""Pydantic models for request/response validation."""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

from ..shared.models import Snapshot


class VoteRequest(BaseModel):
    """Vote submission request model."""

    candidate: Optional[str] = Field(default=None, description="Candidate identifier: aws or azure")

    class Config:
        json_schema_extra = {
            "example": {
                "candidate": "aws"
            }
        }


class VoteResponse(BaseModel):
    """Vote submission response model."""

    status: Literal["success"] = Field(default="success", description="Status of the submission")


class ErrorResponse(BaseModel):
    """Write path error response model."""

    status: Literal["error"] = Field(default="error", description="Always 'error'")
    message: str = Field(..., description="Generic error message")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "error",
                "message": "Invalid candidate"
            }
        }


class ConnectivityErrorResponse(BaseModel):
    """Read path error response model."""

    error: str = Field(..., description="Generic error message")


class VoteCounts(BaseModel):
    """Per-candidate counts plus total."""

    aws: int = Field(..., ge=0)
    azure: int = Field(..., ge=0)
    total: int = Field(..., ge=0)


class LogEntry(BaseModel):
    """Audit entry as returned to the dashboard."""

    id: int
    event_type: str
    message: str
    pod_id: str
    created_at: datetime


class LiveMeta(BaseModel):
    pod_id: str
    status: str = "healthy"


class LiveData(BaseModel):
    votes: VoteCounts
    logs: list[LogEntry]


class LiveDataResponse(BaseModel):
    """Live dashboard payload."""

    meta: LiveMeta
    data: LiveData

    class Config:
        json_schema_extra = {
            "example": {
                "meta": {"pod_id": "cloudvote-7d9f8-abcde", "status": "healthy"},
                "data": {
                    "votes": {"aws": 3, "azure": 1, "total": 4},
                    "logs": [
                        {
                            "id": 4,
                            "event_type": "VOTE_TX",
                            "message": "Vote confirmed for AWS via 10.0.0.12",
                            "pod_id": "cloudvote-7d9f8-abcde",
                            "created_at": "2024-01-15T10:30:00+00:00"
                        }
                    ]
                }
            }
        }

    @classmethod
    def from_snapshot(cls, snapshot: Snapshot, pod_id: str) -> 'LiveDataResponse':
        return cls(
            meta=LiveMeta(pod_id=pod_id),
            data=LiveData(
                votes=VoteCounts(**snapshot.tally.to_dict()),
                logs=[LogEntry(**entry.to_dict()) for entry in snapshot.recent_audit],
            ),
        )
