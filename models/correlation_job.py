"""
Correlation job schemas.

A job tracks one background run of the correlation pipeline for a seed.
Status moves pending -> processing -> complete | error and never back.
"""

from pydantic import Field, field_validator
from typing import Optional
from enum import Enum
from datetime import datetime, timedelta, timezone

from models.base import BaseSchema, ApiSchema


class JobStatus(str, Enum):
    """Correlation job lifecycle."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETE, JobStatus.ERROR)


ACTIVE_STATUSES = [JobStatus.PENDING.value, JobStatus.PROCESSING.value]


class CorrelationJob(BaseSchema):
    """Job record as stored in the jobs table."""

    id: str
    seed_identifier: str
    owner_id: str
    status: JobStatus = JobStatus.PENDING
    total_count: int = 0
    processed_count: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "CorrelationJob":
        """Map a jobs-table row (user_id/search_asin columns)."""
        return cls(
            id=str(row["id"]),
            seed_identifier=row["search_asin"],
            owner_id=str(row["user_id"]),
            status=row.get("status") or JobStatus.PENDING,
            total_count=row.get("total_count") or 0,
            processed_count=row.get("processed_count") or 0,
            approved_count=row.get("approved_count") or 0,
            rejected_count=row.get("rejected_count") or 0,
            error_message=row.get("error_message"),
            created_at=row["created_at"],
            updated_at=row.get("updated_at"),
            completed_at=row.get("completed_at")
        )

    @property
    def is_complete(self) -> bool:
        """Terminal either way; clients stop polling."""
        return self.status.is_terminal

    def is_stale(self, stale_after: timedelta, now: Optional[datetime] = None) -> bool:
        """
        True when a non-terminal job has not been touched for stale_after.

        Naive timestamps are treated as UTC.
        """
        if self.status.is_terminal:
            return False
        last_touch = self.updated_at or self.created_at
        if last_touch.tzinfo is None:
            last_touch = last_touch.replace(tzinfo=timezone.utc)
        now = now or datetime.now(timezone.utc)
        return now - last_touch > stale_after


# ===================
# API SCHEMAS
# ===================

class JobSubmitRequest(ApiSchema):
    """Start a correlation job."""

    seed_identifier: str = Field(..., min_length=1, description="Seed ASIN")
    owner_id: str = Field(..., min_length=1, description="Owner (user) id")
    similarity_instructions: Optional[str] = Field(
        None,
        description="Custom judge prompt template for this run"
    )

    @field_validator("owner_id")
    @classmethod
    def owner_not_blank(cls, v: str) -> str:
        """Whitespace-only owners are rejected like missing ones."""
        v = v.strip()
        if not v:
            raise ValueError("ownerId must not be blank")
        return v


class JobSubmitResponse(ApiSchema):
    """Returned with 202 Accepted."""

    job_id: str
    status: JobStatus
    seed_identifier: str


class CorrelationJobResponse(ApiSchema):
    """Job status as returned to polling clients."""

    id: str
    seed_identifier: str
    owner_id: str
    status: JobStatus
    total_count: int
    processed_count: int
    approved_count: int
    rejected_count: int
    error_message: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    is_complete: bool = False
    is_stale: bool = False

    @classmethod
    def from_job(cls, job: CorrelationJob, is_stale: bool = False) -> "CorrelationJobResponse":
        return cls(
            **job.model_dump(),
            is_complete=job.is_complete,
            is_stale=is_stale
        )


class CorrelationJobListResponse(ApiSchema):
    """Recent jobs for an owner."""

    data: list[CorrelationJobResponse]
    total: int
