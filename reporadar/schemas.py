"""Pydantic response models for the job API."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from reporadar.jobs.models import JobRecord, QueueStats
from reporadar.jobs.types import JobStatus


class JobErrorResponse(BaseModel):
    """Failure reason of a failed job."""

    message: str
    error_type: str
    attempts: int


class JobResponse(BaseModel):
    """Snapshot of one job."""

    id: UUID
    kind: str
    status: JobStatus
    progress: int = Field(..., ge=0, le=100, description="Progress percentage")
    attempts: int
    max_attempts: int
    priority: int
    result: Optional[dict[str, Any]] = None
    error: Optional[JobErrorResponse] = None
    last_error: Optional[str] = Field(
        default=None, description="Most recent retried failure"
    )
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    run_after: datetime
    cancel_requested: bool = False

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobResponse":
        return cls(
            id=record.id,
            kind=record.kind,
            status=record.status,
            progress=record.progress,
            attempts=record.attempts,
            max_attempts=record.max_attempts,
            priority=record.priority,
            result=record.result,
            error=JobErrorResponse(**record.error.to_dict()) if record.error else None,
            last_error=record.last_error,
            created_at=record.created_at,
            started_at=record.started_at,
            completed_at=record.completed_at,
            run_after=record.run_after,
            cancel_requested=record.cancel_requested,
        )


class QueueStatsResponse(BaseModel):
    """Job counts by status at `timestamp`."""

    waiting: int
    active: int
    completed: int
    failed: int
    delayed: int
    cancelled: int
    timestamp: datetime

    @classmethod
    def from_stats(cls, stats: QueueStats, timestamp: datetime) -> "QueueStatsResponse":
        return cls(**stats.to_dict(), timestamp=timestamp)


class JobListFilters(BaseModel):
    status: Optional[JobStatus] = None
    kind: Optional[str] = None
    limit: int
    offset: int


class JobListResponse(BaseModel):
    """Filtered page of jobs plus a queue summary."""

    jobs: list[JobResponse]
    total: int
    filters: JobListFilters
    stats: QueueStatsResponse


class CancelJobResponse(BaseModel):
    """Outcome of a cancel request."""

    success: bool = True
    message: str
    job: JobResponse
