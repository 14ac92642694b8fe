"""Job status endpoints."""

from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, HTTPException, Query, status

from reporadar.jobs.errors import InvalidStateError, JobNotFoundError, QueueUnavailableError
from reporadar.jobs.models import utc_now
from reporadar.jobs.queue import JobQueue
from reporadar.jobs.types import JobStatus
from reporadar.schemas import (
    CancelJobResponse,
    JobListFilters,
    JobListResponse,
    JobResponse,
    QueueStatsResponse,
)

router = APIRouter(tags=["jobs"])
logger = structlog.get_logger(__name__)

# Global job queue (set during app startup)
_job_queue: Optional[JobQueue] = None


def set_job_queue(queue: Optional[JobQueue]) -> None:
    """Set the job queue for job routes."""
    global _job_queue
    _job_queue = queue


def get_job_queue() -> JobQueue:
    """Get the job queue, raising 503 if not available."""
    if _job_queue is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Job queue not initialized",
        )
    return _job_queue


def _unavailable(e: QueueUnavailableError) -> HTTPException:
    logger.error("job_queue_unavailable", error=str(e))
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail="Job queue unavailable",
    )


def _parse_job_id(job_id: str) -> UUID:
    # Malformed ids can't exist, so they are reported as not found
    try:
        return UUID(job_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )


@router.get(
    "/jobs/stats/queue",
    response_model=QueueStatsResponse,
    responses={503: {"description": "Queue backend unavailable"}},
)
async def get_queue_stats() -> QueueStatsResponse:
    """Job counts by status."""
    queue = get_job_queue()
    try:
        stats = await queue.get_queue_stats()
    except QueueUnavailableError as e:
        raise _unavailable(e)
    return QueueStatsResponse.from_stats(stats, utc_now())


@router.get(
    "/jobs",
    response_model=JobListResponse,
    responses={503: {"description": "Queue backend unavailable"}},
)
async def list_jobs(
    status_filter: Optional[JobStatus] = Query(
        None, alias="status", description="Filter by status"
    ),
    kind: Optional[str] = Query(None, description="Filter by job kind"),
    limit: int = Query(50, ge=1, le=200, description="Max results"),
    offset: int = Query(0, ge=0, description="Pagination offset"),
) -> JobListResponse:
    """
    List jobs, newest first, with a queue statistics summary.
    """
    queue = get_job_queue()
    try:
        records, total = await queue.list_jobs(
            status=status_filter, kind=kind, limit=limit, offset=offset
        )
        stats = await queue.get_queue_stats()
    except QueueUnavailableError as e:
        raise _unavailable(e)

    return JobListResponse(
        jobs=[JobResponse.from_record(r) for r in records],
        total=total,
        filters=JobListFilters(
            status=status_filter, kind=kind, limit=limit, offset=offset
        ),
        stats=QueueStatsResponse.from_stats(stats, utc_now()),
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobResponse,
    responses={
        200: {"description": "Job status retrieved"},
        404: {"description": "Job not found"},
        503: {"description": "Queue backend unavailable"},
    },
)
async def get_job_status(job_id: str) -> JobResponse:
    """
    Get the status of a background job.

    Job statuses:
    - queued: Waiting for a worker (also between retries)
    - processing: A worker is running it
    - completed: Finished; `result` is set
    - failed: Out of attempts or permanently failed; `error` is set
    - cancelled: Cancelled by a caller

    Progress is reported as a percentage (0-100).
    """
    queue = get_job_queue()
    job_uuid = _parse_job_id(job_id)
    try:
        record = await queue.get_status(job_uuid)
    except JobNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    except QueueUnavailableError as e:
        raise _unavailable(e)
    return JobResponse.from_record(record)


@router.delete(
    "/jobs/{job_id}",
    response_model=CancelJobResponse,
    responses={
        200: {"description": "Job cancelled or cancellation requested"},
        400: {"description": "Job already finished"},
        404: {"description": "Job not found"},
        503: {"description": "Queue backend unavailable"},
    },
)
async def cancel_job(job_id: str) -> CancelJobResponse:
    """
    Cancel a job.

    Queued jobs are cancelled immediately. Processing jobs are asked to stop
    and become cancelled once the processor acknowledges (or the grace
    period runs out).
    """
    queue = get_job_queue()
    job_uuid = _parse_job_id(job_id)
    try:
        record = await queue.cancel(job_uuid)
    except JobNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found",
        )
    except InvalidStateError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )
    except QueueUnavailableError as e:
        raise _unavailable(e)

    if record.status == JobStatus.CANCELLED:
        message = f"Job {job_id} cancelled successfully"
    else:
        message = f"Cancellation requested for job {job_id}"
    logger.info("job_cancel_api", job_id=job_id, status=record.status.value)
    return CancelJobResponse(message=message, job=JobResponse.from_record(record))
