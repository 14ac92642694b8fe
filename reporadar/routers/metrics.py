"""Prometheus metrics endpoint."""

import structlog
from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Gauge, generate_latest

from reporadar.jobs.errors import QueueUnavailableError
from reporadar.jobs.queue import JobQueue
from reporadar.routers import jobs

router = APIRouter()
logger = structlog.get_logger(__name__)

QUEUE_DEPTH = Gauge(
    "reporadar_job_queue_jobs",
    "Jobs in the queue by status",
    ["status"],
)


async def refresh_queue_gauges(queue: JobQueue) -> None:
    """Copy current queue counts into the queue depth gauge."""
    stats = await queue.get_queue_stats()
    for status_name, count in stats.to_dict().items():
        QUEUE_DEPTH.labels(status=status_name).set(count)


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    This endpoint is excluded from OpenAPI docs.
    """
    queue = jobs._job_queue
    if queue is not None:
        try:
            await refresh_queue_gauges(queue)
        except QueueUnavailableError as e:
            # Job counters are still worth scraping
            logger.warning("metrics_queue_gauges_skipped", error=str(e))
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
