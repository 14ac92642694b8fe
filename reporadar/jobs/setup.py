"""Job system wiring - builds a JobQueue with the built-in processors."""

from datetime import timedelta
from typing import Optional

import structlog

from reporadar.config import Settings
from reporadar.jobs.backends.base import QueueBackend
from reporadar.jobs.backends.memory import InMemoryQueueBackend
from reporadar.jobs.backends.postgres import PostgresQueueBackend
from reporadar.jobs.backoff import BackoffPolicy
from reporadar.jobs.delivery import WebhookDelivery
from reporadar.jobs.metrics import JobMetrics
from reporadar.jobs.notifications import NotificationDelivery, NotificationService
from reporadar.jobs.processors.batch_analysis import BatchAnalysisProcessor
from reporadar.jobs.processors.export import ExportProcessor
from reporadar.jobs.queue import JobQueue
from reporadar.jobs.types import JobKind
from reporadar.jobs.worker import WorkerPool
from reporadar.services.collaborators import (
    AnalysisClient,
    ExportDataSource,
    RepositoryClient,
)

logger = structlog.get_logger(__name__)


def build_backend(settings: Settings, pool=None) -> QueueBackend:
    """Queue backend selected by settings.queue_backend."""
    if settings.queue_backend == "postgres":
        if pool is None:
            raise ValueError("postgres queue backend requires a database pool")
        return PostgresQueueBackend(pool)
    return InMemoryQueueBackend()


def build_delivery(settings: Settings) -> Optional[NotificationDelivery]:
    """Webhook delivery when a URL is configured, else None (log delivery)."""
    if not settings.notification_webhook_url:
        return None
    return WebhookDelivery(
        webhook_url=settings.notification_webhook_url,
        max_retries=settings.notification_webhook_retries,
        timeout=settings.notification_webhook_timeout_s,
    )


def build_status_queue(
    settings: Settings,
    backend: Optional[QueueBackend] = None,
    delivery: Optional[NotificationDelivery] = None,
    pool=None,
) -> JobQueue:
    """A JobQueue with no processors registered.

    Serves status, listing and cancellation for jobs that other processes
    submit and run against the shared postgres table.
    """
    return JobQueue(
        backend=backend or build_backend(settings, pool),
        metrics=JobMetrics(history_size=settings.metrics_history_size),
        notifications=NotificationService(delivery or build_delivery(settings)),
        max_attempts=settings.job_max_attempts,
        backoff=BackoffPolicy(
            base_seconds=settings.job_backoff_base_s,
            max_seconds=settings.job_backoff_max_s,
        ),
        stale_timeout_seconds=settings.job_stale_timeout_s,
        cancel_grace_seconds=settings.job_cancel_grace_s,
    )


def build_job_queue(
    settings: Settings,
    repository_client: RepositoryClient,
    analysis_client: AnalysisClient,
    export_source: ExportDataSource,
    backend: Optional[QueueBackend] = None,
    delivery: Optional[NotificationDelivery] = None,
    pool=None,
) -> JobQueue:
    """Create a JobQueue with batch-analysis and export processors registered."""
    queue = build_status_queue(settings, backend=backend, delivery=delivery, pool=pool)

    queue.register_processor(
        JobKind.BATCH_ANALYSIS,
        BatchAnalysisProcessor(
            repository_client,
            analysis_client,
            item_delay_seconds=settings.batch_item_delay_s,
        ),
    )
    queue.register_processor(
        JobKind.EXPORT,
        ExportProcessor(export_source, max_records=settings.export_max_records),
    )

    logger.info(
        "job_queue_configured",
        queue_backend=settings.queue_backend,
        kinds=queue.registry.kinds,
        max_attempts=settings.job_max_attempts,
    )
    return queue


def build_worker_pool(settings: Settings, queue: JobQueue) -> WorkerPool:
    return WorkerPool(
        queue,
        concurrency=settings.worker_concurrency,
        poll_interval_s=settings.job_poll_interval_s,
        sweep_interval_s=settings.job_sweep_interval_s,
        retention=timedelta(hours=settings.job_retention_hours),
    )
