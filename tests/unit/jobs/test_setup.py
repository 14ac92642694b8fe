"""Tests for job system wiring."""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from reporadar.config import Settings
from reporadar.jobs.backends.memory import InMemoryQueueBackend
from reporadar.jobs.backends.postgres import PostgresQueueBackend
from reporadar.jobs.delivery import LogDelivery, WebhookDelivery
from reporadar.jobs.processors.batch_analysis import BatchAnalysisProcessor
from reporadar.jobs.processors.export import ExportProcessor
from reporadar.jobs.setup import (
    build_backend,
    build_delivery,
    build_job_queue,
    build_worker_pool,
)
from reporadar.jobs.types import JobKind


def make_settings(**overrides) -> Settings:
    return Settings(_env_file=None, **overrides)


def make_collaborators():
    repository_client = MagicMock()
    repository_client.get_repository = AsyncMock()
    analysis_client = MagicMock()
    analysis_client.analyze = AsyncMock()
    export_source = MagicMock()
    export_source.query = AsyncMock(return_value=[])
    return repository_client, analysis_client, export_source


class TestBuildBackend:
    def test_memory_default(self):
        assert isinstance(build_backend(make_settings()), InMemoryQueueBackend)

    def test_postgres_needs_pool(self):
        with pytest.raises(ValueError):
            build_backend(make_settings(queue_backend="postgres"))

    def test_postgres_with_pool(self):
        backend = build_backend(make_settings(queue_backend="postgres"), pool=MagicMock())
        assert isinstance(backend, PostgresQueueBackend)


class TestBuildDelivery:
    def test_no_url(self):
        assert build_delivery(make_settings()) is None

    def test_webhook(self):
        delivery = build_delivery(
            make_settings(
                notification_webhook_url="https://hooks.example.com/jobs",
                notification_webhook_retries=5,
                notification_webhook_timeout_s=2.5,
            )
        )
        assert isinstance(delivery, WebhookDelivery)
        assert delivery.webhook_url == "https://hooks.example.com/jobs"
        assert delivery.max_retries == 5
        assert delivery.timeout == 2.5


class TestBuildJobQueue:
    def test_registers_builtin_processors(self):
        queue = build_job_queue(make_settings(), *make_collaborators())

        assert queue.registry.kinds == ["batch-analysis", "export"]
        assert isinstance(queue.registry.get(JobKind.BATCH_ANALYSIS), BatchAnalysisProcessor)
        assert isinstance(queue.registry.get(JobKind.EXPORT), ExportProcessor)

    def test_log_delivery_without_webhook(self):
        queue = build_job_queue(make_settings(), *make_collaborators())
        assert isinstance(queue.notifications._delivery, LogDelivery)

    def test_explicit_backend_and_delivery(self):
        backend = InMemoryQueueBackend()
        delivery = MagicMock()
        queue = build_job_queue(
            make_settings(), *make_collaborators(), backend=backend, delivery=delivery
        )
        assert queue._backend is backend
        assert queue.notifications._delivery is delivery

    @pytest.mark.asyncio
    async def test_submitted_export_runs(self):
        repository_client, analysis_client, export_source = make_collaborators()
        queue = build_job_queue(
            make_settings(), repository_client, analysis_client, export_source
        )

        record = await queue.submit(JobKind.EXPORT, {"export_type": "analyses", "format": "csv"})
        assert await queue.process_next() is True

        status = await queue.get_status(record.id)
        assert status.status.value == "completed"
        assert status.result["record_count"] == 0


def test_build_worker_pool():
    settings = make_settings(worker_concurrency=3, job_retention_hours=48)
    queue = build_job_queue(settings, *make_collaborators())

    pool = build_worker_pool(settings, queue)

    assert pool.concurrency == 3
    assert pool.is_running is False
    assert pool._retention == timedelta(hours=48)
