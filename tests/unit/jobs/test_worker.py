"""Tests for job worker pool."""

import asyncio
import os
import socket
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from reporadar.jobs.errors import QueueUnavailableError
from reporadar.jobs.types import JobKind, JobStatus
from reporadar.jobs.worker import WorkerPool, generate_worker_id


class TestGenerateWorkerId:
    def test_worker_id_format(self):
        worker_id = generate_worker_id()
        # Format: hostname:pid
        assert ":" in worker_id
        hostname, pid = worker_id.rsplit(":", 1)
        assert hostname == socket.gethostname()
        assert pid == str(os.getpid())


class TestWorkerPool:
    def test_worker_creation(self):
        pool = WorkerPool(MagicMock(), concurrency=3)
        assert pool.concurrency == 3
        assert pool.is_running is False

    def test_invalid_concurrency(self):
        with pytest.raises(ValueError):
            WorkerPool(MagicMock(), concurrency=0)

    @pytest.mark.asyncio
    async def test_processes_submitted_jobs(self, queue, processor_factory):
        async def ok(job):
            return {"ok": True}

        queue.register_processor(JobKind.EXPORT, processor_factory(ok))
        records = [await queue.submit(JobKind.EXPORT, {"n": n}) for n in range(4)]

        pool = WorkerPool(queue, concurrency=2, poll_interval_s=0.01, sweep_interval_s=60)
        await pool.start()
        try:
            for _ in range(200):
                stats = await queue.get_queue_stats()
                if stats.completed == len(records):
                    break
                await asyncio.sleep(0.01)
        finally:
            await pool.stop()

        for record in records:
            assert (await queue.get_status(record.id)).status == JobStatus.COMPLETED
        assert pool.is_running is False

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, queue, processor_factory):
        running = 0
        peak = 0

        async def slow(job):
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.02)
            running -= 1
            return {}

        queue.register_processor(JobKind.EXPORT, processor_factory(slow))
        for n in range(6):
            await queue.submit(JobKind.EXPORT, {"n": n})

        pool = WorkerPool(queue, concurrency=2, poll_interval_s=0.01)
        await pool.start()
        try:
            for _ in range(300):
                if (await queue.get_queue_stats()).completed == 6:
                    break
                await asyncio.sleep(0.01)
        finally:
            await pool.stop()

        assert peak == 2

    @pytest.mark.asyncio
    async def test_slot_survives_queue_unavailable(self):
        queue = MagicMock()
        queue.name = "test"
        calls = []

        async def process_next():
            calls.append(1)
            if len(calls) == 1:
                raise QueueUnavailableError("db down")
            return False

        queue.process_next = process_next
        queue.sweep = AsyncMock(return_value={"cancelled": 0, "timed_out": 0})
        queue.cleanup = AsyncMock(return_value=0)

        pool = WorkerPool(queue, concurrency=1, poll_interval_s=0.001)
        await pool.start()
        await asyncio.sleep(0.05)
        await pool.stop()

        assert len(calls) >= 2

    @pytest.mark.asyncio
    async def test_run_housekeeping(self):
        queue = MagicMock()
        queue.sweep = AsyncMock(return_value={"cancelled": 1, "timed_out": 2})
        queue.cleanup = AsyncMock(return_value=3)
        queue.metrics.clear_old = MagicMock(return_value=4)

        pool = WorkerPool(queue, retention=timedelta(hours=2))
        result = await pool.run_housekeeping()

        assert result == {
            "cancelled": 1,
            "timed_out": 2,
            "purged": 3,
            "metrics_removed": 4,
        }
        queue.cleanup.assert_awaited_once_with(timedelta(hours=2))
        queue.metrics.clear_old.assert_called_once_with(2 * 3600 * 1000)
