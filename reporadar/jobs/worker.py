"""Job worker - runs queued jobs with bounded concurrency."""

import asyncio
import os
import socket
import traceback
from datetime import timedelta
from typing import Optional

import structlog

from reporadar import __version__
from reporadar.jobs.errors import QueueUnavailableError
from reporadar.jobs.queue import JobQueue

logger = structlog.get_logger(__name__)


def generate_worker_id() -> str:
    """Generate a unique worker ID: hostname:pid."""
    return f"{socket.gethostname()}:{os.getpid()}"


class WorkerPool:
    """Fixed number of slots pulling jobs from a JobQueue.

    Each slot runs one job at a time, so at most `concurrency` jobs are
    processing in this process. A separate housekeeping task sweeps stale
    jobs and expired cancellations, and purges old terminal jobs.
    """

    def __init__(
        self,
        queue: JobQueue,
        concurrency: int = 5,
        poll_interval_s: float = 1.0,
        sweep_interval_s: float = 60.0,
        retention: timedelta = timedelta(hours=24),
        worker_id: Optional[str] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        self._queue = queue
        self._concurrency = concurrency
        self._poll_interval = poll_interval_s
        self._sweep_interval = sweep_interval_s
        self._retention = retention
        self._worker_id = worker_id or generate_worker_id()
        self._running = False
        self._tasks: list[asyncio.Task] = []

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Spawn the slot and housekeeping tasks."""
        if self._running:
            return
        self._running = True

        self._tasks = [
            asyncio.create_task(self._slot_loop(slot), name=f"job-slot-{slot}")
            for slot in range(self._concurrency)
        ]
        self._tasks.append(
            asyncio.create_task(self._housekeeping_loop(), name="job-housekeeping")
        )

        logger.info(
            "worker_started",
            worker_id=self._worker_id,
            version=__version__,
            concurrency=self._concurrency,
            queue=self._queue.name,
        )

    async def stop(self) -> None:
        """Stop all tasks. Jobs interrupted mid-attempt are picked up by the stale sweep."""
        if not self._running:
            return
        self._running = False

        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []

        logger.info("worker_stopped", worker_id=self._worker_id)

    async def _slot_loop(self, slot: int) -> None:
        while self._running:
            try:
                ran = await self._queue.process_next()
                if not ran:
                    await asyncio.sleep(self._poll_interval)

            except asyncio.CancelledError:
                logger.info("worker_slot_cancelled", worker_id=self._worker_id, slot=slot)
                break
            except QueueUnavailableError as e:
                logger.error(
                    "worker_queue_unavailable",
                    worker_id=self._worker_id,
                    slot=slot,
                    error=str(e),
                )
                await asyncio.sleep(self._poll_interval)
            except Exception as e:
                logger.error(
                    "worker_loop_error",
                    worker_id=self._worker_id,
                    slot=slot,
                    error=str(e),
                    traceback=traceback.format_exc(),
                )
                await asyncio.sleep(self._poll_interval)

    async def _housekeeping_loop(self) -> None:
        while self._running:
            try:
                await self.run_housekeeping()
                await asyncio.sleep(self._sweep_interval)

            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(
                    "worker_housekeeping_error",
                    worker_id=self._worker_id,
                    error=str(e),
                    traceback=traceback.format_exc(),
                )
                await asyncio.sleep(self._sweep_interval)

    async def run_housekeeping(self) -> dict[str, int]:
        """One sweep + cleanup pass."""
        swept = await self._queue.sweep()
        purged = await self._queue.cleanup(self._retention)
        metrics_removed = self._queue.metrics.clear_old(
            self._retention.total_seconds() * 1000
        )
        return {**swept, "purged": purged, "metrics_removed": metrics_removed}
