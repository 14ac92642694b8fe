"""In-process queue backend."""

import asyncio
import itertools
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from reporadar.jobs.errors import QueueUnavailableError
from reporadar.jobs.models import JobRecord, QueueStats
from reporadar.jobs.types import JobStatus

logger = structlog.get_logger(__name__)


class InMemoryQueueBackend:
    """Queue backend holding records in a dict.

    Records are copied on the way in and out so callers only ever see
    snapshots. Suitable for tests and single-process deployments; nothing
    survives a restart.
    """

    def __init__(self):
        self._records: dict[UUID, JobRecord] = {}
        # Submission sequence numbers for FIFO ordering within a priority
        self._sequence: dict[UUID, int] = {}
        self._counter = itertools.count()
        self._lock = asyncio.Lock()
        self._available = True

    def set_available(self, available: bool) -> None:
        """Simulate losing/regaining the backing store."""
        self._available = available

    def _check_available(self) -> None:
        if not self._available:
            raise QueueUnavailableError("In-memory queue backend is unavailable")

    async def add(self, record: JobRecord) -> None:
        self._check_available()
        async with self._lock:
            self._records[record.id] = record.snapshot()
            self._sequence[record.id] = next(self._counter)

    async def claim_next(self, now: datetime) -> Optional[JobRecord]:
        self._check_available()
        async with self._lock:
            ready = [
                r
                for r in self._records.values()
                if r.status == JobStatus.QUEUED and r.run_after <= now
            ]
            if not ready:
                return None
            record = min(ready, key=lambda r: (r.priority, self._sequence[r.id]))
            record.start_attempt(now)
            logger.info(
                "job_claimed",
                job_id=str(record.id),
                job_kind=record.kind,
                attempt=record.attempts,
            )
            return record.snapshot()

    async def get(self, job_id: UUID) -> Optional[JobRecord]:
        self._check_available()
        record = self._records.get(job_id)
        return record.snapshot() if record else None

    async def save(
        self, record: JobRecord, expected_status: Optional[JobStatus] = None
    ) -> bool:
        self._check_available()
        async with self._lock:
            current = self._records.get(record.id)
            if current is None:
                return False
            if expected_status is not None and current.status != expected_status:
                return False
            self._records[record.id] = record.snapshot()
            return True

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[JobRecord], int]:
        self._check_available()
        matching = [
            r
            for r in self._records.values()
            if (status is None or r.status == status)
            and (kind is None or r.kind == kind)
        ]
        matching.sort(key=lambda r: self._sequence[r.id], reverse=True)
        page = matching[offset : offset + limit]
        return [r.snapshot() for r in page], len(matching)

    async def stats(self, now: datetime) -> QueueStats:
        self._check_available()
        stats = QueueStats()
        for record in self._records.values():
            if record.status == JobStatus.QUEUED:
                if record.run_after > now:
                    stats.delayed += 1
                else:
                    stats.waiting += 1
            elif record.status == JobStatus.PROCESSING:
                stats.active += 1
            elif record.status == JobStatus.COMPLETED:
                stats.completed += 1
            elif record.status == JobStatus.FAILED:
                stats.failed += 1
            elif record.status == JobStatus.CANCELLED:
                stats.cancelled += 1
        return stats

    async def purge_terminal(self, older_than: datetime) -> int:
        self._check_available()
        async with self._lock:
            expired = [
                job_id
                for job_id, r in self._records.items()
                if r.status.is_terminal
                and r.completed_at is not None
                and r.completed_at < older_than
            ]
            for job_id in expired:
                del self._records[job_id]
                del self._sequence[job_id]
        return len(expired)
