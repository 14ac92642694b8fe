"""Queue backend protocol.

A backend durably stores JobRecords and hands ready jobs to workers. Claiming
is atomic: a claimed job is moved to processing in the same step, so at most
one worker holds a given job id. Unreachable storage is reported as
QueueUnavailableError.
"""

from datetime import datetime
from typing import Optional, Protocol
from uuid import UUID

from reporadar.jobs.models import JobRecord, QueueStats
from reporadar.jobs.types import JobStatus


class QueueBackend(Protocol):
    """Storage and delivery operations used by JobQueue."""

    async def add(self, record: JobRecord) -> None:
        """Persist a new queued record."""
        ...

    async def claim_next(self, now: datetime) -> Optional[JobRecord]:
        """Claim the next ready job (lowest priority value, then oldest).

        The claimed record is returned already in processing with its
        attempt counter incremented. Returns None when nothing is ready.
        """
        ...

    async def get(self, job_id: UUID) -> Optional[JobRecord]:
        """Fetch a snapshot of a record."""
        ...

    async def save(
        self, record: JobRecord, expected_status: Optional[JobStatus] = None
    ) -> bool:
        """Persist record. With expected_status, only if the stored status matches.

        Returns False when the conditional write lost a race.
        """
        ...

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[JobRecord], int]:
        """List records newest first with total matching count."""
        ...

    async def stats(self, now: datetime) -> QueueStats:
        """Count records per status; queued jobs not yet due count as delayed."""
        ...

    async def purge_terminal(self, older_than: datetime) -> int:
        """Delete terminal records completed before older_than."""
        ...
