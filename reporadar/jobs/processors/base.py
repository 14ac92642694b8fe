"""Processor capability and the per-attempt job context."""

import copy
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from reporadar.jobs.errors import JobCancelledError
from reporadar.jobs.models import JobRecord

if TYPE_CHECKING:
    from reporadar.jobs.queue import JobQueue


class JobContext:
    """What a processor sees of the job it is running.

    Processors never touch the JobRecord directly: progress goes back through
    the queue, and the cancellation flag is set by the queue when a cancel is
    requested for this attempt.
    """

    def __init__(self, record: JobRecord, queue: "JobQueue"):
        self.id: UUID = record.id
        self.kind: str = record.kind
        self.attempt: int = record.attempts
        self.payload: dict[str, Any] = copy.deepcopy(record.payload)
        self._queue = queue
        self._cancel_requested = record.cancel_requested

    async def report_progress(self, percent: int) -> bool:
        """Report progress for this attempt. Returns False if rejected."""
        return await self._queue.report_progress(self.id, percent, attempt=self.attempt)

    def request_cancellation(self) -> None:
        self._cancel_requested = True

    def is_cancellation_requested(self) -> bool:
        return self._cancel_requested

    def raise_if_cancelled(self) -> None:
        """Safe-point check: raise JobCancelledError if a cancel was requested."""
        if self._cancel_requested:
            raise JobCancelledError(f"Job {self.id} cancelled")


class Processor(Protocol):
    """Implements the work for one job kind."""

    async def process(self, job: JobContext) -> dict[str, Any]:
        """Run the job and return its result. Raise to fail the attempt."""
        ...
