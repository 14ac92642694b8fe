"""Error taxonomy for the job system.

Retry policy is decided by type: subclasses of PermanentJobError are never
retried, every other exception raised by a processor is.
"""

from typing import Optional
from uuid import UUID


class JobQueueError(Exception):
    """Base error for the job system."""


class PermanentJobError(JobQueueError):
    """A failure that retrying cannot fix."""


class UnknownJobKindError(PermanentJobError):
    """Raised at submission when no processor is registered for the kind."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"No processor registered for job kind: {kind}")


class InvalidPayloadError(PermanentJobError):
    """Raised by a processor when the job payload fails validation."""


class TransientExternalError(JobQueueError):
    """Rate limit, timeout or network failure from an external collaborator."""


class RateLimitError(TransientExternalError):
    """External API rate limit hit."""

    def __init__(
        self,
        message: str = "Rate limited by external API",
        retry_after_seconds: Optional[int] = None,
    ):
        self.retry_after_seconds = retry_after_seconds
        super().__init__(message)


class QueueUnavailableError(JobQueueError):
    """The queue backend cannot be reached. Never swallowed."""


class StaleJobTimeoutError(JobQueueError):
    """Raised by housekeeping for processing jobs with no recent signal."""

    def __init__(self, job_id: UUID, stale_seconds: float):
        self.job_id = job_id
        self.stale_seconds = stale_seconds
        super().__init__(
            f"Job {job_id} made no progress for {stale_seconds:.0f}s"
        )


class InvalidStateError(JobQueueError):
    """Raised when an operation is not allowed in the job's current status."""

    def __init__(self, job_id: UUID, status: str, operation: str):
        self.job_id = job_id
        self.status = status
        self.operation = operation
        super().__init__(f"Cannot {operation} job {job_id} in status: {status}")


class NotFoundError(JobQueueError):
    """A requested entity does not exist."""


class JobNotFoundError(NotFoundError):
    """Raised when a job id is unknown."""

    def __init__(self, job_id: UUID | str):
        self.job_id = job_id
        super().__init__(f"Job {job_id} not found")


class JobCancelledError(JobQueueError):
    """Raised by a processor to acknowledge a cancellation request."""


class AnalysisError(JobQueueError):
    """Raised by the analysis collaborator when a repository can't be scored."""
