"""Job system type definitions."""

from enum import Enum


class JobKind(str, Enum):
    """Built-in job kinds. Registration map accepts any string kind."""

    BATCH_ANALYSIS = "batch-analysis"
    EXPORT = "export"


class JobStatus(str, Enum):
    """Job lifecycle statuses."""

    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (job won't change)."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED)


# Allowed edges of the lifecycle graph. Terminal statuses have no outgoing edges.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.PROCESSING, JobStatus.CANCELLED}),
    JobStatus.PROCESSING: frozenset(
        {
            JobStatus.COMPLETED,
            JobStatus.FAILED,
            JobStatus.QUEUED,
            JobStatus.CANCELLED,
        }
    ),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# Progress percentages that produce a notification
PROGRESS_MILESTONES: tuple[int, ...] = (25, 50, 75, 100)


def can_transition(from_status: JobStatus, to_status: JobStatus) -> bool:
    """Return True if the lifecycle graph allows from_status -> to_status."""
    return to_status in ALLOWED_TRANSITIONS[from_status]


def crossed_milestones(previous: int, current: int) -> list[int]:
    """Milestones m with previous < m <= current, in ascending order."""
    return [m for m in PROGRESS_MILESTONES if previous < m <= current]
