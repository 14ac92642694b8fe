"""Job system data models."""

import copy
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID, uuid4

from reporadar.jobs.errors import InvalidStateError
from reporadar.jobs.types import JobStatus, can_transition


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass
class JobOptions:
    """Per-submission options."""

    priority: int = 100
    delay_seconds: float = 0.0
    max_attempts: Optional[int] = None


@dataclass
class JobError:
    """Structured failure reason stored on a failed job."""

    message: str
    error_type: str
    attempts: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class JobRecord:
    """A job in the queue."""

    kind: str
    payload: dict[str, Any]
    id: UUID = field(default_factory=uuid4)
    status: JobStatus = JobStatus.QUEUED
    progress: int = 0

    # Retry handling
    attempts: int = 0
    max_attempts: int = 3
    priority: int = 100
    run_after: datetime = field(default_factory=utc_now)

    # Outcome
    result: Optional[dict[str, Any]] = None
    error: Optional[JobError] = None
    last_error: Optional[str] = None

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=utc_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    last_progress_at: Optional[datetime] = None
    cancel_requested_at: Optional[datetime] = None

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_requested_at is not None

    def transition(self, to_status: JobStatus) -> None:
        """Move to to_status, enforcing the lifecycle graph."""
        if not can_transition(self.status, to_status):
            raise InvalidStateError(
                self.id, self.status.value, f"move to {to_status.value}"
            )
        self.status = to_status

    def start_attempt(self, now: datetime) -> None:
        """queued -> processing for a freshly claimed delivery."""
        self.transition(JobStatus.PROCESSING)
        self.attempts += 1
        self.progress = 0
        self.started_at = now
        self.last_progress_at = now
        self.cancel_requested_at = None

    def snapshot(self) -> "JobRecord":
        """Independent copy safe to hand to callers."""
        return copy.deepcopy(self)

    def to_dict(self) -> dict[str, Any]:
        """Serialize for API responses and notifications."""
        return {
            "id": str(self.id),
            "kind": self.kind,
            "payload": self.payload,
            "status": self.status.value,
            "progress": self.progress,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "priority": self.priority,
            "run_after": self.run_after,
            "result": self.result,
            "error": self.error.to_dict() if self.error else None,
            "last_error": self.last_error,
            "created_at": self.created_at,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "cancel_requested": self.cancel_requested,
        }


@dataclass
class QueueStats:
    """Aggregated job counts."""

    waiting: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0
    delayed: int = 0
    cancelled: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)
