"""Job lifecycle notifications.

NotificationService turns lifecycle transitions into Notification payloads
and hands them to a delivery channel. It never decides job outcomes: a
delivery failure is logged and dropped.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

import structlog

from reporadar.jobs.models import JobError, JobRecord, utc_now
from reporadar.jobs.types import PROGRESS_MILESTONES, JobKind

logger = structlog.get_logger(__name__)


class NotificationEvent(str, Enum):
    """Lifecycle events that produce a notification."""

    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Notification:
    """A transient lifecycle message. Never carries stack traces."""

    event: NotificationEvent
    job_id: UUID
    job_kind: str
    message: str
    attempts: int = 0
    progress: Optional[int] = None
    summary: Optional[str] = None
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event": self.event.value,
            "job_id": str(self.job_id),
            "job_kind": self.job_kind,
            "message": self.message,
            "attempts": self.attempts,
            "progress": self.progress,
            "summary": self.summary,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


class NotificationDelivery(Protocol):
    """Channel that sends a notification somewhere (log, webhook, email...)."""

    async def deliver(self, notification: Notification) -> None:
        ...


# summarizer(job, result) -> human readable one-liner
Summarizer = Callable[[JobRecord, dict[str, Any]], str]


def summarize_batch_analysis(job: JobRecord, result: dict[str, Any]) -> str:
    total = result.get("total", 0)
    analyzed = len(result.get("succeeded", []))
    return f"{analyzed:,} of {total:,} repositories analyzed"


def summarize_export(job: JobRecord, result: dict[str, Any]) -> str:
    return f"Export ready: {result.get('record_count', 0):,} records"


DEFAULT_SUMMARIZERS: dict[str, Summarizer] = {
    JobKind.BATCH_ANALYSIS.value: summarize_batch_analysis,
    JobKind.EXPORT.value: summarize_export,
}


class NotificationService:
    """Builds lifecycle notifications and sends them through a delivery channel."""

    def __init__(
        self,
        delivery: Optional[NotificationDelivery] = None,
        summarizers: Optional[dict[str, Summarizer]] = None,
    ):
        # delivery imports Notification from this module
        from reporadar.jobs.delivery import LogDelivery

        self._delivery = delivery or LogDelivery()
        self._summarizers: dict[str, Summarizer] = dict(DEFAULT_SUMMARIZERS)
        if summarizers:
            self._summarizers.update(summarizers)

    def register_summarizer(self, kind: str, summarizer: Summarizer) -> None:
        """Add or replace the completion summary for a job kind."""
        self._summarizers[kind] = summarizer

    def summarize(self, job: JobRecord, result: dict[str, Any]) -> str:
        summarizer = self._summarizers.get(job.kind)
        if summarizer is None:
            return "Job completed successfully"
        try:
            return summarizer(job, result)
        except Exception as e:
            logger.warning(
                "notification_summary_failed",
                job_id=str(job.id),
                job_kind=job.kind,
                error=str(e),
            )
            return "Job completed successfully"

    async def notify_started(self, job: JobRecord) -> Notification:
        notification = Notification(
            event=NotificationEvent.STARTED,
            job_id=job.id,
            job_kind=job.kind,
            message=f"Job started (attempt {job.attempts} of {job.max_attempts})",
            attempts=job.attempts,
            progress=0,
        )
        await self._send(notification)
        return notification

    async def notify_progress(
        self, job: JobRecord, percent: int
    ) -> Optional[Notification]:
        """Send a progress notice. Non-milestone percentages are ignored."""
        if percent not in PROGRESS_MILESTONES:
            return None
        notification = Notification(
            event=NotificationEvent.PROGRESS,
            job_id=job.id,
            job_kind=job.kind,
            message=f"Job {percent}% complete",
            attempts=job.attempts,
            progress=percent,
        )
        await self._send(notification)
        return notification

    async def notify_complete(
        self, job: JobRecord, result: dict[str, Any]
    ) -> Notification:
        summary = self.summarize(job, result)
        notification = Notification(
            event=NotificationEvent.COMPLETED,
            job_id=job.id,
            job_kind=job.kind,
            message=summary,
            attempts=job.attempts,
            progress=100,
            summary=summary,
        )
        await self._send(notification)
        return notification

    async def notify_failed(self, job: JobRecord, error: JobError) -> Notification:
        notification = Notification(
            event=NotificationEvent.FAILED,
            job_id=job.id,
            job_kind=job.kind,
            message=(
                f"Job failed after {error.attempts} attempt"
                f"{'s' if error.attempts != 1 else ''}: {error.message}"
            ),
            attempts=error.attempts,
            error=error.message,
        )
        await self._send(notification)
        return notification

    async def _send(self, notification: Notification) -> None:
        try:
            await self._delivery.deliver(notification)
        except Exception as e:
            logger.exception(
                "notification_delivery_failed",
                job_id=str(notification.job_id),
                notification_event=notification.event.value,
                error=str(e),
            )
