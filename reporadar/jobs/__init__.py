"""Job system package."""

from reporadar.jobs.types import JobKind, JobStatus
from reporadar.jobs.models import JobOptions, JobRecord, QueueStats
from reporadar.jobs.registry import ProcessorRegistry
from reporadar.jobs.queue import JobQueue

__all__ = [
    "JobKind",
    "JobStatus",
    "JobOptions",
    "JobRecord",
    "QueueStats",
    "ProcessorRegistry",
    "JobQueue",
]
