"""Job processing metrics.

JobMetrics is a passive observer: the queue calls it after each transition and
nothing it does feeds back into job outcomes. Counters and a bounded window of
recent duration samples are kept per kind; every update to a kind happens
under that kind's lock so concurrent slots finishing together can't lose
increments or race the window eviction.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Optional
from uuid import UUID

import structlog
from prometheus_client import Counter, Histogram

from reporadar.jobs.models import JobRecord, utc_now

logger = structlog.get_logger(__name__)

JOBS_STARTED = Counter(
    "reporadar_jobs_started_total",
    "Job attempts started",
    ["kind"],
)

JOBS_FINISHED = Counter(
    "reporadar_jobs_finished_total",
    "Job attempts finished",
    ["kind", "outcome"],  # outcome: succeeded, failed
)

JOB_DURATION = Histogram(
    "reporadar_job_duration_seconds",
    "Job attempt duration in seconds",
    ["kind"],
    buckets=[0.1, 0.5, 1, 2.5, 5, 10, 30, 60, 120, 300, 600, 1800],
)


@dataclass
class MetricsSample:
    """Timing of one finished attempt."""

    job_id: UUID
    kind: str
    succeeded: bool
    duration_ms: Optional[float]
    attempts: int
    recorded_at: datetime
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": str(self.job_id),
            "kind": self.kind,
            "succeeded": self.succeeded,
            "duration_ms": self.duration_ms,
            "attempts": self.attempts,
            "recorded_at": self.recorded_at.isoformat(),
            "error": self.error,
        }


@dataclass
class KindMetrics:
    """Metrics for one job kind.

    success_rate is a percentage, or None when no attempt has finished yet
    (no data is not the same as 0% success).
    """

    kind: str
    attempted: int
    succeeded: int
    failed: int
    success_rate: Optional[float]
    average_duration_ms: Optional[float]
    recent_samples: list[MetricsSample] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "recent_samples": [s.to_dict() for s in self.recent_samples],
        }


@dataclass
class MetricsSummary:
    """Cross-kind aggregate."""

    attempted: int
    succeeded: int
    failed: int
    success_rate: Optional[float]
    average_duration_ms: Optional[float]
    kinds: list[KindMetrics]

    def to_dict(self) -> dict[str, Any]:
        return {
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "success_rate": self.success_rate,
            "average_duration_ms": self.average_duration_ms,
            "kinds": [k.to_dict() for k in self.kinds],
        }


class _KindStats:
    def __init__(self, history_size: int):
        self.lock = threading.Lock()
        self.attempted = 0
        self.succeeded = 0
        self.failed = 0
        # maxlen evicts the oldest sample on append
        self.samples: deque[MetricsSample] = deque(maxlen=history_size)


def _success_rate(succeeded: int, failed: int) -> Optional[float]:
    finished = succeeded + failed
    if finished == 0:
        return None
    return succeeded / finished * 100


def _average(values: list[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


class JobMetrics:
    """Per-kind counters and bounded timing history."""

    def __init__(
        self,
        history_size: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ):
        if history_size < 1:
            raise ValueError("history_size must be >= 1")
        self._history_size = history_size
        self._clock = clock
        self._kinds: dict[str, _KindStats] = {}
        self._kinds_lock = threading.Lock()

    def _stats_for(self, kind: str) -> _KindStats:
        with self._kinds_lock:
            stats = self._kinds.get(kind)
            if stats is None:
                stats = _KindStats(self._history_size)
                self._kinds[kind] = stats
            return stats

    def record_start(self, job: JobRecord) -> None:
        stats = self._stats_for(job.kind)
        with stats.lock:
            stats.attempted += 1
        JOBS_STARTED.labels(kind=job.kind).inc()
        logger.debug(
            "job_metrics_start",
            job_id=str(job.id),
            job_kind=job.kind,
            attempt=job.attempts,
        )

    def record_complete(self, job: JobRecord) -> MetricsSample:
        return self._record_finish(job, succeeded=True)

    def record_failed(
        self, job: JobRecord, error: Optional[BaseException | str] = None
    ) -> MetricsSample:
        return self._record_finish(
            job, succeeded=False, error=str(error) if error is not None else None
        )

    def _record_finish(
        self, job: JobRecord, succeeded: bool, error: Optional[str] = None
    ) -> MetricsSample:
        now = self._clock()
        duration_ms = None
        if job.started_at is not None:
            finished_at = job.completed_at or now
            duration_ms = max(0.0, (finished_at - job.started_at).total_seconds() * 1000)

        sample = MetricsSample(
            job_id=job.id,
            kind=job.kind,
            succeeded=succeeded,
            duration_ms=duration_ms,
            attempts=job.attempts,
            recorded_at=now,
            error=error,
        )

        stats = self._stats_for(job.kind)
        with stats.lock:
            if succeeded:
                stats.succeeded += 1
            else:
                stats.failed += 1
            stats.samples.append(sample)

        outcome = "succeeded" if succeeded else "failed"
        JOBS_FINISHED.labels(kind=job.kind, outcome=outcome).inc()
        if duration_ms is not None:
            JOB_DURATION.labels(kind=job.kind).observe(duration_ms / 1000)

        logger.debug(
            "job_metrics_finish",
            job_id=str(job.id),
            job_kind=job.kind,
            outcome=outcome,
            duration_ms=duration_ms,
        )
        return sample

    def get_metrics_for_kind(self, kind: str) -> KindMetrics:
        with self._kinds_lock:
            stats = self._kinds.get(kind)
        if stats is None:
            return KindMetrics(
                kind=kind,
                attempted=0,
                succeeded=0,
                failed=0,
                success_rate=None,
                average_duration_ms=None,
            )

        with stats.lock:
            samples = list(stats.samples)
            attempted, succeeded, failed = (
                stats.attempted,
                stats.succeeded,
                stats.failed,
            )

        durations = [s.duration_ms for s in samples if s.duration_ms is not None]
        return KindMetrics(
            kind=kind,
            attempted=attempted,
            succeeded=succeeded,
            failed=failed,
            success_rate=_success_rate(succeeded, failed),
            average_duration_ms=_average(durations),
            recent_samples=samples,
        )

    def get_summary(self) -> MetricsSummary:
        with self._kinds_lock:
            kinds = sorted(self._kinds)
        breakdown = [self.get_metrics_for_kind(kind) for kind in kinds]

        succeeded = sum(k.succeeded for k in breakdown)
        failed = sum(k.failed for k in breakdown)
        durations = [
            s.duration_ms
            for k in breakdown
            for s in k.recent_samples
            if s.duration_ms is not None
        ]
        return MetricsSummary(
            attempted=sum(k.attempted for k in breakdown),
            succeeded=succeeded,
            failed=failed,
            success_rate=_success_rate(succeeded, failed),
            average_duration_ms=_average(durations),
            kinds=breakdown,
        )

    def clear_old(self, older_than_ms: float = 24 * 60 * 60 * 1000) -> int:
        """Drop samples recorded more than older_than_ms ago. Returns count removed."""
        cutoff = self._clock() - timedelta(milliseconds=older_than_ms)
        with self._kinds_lock:
            all_stats = list(self._kinds.values())

        removed = 0
        for stats in all_stats:
            with stats.lock:
                kept = [s for s in stats.samples if s.recorded_at >= cutoff]
                removed += len(stats.samples) - len(kept)
                stats.samples.clear()
                stats.samples.extend(kept)

        if removed:
            logger.info("job_metrics_cleared", removed=removed, older_than_ms=older_than_ms)
        return removed

    def reset(self) -> None:
        with self._kinds_lock:
            self._kinds.clear()
        logger.info("job_metrics_reset")
