"""Job queue - owns the job lifecycle.

JobQueue is the only component that changes a job's status. Processors run
inside a JobContext and signal back through report_progress/complete/fail;
every signal is checked against the attempt it belongs to, so a signal from a
superseded attempt (timed out by housekeeping, or resolved by a forced
cancellation) is discarded instead of overwriting a newer state.

Lifecycle:
    queued -> processing       claim by a worker slot
    processing -> completed    processor returned
    processing -> queued       retryable failure, attempts < max (after backoff)
    processing -> failed       permanent failure, or attempts == max
    queued -> cancelled        cancel before start
    processing -> cancelled    cancel acknowledged, or grace period expired
"""

import asyncio
import copy
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Union
from uuid import UUID

import structlog

from reporadar.jobs.backends.base import QueueBackend
from reporadar.jobs.backoff import BackoffPolicy
from reporadar.jobs.errors import (
    InvalidPayloadError,
    InvalidStateError,
    JobCancelledError,
    JobNotFoundError,
    PermanentJobError,
    StaleJobTimeoutError,
    UnknownJobKindError,
)
from reporadar.jobs.metrics import JobMetrics
from reporadar.jobs.models import JobError, JobOptions, JobRecord, QueueStats, utc_now
from reporadar.jobs.notifications import NotificationService
from reporadar.jobs.processors.base import JobContext, Processor
from reporadar.jobs.registry import KindKey, ProcessorRegistry
from reporadar.jobs.types import JobKind, JobStatus, crossed_milestones

logger = structlog.get_logger(__name__)

DEFAULT_CANCEL_GRACE_SECONDS = 30.0
DEFAULT_STALE_TIMEOUT_SECONDS = 300.0

_SWEEP_PAGE_SIZE = 500


def _error_details(error: Union[BaseException, str]) -> tuple[str, str]:
    """(message, error_type) for storage. Never includes a traceback."""
    if isinstance(error, BaseException):
        return str(error) or type(error).__name__, type(error).__name__
    return str(error), "Error"


class JobQueue:
    """Submission, dispatch, retries and cancellation for background jobs."""

    def __init__(
        self,
        backend: QueueBackend,
        metrics: Optional[JobMetrics] = None,
        notifications: Optional[NotificationService] = None,
        registry: Optional[ProcessorRegistry] = None,
        *,
        max_attempts: int = 3,
        backoff: Optional[BackoffPolicy] = None,
        stale_timeout_seconds: float = DEFAULT_STALE_TIMEOUT_SECONDS,
        cancel_grace_seconds: float = DEFAULT_CANCEL_GRACE_SECONDS,
        clock: Callable[[], datetime] = utc_now,
        name: str = "reporadar-jobs",
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        self.name = name
        self._backend = backend
        self._metrics = metrics or JobMetrics()
        self._notifications = notifications or NotificationService()
        self._registry = registry or ProcessorRegistry()
        self._max_attempts = max_attempts
        self._backoff = backoff or BackoffPolicy()
        self._stale_timeout = timedelta(seconds=stale_timeout_seconds)
        self._cancel_grace = timedelta(seconds=cancel_grace_seconds)
        self._clock = clock
        # Contexts of attempts running in this process, by job id
        self._active: dict[UUID, JobContext] = {}
        # Serializes read-modify-write cycles on records
        self._lock = asyncio.Lock()

    @property
    def metrics(self) -> JobMetrics:
        return self._metrics

    @property
    def notifications(self) -> NotificationService:
        return self._notifications

    @property
    def registry(self) -> ProcessorRegistry:
        return self._registry

    @property
    def active_count(self) -> int:
        return len(self._active)

    def register_processor(self, kind: KindKey, processor: Processor) -> None:
        """Register the processor that runs jobs of `kind`."""
        self._registry.register(kind, processor)
        logger.info("processor_registered", job_kind=str(getattr(kind, "value", kind)))

    # =========================================================================
    # Caller-facing operations
    # =========================================================================

    async def submit(
        self,
        kind: KindKey,
        payload: dict[str, Any],
        options: Optional[JobOptions] = None,
    ) -> JobRecord:
        """Create a queued job.

        Raises:
            UnknownJobKindError: No processor registered for kind
            InvalidPayloadError: Payload is not a JSON object
            QueueUnavailableError: Backend unreachable
        """
        kind_key = kind.value if isinstance(kind, JobKind) else kind
        if not self._registry.is_registered(kind_key):
            logger.warning("job_submit_unknown_kind", job_kind=kind_key)
            raise UnknownJobKindError(kind_key)
        if not isinstance(payload, dict):
            raise InvalidPayloadError("Job payload must be an object")

        options = options or JobOptions()
        max_attempts = options.max_attempts or self._max_attempts
        if max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

        now = self._clock()
        record = JobRecord(
            kind=kind_key,
            payload=copy.deepcopy(payload),
            max_attempts=max_attempts,
            priority=options.priority,
            created_at=now,
            run_after=now + timedelta(seconds=max(0.0, options.delay_seconds)),
        )
        await self._backend.add(record)

        logger.info(
            "job_submitted",
            job_id=str(record.id),
            job_kind=kind_key,
            priority=record.priority,
            delay_seconds=options.delay_seconds,
        )
        return record.snapshot()

    async def get_status(self, job_id: UUID) -> JobRecord:
        """Snapshot of a job. Raises JobNotFoundError for unknown ids."""
        record = await self._backend.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[JobRecord], int]:
        return await self._backend.list_jobs(
            status=status, kind=kind, limit=limit, offset=offset
        )

    async def get_queue_stats(self) -> QueueStats:
        return await self._backend.stats(self._clock())

    async def cancel(self, job_id: UUID) -> JobRecord:
        """Cancel a queued job, or request cancellation of a processing one.

        Queued jobs are cancelled immediately. For processing jobs the intent
        is recorded and the running processor is signalled; the job becomes
        cancelled when the processor acknowledges, or when housekeeping finds
        the grace period expired.

        Raises:
            JobNotFoundError: Unknown id
            InvalidStateError: Job already terminal
        """
        async with self._lock:
            record = await self._require(job_id)

            if record.status == JobStatus.QUEUED:
                record.transition(JobStatus.CANCELLED)
                record.completed_at = self._clock()
                if await self._backend.save(record, expected_status=JobStatus.QUEUED):
                    logger.info("job_cancelled", job_id=str(job_id), was="queued")
                    return record
                # Claimed between read and write
                record = await self._require(job_id)

            if record.status.is_terminal:
                raise InvalidStateError(job_id, record.status.value, "cancel")

            if not record.cancel_requested:
                record.cancel_requested_at = self._clock()
                if not await self._backend.save(
                    record, expected_status=JobStatus.PROCESSING
                ):
                    record = await self._require(job_id)
                    if record.status.is_terminal:
                        raise InvalidStateError(job_id, record.status.value, "cancel")

            context = self._active.get(job_id)
            if context is not None and context.attempt == record.attempts:
                context.request_cancellation()

        logger.info(
            "job_cancel_requested",
            job_id=str(job_id),
            attempt=record.attempts,
            grace_seconds=self._cancel_grace.total_seconds(),
        )
        return record

    async def cleanup(self, older_than: timedelta = timedelta(hours=24)) -> int:
        """Remove terminal jobs that finished before now - older_than."""
        removed = await self._backend.purge_terminal(self._clock() - older_than)
        if removed:
            logger.info("jobs_cleaned_up", removed=removed, older_than=str(older_than))
        return removed

    # =========================================================================
    # Processor signals
    # =========================================================================

    async def report_progress(
        self, job_id: UUID, percent: int, attempt: Optional[int] = None
    ) -> bool:
        """Record progress for the current attempt.

        Rejected (returns False, nothing changes) when the job isn't processing
        on `attempt`, percent is outside [0, 100], or percent is below the
        attempt's current progress. Each milestone crossed by the update
        produces one progress notification.
        """
        log = logger.bind(job_id=str(job_id), attempt=attempt, percent=percent)
        if isinstance(percent, bool) or not isinstance(percent, (int, float)):
            log.warning("job_progress_rejected", reason="not_a_number")
            return False
        value = int(round(percent))
        if not 0 <= value <= 100:
            log.warning("job_progress_rejected", reason="out_of_range")
            return False

        async with self._lock:
            record = await self._backend.get(job_id)
            if record is None or not self._is_current(record, attempt):
                log.warning("job_progress_rejected", reason="not_current_attempt")
                return False
            if value < record.progress:
                log.warning(
                    "job_progress_rejected",
                    reason="decreasing",
                    current=record.progress,
                )
                return False

            previous = record.progress
            record.progress = value
            record.last_progress_at = self._clock()
            if not await self._backend.save(record, expected_status=JobStatus.PROCESSING):
                log.warning("job_progress_rejected", reason="lost_race")
                return False

            # Picks up cancellation requested from another process
            if record.cancel_requested:
                context = self._active.get(job_id)
                if context is not None and context.attempt == record.attempts:
                    context.request_cancellation()

        for milestone in crossed_milestones(previous, value):
            await self._notifications.notify_progress(record, milestone)
        return True

    async def complete(
        self,
        job_id: UUID,
        result: Optional[dict[str, Any]] = None,
        attempt: Optional[int] = None,
    ) -> JobRecord:
        """Terminal success signal. A pending cancel request wins."""
        async with self._lock:
            record = await self._require(job_id)
            if not self._is_current(record, attempt):
                self._log_discarded(record, attempt, "complete")
                return record

            if record.cancel_requested:
                return await self._resolve_cancelled(record, reason="completed_after_cancel")

            record.transition(JobStatus.COMPLETED)
            record.progress = 100
            record.result = result if result is not None else {}
            record.error = None
            record.completed_at = self._clock()
            if not await self._backend.save(record, expected_status=JobStatus.PROCESSING):
                return await self._lost_race(job_id, "complete")

        self._metrics.record_complete(record)
        logger.info(
            "job_completed",
            job_id=str(job_id),
            job_kind=record.kind,
            attempt=record.attempts,
        )
        await self._notifications.notify_complete(record, record.result)
        return record

    async def fail(
        self,
        job_id: UUID,
        error: Union[BaseException, str],
        attempt: Optional[int] = None,
    ) -> JobRecord:
        """Terminal failure signal for an attempt.

        Retryable errors below max attempts re-enqueue the job after
        backoff; permanent errors (PermanentJobError) and the last attempt
        fail it. A pending cancel request wins over both.
        """
        message, error_type = _error_details(error)
        retryable = not isinstance(error, PermanentJobError)

        async with self._lock:
            record = await self._require(job_id)
            if not self._is_current(record, attempt):
                self._log_discarded(record, attempt, "fail")
                return record

            if record.cancel_requested:
                return await self._resolve_cancelled(record, reason="failed_after_cancel")

            now = self._clock()
            attempt_record = record.snapshot()
            attempt_record.completed_at = now

            if retryable and record.attempts < record.max_attempts:
                backoff = self._backoff.delay_for(record.attempts)
                record.transition(JobStatus.QUEUED)
                record.progress = 0
                record.run_after = now + timedelta(seconds=backoff)
                record.last_error = message
                outcome = "retry"
            else:
                backoff = None
                record.transition(JobStatus.FAILED)
                record.error = JobError(
                    message=message, error_type=error_type, attempts=record.attempts
                )
                record.result = None
                record.completed_at = now
                outcome = "failed"

            if not await self._backend.save(record, expected_status=JobStatus.PROCESSING):
                return await self._lost_race(job_id, "fail")

        self._metrics.record_failed(attempt_record, message)

        if outcome == "retry":
            logger.info(
                "job_retry_scheduled",
                job_id=str(job_id),
                job_kind=record.kind,
                attempt=record.attempts,
                max_attempts=record.max_attempts,
                backoff_seconds=backoff,
                error=message,
            )
        else:
            logger.warning(
                "job_failed",
                job_id=str(job_id),
                job_kind=record.kind,
                attempt=record.attempts,
                error_type=error_type,
                error=message,
                retryable=retryable,
            )
            await self._notifications.notify_failed(record, record.error)
        return record

    # =========================================================================
    # Dispatch
    # =========================================================================

    async def process_next(self) -> bool:
        """Claim one ready job and run it. Returns False if nothing was ready."""
        record = await self._backend.claim_next(self._clock())
        if record is None:
            return False
        await self._execute(record)
        return True

    async def _execute(self, record: JobRecord) -> None:
        """Run one claimed attempt; never raises for processor errors."""
        log = logger.bind(
            job_id=str(record.id), job_kind=record.kind, attempt=record.attempts
        )
        log.info("job_executing")

        self._metrics.record_start(record)
        await self._notifications.notify_started(record)

        try:
            processor = self._registry.get(record.kind)
        except UnknownJobKindError as e:
            log.error("job_no_processor", error=str(e))
            await self.fail(record.id, e, attempt=record.attempts)
            return

        context = JobContext(record, self)
        self._active[record.id] = context
        try:
            result = await processor.process(context)
        except JobCancelledError:
            await self._acknowledge_cancel(record.id, context.attempt)
        except Exception as e:
            log.exception("job_processor_failed", error=str(e))
            await self.fail(record.id, e, attempt=context.attempt)
        else:
            if result is None:
                result = {}
            elif not isinstance(result, dict):
                result = {"value": result}
            await self.complete(record.id, result, attempt=context.attempt)
        finally:
            if self._active.get(record.id) is context:
                del self._active[record.id]

    async def _acknowledge_cancel(self, job_id: UUID, attempt: int) -> None:
        async with self._lock:
            record = await self._require(job_id)
            if not self._is_current(record, attempt):
                self._log_discarded(record, attempt, "acknowledge_cancel")
                return
            await self._resolve_cancelled(record, reason="acknowledged")

    # =========================================================================
    # Housekeeping
    # =========================================================================

    async def sweep(self) -> dict[str, int]:
        """Resolve expired cancellations and fail stale processing jobs.

        A processing job with a cancel request older than the grace period is
        forced to cancelled. A processing job with no progress or terminal
        signal for the stale timeout fails with StaleJobTimeoutError, which
        is retryable and counts as an attempt like any other failure.
        """
        now = self._clock()
        forced = 0
        timed_out = 0

        processing: list[JobRecord] = []
        offset = 0
        while True:
            page, total = await self._backend.list_jobs(
                status=JobStatus.PROCESSING, limit=_SWEEP_PAGE_SIZE, offset=offset
            )
            processing.extend(page)
            offset += len(page)
            if not page or offset >= total:
                break

        for record in processing:
            if record.cancel_requested and now - record.cancel_requested_at >= self._cancel_grace:
                if await self._force_cancel(record.id, record.attempts):
                    forced += 1
                continue

            last_signal = record.last_progress_at or record.started_at
            if last_signal is not None and now - last_signal >= self._stale_timeout:
                stale_seconds = (now - last_signal).total_seconds()
                context = self._active.get(record.id)
                if context is not None and context.attempt == record.attempts:
                    context.request_cancellation()
                updated = await self.fail(
                    record.id,
                    StaleJobTimeoutError(record.id, stale_seconds),
                    attempt=record.attempts,
                )
                if updated.status != JobStatus.PROCESSING:
                    timed_out += 1

        if forced or timed_out:
            logger.warning("job_sweep_resolved", cancelled=forced, timed_out=timed_out)
        return {"cancelled": forced, "timed_out": timed_out}

    async def _force_cancel(self, job_id: UUID, attempt: int) -> bool:
        async with self._lock:
            record = await self._backend.get(job_id)
            if record is None or not self._is_current(record, attempt):
                return False
            await self._resolve_cancelled(record, reason="grace_period_expired")
            return True

    # =========================================================================
    # Helpers
    # =========================================================================

    async def _require(self, job_id: UUID) -> JobRecord:
        record = await self._backend.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    def _is_current(self, record: JobRecord, attempt: Optional[int]) -> bool:
        return record.status == JobStatus.PROCESSING and (
            attempt is None or attempt == record.attempts
        )

    async def _resolve_cancelled(self, record: JobRecord, reason: str) -> JobRecord:
        """processing -> cancelled. Caller holds the lock."""
        record.transition(JobStatus.CANCELLED)
        record.result = None
        record.error = None
        record.completed_at = self._clock()
        if not await self._backend.save(record, expected_status=JobStatus.PROCESSING):
            return await self._lost_race(record.id, "cancel")
        logger.info(
            "job_cancelled",
            job_id=str(record.id),
            was="processing",
            attempt=record.attempts,
            reason=reason,
        )
        return record

    async def _lost_race(self, job_id: UUID, operation: str) -> JobRecord:
        current = await self._require(job_id)
        logger.warning(
            "job_write_conflict",
            job_id=str(job_id),
            operation=operation,
            status=current.status.value,
        )
        return current

    def _log_discarded(
        self, record: JobRecord, attempt: Optional[int], signal: str
    ) -> None:
        logger.warning(
            "job_signal_discarded",
            job_id=str(record.id),
            signal=signal,
            status=record.status.value,
            signal_attempt=attempt,
            current_attempt=record.attempts,
        )
