"""PostgreSQL queue backend (asyncpg).

Schema: migrations/001_background_jobs.sql.
"""

import asyncio
import json
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Optional
from uuid import UUID

import asyncpg
import structlog

from reporadar.jobs.errors import QueueUnavailableError
from reporadar.jobs.models import JobError, JobRecord, QueueStats
from reporadar.jobs.types import JobStatus

logger = structlog.get_logger(__name__)

# Connection-level failures; query errors propagate unchanged
_UNAVAILABLE_ERRORS = (
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.InterfaceError,
    asyncpg.CannotConnectNowError,
    asyncpg.TooManyConnectionsError,
    ConnectionRefusedError,
    ConnectionResetError,
    asyncio.TimeoutError,
    OSError,
)

_COLUMNS = """
    id, kind, payload, status, progress, attempts, max_attempts, priority,
    run_after, result, error, last_error, created_at, started_at,
    completed_at, last_progress_at, cancel_requested_at
"""


def _to_json(value: Optional[dict[str, Any]]) -> Optional[str]:
    return json.dumps(value, default=str) if value is not None else None


def _from_json(value: Any) -> Any:
    if value is None or isinstance(value, (dict, list)):
        return value
    return json.loads(value)


class PostgresQueueBackend:
    """Queue backend on a `background_jobs` table.

    Claims use FOR UPDATE SKIP LOCKED so concurrent workers never receive the
    same job. Conditional saves add `AND status = $expected` so a late signal
    can't overwrite a newer transition.
    """

    def __init__(self, pool):
        self._pool = pool

    @asynccontextmanager
    async def _connection(self) -> AsyncIterator[Any]:
        try:
            async with self._pool.acquire() as conn:
                yield conn
        except _UNAVAILABLE_ERRORS as e:
            logger.warning("queue_backend_unavailable", error=str(e))
            raise QueueUnavailableError(f"Job queue database unavailable: {e}") from e

    async def add(self, record: JobRecord) -> None:
        query = f"""
            INSERT INTO background_jobs ({_COLUMNS})
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                    $13, $14, $15, $16, $17)
        """
        async with self._connection() as conn:
            await conn.execute(query, *self._record_params(record))

    async def claim_next(self, now: datetime) -> Optional[JobRecord]:
        query = f"""
            WITH cte AS (
                SELECT id FROM background_jobs
                WHERE status = 'queued' AND run_after <= $1
                ORDER BY priority, seq
                FOR UPDATE SKIP LOCKED
                LIMIT 1
            )
            UPDATE background_jobs j SET
                status = 'processing',
                attempts = j.attempts + 1,
                progress = 0,
                started_at = $1,
                last_progress_at = $1,
                cancel_requested_at = NULL
            FROM cte
            WHERE j.id = cte.id
            RETURNING {", ".join(f"j.{c.strip()}" for c in _COLUMNS.split(","))}
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(query, now)

        if row:
            logger.info(
                "job_claimed",
                job_id=str(row["id"]),
                job_kind=row["kind"],
                attempt=row["attempts"],
            )
            return self._row_to_record(row)
        return None

    async def get(self, job_id: UUID) -> Optional[JobRecord]:
        query = f"SELECT {_COLUMNS} FROM background_jobs WHERE id = $1"
        async with self._connection() as conn:
            row = await conn.fetchrow(query, job_id)
        return self._row_to_record(row) if row else None

    async def save(
        self, record: JobRecord, expected_status: Optional[JobStatus] = None
    ) -> bool:
        # kind, payload and created_at never change after insert
        params: list[Any] = [
            record.id,
            record.status.value,
            record.progress,
            record.attempts,
            record.max_attempts,
            record.priority,
            record.run_after,
            _to_json(record.result),
            _to_json(record.error.to_dict()) if record.error else None,
            record.last_error,
            record.started_at,
            record.completed_at,
            record.last_progress_at,
            record.cancel_requested_at,
        ]
        status_guard = ""
        if expected_status is not None:
            params.append(expected_status.value)
            status_guard = f"AND status = ${len(params)}"

        query = f"""
            UPDATE background_jobs SET
                status = $2,
                progress = $3,
                attempts = $4,
                max_attempts = $5,
                priority = $6,
                run_after = $7,
                result = $8,
                error = $9,
                last_error = $10,
                started_at = $11,
                completed_at = $12,
                last_progress_at = $13,
                cancel_requested_at = $14
            WHERE id = $1 {status_guard}
            RETURNING id
        """
        async with self._connection() as conn:
            updated = await conn.fetchval(query, *params)
        return updated is not None

    async def list_jobs(
        self,
        status: Optional[JobStatus] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[JobRecord], int]:
        conditions = []
        params: list[Any] = []

        if status:
            params.append(status.value)
            conditions.append(f"status = ${len(params)}")

        if kind:
            params.append(kind)
            conditions.append(f"kind = ${len(params)}")

        where_clause = ""
        if conditions:
            where_clause = "WHERE " + " AND ".join(conditions)

        query = f"""
            SELECT {_COLUMNS} FROM background_jobs
            {where_clause}
            ORDER BY seq DESC
            LIMIT ${len(params) + 1} OFFSET ${len(params) + 2}
        """
        count_query = f"SELECT COUNT(*) AS total FROM background_jobs {where_clause}"

        async with self._connection() as conn:
            rows = await conn.fetch(query, *params, limit, offset)
            count_row = await conn.fetchrow(count_query, *params)

        total = count_row["total"] if count_row else 0
        return [self._row_to_record(row) for row in rows], total

    async def stats(self, now: datetime) -> QueueStats:
        query = """
            SELECT
                COUNT(*) FILTER (WHERE status = 'queued' AND run_after <= $1) AS waiting,
                COUNT(*) FILTER (WHERE status = 'queued' AND run_after > $1) AS delayed,
                COUNT(*) FILTER (WHERE status = 'processing') AS active,
                COUNT(*) FILTER (WHERE status = 'completed') AS completed,
                COUNT(*) FILTER (WHERE status = 'failed') AS failed,
                COUNT(*) FILTER (WHERE status = 'cancelled') AS cancelled
            FROM background_jobs
        """
        async with self._connection() as conn:
            row = await conn.fetchrow(query, now)
        return QueueStats(
            waiting=row["waiting"],
            active=row["active"],
            completed=row["completed"],
            failed=row["failed"],
            delayed=row["delayed"],
            cancelled=row["cancelled"],
        )

    async def purge_terminal(self, older_than: datetime) -> int:
        query = """
            DELETE FROM background_jobs
            WHERE status IN ('completed', 'failed', 'cancelled')
              AND completed_at < $1
            RETURNING id
        """
        async with self._connection() as conn:
            rows = await conn.fetch(query, older_than)
        count = len(rows)
        if count > 0:
            logger.info("terminal_jobs_purged", count=count)
        return count

    def _record_params(self, record: JobRecord) -> tuple[Any, ...]:
        """Positional params in _COLUMNS order."""
        return (
            record.id,
            record.kind,
            _to_json(record.payload),
            record.status.value,
            record.progress,
            record.attempts,
            record.max_attempts,
            record.priority,
            record.run_after,
            _to_json(record.result),
            _to_json(record.error.to_dict()) if record.error else None,
            record.last_error,
            record.created_at,
            record.started_at,
            record.completed_at,
            record.last_progress_at,
            record.cancel_requested_at,
        )

    def _row_to_record(self, row) -> JobRecord:
        """Convert a database row to a JobRecord."""
        error = _from_json(row["error"])
        return JobRecord(
            id=row["id"],
            kind=row["kind"],
            payload=_from_json(row["payload"]) or {},
            status=JobStatus(row["status"]),
            progress=row["progress"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            priority=row["priority"],
            run_after=row["run_after"],
            result=_from_json(row["result"]),
            error=JobError(**error) if error else None,
            last_error=row["last_error"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            completed_at=row["completed_at"],
            last_progress_at=row["last_progress_at"],
            cancel_requested_at=row["cancel_requested_at"],
        )
