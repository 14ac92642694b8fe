"""Batch analysis processor - scores many repositories in one job.

Items run sequentially. A failure on one repository (missing, rate limited,
analysis error) is recorded in the result and the batch moves on; only an
invalid payload or a cancellation ends the job early.
"""

import asyncio
from typing import Any, Awaitable, Callable

import structlog

from reporadar.jobs.errors import InvalidPayloadError, NotFoundError
from reporadar.jobs.models import utc_now
from reporadar.jobs.processors.base import JobContext
from reporadar.services.collaborators import AnalysisClient, RepositoryClient

logger = structlog.get_logger(__name__)


def parse_repository_ref(item: Any) -> tuple[str, str]:
    """Parse "owner/name" or {"owner", "name"|"repo"} into (owner, name).

    Raises:
        InvalidPayloadError: If the item isn't a recognizable reference
    """
    if isinstance(item, str):
        owner, sep, name = item.strip().partition("/")
        if not sep or not owner or not name or "/" in name:
            raise InvalidPayloadError(f"Invalid repository id: {item!r}")
        return owner, name

    if isinstance(item, dict):
        owner = item.get("owner")
        name = item.get("name") or item.get("repo")
        if isinstance(owner, str) and isinstance(name, str) and owner and name:
            return owner, name

    raise InvalidPayloadError(f"Invalid repository reference: {item!r}")


class BatchAnalysisProcessor:
    """Runs metadata fetch + AI analysis for each repository in the payload.

    Job Payload:
        repositories: list of "owner/name" strings or {"owner", "name"} objects
        delay_seconds: optional float overriding the inter-item delay

    Returns:
        dict with:
            total: int - Number of repositories in the batch
            succeeded: list of {"id", "analysis"}
            failed: list of {"id", "error", "message"}
            completed_at: str - ISO timestamp
    """

    def __init__(
        self,
        repository_client: RepositoryClient,
        analysis_client: AnalysisClient,
        item_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._repositories = repository_client
        self._analysis = analysis_client
        self._item_delay = item_delay_seconds
        self._sleep = sleep

    def _parse_payload(self, payload: dict[str, Any]) -> tuple[list[tuple[str, str]], float]:
        repositories = payload.get("repositories")
        if not isinstance(repositories, list):
            raise InvalidPayloadError("Payload field 'repositories' must be a list")
        refs = [parse_repository_ref(item) for item in repositories]

        delay = payload.get("delay_seconds", self._item_delay)
        if isinstance(delay, bool) or not isinstance(delay, (int, float)) or delay < 0:
            raise InvalidPayloadError("Payload field 'delay_seconds' must be a non-negative number")
        return refs, float(delay)

    async def process(self, job: JobContext) -> dict[str, Any]:
        refs, delay = self._parse_payload(job.payload)
        total = len(refs)

        log = logger.bind(job_id=str(job.id), attempt=job.attempt, total=total)
        log.info("batch_analysis_started")

        succeeded: list[dict[str, Any]] = []
        failed: list[dict[str, Any]] = []

        if total == 0:
            await job.report_progress(100)

        for index, (owner, name) in enumerate(refs):
            job.raise_if_cancelled()
            repo_id = f"{owner}/{name}"

            try:
                metadata = await self._repositories.get_repository(owner, name)
                if metadata is None:
                    raise NotFoundError(f"Repository {repo_id} not found")
                analysis = await self._analysis.analyze(metadata)
                succeeded.append({"id": repo_id, "analysis": analysis})
            except Exception as e:
                log.warning(
                    "batch_analysis_item_failed",
                    repository=repo_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                failed.append(
                    {"id": repo_id, "error": type(e).__name__, "message": str(e)}
                )

            done = index + 1
            await job.report_progress(round(done / total * 100))

            if done < total and delay > 0:
                await self._sleep(delay)

        log.info(
            "batch_analysis_finished",
            succeeded=len(succeeded),
            failed=len(failed),
        )
        return {
            "total": total,
            "succeeded": succeeded,
            "failed": failed,
            "completed_at": utc_now().isoformat(),
        }
