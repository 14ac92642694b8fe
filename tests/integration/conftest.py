"""Shared fixtures for integration tests.

Wires the real JobQueue (in-memory backend, built-in processors) to fake
repository, analysis and export collaborators.
"""

import pytest

from reporadar.config import Settings
from reporadar.jobs.errors import AnalysisError, NotFoundError
from reporadar.jobs.setup import build_job_queue
from reporadar.services.collaborators import RepositoryMetadata


class FakeRepositoryClient:
    """Known repositories by "owner/name"; anything else is not found."""

    def __init__(self, known: list[str]):
        self.known = set(known)
        self.calls: list[str] = []

    async def get_repository(self, owner: str, name: str) -> RepositoryMetadata:
        repo_id = f"{owner}/{name}"
        self.calls.append(repo_id)
        if repo_id not in self.known:
            raise NotFoundError(f"Repository {repo_id} not found")
        return RepositoryMetadata(owner=owner, name=name, language="Python", stars=42)


class FakeAnalysisClient:
    """Scores every repository except those listed as failing."""

    def __init__(self, failing: set[str] | None = None):
        self.failing = failing or set()

    async def analyze(self, metadata: RepositoryMetadata) -> dict:
        if metadata.full_name in self.failing:
            raise AnalysisError(f"Could not analyze {metadata.full_name}")
        return {"overall_score": 7.5, "summary": f"Analysis of {metadata.full_name}"}


class InMemoryExportSource:
    """Rows per export type, filtered on min_score/language."""

    def __init__(self, rows: dict[str, list[dict]] | None = None):
        self.rows = rows or {}
        self.queries: list[tuple] = []

    async def query(self, export_type: str, filters: dict, limit: int) -> list[dict]:
        self.queries.append((export_type, filters, limit))
        rows = self.rows.get(export_type, [])
        if "min_score" in filters:
            rows = [r for r in rows if (r.get("overall_score") or 0) >= filters["min_score"]]
        if "language" in filters:
            rows = [r for r in rows if r.get("language") == filters["language"]]
        return rows[:limit]


class RecordingDelivery:
    def __init__(self):
        self.notifications = []

    async def deliver(self, notification) -> None:
        self.notifications.append(notification)


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        batch_item_delay_s=0,
        job_backoff_base_s=0,
        job_poll_interval_s=0.01,
    )


@pytest.fixture
def recording_delivery():
    return RecordingDelivery()


@pytest.fixture
def build_queue(settings, recording_delivery):
    """Build a fully wired queue around the given fakes."""

    def _build(repositories=(), failing=None, export_rows=None):
        return build_job_queue(
            settings,
            FakeRepositoryClient(list(repositories)),
            FakeAnalysisClient(failing),
            InMemoryExportSource(export_rows),
            delivery=recording_delivery,
        )

    return _build
