"""Tests for BatchAnalysisProcessor."""

from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from reporadar.jobs.errors import (
    AnalysisError,
    InvalidPayloadError,
    JobCancelledError,
    NotFoundError,
    RateLimitError,
)
from reporadar.jobs.processors.batch_analysis import (
    BatchAnalysisProcessor,
    parse_repository_ref,
)
from reporadar.services.collaborators import RepositoryMetadata


def make_job(payload):
    job = MagicMock()
    job.id = uuid4()
    job.attempt = 1
    job.payload = payload
    job.report_progress = AsyncMock(return_value=True)
    job.raise_if_cancelled = MagicMock()
    return job


@pytest.fixture
def repository_client():
    client = MagicMock()

    async def get_repository(owner, name):
        return RepositoryMetadata(owner=owner, name=name, language="Python", stars=10)

    client.get_repository = AsyncMock(side_effect=get_repository)
    return client


@pytest.fixture
def analysis_client():
    client = MagicMock()

    async def analyze(metadata):
        return {"overall_score": 8.5, "repository": metadata.full_name}

    client.analyze = AsyncMock(side_effect=analyze)
    return client


@pytest.fixture
def sleep():
    return AsyncMock()


@pytest.fixture
def processor(repository_client, analysis_client, sleep):
    return BatchAnalysisProcessor(
        repository_client, analysis_client, item_delay_seconds=1.0, sleep=sleep
    )


class TestParseRepositoryRef:
    def test_string_form(self):
        assert parse_repository_ref("octocat/hello-world") == ("octocat", "hello-world")

    def test_dict_forms(self):
        assert parse_repository_ref({"owner": "a", "name": "b"}) == ("a", "b")
        assert parse_repository_ref({"owner": "a", "repo": "b", "url": "x"}) == ("a", "b")

    @pytest.mark.parametrize(
        "item",
        ["no-slash", "a/b/c", "/b", "a/", 42, None, {"owner": "a"}],
    )
    def test_invalid(self, item):
        with pytest.raises(InvalidPayloadError):
            parse_repository_ref(item)


class TestBatchAnalysisProcessor:
    @pytest.mark.asyncio
    async def test_all_succeed(self, processor, sleep, analysis_client):
        job = make_job({"repositories": ["a/a", {"owner": "b", "name": "b"}]})

        result = await processor.process(job)

        assert result["total"] == 2
        assert [s["id"] for s in result["succeeded"]] == ["a/a", "b/b"]
        assert result["succeeded"][0]["analysis"]["overall_score"] == 8.5
        assert result["failed"] == []
        assert "completed_at" in result
        assert [c.args[0] for c in job.report_progress.await_args_list] == [50, 100]
        # Delay between items, not after the last one
        sleep.assert_awaited_once_with(1.0)
        assert analysis_client.analyze.await_count == 2

    @pytest.mark.asyncio
    async def test_item_failures_are_recorded(self, processor, repository_client, analysis_client):
        async def get_repository(owner, name):
            if owner == "missing":
                raise NotFoundError("Repository missing/repo not found")
            if owner == "limited":
                raise RateLimitError("slow down", retry_after_seconds=60)
            return RepositoryMetadata(owner=owner, name=name)

        async def analyze(metadata):
            if metadata.owner == "bad":
                raise AnalysisError("model refused")
            return {"overall_score": 7}

        repository_client.get_repository.side_effect = get_repository
        analysis_client.analyze.side_effect = analyze
        job = make_job({"repositories": ["ok/repo", "missing/repo", "limited/repo", "bad/repo"]})

        result = await processor.process(job)

        assert result["total"] == 4
        assert [s["id"] for s in result["succeeded"]] == ["ok/repo"]
        assert result["failed"] == [
            {"id": "missing/repo", "error": "NotFoundError", "message": "Repository missing/repo not found"},
            {"id": "limited/repo", "error": "RateLimitError", "message": "slow down"},
            {"id": "bad/repo", "error": "AnalysisError", "message": "model refused"},
        ]
        assert job.report_progress.await_args_list[-1].args[0] == 100

    @pytest.mark.asyncio
    async def test_missing_metadata_counts_as_not_found(self, processor, repository_client):
        repository_client.get_repository.side_effect = None
        repository_client.get_repository.return_value = None
        job = make_job({"repositories": ["gone/repo"]})

        result = await processor.process(job)

        assert result["failed"][0]["error"] == "NotFoundError"

    @pytest.mark.asyncio
    async def test_empty_batch(self, processor, sleep):
        job = make_job({"repositories": []})

        result = await processor.process(job)

        assert result["total"] == 0
        assert result["succeeded"] == []
        assert result["failed"] == []
        job.report_progress.assert_awaited_once_with(100)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_payload_delay_override(self, processor, sleep):
        job = make_job({"repositories": ["a/a", "b/b", "c/c"], "delay_seconds": 0})
        await processor.process(job)
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {},
            {"repositories": "a/a"},
            {"repositories": ["a/a", "not-a-repo"]},
            {"repositories": ["a/a"], "delay_seconds": -1},
        ],
    )
    async def test_invalid_payload(self, processor, repository_client, payload):
        with pytest.raises(InvalidPayloadError):
            await processor.process(make_job(payload))
        repository_client.get_repository.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_cancellation_between_items(self, processor, repository_client):
        job = make_job({"repositories": ["a/a", "b/b", "c/c"]})
        job.raise_if_cancelled.side_effect = [None, JobCancelledError("cancelled")]

        with pytest.raises(JobCancelledError):
            await processor.process(job)

        assert repository_client.get_repository.await_count == 1
