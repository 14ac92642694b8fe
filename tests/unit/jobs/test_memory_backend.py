"""Tests for the in-memory queue backend."""

from datetime import datetime, timedelta, timezone

import pytest

from reporadar.jobs.backends.memory import InMemoryQueueBackend
from reporadar.jobs.errors import QueueUnavailableError
from reporadar.jobs.models import JobRecord
from reporadar.jobs.types import JobStatus

NOW = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_record(**kwargs) -> JobRecord:
    kwargs.setdefault("kind", "export")
    kwargs.setdefault("payload", {})
    kwargs.setdefault("run_after", NOW)
    return JobRecord(**kwargs)


class TestClaimNext:
    @pytest.mark.asyncio
    async def test_empty_queue_returns_none(self):
        backend = InMemoryQueueBackend()
        assert await backend.claim_next(NOW) is None

    @pytest.mark.asyncio
    async def test_claim_moves_to_processing(self):
        backend = InMemoryQueueBackend()
        record = make_record()
        await backend.add(record)

        claimed = await backend.claim_next(NOW)
        assert claimed.id == record.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.attempts == 1
        assert claimed.started_at == NOW

        stored = await backend.get(record.id)
        assert stored.status == JobStatus.PROCESSING
        assert await backend.claim_next(NOW) is None

    @pytest.mark.asyncio
    async def test_priority_then_fifo(self):
        backend = InMemoryQueueBackend()
        low = make_record(priority=100)
        first_high = make_record(priority=10)
        second_high = make_record(priority=10)
        for record in (low, first_high, second_high):
            await backend.add(record)

        order = [(await backend.claim_next(NOW)).id for _ in range(3)]
        assert order == [first_high.id, second_high.id, low.id]

    @pytest.mark.asyncio
    async def test_future_run_after_not_claimed(self):
        backend = InMemoryQueueBackend()
        await backend.add(make_record(run_after=NOW + timedelta(seconds=5)))

        assert await backend.claim_next(NOW) is None
        assert await backend.claim_next(NOW + timedelta(seconds=5)) is not None


class TestSave:
    @pytest.mark.asyncio
    async def test_conditional_save(self):
        backend = InMemoryQueueBackend()
        record = make_record()
        await backend.add(record)
        claimed = await backend.claim_next(NOW)

        claimed.progress = 40
        assert await backend.save(claimed, expected_status=JobStatus.QUEUED) is False
        assert (await backend.get(record.id)).progress == 0

        assert await backend.save(claimed, expected_status=JobStatus.PROCESSING) is True
        assert (await backend.get(record.id)).progress == 40

    @pytest.mark.asyncio
    async def test_save_unknown_record(self):
        backend = InMemoryQueueBackend()
        assert await backend.save(make_record()) is False

    @pytest.mark.asyncio
    async def test_returned_records_are_snapshots(self):
        backend = InMemoryQueueBackend()
        record = make_record()
        await backend.add(record)

        fetched = await backend.get(record.id)
        fetched.progress = 99
        assert (await backend.get(record.id)).progress == 0


class TestListAndStats:
    @pytest.mark.asyncio
    async def test_list_newest_first_with_filters(self):
        backend = InMemoryQueueBackend()
        a = make_record(kind="export")
        b = make_record(kind="batch-analysis")
        c = make_record(kind="export")
        for record in (a, b, c):
            await backend.add(record)

        records, total = await backend.list_jobs(kind="export")
        assert total == 2
        assert [r.id for r in records] == [c.id, a.id]

        records, total = await backend.list_jobs(limit=1, offset=1)
        assert total == 3
        assert [r.id for r in records] == [b.id]

    @pytest.mark.asyncio
    async def test_stats(self):
        backend = InMemoryQueueBackend()
        await backend.add(make_record())
        await backend.add(make_record(run_after=NOW + timedelta(minutes=1)))
        await backend.add(make_record())
        await backend.claim_next(NOW)

        stats = await backend.stats(NOW)
        assert stats.waiting == 1
        assert stats.delayed == 1
        assert stats.active == 1
        assert stats.completed == 0


class TestPurge:
    @pytest.mark.asyncio
    async def test_purge_terminal_only(self):
        backend = InMemoryQueueBackend()
        old_done = make_record()
        queued = make_record()
        await backend.add(old_done)
        await backend.add(queued)

        claimed = await backend.claim_next(NOW)
        claimed.transition(JobStatus.COMPLETED)
        claimed.completed_at = NOW
        await backend.save(claimed)

        removed = await backend.purge_terminal(NOW + timedelta(hours=1))
        assert removed == 1
        assert await backend.get(old_done.id) is None
        assert await backend.get(queued.id) is not None


class TestAvailability:
    @pytest.mark.asyncio
    async def test_unavailable_raises(self):
        backend = InMemoryQueueBackend()
        backend.set_available(False)
        with pytest.raises(QueueUnavailableError):
            await backend.add(make_record())
        with pytest.raises(QueueUnavailableError):
            await backend.claim_next(NOW)

        backend.set_available(True)
        await backend.add(make_record())
