"""Root conftest for test suite.

Shared job-system fixtures: a controllable clock, a delivery channel that
records notifications, and a JobQueue wired to the in-memory backend.
Auto-skips slow tests unless requested with: pytest -m slow
"""

from datetime import datetime, timedelta, timezone

import pytest

from reporadar.jobs.backends.memory import InMemoryQueueBackend
from reporadar.jobs.backoff import BackoffPolicy
from reporadar.jobs.metrics import JobMetrics
from reporadar.jobs.notifications import NotificationService
from reporadar.jobs.queue import JobQueue


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class RecordingDelivery:
    """Keeps every delivered notification in order."""

    def __init__(self):
        self.notifications = []

    async def deliver(self, notification) -> None:
        self.notifications.append(notification)

    @property
    def events(self) -> list[str]:
        return [n.event.value for n in self.notifications]

    def progress_values(self) -> list[int]:
        return [n.progress for n in self.notifications if n.event.value == "progress"]


class FunctionProcessor:
    """Processor backed by an async function(job) -> result."""

    def __init__(self, fn):
        self.fn = fn
        self.calls = []

    async def process(self, job):
        self.calls.append(job)
        return await self.fn(job)


def pytest_collection_modifyitems(config, items):
    """Skip slow tests unless explicitly requested."""
    markexpr = config.getoption("-m", default="")
    if "slow" in markexpr:
        return

    skip_slow = pytest.mark.skip(
        reason="slow tests skipped by default. Run with: pytest -m slow"
    )
    for item in items:
        if "slow" in item.keywords:
            item.add_marker(skip_slow)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def delivery():
    return RecordingDelivery()


@pytest.fixture
def backend():
    return InMemoryQueueBackend()


@pytest.fixture
def metrics(clock):
    return JobMetrics(history_size=100, clock=clock)


@pytest.fixture
def notifications(delivery):
    return NotificationService(delivery)


@pytest.fixture
def queue(backend, metrics, notifications, clock):
    return JobQueue(
        backend,
        metrics,
        notifications,
        max_attempts=3,
        backoff=BackoffPolicy(base_seconds=1.0, max_seconds=300.0),
        stale_timeout_seconds=300,
        cancel_grace_seconds=30,
        clock=clock,
    )


@pytest.fixture
def processor_factory():
    """Build a processor from an async function."""
    return FunctionProcessor
