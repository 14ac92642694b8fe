"""Queue backends."""

from reporadar.jobs.backends.base import QueueBackend
from reporadar.jobs.backends.memory import InMemoryQueueBackend
from reporadar.jobs.backends.postgres import PostgresQueueBackend

__all__ = ["QueueBackend", "InMemoryQueueBackend", "PostgresQueueBackend"]
