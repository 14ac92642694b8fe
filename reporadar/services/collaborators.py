"""Interfaces of the external services the processors depend on.

Implementations live in the host web service (GitHub client, AI analysis
client, database-backed export queries). The job system only relies on these
shapes.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, NamedTuple, Optional, Protocol


@dataclass
class RepositoryMetadata:
    """Repository details fetched from the VCS provider."""

    owner: str
    name: str
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    size: int = 0
    topics: list[str] = field(default_factory=list)
    languages: dict[str, int] = field(default_factory=dict)
    readme: Optional[str] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.name}"


class RepositoryClient(Protocol):
    """VCS metadata lookup."""

    async def get_repository(self, owner: str, name: str) -> RepositoryMetadata:
        """Fetch repository metadata.

        Raises:
            NotFoundError: Repository missing or private
            RateLimitError: Provider rate limit hit
        """
        ...


class AnalysisClient(Protocol):
    """AI scoring of a single repository."""

    async def analyze(self, metadata: RepositoryMetadata) -> dict[str, Any]:
        """Return scores and insights.

        Raises:
            AnalysisError: The model could not produce an analysis
        """
        ...


class ExportDataSource(Protocol):
    """Row source for exports."""

    async def query(
        self, export_type: str, filters: dict[str, Any], limit: int
    ) -> list[dict[str, Any]]:
        """Fetch at most `limit` rows of `export_type` matching `filters`."""
        ...


class JobCollaborators(NamedTuple):
    """The host service's clients, handed to the app to run workers."""

    repository_client: RepositoryClient
    analysis_client: AnalysisClient
    export_source: ExportDataSource
