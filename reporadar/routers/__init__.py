"""API routers for the RepoRadar job service."""

from reporadar.routers import jobs, metrics

__all__ = ["jobs", "metrics"]
