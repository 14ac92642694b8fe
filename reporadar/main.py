"""RepoRadar job service - FastAPI application."""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Optional

import structlog
from fastapi import FastAPI

from reporadar import __version__
from reporadar.config import get_settings
from reporadar.core.database import init_database_pool
from reporadar.core.sentry import init_sentry
from reporadar.jobs.queue import JobQueue
from reporadar.jobs.setup import build_job_queue, build_status_queue, build_worker_pool
from reporadar.jobs.worker import WorkerPool
from reporadar.routers import jobs, metrics
from reporadar.services.collaborators import JobCollaborators


def configure_logging(log_level: str = "INFO") -> None:
    """Route structlog through stdlib logging with JSON output."""
    logging.basicConfig(format="%(message)s", level=log_level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


settings = get_settings()
configure_logging(settings.log_level)
init_sentry(settings)

logger = structlog.get_logger(__name__)


async def _build_job_services(
    collaborators: Optional[JobCollaborators],
) -> tuple[Optional[JobQueue], Optional[WorkerPool], Any]:
    """Queue, worker pool and database pool from settings.

    With collaborators the queue runs jobs. Without them a postgres-backed
    service still serves status and cancellation for jobs run elsewhere.
    """
    pool = None
    if settings.queue_backend == "postgres":
        pool = await init_database_pool(settings)
        if pool is None:
            return None, None, None

    if collaborators is not None:
        queue = build_job_queue(settings, *collaborators, pool=pool)
        return queue, build_worker_pool(settings, queue), pool

    if pool is not None:
        logger.info("job_queue_status_only", queue_backend=settings.queue_backend)
        return build_status_queue(settings, pool=pool), None, pool

    # An in-memory queue nobody can submit to has nothing to report
    return None, None, None


def create_app(
    job_queue: Optional[JobQueue] = None,
    worker_pool: Optional[WorkerPool] = None,
    collaborators: Optional[JobCollaborators] = None,
) -> FastAPI:
    """Build the API app.

    Pass a ready `job_queue` (and optionally `worker_pool`), or let startup
    build them from settings: with the host service's `collaborators` the
    queue runs jobs, and on the postgres backend the connection pool is
    created here and closed on shutdown. Without a queue the job endpoints
    answer 503.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info(
            "service_starting",
            version=__version__,
            host=settings.service_host,
            port=settings.service_port,
            queue_backend=settings.queue_backend,
        )

        queue, worker, db_pool = job_queue, worker_pool, None
        if queue is None:
            queue, worker, db_pool = await _build_job_services(collaborators)

        app.state.job_queue = queue
        app.state.worker_pool = worker
        jobs.set_job_queue(queue)
        if queue is None:
            logger.warning("job_queue_not_configured")
        if worker is not None and settings.worker_enabled:
            await worker.start()

        yield

        logger.info("service_stopping")
        if worker is not None:
            await worker.stop()
        jobs.set_job_queue(None)
        if db_pool is not None:
            await db_pool.close()
            logger.info("database_pool_closed")

    app = FastAPI(
        title="RepoRadar Jobs",
        description="Background job processing for repository analysis and exports",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.job_queue = None
    app.state.worker_pool = None

    app.include_router(jobs.router, tags=["Jobs"])
    app.include_router(metrics.router)  # Metrics endpoint (excluded from OpenAPI)

    @app.get("/health", tags=["Health"])
    async def health():
        """Liveness plus job subsystem wiring."""
        worker = app.state.worker_pool
        return {
            "status": "ok",
            "version": __version__,
            "job_queue": app.state.job_queue is not None,
            "worker_running": worker.is_running if worker else False,
        }

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "RepoRadar Jobs",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()
