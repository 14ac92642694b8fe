"""asyncpg pool for the PostgreSQL queue backend."""

import traceback
from typing import Optional

import asyncpg
import structlog

from reporadar.config import Settings

logger = structlog.get_logger(__name__)


async def init_database_pool(settings: Settings) -> Optional[asyncpg.Pool]:
    """Create the connection pool from settings.

    Returns None when DATABASE_URL is missing or the database can't be
    reached; the job endpoints then answer 503 instead of blocking startup.
    """
    if not settings.database_url:
        logger.warning(
            "database_not_configured",
            detail="Set DATABASE_URL to use the postgres queue backend",
        )
        return None

    try:
        pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            timeout=10,  # Connection timeout
            command_timeout=30,  # Query timeout
        )
    except Exception as e:
        logger.error(
            "database_pool_init_failed",
            error=str(e),
            traceback=traceback.format_exc(),
        )
        return None

    logger.info(
        "database_pool_initialized",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return pool
