"""Sentry wiring for the job service."""

import os
from typing import Any, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from reporadar import __version__
from reporadar.config import Settings
from reporadar.jobs.errors import (
    InvalidPayloadError,
    InvalidStateError,
    JobCancelledError,
    JobNotFoundError,
    UnknownJobKindError,
)

logger = structlog.get_logger(__name__)

# Raised for bad input from API callers or job submitters
CALLER_ERRORS = (
    InvalidPayloadError,
    InvalidStateError,
    JobCancelledError,
    JobNotFoundError,
    UnknownJobKindError,
)

# Scraped or polled constantly; tracing them is noise
UNTRACED_ROUTES = ("/metrics", "/health")


def _is_client_status(status_code: Any) -> bool:
    return isinstance(status_code, int) and 400 <= status_code < 500


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """Drop caller errors. Queue outages and worker crashes still go through."""
    exc_info = hint.get("exc_info")
    if exc_info:
        exc_value = exc_info[1]
        if isinstance(exc_value, CALLER_ERRORS):
            return None
        if _is_client_status(getattr(exc_value, "status_code", None)):
            return None

    response = event.get("contexts", {}).get("response", {})
    if _is_client_status(response.get("status_code")):
        return None
    return event


def _create_traces_sampler(settings: Settings) -> Any:
    def traces_sampler(sampling_context: dict) -> float:
        tx_name = sampling_context.get("transaction_context", {}).get("name", "")
        if tx_name in UNTRACED_ROUTES:
            return 0.0

        parent = sampling_context.get("parent_sampled")
        if parent is not None:
            return float(parent)
        return settings.sentry_traces_sample_rate

    return traces_sampler


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if SENTRY_DSN is set. Returns whether it was.

    Processor crashes are logged with logger.exception; the logging
    integration turns ERROR records into events with the stack trace.
    """
    if not settings.sentry_dsn:
        return False

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"reporadar-jobs@{__version__}"),
        integrations=[
            LoggingIntegration(level=None, event_level="ERROR"),
            StarletteIntegration(transaction_style="url"),
            FastApiIntegration(transaction_style="url"),
        ],
        traces_sampler=_create_traces_sampler(settings),
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )

    sentry_sdk.set_tag("service", "reporadar-jobs")
    sentry_sdk.set_tag("queue_backend", settings.queue_backend)
    sentry_sdk.set_tag("worker_enabled", settings.worker_enabled)

    logger.info(
        "sentry_initialized",
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        queue_backend=settings.queue_backend,
    )
    return True
