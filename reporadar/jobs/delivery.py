"""Notification delivery channels."""

import asyncio
from typing import Awaitable, Callable, Optional

import httpx
import structlog

from reporadar.jobs.notifications import Notification

logger = structlog.get_logger(__name__)


class NotificationDeliveryError(Exception):
    """Raised when delivery fails after retries."""

    pass


class LogDelivery:
    """Writes notifications to the structured log."""

    async def deliver(self, notification: Notification) -> None:
        fields = notification.to_dict()
        # "event" is structlog's message key
        notification_event = fields.pop("event")
        logger.info("job_notification", notification_event=notification_event, **fields)


class WebhookDelivery:
    """Posts notifications as JSON to a webhook endpoint with retry logic."""

    def __init__(
        self,
        webhook_url: str,
        max_retries: int = 3,
        timeout: float = 10.0,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """
        Initialize webhook delivery.

        Args:
            webhook_url: Webhook URL
            max_retries: Maximum delivery attempts (default 3)
            timeout: Request timeout in seconds (default 10)
            headers: Optional custom headers (e.g., API keys)
            transport: Optional httpx transport (tests)
            sleep: Backoff sleep function
        """
        self.webhook_url = webhook_url
        self.max_retries = max_retries
        self.timeout = timeout
        self.headers = headers or {}
        self._transport = transport
        self._sleep = sleep

    def _format_payload(self, notification: Notification) -> dict:
        return {
            "event_type": f"job.{notification.event.value}",
            "notification": notification.to_dict(),
        }

    async def deliver(self, notification: Notification) -> None:
        """
        Send notification with retry logic.

        Raises:
            NotificationDeliveryError: If delivery fails after retries
        """
        payload = self._format_payload(notification)
        headers = {"Content-Type": "application/json", **self.headers}

        for attempt in range(self.max_retries):
            try:
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    response = await client.post(
                        self.webhook_url, json=payload, headers=headers
                    )
                    response.raise_for_status()

                logger.info(
                    "notification_webhook_delivered",
                    job_id=str(notification.job_id),
                    notification_event=notification.event.value,
                    attempt=attempt + 1,
                )
                return

            except httpx.TimeoutException as e:
                logger.warning(
                    "notification_webhook_timeout",
                    job_id=str(notification.job_id),
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    error=str(e),
                )
                if attempt + 1 >= self.max_retries:
                    raise NotificationDeliveryError(
                        f"Webhook timeout after {self.max_retries} attempts"
                    ) from e

            except httpx.HTTPStatusError as e:
                status_code = e.response.status_code
                logger.warning(
                    "notification_webhook_http_error",
                    job_id=str(notification.job_id),
                    attempt=attempt + 1,
                    max_retries=self.max_retries,
                    status_code=status_code,
                )
                # Client errors won't improve on retry
                if 400 <= status_code < 500 or attempt + 1 >= self.max_retries:
                    raise NotificationDeliveryError(
                        f"Webhook failed with status {status_code} "
                        f"after {attempt + 1} attempts"
                    ) from e

            except httpx.HTTPError as e:
                logger.warning(
                    "notification_webhook_transport_error",
                    job_id=str(notification.job_id),
                    attempt=attempt + 1,
                    error=str(e),
                )
                if attempt + 1 >= self.max_retries:
                    raise NotificationDeliveryError(
                        f"Webhook failed after {self.max_retries} attempts: {e}"
                    ) from e

            # Exponential backoff: 1s, 2s, 4s
            await self._sleep(2**attempt)
