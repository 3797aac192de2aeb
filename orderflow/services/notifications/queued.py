"""
Celery Notification Service

Hands each notification to the ``publish_order_notification`` Celery task.
Publishing succeeds as soon as the task is queued; delivery retries happen
in the Celery worker with their own backoff.
"""

import asyncio
import logging
from typing import Optional

from kombu.exceptions import OperationalError

from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    build_envelope,
)

logger = logging.getLogger(__name__)


class CeleryNotificationService(BaseNotificationService):
    """Queues notifications for the Celery worker."""

    def __init__(self):
        # Imported here so the API does not build a Celery app unless asked to
        from orderflow.tasks import publish_order_notification
        self.task = publish_order_notification
        logger.info("CeleryNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "celery"

    async def publish(
        self,
        topic: str,
        subject: str,
        message: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> NotificationResult:
        envelope = build_envelope(topic, subject, message, attributes)

        try:
            async_result = await asyncio.to_thread(self.task.delay, envelope)
        except OperationalError as e:
            logger.error(f"Could not queue notification for {topic}: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="celery"
            )

        logger.info(f"Notification queued for {topic}: {subject} (task {async_result.id})")
        return NotificationResult(
            success=True,
            message_id=envelope["message_id"],
            provider="celery"
        )

    def _ping_broker(self) -> None:
        with self.task.app.connection_for_write() as conn:
            conn.ensure_connection(max_retries=1)

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._ping_broker)
            return True
        except OperationalError as e:
            logger.error(f"Celery broker health check failed: {e}")
            return False
