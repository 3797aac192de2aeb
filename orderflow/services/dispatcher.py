"""
Notification Dispatcher

Tells topic subscribers that an order changed status. Called by the
transition worker after the status write has committed; a failure here
never touches the stored order.

Publish failures are retried with exponential backoff. When every attempt
fails, NotificationError is raised for the caller to log. A retry after a
publish that reached the topic but reported failure can deliver twice, so
notifications are at-least-once.
"""

import logging
from typing import Optional

from orderflow.core.clock import Clock, SystemClock
from orderflow.core.config import Settings
from orderflow.core.exceptions import NotificationError
from orderflow.models import OrderRecord
from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Formats order notifications and publishes them to the order topic."""

    def __init__(
        self,
        service: BaseNotificationService,
        topic: str,
        max_attempts: int = 3,
        backoff_seconds: float = 0.5,
        clock: Optional[Clock] = None,
    ):
        self.service = service
        self.topic = topic
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.clock = clock or SystemClock()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        service: BaseNotificationService,
        clock: Optional[Clock] = None,
    ) -> "NotificationDispatcher":
        return cls(
            service,
            topic=settings.order_topic,
            max_attempts=settings.notification_max_attempts,
            backoff_seconds=settings.notification_backoff_seconds,
            clock=clock,
        )

    @staticmethod
    def build_message(order: OrderRecord) -> tuple[str, str]:
        """Return (subject, body) for a status notification."""
        status_label = order.status.value.replace("_", " ").lower()
        subject = f"Order {order.order_id} is {status_label}"
        body = (
            f"Hi {order.customer_name}! Your {order.item} from {order.restaurant} "
            f"is now {status_label}.\n"
            f"Order ID: {order.order_id}\n"
            f"Status: {order.status.value}"
        )
        return subject, body

    async def _publish_once(self, subject: str, body: str, attributes: dict[str, str]) -> NotificationResult:
        try:
            return await self.service.publish(self.topic, subject, body, attributes)
        except Exception as e:
            logger.exception(f"Notification service raised while publishing to {self.topic}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider=self.service.provider_name,
            )

    async def notify(self, order: OrderRecord) -> NotificationResult:
        """
        Publish the status notification for ``order``.

        Raises:
            NotificationError: Every attempt failed
        """
        subject, body = self.build_message(order)
        attributes = {"orderId": order.order_id, "status": order.status.value}

        result = None
        for attempt in range(1, self.max_attempts + 1):
            result = await self._publish_once(subject, body, attributes)
            if result.success:
                logger.info(
                    f"Order {order.order_id}: notification {result.message_id} "
                    f"published via {result.provider}"
                )
                return result

            logger.warning(
                f"Order {order.order_id}: notification attempt {attempt}/{self.max_attempts} "
                f"failed - {result.error_message}"
            )
            if attempt < self.max_attempts:
                await self.clock.sleep(self.backoff_seconds * 2 ** (attempt - 1))

        raise NotificationError(
            f"Notification for order {order.order_id} failed after "
            f"{self.max_attempts} attempts: {result.error_message}",
            order_id=order.order_id,
        )
