"""
Mock Notification Service

Simulates topic publishing for development and tests.
No messages leave the process - they are logged and kept in ``published``.
"""

import asyncio
import logging
import random
from typing import Any, Optional

from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    build_envelope,
)

logger = logging.getLogger(__name__)


class MockNotificationService(BaseNotificationService):
    """Mock notification service for development."""

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.0,
        max_latency: float = 0.0,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.published: list[dict[str, Any]] = []
        self._forced_failures = 0
        logger.info(f"MockNotificationService initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "mock"

    def fail_next(self, count: int) -> None:
        """Make the next ``count`` publishes fail."""
        self._forced_failures += count

    def messages_for(self, order_id: str) -> list[dict[str, Any]]:
        """Published envelopes that reference ``order_id``."""
        return [
            m for m in self.published
            if m["attributes"].get("orderId") == order_id
        ]

    async def _simulate_latency(self) -> None:
        """Simulate network latency."""
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))

    def _should_fail(self) -> bool:
        if self._forced_failures > 0:
            self._forced_failures -= 1
            return True
        return random.random() < self.failure_rate

    async def publish(
        self,
        topic: str,
        subject: str,
        message: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> NotificationResult:
        """Simulate publishing to a topic."""
        await self._simulate_latency()

        if self._should_fail():
            logger.warning(f"Mock publish failed (simulated) to {topic}")
            return NotificationResult(
                success=False,
                error_message="Simulated publish failure",
                provider="mock"
            )

        envelope = build_envelope(topic, subject, message, attributes)
        self.published.append(envelope)
        logger.info(f"Mock message published to {topic}: {subject} (ID: {envelope['message_id']})")

        return NotificationResult(
            success=True,
            message_id=envelope["message_id"],
            provider="mock"
        )

    async def health_check(self) -> bool:
        """Mock always returns healthy."""
        return True
