"""
Redis Notification Service

Production implementation publishing JSON envelopes on a Redis channel
named after the topic. Email/SMS relays and dashboards subscribe to the
channel; the service does not know who they are.
"""

import json
import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    build_envelope,
)

logger = logging.getLogger(__name__)


class RedisNotificationService(BaseNotificationService):
    """Publishes notifications with Redis PUBLISH."""

    def __init__(self, redis_url: Optional[str] = None, client: Optional[aioredis.Redis] = None):
        if client is None:
            client = aioredis.Redis.from_url(redis_url, socket_timeout=5)
        self.client = client
        logger.info("RedisNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "redis"

    async def publish(
        self,
        topic: str,
        subject: str,
        message: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> NotificationResult:
        """Publish the envelope on the topic channel."""
        envelope = build_envelope(topic, subject, message, attributes)

        try:
            receivers = await self.client.publish(topic, json.dumps(envelope))
        except RedisError as e:
            logger.error(f"Redis publish error on {topic}: {e}")
            return NotificationResult(
                success=False,
                error_message=str(e),
                provider="redis"
            )

        if receivers == 0:
            logger.warning(f"No subscribers on {topic} for {envelope['message_id']}")
        logger.info(f"Message published to {topic}: {subject} ({receivers} receivers)")

        return NotificationResult(
            success=True,
            message_id=envelope["message_id"],
            provider="redis"
        )

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.client.aclose()
