"""
Notification Service Factory

Returns the Mock, Redis or Celery notification service selected by
NOTIFICATION_BACKEND (derived from ENV_MODE when unset).
"""

import logging

from orderflow.core.config import NotificationBackend, Settings
from orderflow.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
    build_envelope,
)
from orderflow.services.notifications.mock import MockNotificationService
from orderflow.services.notifications.real import RedisNotificationService

logger = logging.getLogger(__name__)


def create_notification_service(settings: Settings) -> BaseNotificationService:
    """Create the configured notification service."""
    backend = settings.resolved_notification_backend

    if backend == NotificationBackend.MOCK:
        logger.info("Notification Service: Using MockNotificationService")
        return MockNotificationService(
            failure_rate=0.05 if settings.is_development else 0.0,
            min_latency=0.05,
            max_latency=0.2,
        )

    if backend == NotificationBackend.CELERY:
        from orderflow.services.notifications.queued import CeleryNotificationService

        logger.info("Notification Service: Using CeleryNotificationService")
        return CeleryNotificationService()

    logger.info(f"Notification Service: Using RedisNotificationService ({settings.env_mode.value} mode)")
    return RedisNotificationService(settings.redis_url)


__all__ = [
    "create_notification_service",
    "BaseNotificationService",
    "NotificationResult",
    "MockNotificationService",
    "RedisNotificationService",
    "build_envelope",
]
