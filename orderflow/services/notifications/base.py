"""
Notification Service Abstract Base Class

Defines the interface for publishing messages to a topic that external
subscribers (email, SMS, dashboards) listen on. Supports Mock
(development), Redis (production) and Celery (queued) implementations.
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass
class NotificationResult:
    """Result from publishing a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


def build_envelope(
    topic: str,
    subject: str,
    message: str,
    attributes: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    """JSON document published to the topic."""
    return {
        "message_id": uuid.uuid4().hex,
        "topic": topic,
        "subject": subject,
        "message": message,
        "attributes": dict(attributes or {}),
        "published_at": datetime.now(timezone.utc).isoformat(),
    }


class BaseNotificationService(ABC):
    """Abstract base class for notification services."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    @abstractmethod
    async def publish(
        self,
        topic: str,
        subject: str,
        message: str,
        attributes: Optional[dict[str, str]] = None,
    ) -> NotificationResult:
        """
        Publish one message to ``topic``.

        Implementations report failures through the result instead of
        raising, so the caller decides whether to retry.
        """
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
        pass

    async def close(self) -> None:
        """Release connections held by the service."""
