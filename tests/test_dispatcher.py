import uuid
from datetime import datetime, timezone

import pytest

from orderflow.core.exceptions import NotificationError
from orderflow.models import OrderRecord, OrderStatus
from orderflow.services.dispatcher import NotificationDispatcher
from orderflow.services.notifications.mock import MockNotificationService


def shipped_order() -> OrderRecord:
    now = datetime.now(timezone.utc)
    return OrderRecord(
        order_id=str(uuid.uuid4()),
        item="Chicken Biryani",
        restaurant="Paradise",
        customer_name="Mobile User",
        status=OrderStatus.OUT_FOR_DELIVERY,
        created_at=now,
        updated_at=now,
    )


class ExplodingService(MockNotificationService):
    async def publish(self, topic, subject, message, attributes=None):
        raise RuntimeError("socket closed")


def test_message_mentions_order_and_status():
    order = shipped_order()
    subject, body = NotificationDispatcher.build_message(order)

    assert order.order_id in subject
    assert "out for delivery" in subject
    assert order.order_id in body
    assert "OUT_FOR_DELIVERY" in body
    assert "Chicken Biryani" in body


@pytest.mark.anyio
async def test_notify_publishes_once_to_topic(notifications, dispatcher):
    order = shipped_order()
    result = await dispatcher.notify(order)

    assert result.success
    assert len(notifications.published) == 1
    envelope = notifications.published[0]
    assert envelope["topic"] == "order-status-updates"
    assert envelope["attributes"] == {"orderId": order.order_id, "status": "OUT_FOR_DELIVERY"}
    assert envelope["message_id"] == result.message_id


@pytest.mark.anyio
async def test_notify_retries_until_publish_succeeds(notifications):
    dispatcher = NotificationDispatcher(notifications, "orders", max_attempts=3, backoff_seconds=0)
    notifications.fail_next(2)

    result = await dispatcher.notify(shipped_order())

    assert result.success
    assert len(notifications.published) == 1


@pytest.mark.anyio
async def test_notify_gives_up_after_max_attempts(notifications):
    dispatcher = NotificationDispatcher(notifications, "orders", max_attempts=2, backoff_seconds=0)
    notifications.fail_next(5)
    order = shipped_order()

    with pytest.raises(NotificationError) as exc_info:
        await dispatcher.notify(order)

    assert exc_info.value.order_id == order.order_id
    assert notifications.published == []


@pytest.mark.anyio
async def test_service_exceptions_count_as_failed_attempts():
    dispatcher = NotificationDispatcher(ExplodingService(), "orders", max_attempts=2, backoff_seconds=0)

    with pytest.raises(NotificationError, match="socket closed"):
        await dispatcher.notify(shipped_order())


def test_from_settings(settings, notifications):
    dispatcher = NotificationDispatcher.from_settings(settings, notifications)
    assert dispatcher.topic == settings.order_topic
    assert dispatcher.max_attempts == settings.notification_max_attempts
