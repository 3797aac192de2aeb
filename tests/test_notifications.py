import json

import fakeredis
import fakeredis.aioredis
import pytest

from orderflow.core.config import Settings
from orderflow.services.notifications import (
    MockNotificationService,
    RedisNotificationService,
    build_envelope,
    create_notification_service,
)

TOPIC = "order-status-updates"


@pytest.fixture
def redis_server() -> fakeredis.FakeServer:
    return fakeredis.FakeServer()


@pytest.fixture
def eager_celery(monkeypatch, redis_server):
    from orderflow import tasks
    from orderflow.celery_worker import celery_app

    monkeypatch.setattr(celery_app.conf, "task_always_eager", True)
    monkeypatch.setattr(celery_app.conf, "task_eager_propagates", True)
    monkeypatch.setattr(tasks, "_redis_client", lambda: fakeredis.FakeRedis(server=redis_server))
    return tasks


def test_envelope_shape():
    envelope = build_envelope(TOPIC, "Order 1 is out for delivery", "body", {"orderId": "1"})

    assert envelope["topic"] == TOPIC
    assert envelope["attributes"] == {"orderId": "1"}
    assert envelope["message_id"]
    assert envelope["published_at"]
    assert build_envelope(TOPIC, "s", "m")["message_id"] != envelope["message_id"]


@pytest.mark.anyio
async def test_mock_forced_failure_is_reported_not_raised():
    service = MockNotificationService()
    service.fail_next(1)

    failed = await service.publish(TOPIC, "subject", "body")
    assert not failed.success
    assert failed.error_message

    ok = await service.publish(TOPIC, "subject", "body", {"orderId": "abc"})
    assert ok.success
    assert [m["message_id"] for m in service.messages_for("abc")] == [ok.message_id]


@pytest.mark.anyio
async def test_redis_service_publishes_json_to_topic_channel(redis_server):
    client = fakeredis.aioredis.FakeRedis(server=redis_server)
    service = RedisNotificationService(client=client)
    pubsub = client.pubsub()
    await pubsub.subscribe(TOPIC)
    await pubsub.get_message(timeout=1)

    result = await service.publish(TOPIC, "Order 1 is out for delivery", "body", {"orderId": "1"})

    assert result.success
    assert result.provider == "redis"
    message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1)
    envelope = json.loads(message["data"])
    assert envelope["message_id"] == result.message_id
    assert envelope["attributes"] == {"orderId": "1"}
    assert await service.health_check()

    await pubsub.aclose()
    await service.close()


@pytest.mark.anyio
async def test_redis_outage_is_a_failed_result(redis_server):
    redis_server.connected = False
    service = RedisNotificationService(client=fakeredis.aioredis.FakeRedis(server=redis_server))

    result = await service.publish(TOPIC, "subject", "body")

    assert not result.success
    assert result.error_message
    assert not await service.health_check()


def test_factory_selects_backend():
    mock = create_notification_service(Settings(_env_file=None, env_mode="development"))
    assert isinstance(mock, MockNotificationService)

    real = create_notification_service(Settings(_env_file=None, env_mode="production"))
    assert isinstance(real, RedisNotificationService)

    queued = create_notification_service(
        Settings(_env_file=None, env_mode="development", notification_backend="celery")
    )
    assert queued.provider_name == "celery"


def test_celery_task_publishes_envelope(eager_celery, redis_server):
    subscriber = fakeredis.FakeRedis(server=redis_server).pubsub()
    subscriber.subscribe(TOPIC)
    subscriber.get_message(timeout=1)
    envelope = build_envelope(TOPIC, "subject", "body", {"orderId": "42"})

    result = eager_celery.publish_order_notification.delay(envelope).get()

    assert result["success"]
    assert result["message_id"] == envelope["message_id"]
    assert result["receivers"] == 1
    delivered = subscriber.get_message(ignore_subscribe_messages=True, timeout=1)
    assert json.loads(delivered["data"])["attributes"] == {"orderId": "42"}


@pytest.mark.anyio
async def test_celery_service_queues_task(eager_celery, redis_server):
    from orderflow.services.notifications.queued import CeleryNotificationService

    service = CeleryNotificationService()
    result = await service.publish(TOPIC, "subject", "body", {"orderId": "7"})

    assert result.success
    assert result.provider == "celery"
