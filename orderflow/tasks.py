"""
Celery Tasks
Background publishing of order notifications, retried with Celery's own
exponential backoff and independent of the status transition that
triggered them.
"""

import json
import logging
import time

import redis
from redis.exceptions import RedisError

from orderflow.celery_worker import celery_app, settings

logger = logging.getLogger(__name__)


def _redis_client() -> redis.Redis:
    return redis.Redis.from_url(settings.redis_url, socket_timeout=5)


@celery_app.task(
    bind=True,
    max_retries=settings.notification_max_attempts,
    default_retry_delay=5,
    autoretry_for=(RedisError,),
    retry_backoff=True,
    retry_backoff_max=60,
)
def publish_order_notification(self, envelope: dict) -> dict:
    """
    Publish a prepared notification envelope on its topic.

    Args:
        envelope: Document built by build_envelope()

    Returns:
        dict: Result of the publish
    """
    task_id = self.request.id
    topic = envelope["topic"]
    order_id = envelope.get("attributes", {}).get("orderId", "unknown")
    start_time = time.time()

    client = _redis_client()
    try:
        receivers = client.publish(topic, json.dumps(envelope))
    except RedisError as e:
        logger.warning(f"Task {task_id}: publish for order {order_id} failed - {e}")
        # Celery will auto-retry based on configuration
        raise
    finally:
        client.close()

    elapsed = round(time.time() - start_time, 3)
    logger.info(f"Task {task_id}: order {order_id} published to {topic} in {elapsed}s")

    return {
        'success': True,
        'message_id': envelope["message_id"],
        'receivers': receivers,
        'task_id': task_id,
        'processing_time_seconds': elapsed,
    }
