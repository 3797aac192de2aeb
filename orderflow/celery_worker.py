"""
Celery Worker Configuration
Runs the queued notification publisher (NOTIFICATION_BACKEND=celery) with
Redis as broker and result backend.

    celery -A orderflow.celery_worker:celery_app worker
"""

from celery import Celery

from orderflow.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    'orderflow_notifications',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['orderflow.tasks'],
)

celery_app.conf.update(
    # Envelopes are plain JSON documents
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    enable_utc=True,
    result_expires=600,

    # Acknowledge only after the publish ran and requeue when a worker dies,
    # so a queued notification is delivered at least once
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    broker_connection_retry_on_startup=True,
)
