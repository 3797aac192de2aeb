"""
Order Store Factory

Builds the order store selected by configuration. The instance is created
once at startup (API lifespan or worker entrypoint) and handed to the
components that need it.

Environment Switching:
    - STORE_BACKEND=memory (development default) -> InMemoryOrderStore
    - STORE_BACKEND=sql (staging/production default) -> SqlOrderStore
"""

import logging
from typing import Optional

from orderflow.core.clock import Clock
from orderflow.core.config import Settings, StoreBackend
from orderflow.database import create_engine_from_settings
from orderflow.services.store.base import BaseOrderStore
from orderflow.services.store.memory import InMemoryOrderStore
from orderflow.services.store.sql import SqlOrderStore

logger = logging.getLogger(__name__)


def create_order_store(settings: Settings, clock: Optional[Clock] = None) -> BaseOrderStore:
    """
    Create the configured order store.

    Returns:
        BaseOrderStore: InMemoryOrderStore or SqlOrderStore
    """
    backend = settings.resolved_store_backend

    if backend == StoreBackend.MEMORY:
        logger.info("Order Store: Using InMemoryOrderStore")
        return InMemoryOrderStore(
            clock=clock,
            poll_interval=settings.feed_poll_interval_seconds,
        )

    logger.info(f"Order Store: Using SqlOrderStore ({settings.env_mode.value} mode)")
    return SqlOrderStore(
        create_engine_from_settings(settings),
        clock=clock,
        poll_interval=settings.feed_poll_interval_seconds,
    )


__all__ = [
    "create_order_store",
    "BaseOrderStore",
    "InMemoryOrderStore",
    "SqlOrderStore",
]
