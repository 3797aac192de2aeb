"""
Order Store Abstract Base Class

Defines the interface every order store implements: point reads,
inserts, compare-and-set status updates and an ordered, replayable
change feed. Supports both in-memory (development) and SQL (production)
implementations.

Feed contract:
    - Every successful insert emits one INSERT event carrying the full record.
    - Every successful conditional update emits one UPDATE event.
    - Events carry a strictly increasing ``sequence``; a consumer resumes by
      subscribing with the last sequence it fully handled.
    - Delivery is at-least-once: a consumer that restarts from an older
      checkpoint sees events again.

Stores never retry writes on their own. Callers own retry policy.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import AsyncIterator, Optional

from orderflow.models import FeedEvent, OrderRecord, OrderStatus

logger = logging.getLogger(__name__)


class BaseOrderStore(ABC):
    """Abstract base class for order stores."""

    def __init__(self, poll_interval: float = 0.5):
        self.poll_interval = poll_interval

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""
        pass

    async def start(self) -> None:
        """Prepare the backing storage (create tables, connect, ...)."""

    async def close(self) -> None:
        """Release connections held by the store."""

    @abstractmethod
    async def insert(self, order: OrderRecord) -> OrderRecord:
        """
        Persist a new order and emit an INSERT event.

        Raises:
            DuplicateKeyError: An order with the same id exists
            TransientStoreError: Storage unavailable
        """
        pass

    @abstractmethod
    async def get(self, order_id: str) -> OrderRecord:
        """
        Fetch the current record.

        Raises:
            OrderNotFoundError: Unknown id
        """
        pass

    @abstractmethod
    async def conditional_update(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> OrderRecord:
        """
        Atomically move ``status`` from ``expected_status`` to ``new_status``.

        Returns:
            The updated record

        Raises:
            PreconditionFailedError: Stored status differs or order missing
            TransientStoreError: Storage unavailable; safe to retry
        """
        pass

    @abstractmethod
    async def read_events(self, after: int, limit: int) -> list[FeedEvent]:
        """Return up to ``limit`` feed events with sequence greater than ``after``."""
        pass

    @abstractmethod
    async def latest_sequence(self) -> int:
        """Sequence of the newest feed event (0 for an empty feed)."""
        pass

    @abstractmethod
    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> list[OrderRecord]:
        """Newest-first page of orders, optionally filtered by status."""
        pass

    @abstractmethod
    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check storage connectivity."""
        pass

    async def wait_for_events(self, after: int, timeout: float) -> None:
        """
        Block until events newer than ``after`` may exist, or ``timeout`` passes.

        Polling stores simply sleep; stores that can signal writes override it.
        """
        await asyncio.sleep(timeout)

    async def subscribe(
        self,
        after: int = 0,
        batch_size: int = 100,
    ) -> AsyncIterator[FeedEvent]:
        """
        Lazily yield feed events with sequence greater than ``after``, forever.

        Read errors propagate to the consumer, which resubscribes from the
        last sequence it has seen.
        """
        position = after
        while True:
            events = await self.read_events(position, batch_size)
            if not events:
                await self.wait_for_events(position, self.poll_interval)
                continue
            for event in events:
                position = event.sequence
                yield event
