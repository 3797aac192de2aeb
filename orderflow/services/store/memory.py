"""
In-Memory Order Store

Process-local store used in development mode and in tests. No database
needed; state disappears with the process.

Behavior:
    - Writes are serialized by an asyncio.Lock, making the conditional
      update a true compare-and-set
    - Subscribers are woken through an asyncio.Condition instead of polling
    - Transient failures of the conditional update can be simulated, either
      randomly (failure_rate) or deterministically (fail_next_updates)
"""

import asyncio
import logging
import random
from typing import Optional

from orderflow.core.clock import Clock, SystemClock
from orderflow.core.exceptions import (
    DuplicateKeyError,
    OrderNotFoundError,
    PreconditionFailedError,
    TransientStoreError,
)
from orderflow.models import EventType, FeedEvent, OrderRecord, OrderStatus
from orderflow.services.store.base import BaseOrderStore

logger = logging.getLogger(__name__)


class InMemoryOrderStore(BaseOrderStore):
    """
    Dictionary-backed order store with an in-memory change feed.

    Attributes:
        failure_rate: Probability that a conditional update raises
            TransientStoreError (0.0-1.0)
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        failure_rate: float = 0.0,
        poll_interval: float = 0.5,
    ):
        super().__init__(poll_interval=poll_interval)
        self.clock = clock or SystemClock()
        self.failure_rate = failure_rate
        self._orders: dict[str, OrderRecord] = {}
        self._events: list[FeedEvent] = []
        self._lock = asyncio.Lock()
        self._changed = asyncio.Condition()
        self._forced_failures = 0

        logger.info(f"InMemoryOrderStore initialized (failure_rate={failure_rate:.0%})")

    @property
    def provider_name(self) -> str:
        return "memory"

    def fail_next_updates(self, count: int) -> None:
        """Make the next ``count`` conditional updates raise TransientStoreError."""
        self._forced_failures += count

    def _should_fail(self) -> bool:
        if self._forced_failures > 0:
            self._forced_failures -= 1
            return True
        return random.random() < self.failure_rate

    def _append_event(self, event_type: EventType, order: OrderRecord) -> FeedEvent:
        event = FeedEvent(
            sequence=len(self._events) + 1,
            event_type=event_type,
            order=order,
        )
        self._events.append(event)
        return event

    async def _wake_subscribers(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    async def insert(self, order: OrderRecord) -> OrderRecord:
        async with self._lock:
            if order.order_id in self._orders:
                raise DuplicateKeyError(order.order_id)
            self._orders[order.order_id] = order
            self._append_event(EventType.INSERT, order)

        await self._wake_subscribers()
        return order

    async def get(self, order_id: str) -> OrderRecord:
        order = self._orders.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    async def conditional_update(
        self,
        order_id: str,
        expected_status: OrderStatus,
        new_status: OrderStatus,
    ) -> OrderRecord:
        async with self._lock:
            if self._should_fail():
                logger.warning(f"Simulated store failure updating order {order_id}")
                raise TransientStoreError("Simulated store failure", order_id=order_id)

            current = self._orders.get(order_id)
            if current is None or current.status != expected_status:
                raise PreconditionFailedError(
                    order_id,
                    expected=expected_status.value,
                    actual=current.status.value if current else None,
                )

            updated = current.with_status(new_status, self.clock.now())
            self._orders[order_id] = updated
            self._append_event(EventType.UPDATE, updated)

        await self._wake_subscribers()
        return updated

    async def read_events(self, after: int, limit: int) -> list[FeedEvent]:
        # sequence n lives at index n - 1
        start = max(after, 0)
        return list(self._events[start:start + limit])

    async def latest_sequence(self) -> int:
        return len(self._events)

    async def wait_for_events(self, after: int, timeout: float) -> None:
        async with self._changed:
            if len(self._events) > after:
                return
            try:
                await asyncio.wait_for(self._changed.wait(), timeout)
            except asyncio.TimeoutError:
                pass

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        offset: int = 0,
        limit: int = 10,
    ) -> list[OrderRecord]:
        orders = [
            o for o in self._orders.values()
            if status is None or o.status == status
        ]
        orders.sort(key=lambda o: o.created_at, reverse=True)
        return orders[offset:offset + limit]

    async def count_orders(self, status: Optional[OrderStatus] = None) -> int:
        if status is None:
            return len(self._orders)
        return sum(1 for o in self._orders.values() if o.status == status)

    async def health_check(self) -> bool:
        """In-memory store is always reachable."""
        return True
