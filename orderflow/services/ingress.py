"""
Order Ingress

Turns a client-submitted payload into a persisted order. One store write
per call; the later status transition happens in the worker.
"""

import logging
import uuid
from typing import Optional

from orderflow.core.clock import Clock, SystemClock
from orderflow.core.exceptions import OrderValidationError
from orderflow.models import OrderRecord, OrderStatus
from orderflow.services.store.base import BaseOrderStore

logger = logging.getLogger(__name__)


def _required(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise OrderValidationError(f"'{field}' is required", field=field)
    return str(value).strip()


class OrderIngress:
    """Validates order requests and writes the initial record."""

    def __init__(
        self,
        store: BaseOrderStore,
        clock: Optional[Clock] = None,
        default_customer_name: str = "Guest",
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.default_customer_name = default_customer_name

    async def create_order(
        self,
        item: Optional[str],
        restaurant: Optional[str],
        customer_name: Optional[str] = None,
    ) -> OrderRecord:
        """
        Validate, assign a fresh id and insert the order as PREPARING.

        Raises:
            OrderValidationError: ``item`` or ``restaurant`` missing or blank
            DuplicateKeyError: Id collision (practically unreachable)
            TransientStoreError: Store unavailable
        """
        item = _required(item, "item")
        restaurant = _required(restaurant, "restaurant")
        customer_name = (customer_name or "").strip() or self.default_customer_name

        order = OrderRecord(
            order_id=str(uuid.uuid4()),
            item=item,
            restaurant=restaurant,
            customer_name=customer_name,
            status=OrderStatus.PREPARING,
            created_at=self.clock.now(),
        )
        await self.store.insert(order)

        logger.info(f"Order {order.order_id} created: {item} from {restaurant}")
        return order

    async def get_order(self, order_id: str) -> OrderRecord:
        """
        Raises:
            OrderNotFoundError: Unknown id
        """
        return await self.store.get(order_id)
