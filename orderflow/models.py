"""
Order Domain Model and SQLAlchemy Tables

OrderRecord is the plain value passed between the ingress, the stores and
the worker. The ORM classes below back the SQL store: the orders table and
the order_events outbox that serves as its change feed.
"""

import enum
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import JSON, Column, DateTime, Enum, Integer, String

from orderflow.database import Base


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderStatus(str, enum.Enum):
    """Order status workflow."""
    PREPARING = "PREPARING"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"


class EventType(str, enum.Enum):
    """Kind of write that produced a feed event."""
    INSERT = "INSERT"
    UPDATE = "UPDATE"


@dataclass(frozen=True)
class OrderRecord:
    """A single food-delivery order."""
    order_id: str
    item: str
    restaurant: str
    customer_name: str
    status: OrderStatus
    created_at: datetime
    updated_at: Optional[datetime] = None

    def with_status(self, status: OrderStatus, updated_at: datetime) -> "OrderRecord":
        return replace(self, status=status, updated_at=updated_at)

    def to_payload(self) -> dict[str, Any]:
        """Serialize into the JSON shape carried by feed events."""
        return {
            "orderId": self.order_id,
            "item": self.item,
            "restaurant": self.restaurant,
            "customerName": self.customer_name,
            "status": self.status.value,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "OrderRecord":
        updated_at = payload.get("updatedAt")
        return cls(
            order_id=payload["orderId"],
            item=payload["item"],
            restaurant=payload["restaurant"],
            customer_name=payload["customerName"],
            status=OrderStatus(payload["status"]),
            created_at=datetime.fromisoformat(payload["createdAt"]),
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


@dataclass(frozen=True)
class FeedEvent:
    """One change-feed entry; ``sequence`` is the replay cursor."""
    sequence: int
    event_type: EventType
    order: OrderRecord


class Order(Base):
    """Orders table."""
    __tablename__ = "orders"

    order_id = Column(String(36), primary_key=True)
    item = Column(String(200), nullable=False)
    restaurant = Column(String(200), nullable=False)
    customer_name = Column(String(100), nullable=False)
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PREPARING,
        nullable=False,
        index=True
    )
    created_at = Column(DateTime(timezone=True), nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def to_record(self) -> OrderRecord:
        return OrderRecord(
            order_id=self.order_id,
            item=self.item,
            restaurant=self.restaurant,
            customer_name=self.customer_name,
            status=self.status,
            created_at=_as_utc(self.created_at),
            updated_at=_as_utc(self.updated_at),
        )

    def __repr__(self):
        return f"<Order {self.order_id} - {self.restaurant} - {self.status.value}>"


class OrderEvent(Base):
    """
    Change feed outbox.

    One row is written in the same transaction as every insert or
    conditional update; the autoincrement sequence is the feed cursor.
    """
    __tablename__ = "order_events"

    sequence = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(Enum(EventType), nullable=False)
    order_id = Column(String(36), nullable=False, index=True)
    payload = Column(JSON, nullable=False)
    recorded_at = Column(DateTime(timezone=True), nullable=False)

    def to_event(self) -> FeedEvent:
        return FeedEvent(
            sequence=self.sequence,
            event_type=self.event_type,
            order=OrderRecord.from_payload(self.payload),
        )

    def __repr__(self):
        return f"<OrderEvent #{self.sequence} {self.event_type.value} {self.order_id}>"
