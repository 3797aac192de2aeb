"""
Pydantic Schemas for Request/Response Validation

Request bodies use snake_case (``customer_name``; ``customerName`` is also
accepted). Responses use the camelCase keys the web and mobile clients read
(``orderId``, ``createdAt``).
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from orderflow.models import OrderRecord, OrderStatus


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class OrderCreate(BaseModel):
    """
    Request schema for creating a new order.

    Presence of ``item`` and ``restaurant`` is checked by the ingress so
    that blank strings and missing keys fail the same way.
    """
    item: Optional[str] = Field(None, max_length=200, examples=["Chicken Biryani"])
    restaurant: Optional[str] = Field(None, max_length=200, examples=["Paradise"])
    customer_name: Optional[str] = Field(
        None,
        max_length=100,
        validation_alias=AliasChoices("customer_name", "customerName"),
        examples=["Mobile User"],
    )


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class OrderResponse(BaseModel):
    """Response schema for a single order."""
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId")
    item: str
    restaurant: str
    customer_name: str = Field(alias="customerName")
    status: OrderStatus
    created_at: datetime = Field(alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @classmethod
    def from_record(cls, order: OrderRecord) -> "OrderResponse":
        return cls(
            order_id=order.order_id,
            item=order.item,
            restaurant=order.restaurant,
            customer_name=order.customer_name,
            status=order.status,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )


class OrderCreateResponse(BaseModel):
    """Response after successfully creating an order."""
    message: str
    order: OrderResponse


class OrderListResponse(BaseModel):
    """Response for listing multiple orders."""
    total: int
    orders: List[OrderResponse]


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[Any] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    store: str
    notification_service: str
    worker: dict[str, Any]
    timestamp: datetime
