"""
Error Taxonomy

Every failure the order pipeline can raise derives from OrderflowError so
callers can catch the family at once. The HTTP layer maps each class to a
status code through ``status_code``.
"""

from typing import Optional


class OrderflowError(Exception):
    """Base class for order pipeline errors."""

    status_code: int = 500

    def __init__(self, message: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.order_id = order_id


class OrderValidationError(OrderflowError):
    """Client input is missing or malformed."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class OrderNotFoundError(OrderflowError):
    """No order is stored under the requested id."""

    status_code = 404

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found", order_id=order_id)


class DuplicateKeyError(OrderflowError):
    """An insert collided with an existing order id."""

    status_code = 409

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} already exists", order_id=order_id)


class PreconditionFailedError(OrderflowError):
    """
    Conditional update rejected.

    Raised when the stored status differs from the expected one, or the
    order is missing. The worker treats it as "already transitioned".
    """

    status_code = 412

    def __init__(self, order_id: str, expected: str, actual: Optional[str] = None):
        detail = f"found {actual}" if actual is not None else "order missing"
        super().__init__(
            f"Order {order_id} is not {expected} ({detail})",
            order_id=order_id,
        )
        self.expected = expected
        self.actual = actual


class TransientStoreError(OrderflowError):
    """The store could not complete a call; retrying may succeed."""

    status_code = 503


class NotificationError(OrderflowError):
    """Publishing a notification failed after all attempts."""

    status_code = 502
