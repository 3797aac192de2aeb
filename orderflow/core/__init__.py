"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from orderflow.core.config import (
    get_settings,
    Settings,
    EnvironmentMode,
    StoreBackend,
    NotificationBackend,
)
from orderflow.core.exceptions import (
    OrderflowError,
    OrderValidationError,
    OrderNotFoundError,
    DuplicateKeyError,
    PreconditionFailedError,
    TransientStoreError,
    NotificationError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "StoreBackend",
    "NotificationBackend",
    "OrderflowError",
    "OrderValidationError",
    "OrderNotFoundError",
    "DuplicateKeyError",
    "PreconditionFailedError",
    "TransientStoreError",
    "NotificationError",
]
