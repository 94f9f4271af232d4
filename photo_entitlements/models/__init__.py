"""Pydantic models for persisted records, notifications, responses and configuration."""

# Configuration models
from .settings import (
    DownloadConfig,
    NotificationConfig,
    StorageConfig,
    StoreConfig,
)

# Purchase models
from .purchase import (
    LineItem,
    PaymentStatus,
    PurchaseRecord,
)

# Inbound notification models
from .notification import (
    CartItem,
    PaymentCompletedNotification,
)

# API response models
from .api_response import (
    EntitlementSummary,
    ErrorResponse,
    NotificationAck,
    PurchaseStatusResponse,
)

__all__ = [
    # Configuration
    "DownloadConfig",
    "NotificationConfig",
    "StorageConfig",
    "StoreConfig",
    # Purchase
    "LineItem",
    "PaymentStatus",
    "PurchaseRecord",
    # Notifications
    "CartItem",
    "PaymentCompletedNotification",
    # API responses
    "EntitlementSummary",
    "ErrorResponse",
    "NotificationAck",
    "PurchaseStatusResponse",
]
