"""Services package."""

from payment_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsPaymentStorage,
    InMemoryAuditStorage,
    InMemoryPaymentStorage,
    NotFoundError,
    PaymentStorageInterface,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsPaymentStorage",
    "InMemoryAuditStorage",
    "InMemoryPaymentStorage",
    "NotFoundError",
    "PaymentStorageInterface",
    "StorageError",
]
