"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the default backend; the in-memory backend serves tests
and embedding hosts.
"""

from payment_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    NotFoundError,
    PaymentStorageInterface,
    StorageError,
)
from payment_tracker.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryPaymentStorage,
)
from payment_tracker.services.storage.google_sheets import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsPaymentStorage,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "PaymentStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryPaymentStorage",
    # Google Sheets implementation
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsPaymentStorage",
]
