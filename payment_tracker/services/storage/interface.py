"""
Abstract Storage Interface

DESIGN DECISION: The generation engine talks to storage only through
this interface. This allows us to:
1. Keep Google Sheets, or swap it for a real database later
2. Use in-memory storage for testing and embedding
3. Keep the recurrence logic decoupled from storage implementation

The interface is intentionally small - four round-trips per pass are all
the engine needs.
"""

from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

from payment_tracker.models.audit import AuditEvent
from payment_tracker.models.payment import Occurrence, PaymentDefinition


class PaymentStorageInterface(ABC):
    """
    Abstract interface for the storage gateway used by generation.

    Any storage implementation (Google Sheets, PostgreSQL, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def list_definitions(self, user_id: UUID) -> list[PaymentDefinition]:
        """
        List all payment definitions owned by a user.

        Args:
            user_id: The owner

        Returns:
            Definitions in storage order

        Raises:
            StorageError: If the definitions cannot be read
        """
        pass

    @abstractmethod
    async def list_occurrence_dates(
        self,
        definition_id: UUID,
        on_or_after: date,
    ) -> list[date]:
        """
        List the due dates already stored for a definition.

        Args:
            definition_id: The definition whose occurrences to look up
            on_or_after: Only dates on or after this day are returned

        Raises:
            StorageError: If the lookup fails
        """
        pass

    @abstractmethod
    async def insert_occurrences(self, rows: list[Occurrence]) -> bool:
        """
        Insert a batch of occurrences.

        Implementations must insert all rows or none of them.

        Returns:
            True if inserted successfully

        Raises:
            StorageError: If the insert fails
            DuplicateError: If the backend enforces uniqueness and a row
                repeats an existing (definition_id, due_date)
        """
        pass

    @abstractmethod
    async def update_definition_cursor(
        self,
        definition_id: UUID,
        cursor: date,
    ) -> bool:
        """
        Persist a definition's last_generated_date.

        Returns:
            True if updated successfully

        Raises:
            NotFoundError: If the definition doesn't exist
            StorageError: If the update fails
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (one generation pass).

        Returns:
            List of related events in chronological order
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
