"""
In-Memory Storage Implementation

Dict-backed implementation of the storage interfaces. Used by the test
suite and by hosts that embed the engine next to their own persistence.

Batch inserts are validated as a whole before anything is written, so a
rejected batch leaves no partial rows behind.
"""

from datetime import date
from typing import Optional
from uuid import UUID

from payment_tracker.models.audit import AuditEvent
from payment_tracker.models.payment import Occurrence, PaymentDefinition
from payment_tracker.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    NotFoundError,
    PaymentStorageInterface,
)


class InMemoryPaymentStorage(PaymentStorageInterface):
    """
    In-memory payment storage.

    Definitions keep insertion order, which is the order generation
    processes them in.
    """

    def __init__(
        self,
        definitions: Optional[list[PaymentDefinition]] = None,
        occurrences: Optional[list[Occurrence]] = None,
    ):
        self._definitions: dict[UUID, PaymentDefinition] = {}
        self._occurrences: list[Occurrence] = []
        for definition in definitions or []:
            self.add_definition(definition)
        self._occurrences.extend(occurrences or [])

    def add_definition(self, definition: PaymentDefinition) -> PaymentDefinition:
        """Store (or replace) a definition."""
        self._definitions[definition.id] = definition
        return definition

    def get_definition(self, definition_id: UUID) -> Optional[PaymentDefinition]:
        return self._definitions.get(definition_id)

    def list_occurrences(self, definition_id: Optional[UUID] = None) -> list[Occurrence]:
        """All stored occurrences, optionally for one definition, by due date."""
        rows = [
            o for o in self._occurrences
            if definition_id is None or o.definition_id == definition_id
        ]
        return sorted(rows, key=lambda o: o.due_date)

    async def list_definitions(self, user_id: UUID) -> list[PaymentDefinition]:
        return [
            d.model_copy() for d in self._definitions.values()
            if d.user_id == user_id
        ]

    async def list_occurrence_dates(
        self,
        definition_id: UUID,
        on_or_after: date,
    ) -> list[date]:
        return sorted(
            o.due_date for o in self._occurrences
            if o.definition_id == definition_id and o.due_date >= on_or_after
        )

    async def insert_occurrences(self, rows: list[Occurrence]) -> bool:
        taken = {
            (o.definition_id, o.due_date)
            for o in self._occurrences
            if o.definition_id is not None
        }
        for row in rows:
            if row.definition_id is None:
                continue
            key = (row.definition_id, row.due_date)
            if key in taken:
                raise DuplicateError(
                    f"Occurrence already exists for definition {row.definition_id} "
                    f"on {row.due_date.isoformat()}"
                )
            taken.add(key)

        self._occurrences.extend(rows)
        return True

    async def update_definition_cursor(
        self,
        definition_id: UUID,
        cursor: date,
    ) -> bool:
        definition = self._definitions.get(definition_id)
        if definition is None:
            raise NotFoundError(f"Definition not found: {definition_id}")
        self._definitions[definition_id] = definition.model_copy(
            update={"last_generated_date": cursor}
        )
        return True


class InMemoryAuditStorage(AuditStorageInterface):
    """In-memory, append-only audit log."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events
