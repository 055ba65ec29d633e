"""
Audit Models for Payment Tracker

Every generation pass leaves a trail of audit events. This provides:
1. Traceability of which rows were materialized and when
2. Debugging information when a rule keeps failing
3. A record of cursor movements

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of a generation pass has its own event type.
    """
    # Pass lifecycle
    GENERATION_STARTED = "generation_started"
    GENERATION_SKIPPED = "generation_skipped"
    GENERATION_COMPLETED = "generation_completed"

    # Storage reads
    DEFINITIONS_FETCH_FAILED = "definitions_fetch_failed"

    # Per-rule writes
    OCCURRENCES_INSERTED = "occurrences_inserted"
    OCCURRENCE_INSERT_FAILED = "occurrence_insert_failed"
    CURSOR_ADVANCED = "cursor_advanced"
    CURSOR_UPDATE_FAILED = "cursor_update_failed"
    RULE_FAILED = "rule_failed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=_utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'definition', 'user')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - all events of one generation pass share this
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    error_code: Optional[str] = None
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details) if self.details else "",
            self.error_message or "",
        ]


def _iso(d: Optional[date]) -> Optional[str]:
    return d.isoformat() if d else None


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.generation_started(user_id, correlation_id)
        event = AuditEventBuilder.cursor_advanced(definition_id, old, new, correlation_id)
    """

    @staticmethod
    def generation_started(
        user_id: UUID,
        today: date,
        horizon: date,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GENERATION_STARTED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Generating occurrences through {horizon.isoformat()}",
            details={
                "today": today.isoformat(),
                "horizon": horizon.isoformat(),
            },
        )

    @staticmethod
    def generation_skipped(
        user_id: UUID,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GENERATION_SKIPPED,
            severity=AuditSeverity.DEBUG,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Generation already running in this process; call dropped",
        )

    @staticmethod
    def definitions_fetch_failed(
        user_id: UUID,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DEFINITIONS_FETCH_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description="Could not read payment definitions; pass aborted",
            error_message=error_message,
        )

    @staticmethod
    def occurrences_inserted(
        definition_id: UUID,
        due_dates: list[date],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCES_INSERTED,
            entity_type="definition",
            entity_id=definition_id,
            correlation_id=correlation_id,
            description=f"Inserted {len(due_dates)} pending occurrences",
            details={
                "due_dates": [d.isoformat() for d in due_dates],
            },
        )

    @staticmethod
    def occurrence_insert_failed(
        definition_id: UUID,
        due_dates: list[date],
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.OCCURRENCE_INSERT_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="definition",
            entity_id=definition_id,
            correlation_id=correlation_id,
            description=f"Insert of {len(due_dates)} occurrences failed; cursor left unchanged",
            details={
                "due_dates": [d.isoformat() for d in due_dates],
            },
            error_message=error_message,
        )

    @staticmethod
    def cursor_advanced(
        definition_id: UUID,
        previous: Optional[date],
        current: date,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURSOR_ADVANCED,
            severity=AuditSeverity.DEBUG,
            entity_type="definition",
            entity_id=definition_id,
            correlation_id=correlation_id,
            description=f"Cursor advanced to {current.isoformat()}",
            details={
                "previous": _iso(previous),
                "current": current.isoformat(),
            },
        )

    @staticmethod
    def cursor_update_failed(
        definition_id: UUID,
        attempted: date,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CURSOR_UPDATE_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="definition",
            entity_id=definition_id,
            correlation_id=correlation_id,
            description="Cursor update failed; next pass will re-check existing dates",
            details={
                "attempted": attempted.isoformat(),
            },
            error_message=error_message,
        )

    @staticmethod
    def rule_failed(
        definition_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RULE_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="definition",
            entity_id=definition_id,
            correlation_id=correlation_id,
            description=f"Rule skipped this pass: {error_type}",
            error_code=error_type,
            error_message=error_message,
        )

    @staticmethod
    def generation_completed(
        user_id: UUID,
        rule_count: int,
        inserted_count: int,
        failed_count: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.GENERATION_COMPLETED,
            severity=AuditSeverity.WARNING if failed_count else AuditSeverity.INFO,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=(
                f"Processed {rule_count} definitions, inserted {inserted_count} occurrences"
            ),
            details={
                "rule_count": rule_count,
                "inserted_count": inserted_count,
                "failed_count": failed_count,
            },
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"System error: {error_type}",
            details=details or {},
            error_code=error_type,
            error_message=error_message,
        )
