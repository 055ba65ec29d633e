"""
Audit Logger

DESIGN DECISION: Every generation pass is logged.
This provides:
1. Traceability of every materialized occurrence
2. Debugging capability when a rule keeps failing
3. A history of cursor movements per definition

The audit logger:
- Is async so it fits the generation pass
- Gracefully handles failures (never breaks generation if logging fails)
- Supports correlation IDs to tie one pass's events together
"""

from datetime import date
from typing import Optional
from uuid import UUID, uuid4

import structlog

from payment_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from payment_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("payment_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        elif event.severity == AuditSeverity.DEBUG:
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_generation_started(
        self,
        user_id: UUID,
        today: date,
        horizon: date,
        correlation_id: UUID,
    ) -> None:
        """Log the start of a generation pass."""
        await self.log(AuditEventBuilder.generation_started(
            user_id=user_id,
            today=today,
            horizon=horizon,
            correlation_id=correlation_id,
        ))

    async def log_generation_skipped(
        self,
        user_id: UUID,
        correlation_id: UUID,
    ) -> None:
        """Log a call dropped because a pass was already running."""
        await self.log(AuditEventBuilder.generation_skipped(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_definitions_fetch_failed(
        self,
        user_id: UUID,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.definitions_fetch_failed(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_occurrences_inserted(
        self,
        definition_id: UUID,
        due_dates: list[date],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.occurrences_inserted(
            definition_id=definition_id,
            due_dates=due_dates,
            correlation_id=correlation_id,
        ))

    async def log_occurrence_insert_failed(
        self,
        definition_id: UUID,
        due_dates: list[date],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.occurrence_insert_failed(
            definition_id=definition_id,
            due_dates=due_dates,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_cursor_advanced(
        self,
        definition_id: UUID,
        previous: Optional[date],
        current: date,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.cursor_advanced(
            definition_id=definition_id,
            previous=previous,
            current=current,
            correlation_id=correlation_id,
        ))

    async def log_cursor_update_failed(
        self,
        definition_id: UUID,
        attempted: date,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.cursor_update_failed(
            definition_id=definition_id,
            attempted=attempted,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_rule_failed(
        self,
        definition_id: UUID,
        error_type: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.rule_failed(
            definition_id=definition_id,
            error_type=error_type,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_generation_completed(
        self,
        user_id: UUID,
        rule_count: int,
        inserted_count: int,
        failed_count: int,
        correlation_id: UUID,
    ) -> None:
        """Log the end of a generation pass."""
        await self.log(AuditEventBuilder.generation_completed(
            user_id=user_id,
            rule_count=rule_count,
            inserted_count=inserted_count,
            failed_count=failed_count,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an unexpected error that aborted a generation pass."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    One is created per generation pass and passed to every event of it.
    """
    return uuid4()
