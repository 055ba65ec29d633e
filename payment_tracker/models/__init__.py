"""
Data Models Package

This package contains all Pydantic models used by the payment tracker core.
All data flowing through the generation engine must conform to these schemas.
"""

from payment_tracker.models.payment import (
    GenerationReport,
    Occurrence,
    OccurrenceStatus,
    PaymentDefinition,
    RecurrenceType,
    RuleOutcome,
)
from payment_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Payment models
    "GenerationReport",
    "Occurrence",
    "OccurrenceStatus",
    "PaymentDefinition",
    "RecurrenceType",
    "RuleOutcome",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
