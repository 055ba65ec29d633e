"""
Core Data Models for Payment Tracker

These models define the schemas the generation engine reads and writes:
1. PaymentDefinition - a recurring payment rule, owned by a user
2. Occurrence - one dated instance of a payment (generated or manual)
3. RuleOutcome / GenerationReport - what a generation pass did

DESIGN DECISION: Definitions are created and edited elsewhere. The engine
consumes them read-only, except for the last_generated_date cursor.
"""

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class RecurrenceType(str, Enum):
    """How often a definition repeats."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class OccurrenceStatus(str, Enum):
    """
    Payment status of an occurrence.

    Generated occurrences always start as PENDING. Every other status is
    set by the payment-marking flows, never by the engine.
    """
    PENDING = "pending"
    PAID = "paid"
    DEFERRED = "deferred"
    CANCELED = "canceled"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# DEFINITIONS
# =============================================================================

class PaymentDefinition(BaseModel):
    """
    A recurring payment template.

    recurrence_day depends on recurrence_type:
    - weekly: day-of-week index, 0=Sunday .. 6=Saturday
    - monthly / yearly: day-of-month, 1-31
    - daily: ignored

    recurrence_month (0-11) is only read for yearly rules.

    A recurrence_type the engine does not know is stored as None and
    steps monthly.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Stable definition identifier"
    )
    user_id: UUID = Field(
        ...,
        description="Owner of the definition"
    )
    title: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Copied onto every generated occurrence"
    )
    category: str = Field(
        default="",
        max_length=100,
        description="Copied onto every generated occurrence"
    )
    amount: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Amount per occurrence; None means variable, filled in later"
    )
    recurrence_type: Optional[RecurrenceType] = Field(
        default=RecurrenceType.MONTHLY,
        description="Frequency; None means unspecified"
    )
    recurrence_day: Optional[int] = Field(
        default=None,
        ge=0,
        le=31,
    )
    recurrence_month: Optional[int] = Field(
        default=None,
        ge=0,
        le=11,
    )
    last_generated_date: Optional[date] = Field(
        default=None,
        description="Latest occurrence date already considered by generation"
    )

    @field_validator('recurrence_type', mode='before')
    @classmethod
    def coerce_unknown_type(cls, v: Any) -> Any:
        """Unknown frequencies fall back to None instead of failing the row."""
        if v is None or isinstance(v, RecurrenceType):
            return v
        try:
            return RecurrenceType(str(v).strip().lower())
        except ValueError:
            return None

    @model_validator(mode='after')
    def validate_recurrence_day(self) -> 'PaymentDefinition':
        """recurrence_day must make sense for the recurrence type."""
        if self.recurrence_type in (None, RecurrenceType.DAILY):
            return self

        if self.recurrence_day is None:
            raise ValueError(
                f"recurrence_day is required for {self.recurrence_type.value} definitions"
            )

        if self.recurrence_type == RecurrenceType.WEEKLY:
            if not 0 <= self.recurrence_day <= 6:
                raise ValueError("Weekly recurrence_day must be 0 (Sunday) to 6 (Saturday)")
        elif not 1 <= self.recurrence_day <= 31:
            raise ValueError("Day of month must be between 1 and 31")

        return self


# =============================================================================
# OCCURRENCES
# =============================================================================

class Occurrence(BaseModel):
    """
    A single dated payment.

    definition_id is None for manually created rows; the engine never
    reads or writes those.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    definition_id: Optional[UUID] = None
    title: str = Field(..., min_length=1, max_length=200)
    amount: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Zero signals a variable amount still to be filled in"
    )
    category: str = Field(default="", max_length=100)
    due_date: date
    status: OccurrenceStatus = OccurrenceStatus.PENDING
    created_at: datetime = Field(default_factory=_utcnow)

    @classmethod
    def from_definition(cls, definition: PaymentDefinition, due_date: date) -> 'Occurrence':
        """Build a pending occurrence for one date of a definition."""
        return cls(
            user_id=definition.user_id,
            definition_id=definition.id,
            title=definition.title,
            amount=definition.amount if definition.amount is not None else Decimal("0"),
            category=definition.category,
            due_date=due_date,
            status=OccurrenceStatus.PENDING,
        )


# =============================================================================
# GENERATION REPORTING
# =============================================================================

class RuleOutcome(BaseModel):
    """What one generation pass did for one definition."""

    definition_id: UUID
    candidates: list[date] = Field(default_factory=list)
    inserted: list[date] = Field(default_factory=list)
    skipped_existing: list[date] = Field(default_factory=list)
    cursor_before: Optional[date] = None
    cursor_after: Optional[date] = None
    error: Optional[str] = None
    cursor_error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class GenerationReport(BaseModel):
    """Summary of one generation pass for a user."""

    correlation_id: UUID
    user_id: UUID
    today: date
    horizon: date
    fetch_failed: bool = False
    outcomes: list[RuleOutcome] = Field(default_factory=list)

    @property
    def total_inserted(self) -> int:
        return sum(len(o.inserted) for o in self.outcomes)

    @property
    def failed_rules(self) -> list[UUID]:
        return [o.definition_id for o in self.outcomes if not o.succeeded]
