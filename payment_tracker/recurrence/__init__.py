"""Recurrence rule computation package."""

from payment_tracker.recurrence.rules import (
    AnchorResolver,
    OverflowPolicy,
    RecurrenceRuleEngine,
    build_day,
    days_in_month,
)
from payment_tracker.recurrence.planner import (
    DEFAULT_HORIZON_MONTHS,
    DuplicateGuard,
    WindowPlanner,
)

__all__ = [
    "AnchorResolver",
    "DEFAULT_HORIZON_MONTHS",
    "DuplicateGuard",
    "OverflowPolicy",
    "RecurrenceRuleEngine",
    "WindowPlanner",
    "build_day",
    "days_in_month",
]
