"""
Recurrence Rules

Pure date computation, no storage access:
- RecurrenceRuleEngine steps a date forward by one period of a rule
- AnchorResolver finds the first occurrence of a rule that has never run

DESIGN DECISION: Calendar overflow is an explicit policy, not whatever the
date library happens to do. A monthly rule on the 31st has to land
somewhere in a 30-day month:

- CLAMP (default): use the last day of that month, and keep stepping from
  the rule's own day so Jan 31 -> Feb 29 -> Mar 31 does not drift to the 29th.
- ROLL: spill the extra days into the next month when building an anchor
  (Feb 31 -> Mar 2), then add plain calendar months from there.
"""

import calendar
from datetime import date, timedelta
from enum import Enum
from typing import Optional

from dateutil.relativedelta import relativedelta

from payment_tracker.models.payment import PaymentDefinition, RecurrenceType


class OverflowPolicy(str, Enum):
    """How to build a day-of-month the month does not have."""
    CLAMP = "clamp"
    ROLL = "roll"


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def build_day(year: int, month: int, day: int, policy: OverflowPolicy) -> date:
    """Build year-month-day, resolving an out-of-range day with the policy."""
    last = days_in_month(year, month)
    if day <= last:
        return date(year, month, day)
    if policy == OverflowPolicy.CLAMP:
        return date(year, month, last)
    return date(year, month, last) + timedelta(days=day - last)


class RecurrenceRuleEngine:
    """
    Steps dates forward by exactly one recurrence period.

    daily +1 day, weekly +7 days, monthly +1 calendar month,
    yearly +1 calendar year. An unspecified type steps monthly.
    """

    def __init__(self, overflow_policy: OverflowPolicy = OverflowPolicy.CLAMP):
        self.overflow_policy = overflow_policy

    def step(
        self,
        current: date,
        recurrence_type: Optional[RecurrenceType],
        day: Optional[int] = None,
    ) -> date:
        """
        Return the date one period after current.

        Args:
            current: The date to step from
            recurrence_type: Rule frequency; None steps monthly
            day: The rule's day-of-month. Under CLAMP, monthly and yearly
                 steps land on this day (clamped) rather than on current's day.
        """
        if recurrence_type == RecurrenceType.DAILY:
            return current + timedelta(days=1)
        if recurrence_type == RecurrenceType.WEEKLY:
            return current + timedelta(weeks=1)

        months = 12 if recurrence_type == RecurrenceType.YEARLY else 1
        # relativedelta clamps to the end of a shorter month
        shifted = current + relativedelta(months=months)

        pin = (
            day is not None
            and self.overflow_policy == OverflowPolicy.CLAMP
            and recurrence_type in (RecurrenceType.MONTHLY, RecurrenceType.YEARLY)
        )
        if pin:
            return build_day(shifted.year, shifted.month, day, OverflowPolicy.CLAMP)
        return shifted

    def step_definition(self, definition: PaymentDefinition, current: date) -> date:
        """Step current forward by one period of the given definition."""
        return self.step(current, definition.recurrence_type, definition.recurrence_day)


class AnchorResolver:
    """
    Computes the first occurrence date for a definition without a cursor.

    The naive anchor comes from the rule fields alone and may be in the
    past; it is stepped forward one period at a time until it is on or
    after today, so a rule created long after its conceptual start never
    produces past-dated occurrences.
    """

    def __init__(self, engine: Optional[RecurrenceRuleEngine] = None):
        self._engine = engine or RecurrenceRuleEngine()

    def naive_anchor(self, definition: PaymentDefinition, today: date) -> date:
        """
        Anchor built from the rule fields in today's week, month or year.

        Weekly days are indexed 0=Sunday..6=Saturday within the
        Sunday-started week containing today.
        """
        policy = self._engine.overflow_policy
        recurrence_type = definition.recurrence_type

        if recurrence_type == RecurrenceType.WEEKLY:
            days_since_sunday = (today.weekday() + 1) % 7
            week_start = today - timedelta(days=days_since_sunday)
            return week_start + timedelta(days=definition.recurrence_day)

        if recurrence_type == RecurrenceType.MONTHLY:
            return build_day(today.year, today.month, definition.recurrence_day, policy)

        if recurrence_type == RecurrenceType.YEARLY:
            month = (
                definition.recurrence_month + 1
                if definition.recurrence_month is not None
                else today.month
            )
            return build_day(today.year, month, definition.recurrence_day, policy)

        # Daily and unspecified rules start today
        return today

    def resolve(self, definition: PaymentDefinition, today: date) -> date:
        """Return the first candidate date on or after today."""
        anchor = self.naive_anchor(definition, today)
        while anchor < today:
            anchor = self._engine.step_definition(definition, anchor)
        return anchor
