"""
Generation Window Planning

WindowPlanner turns one definition into the ordered list of candidate
dates between today and the horizon. DuplicateGuard removes the dates
that already exist in storage.

The cursor only shrinks the window; the existing-dates lookup is what
actually prevents duplicates. Rows may exist past the cursor when an
earlier pass inserted them but failed to write the cursor.
"""

from datetime import date
from typing import Iterable, Optional

from dateutil.relativedelta import relativedelta

from payment_tracker.models.payment import PaymentDefinition
from payment_tracker.recurrence.rules import AnchorResolver, RecurrenceRuleEngine


DEFAULT_HORIZON_MONTHS = 6


class WindowPlanner:
    """
    Plans candidate occurrence dates for one definition.

    Nothing is persisted between calls; the plan is recomputed from the
    cursor every time.
    """

    def __init__(
        self,
        engine: Optional[RecurrenceRuleEngine] = None,
        anchor_resolver: Optional[AnchorResolver] = None,
        horizon_months: int = DEFAULT_HORIZON_MONTHS,
    ):
        self._engine = engine or RecurrenceRuleEngine()
        self._anchor_resolver = anchor_resolver or AnchorResolver(self._engine)
        self.horizon_months = horizon_months

    def horizon_for(self, today: date) -> date:
        """Last date (inclusive) occurrences are generated for."""
        return today + relativedelta(months=self.horizon_months)

    def first_candidate(self, definition: PaymentDefinition, today: date) -> date:
        """
        First date to consider for a definition.

        Without a cursor this is the resolved anchor. With a cursor it is
        one period after the cursor, stepped on until it is not in the past.
        """
        cursor = definition.last_generated_date
        if cursor is None:
            return self._anchor_resolver.resolve(definition, today)

        candidate = self._engine.step_definition(definition, cursor)
        while candidate < today:
            candidate = self._engine.step_definition(definition, candidate)
        return candidate

    def plan(
        self,
        definition: PaymentDefinition,
        today: date,
        horizon: Optional[date] = None,
    ) -> list[date]:
        """
        Return every candidate date from the first candidate through the horizon.

        The list is strictly increasing and empty when the cursor is
        already at the horizon.
        """
        horizon = horizon or self.horizon_for(today)

        candidates = []
        current = self.first_candidate(definition, today)
        while current <= horizon:
            candidates.append(current)
            current = self._engine.step_definition(definition, current)
        return candidates


class DuplicateGuard:
    """Filters planned dates down to those not yet materialized."""

    @staticmethod
    def partition(
        candidates: Iterable[date],
        existing_dates: Iterable[date],
    ) -> tuple[list[date], list[date]]:
        """
        Split candidates into (missing, already_present), keeping order.
        """
        existing = set(existing_dates)
        missing, present = [], []
        for candidate in candidates:
            (present if candidate in existing else missing).append(candidate)
        return missing, present

    @classmethod
    def filter(
        cls,
        candidates: Iterable[date],
        existing_dates: Iterable[date],
    ) -> list[date]:
        """Return the candidates that have no stored occurrence yet."""
        missing, _ = cls.partition(candidates, existing_dates)
        return missing
