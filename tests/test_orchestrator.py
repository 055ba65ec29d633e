"""
Integration tests for generation passes.

All passes run against in-memory storage with a fixed "today".
"""

import asyncio
import pytest
from datetime import date
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

from payment_tracker.audit import AuditLogger
from payment_tracker.concurrency import ConcurrencyGate
from payment_tracker.models.audit import AuditEventType
from payment_tracker.models.payment import (
    Occurrence,
    OccurrenceStatus,
    PaymentDefinition,
    RecurrenceType,
)
from payment_tracker.orchestrator import (
    CursorWriter,
    GenerationOrchestrator,
    generate_recurring_transactions,
)
from payment_tracker.services.storage import (
    InMemoryAuditStorage,
    InMemoryPaymentStorage,
    StorageError,
)


TODAY = date(2024, 3, 1)
HORIZON = date(2024, 9, 1)
MONTHLY_15 = [
    date(2024, 3, 15),
    date(2024, 4, 15),
    date(2024, 5, 15),
    date(2024, 6, 15),
    date(2024, 7, 15),
    date(2024, 8, 15),
]


class CountingStorage(InMemoryPaymentStorage):
    """In-memory storage that counts writes and can fail on demand."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.insert_calls = 0
        self.cursor_calls = 0
        self.fail_fetch = False
        self.fail_insert_for: set = set()
        self.fail_dates_for: set = set()
        self.fail_cursor_times = 0

    async def list_definitions(self, user_id):
        if self.fail_fetch:
            raise StorageError("definitions unavailable")
        return await super().list_definitions(user_id)

    async def list_occurrence_dates(self, definition_id, on_or_after):
        if definition_id in self.fail_dates_for:
            raise StorageError("lookup failed")
        return await super().list_occurrence_dates(definition_id, on_or_after)

    async def insert_occurrences(self, rows):
        self.insert_calls += 1
        if rows and rows[0].definition_id in self.fail_insert_for:
            raise StorageError("insert rejected")
        return await super().insert_occurrences(rows)

    async def update_definition_cursor(self, definition_id, cursor):
        self.cursor_calls += 1
        if self.fail_cursor_times:
            self.fail_cursor_times -= 1
            raise StorageError("cursor write lost")
        return await super().update_definition_cursor(definition_id, cursor)


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def storage():
    return CountingStorage()


def add_rule(storage, user_id, **overrides) -> PaymentDefinition:
    fields = {
        "user_id": user_id,
        "title": "Rent",
        "category": "Housing",
        "amount": Decimal("1200.00"),
        "recurrence_type": RecurrenceType.MONTHLY,
        "recurrence_day": 15,
    }
    fields.update(overrides)
    return storage.add_definition(PaymentDefinition(**fields))


def make_orchestrator(storage, today=TODAY, **kwargs) -> GenerationOrchestrator:
    return GenerationOrchestrator(storage=storage, today_provider=lambda: today, **kwargs)


def due_dates(storage, definition) -> list[date]:
    return [o.due_date for o in storage.list_occurrences(definition.id)]


class TestGeneration:
    """Tests for a single generation pass."""

    @pytest.mark.asyncio
    async def test_monthly_rule_fidelity(self, storage, user_id):
        """Test the first pass materializes 03-15 through 08-15."""
        rule = add_rule(storage, user_id)

        report = await make_orchestrator(storage).generate(user_id)

        assert due_dates(storage, rule) == MONTHLY_15
        assert report.total_inserted == 6
        assert report.horizon == HORIZON
        assert storage.get_definition(rule.id).last_generated_date == date(2024, 8, 15)

    @pytest.mark.asyncio
    async def test_generated_rows_copy_definition(self, storage, user_id):
        rule = add_rule(storage, user_id)

        await make_orchestrator(storage).generate(user_id)

        for occurrence in storage.list_occurrences(rule.id):
            assert occurrence.title == "Rent"
            assert occurrence.category == "Housing"
            assert occurrence.amount == Decimal("1200.00")
            assert occurrence.status == OccurrenceStatus.PENDING
            assert occurrence.user_id == user_id

    @pytest.mark.asyncio
    async def test_one_batch_per_rule(self, storage, user_id):
        add_rule(storage, user_id)
        add_rule(storage, user_id, title="Internet", recurrence_day=20)

        await make_orchestrator(storage).generate(user_id)

        assert storage.insert_calls == 2
        assert storage.cursor_calls == 2

    @pytest.mark.asyncio
    async def test_horizon_bound(self, storage, user_id):
        """Test no occurrence lands after today + 6 months."""
        add_rule(storage, user_id)
        add_rule(storage, user_id, recurrence_type=RecurrenceType.DAILY, recurrence_day=None)
        add_rule(storage, user_id, recurrence_type=RecurrenceType.WEEKLY, recurrence_day=6)

        await make_orchestrator(storage).generate(user_id)

        dates = [o.due_date for o in storage.list_occurrences()]
        assert max(dates) <= HORIZON
        assert min(dates) >= TODAY

    @pytest.mark.asyncio
    async def test_weekly_indexing(self, storage, user_id):
        """Test a Monday rule run on a Wednesday starts next Monday."""
        rule = add_rule(
            storage, user_id,
            recurrence_type=RecurrenceType.WEEKLY,
            recurrence_day=1,
        )

        await make_orchestrator(storage, today=date(2024, 3, 6)).generate(user_id)

        assert due_dates(storage, rule)[0] == date(2024, 3, 11)

    @pytest.mark.asyncio
    async def test_variable_amount_passthrough(self, storage, user_id):
        """Test a rule without an amount still generates, with amount 0."""
        rule = add_rule(storage, user_id, amount=None)

        await make_orchestrator(storage).generate(user_id)

        occurrences = storage.list_occurrences(rule.id)
        assert len(occurrences) == 6
        assert all(o.amount == Decimal("0") for o in occurrences)

    @pytest.mark.asyncio
    async def test_only_the_users_rules(self, storage, user_id):
        other = add_rule(storage, uuid4(), title="Someone else's rent")
        mine = add_rule(storage, user_id)

        await make_orchestrator(storage).generate(user_id)

        assert due_dates(storage, other) == []
        assert due_dates(storage, mine) == MONTHLY_15

    @pytest.mark.asyncio
    async def test_manual_occurrences_are_untouched(self, storage, user_id):
        """Test manual rows neither block generation nor change."""
        manual = Occurrence(
            user_id=user_id,
            title="Rent (paid by hand)",
            amount=Decimal("1200.00"),
            due_date=date(2024, 3, 15),
            status=OccurrenceStatus.PAID,
        )
        storage = CountingStorage(occurrences=[manual])
        rule = add_rule(storage, user_id)

        await make_orchestrator(storage).generate(user_id)

        assert due_dates(storage, rule) == MONTHLY_15
        assert storage.list_occurrences()[0].id == manual.id
        assert manual.status == OccurrenceStatus.PAID

    @pytest.mark.asyncio
    async def test_rows_past_the_cursor_are_not_duplicated(self, user_id):
        """Test rows inserted by an earlier pass without a cursor are respected."""
        rule = PaymentDefinition(
            user_id=user_id,
            title="Rent",
            recurrence_type=RecurrenceType.MONTHLY,
            recurrence_day=15,
        )
        existing = Occurrence.from_definition(rule, date(2024, 4, 15))
        storage = CountingStorage(definitions=[rule], occurrences=[existing])

        report = await make_orchestrator(storage).generate(user_id)

        outcome = report.outcomes[0]
        assert outcome.skipped_existing == [date(2024, 4, 15)]
        assert len(outcome.inserted) == 5
        assert due_dates(storage, rule) == MONTHLY_15

    @pytest.mark.asyncio
    async def test_no_definitions(self, storage, user_id):
        report = await make_orchestrator(storage).generate(user_id)

        assert report.outcomes == []
        assert report.fetch_failed is False
        assert storage.insert_calls == 0


class TestRepeatedGeneration:
    """Tests for behaviour across consecutive passes."""

    @pytest.mark.asyncio
    async def test_idempotence(self, storage, user_id):
        """Test that running three times equals running once."""
        rule = add_rule(storage, user_id)
        orchestrator = make_orchestrator(storage)

        await orchestrator.generate(user_id)
        first = due_dates(storage, rule)
        await orchestrator.generate(user_id)
        await orchestrator.generate(user_id)

        assert due_dates(storage, rule) == first
        assert len(set(first)) == len(first)

    @pytest.mark.asyncio
    async def test_up_to_date_rule_performs_no_writes(self, storage, user_id):
        add_rule(storage, user_id)
        orchestrator = make_orchestrator(storage)
        await orchestrator.generate(user_id)
        storage.insert_calls = storage.cursor_calls = 0

        report = await orchestrator.generate(user_id)

        assert storage.insert_calls == 0
        assert storage.cursor_calls == 0
        assert report.outcomes[0].candidates == []

    @pytest.mark.asyncio
    async def test_forward_only_cursor(self, storage, user_id):
        """Test the cursor never moves backwards as days pass."""
        rule = add_rule(storage, user_id)
        cursors = []

        for today in (date(2024, 3, 1), date(2024, 3, 1), date(2024, 3, 20), date(2024, 5, 2)):
            await make_orchestrator(storage, today=today).generate(user_id)
            cursors.append(storage.get_definition(rule.id).last_generated_date)

        assert cursors == sorted(cursors)
        assert cursors[-1] == date(2024, 10, 15)

    @pytest.mark.asyncio
    async def test_next_day_extends_the_window(self, storage, user_id):
        rule = add_rule(storage, user_id)
        await make_orchestrator(storage).generate(user_id)

        report = await make_orchestrator(storage, today=date(2024, 3, 20)).generate(user_id)

        assert report.outcomes[0].inserted == [date(2024, 9, 15)]
        assert due_dates(storage, rule)[-1] == date(2024, 9, 15)


class TestFailureHandling:
    """Tests for the fail-soft error taxonomy."""

    @pytest.mark.asyncio
    async def test_fetch_failure_aborts_pass(self, storage, user_id):
        add_rule(storage, user_id)
        storage.fail_fetch = True

        report = await make_orchestrator(storage).generate(user_id)

        assert report.fetch_failed is True
        assert report.outcomes == []
        assert storage.insert_calls == 0
        assert storage.cursor_calls == 0

    @pytest.mark.asyncio
    async def test_insert_failure_is_isolated(self, storage, user_id):
        """Test a failing rule keeps its cursor and others still run."""
        broken = add_rule(storage, user_id, title="Broken")
        healthy = add_rule(storage, user_id, title="Healthy", recurrence_day=20)
        storage.fail_insert_for.add(broken.id)

        report = await make_orchestrator(storage).generate(user_id)

        assert report.failed_rules == [broken.id]
        assert due_dates(storage, broken) == []
        assert storage.get_definition(broken.id).last_generated_date is None
        assert len(due_dates(storage, healthy)) == 6
        assert storage.get_definition(healthy.id).last_generated_date == date(2024, 8, 20)

    @pytest.mark.asyncio
    async def test_failed_rule_is_retried_in_full(self, storage, user_id):
        broken = add_rule(storage, user_id)
        storage.fail_insert_for.add(broken.id)
        await make_orchestrator(storage).generate(user_id)

        storage.fail_insert_for.clear()
        await make_orchestrator(storage).generate(user_id)

        assert due_dates(storage, broken) == MONTHLY_15

    @pytest.mark.asyncio
    async def test_partial_failure_recovery(self, storage, user_id):
        """Test insert ok + cursor lost heals on the next pass without duplicates."""
        rule = add_rule(storage, user_id)
        storage.fail_cursor_times = 1

        first = await make_orchestrator(storage).generate(user_id)

        assert first.outcomes[0].cursor_error == "cursor write lost"
        assert first.outcomes[0].succeeded is True
        assert due_dates(storage, rule) == MONTHLY_15
        assert storage.get_definition(rule.id).last_generated_date is None

        second = await make_orchestrator(storage).generate(user_id)

        outcome = second.outcomes[0]
        assert outcome.inserted == []
        assert outcome.skipped_existing == MONTHLY_15
        assert outcome.cursor_after == date(2024, 8, 15)
        assert due_dates(storage, rule) == MONTHLY_15
        assert storage.get_definition(rule.id).last_generated_date == date(2024, 8, 15)

    @pytest.mark.asyncio
    async def test_existing_dates_lookup_failure_is_isolated(self, storage, user_id):
        broken = add_rule(storage, user_id)
        healthy = add_rule(storage, user_id, recurrence_day=1)
        storage.fail_dates_for.add(broken.id)

        report = await make_orchestrator(storage).generate(user_id)

        assert report.outcomes[0].error == "lookup failed"
        assert due_dates(storage, broken) == []
        assert len(due_dates(storage, healthy)) == 7


class TestConcurrency:
    """Tests for the process-local gate around passes."""

    @pytest.mark.asyncio
    async def test_busy_gate_drops_the_call(self, storage, user_id):
        add_rule(storage, user_id)
        gate = ConcurrencyGate()
        orchestrator = make_orchestrator(storage, gate=gate)

        async with gate.try_acquire():
            result = await orchestrator.generate(user_id)

        assert result is None
        assert storage.list_occurrences() == []

    @pytest.mark.asyncio
    async def test_overlapping_triggers_run_once(self, user_id):
        class SlowStorage(CountingStorage):
            async def list_definitions(self, user_id):
                await asyncio.sleep(0.01)
                return await super().list_definitions(user_id)

        storage = SlowStorage()
        rule = add_rule(storage, user_id)
        orchestrator = make_orchestrator(storage)

        results = await asyncio.gather(
            orchestrator.generate(user_id),
            orchestrator.generate(user_id),
        )

        assert sum(r is None for r in results) == 1
        assert due_dates(storage, rule) == MONTHLY_15

    @pytest.mark.asyncio
    async def test_gate_released_after_fetch_failure(self, storage, user_id):
        gate = ConcurrencyGate()
        storage.fail_fetch = True
        orchestrator = make_orchestrator(storage, gate=gate)

        await orchestrator.generate(user_id)

        assert gate.is_busy is False


class TestAuditTrail:
    """Tests for audit events emitted by a pass."""

    @pytest.mark.asyncio
    async def test_pass_events_share_correlation_id(self, storage, user_id):
        add_rule(storage, user_id)
        audit_storage = InMemoryAuditStorage()
        orchestrator = make_orchestrator(
            storage, audit_logger=AuditLogger(audit_storage)
        )

        report = await orchestrator.generate(user_id)

        events = await audit_storage.get_events_by_correlation_id(report.correlation_id)
        types = [e.event_type for e in events]
        assert types == [
            AuditEventType.GENERATION_STARTED,
            AuditEventType.OCCURRENCES_INSERTED,
            AuditEventType.CURSOR_ADVANCED,
            AuditEventType.GENERATION_COMPLETED,
        ]

    @pytest.mark.asyncio
    async def test_failures_are_audited(self, storage, user_id):
        broken = add_rule(storage, user_id)
        storage.fail_insert_for.add(broken.id)
        audit_storage = InMemoryAuditStorage()

        await make_orchestrator(
            storage, audit_logger=AuditLogger(audit_storage)
        ).generate(user_id)

        types = [e.event_type for e in audit_storage.events]
        assert AuditEventType.OCCURRENCE_INSERT_FAILED in types
        assert AuditEventType.CURSOR_ADVANCED not in types

    @pytest.mark.asyncio
    async def test_skipped_pass_is_audited(self, storage, user_id):
        gate = ConcurrencyGate()
        audit_storage = InMemoryAuditStorage()
        orchestrator = make_orchestrator(
            storage, gate=gate, audit_logger=AuditLogger(audit_storage)
        )

        async with gate.try_acquire():
            await orchestrator.generate(user_id)

        assert [e.event_type for e in audit_storage.events] == [
            AuditEventType.GENERATION_SKIPPED
        ]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_audited_and_raised(self, storage, user_id):
        """Test errors outside the per-step handling reach the audit trail."""
        planner = MagicMock()
        planner.horizon_for.side_effect = OverflowError("date value out of range")
        audit_storage = InMemoryAuditStorage()
        gate = ConcurrencyGate()
        orchestrator = make_orchestrator(
            storage, planner=planner, gate=gate, audit_logger=AuditLogger(audit_storage)
        )

        with pytest.raises(OverflowError):
            await orchestrator.generate(user_id)

        [event] = audit_storage.events
        assert event.event_type == AuditEventType.SYSTEM_ERROR
        assert event.error_code == "OverflowError"
        assert event.details == {"user_id": str(user_id)}
        assert gate.is_busy is False


class TestCursorWriter:
    """Tests for cursor persistence."""

    @pytest.mark.asyncio
    async def test_writes_last_candidate(self, storage, user_id):
        rule = add_rule(storage, user_id)

        written = await CursorWriter(storage).advance(rule, MONTHLY_15)

        assert written == date(2024, 8, 15)
        assert storage.get_definition(rule.id).last_generated_date == date(2024, 8, 15)

    @pytest.mark.asyncio
    async def test_no_candidates_no_write(self, storage, user_id):
        rule = add_rule(storage, user_id)

        assert await CursorWriter(storage).advance(rule, []) is None
        assert storage.cursor_calls == 0

    @pytest.mark.asyncio
    async def test_never_regresses(self, storage, user_id):
        rule = add_rule(storage, user_id, last_generated_date=date(2024, 9, 15))

        assert await CursorWriter(storage).advance(rule, MONTHLY_15) is None
        assert storage.cursor_calls == 0
        assert storage.get_definition(rule.id).last_generated_date == date(2024, 9, 15)


class TestEntryPoint:
    """Tests for generate_recurring_transactions."""

    @pytest.mark.asyncio
    async def test_returns_none_and_generates(self, storage, user_id):
        rule = add_rule(storage, user_id)

        result = await generate_recurring_transactions(
            user_id, orchestrator=make_orchestrator(storage)
        )

        assert result is None
        assert due_dates(storage, rule) == MONTHLY_15

    @pytest.mark.asyncio
    async def test_never_raises(self, user_id):
        orchestrator = MagicMock()
        orchestrator.generate = AsyncMock(side_effect=RuntimeError("unexpected"))

        await generate_recurring_transactions(user_id, orchestrator=orchestrator)

        orchestrator.generate.assert_awaited_once_with(user_id)

    @pytest.mark.asyncio
    async def test_fetch_failure_does_not_raise(self, storage, user_id):
        storage.fail_fetch = True

        await generate_recurring_transactions(
            user_id, orchestrator=make_orchestrator(storage)
        )

        assert storage.list_occurrences() == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
