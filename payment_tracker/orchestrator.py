"""
Generation Orchestrator for Payment Tracker

This module ties together the recurrence components and the storage
gateway. For every definition a user owns it:
1. Plans candidate dates (today .. today + horizon)
2. Drops dates that already have an occurrence
3. Inserts the rest as pending occurrences, one batch per definition
4. Advances the definition's cursor to the last date considered

DESIGN DECISION: Generation is a best-effort background step, not a
ledger commit. Storage failures never raise to the caller:
- Definitions cannot be read -> the pass is abandoned, nothing is written
- A rule's insert fails -> its cursor stays put, the other rules continue
- A cursor write fails -> rows stay, the next pass finds them as existing

Correctness on repeat runs comes from the existing-dates check, not from
the cursor. Running a pass twice in a row writes nothing the second time.
"""

from datetime import date
from functools import lru_cache
from typing import Callable, Optional
from uuid import UUID

import structlog

from payment_tracker.audit import AuditLogger, create_correlation_id
from payment_tracker.concurrency import ConcurrencyGate, default_gate
from payment_tracker.config import GenerationSettings, get_settings
from payment_tracker.models.payment import (
    GenerationReport,
    Occurrence,
    PaymentDefinition,
    RuleOutcome,
)
from payment_tracker.recurrence import (
    AnchorResolver,
    DuplicateGuard,
    RecurrenceRuleEngine,
    WindowPlanner,
)
from payment_tracker.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsPaymentStorage,
    InMemoryPaymentStorage,
    PaymentStorageInterface,
)


logger = structlog.get_logger(__name__)


class CursorWriter:
    """
    Persists a definition's last_generated_date.

    The cursor moves to the last candidate a pass considered, whether that
    date was inserted now or already existed. It only ever moves forward.
    """

    def __init__(self, storage: PaymentStorageInterface):
        self._storage = storage

    async def advance(
        self,
        definition: PaymentDefinition,
        candidates: list[date],
    ) -> Optional[date]:
        """
        Write the new cursor.

        Returns:
            The new cursor, or None when nothing was written (no candidates,
            or the cursor is already at or past the last candidate)

        Raises:
            StorageError: If the storage update fails
        """
        if not candidates:
            return None

        new_cursor = candidates[-1]
        current = definition.last_generated_date
        if current is not None and new_cursor <= current:
            return None

        await self._storage.update_definition_cursor(definition.id, new_cursor)
        return new_cursor


def create_planner(settings: Optional[GenerationSettings] = None) -> WindowPlanner:
    """Build a WindowPlanner from generation settings."""
    settings = settings or get_settings().generation
    engine = RecurrenceRuleEngine(settings.overflow_policy)
    return WindowPlanner(
        engine=engine,
        anchor_resolver=AnchorResolver(engine),
        horizon_months=settings.horizon_months,
    )


class GenerationOrchestrator:
    """
    Runs generation passes for users.

    Definitions are processed one at a time, in the order storage returns
    them. A pass started while another is running in the same gate is
    dropped.
    """

    def __init__(
        self,
        storage: PaymentStorageInterface,
        planner: Optional[WindowPlanner] = None,
        gate: Optional[ConcurrencyGate] = None,
        audit_logger: Optional[AuditLogger] = None,
        today_provider: Optional[Callable[[], date]] = None,
    ):
        self._storage = storage
        self._planner = planner or WindowPlanner()
        self._gate = gate or ConcurrencyGate()
        self._audit_logger = audit_logger or AuditLogger()  # Local-only logging
        self._today = today_provider or date.today
        self._cursor_writer = CursorWriter(storage)

    async def generate(self, user_id: UUID) -> Optional[GenerationReport]:
        """
        Materialize every definition of a user up to the horizon.

        Returns:
            The pass report, or None if a pass was already running

        Raises:
            Exception: Only errors outside the per-step handling, after
                they are audited as a system error
        """
        correlation_id = create_correlation_id()

        async with self._gate.try_acquire() as acquired:
            if not acquired:
                await self._audit_logger.log_generation_skipped(
                    user_id=user_id,
                    correlation_id=correlation_id,
                )
                return None

            try:
                return await self._run_pass(user_id, correlation_id)
            except Exception as e:
                # Anything the per-step handling did not expect
                await self._audit_logger.log_error(
                    error_type=type(e).__name__,
                    error_message=str(e),
                    details={"user_id": str(user_id)},
                    correlation_id=correlation_id,
                )
                raise

    async def _run_pass(self, user_id: UUID, correlation_id: UUID) -> GenerationReport:
        today = self._today()
        horizon = self._planner.horizon_for(today)
        report = GenerationReport(
            correlation_id=correlation_id,
            user_id=user_id,
            today=today,
            horizon=horizon,
        )

        await self._audit_logger.log_generation_started(
            user_id=user_id,
            today=today,
            horizon=horizon,
            correlation_id=correlation_id,
        )

        try:
            definitions = await self._storage.list_definitions(user_id)
        except Exception as e:
            report.fetch_failed = True
            await self._audit_logger.log_definitions_fetch_failed(
                user_id=user_id,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return report

        for definition in definitions:
            outcome = await self._process_definition(
                definition, today, horizon, correlation_id
            )
            report.outcomes.append(outcome)

        await self._audit_logger.log_generation_completed(
            user_id=user_id,
            rule_count=len(report.outcomes),
            inserted_count=report.total_inserted,
            failed_count=len(report.failed_rules),
            correlation_id=correlation_id,
        )
        return report

    async def _process_definition(
        self,
        definition: PaymentDefinition,
        today: date,
        horizon: date,
        correlation_id: UUID,
    ) -> RuleOutcome:
        outcome = RuleOutcome(
            definition_id=definition.id,
            cursor_before=definition.last_generated_date,
            cursor_after=definition.last_generated_date,
        )

        try:
            candidates = self._planner.plan(definition, today, horizon)
            outcome.candidates = candidates
            if not candidates:
                return outcome

            existing = await self._storage.list_occurrence_dates(
                definition.id, on_or_after=today
            )
            missing, present = DuplicateGuard.partition(candidates, existing)
            outcome.skipped_existing = present
        except Exception as e:
            outcome.error = str(e)
            await self._audit_logger.log_rule_failed(
                definition_id=definition.id,
                error_type=type(e).__name__,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return outcome

        if missing:
            rows = [Occurrence.from_definition(definition, d) for d in missing]
            try:
                await self._storage.insert_occurrences(rows)
            except Exception as e:
                # Cursor stays where it was so the whole window is retried
                outcome.error = str(e)
                await self._audit_logger.log_occurrence_insert_failed(
                    definition_id=definition.id,
                    due_dates=missing,
                    error_message=str(e),
                    correlation_id=correlation_id,
                )
                return outcome

            outcome.inserted = missing
            await self._audit_logger.log_occurrences_inserted(
                definition_id=definition.id,
                due_dates=missing,
                correlation_id=correlation_id,
            )

        try:
            new_cursor = await self._cursor_writer.advance(definition, candidates)
        except Exception as e:
            outcome.cursor_error = str(e)
            await self._audit_logger.log_cursor_update_failed(
                definition_id=definition.id,
                attempted=candidates[-1],
                error_message=str(e),
                correlation_id=correlation_id,
            )
            return outcome

        if new_cursor is not None:
            outcome.cursor_after = new_cursor
            await self._audit_logger.log_cursor_advanced(
                definition_id=definition.id,
                previous=definition.last_generated_date,
                current=new_cursor,
                correlation_id=correlation_id,
            )

        return outcome


def create_app_components(
    use_storage: bool = True,
) -> tuple[Optional[GenerationOrchestrator], Optional[GoogleSheetsClient]]:
    """
    Factory function to create the generation orchestrator.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run against in-memory storage.

    Returns:
        (orchestrator, sheets_client). The orchestrator is None when
        Google Sheets is requested but not configured.
    """
    planner = create_planner()

    if not use_storage:
        orchestrator = GenerationOrchestrator(
            storage=InMemoryPaymentStorage(),
            planner=planner,
            gate=default_gate,
            audit_logger=AuditLogger(),
        )
        return orchestrator, None

    try:
        sheets_client = GoogleSheetsClient()
        storage = GoogleSheetsPaymentStorage(sheets_client)
        audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
    except Exception as e:
        # Storage not configured - there is nothing to generate into
        logger.warning("storage_not_configured", error=str(e))
        return None, None

    orchestrator = GenerationOrchestrator(
        storage=storage,
        planner=planner,
        gate=default_gate,
        audit_logger=audit_logger,
    )
    return orchestrator, sheets_client


@lru_cache()
def get_default_orchestrator() -> Optional[GenerationOrchestrator]:
    """
    Get the process-wide orchestrator (cached).

    Call get_default_orchestrator.cache_clear() to rebuild it after a
    configuration change.
    """
    orchestrator, _ = create_app_components()
    return orchestrator


async def generate_recurring_transactions(
    user_id: UUID,
    orchestrator: Optional[GenerationOrchestrator] = None,
) -> None:
    """
    Materialize a user's recurring payments. Safe to call repeatedly.

    Intended to run once per session after authentication, followed by a
    refresh of the occurrence list. Never raises.
    """
    orchestrator = orchestrator or get_default_orchestrator()
    if orchestrator is None:
        logger.warning("generation_unavailable", user_id=str(user_id))
        return

    try:
        await orchestrator.generate(user_id)
    except Exception as e:
        logger.error("generation_failed", user_id=str(user_id), error=str(e))
