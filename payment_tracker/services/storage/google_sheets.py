"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the default storage backend because:
1. Users can view their payment schedule directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- No transactions. A batch of occurrences is written with a single
  append_rows call so one rule's batch lands or fails as a unit.
  Appends are never retried; a failed append is left for the next pass,
  which finds whatever did land through the existing-dates check.
- Limited query capabilities (we filter in Python)
- No locking; two processes generating for the same user can race

The implementation follows the abstract interface, so we can swap
to PostgreSQL/SQLite later without changing the generation engine.
"""

import asyncio
import json
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from payment_tracker.config import GoogleSheetsSettings, get_settings
from payment_tracker.models.audit import AuditEvent, AuditEventType, AuditSeverity
from payment_tracker.models.payment import (
    Occurrence,
    PaymentDefinition,
)
from payment_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    NotFoundError,
    PaymentStorageInterface,
    StorageError,
)


logger = structlog.get_logger(__name__)


# Column mappings for PaymentDefinitions sheet
DEFINITION_COLUMNS = [
    "id",
    "user_id",
    "title",
    "category",
    "amount",
    "recurrence_type",
    "recurrence_day",
    "recurrence_month",
    "last_generated_date",
]

# Column mappings for Transactions sheet
OCCURRENCE_COLUMNS = [
    "id",
    "user_id",
    "definition_id",
    "title",
    "amount",
    "category",
    "due_date",
    "status",
    "created_at",
]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
]

CURSOR_COLUMN = DEFINITION_COLUMNS.index("last_generated_date") + 1

# Rate limits and 5xx responses surface as APIError. Only idempotent calls
# (reads and cell overwrites) are retried.
transient_retry = retry(
    retry=retry_if_exception_type(gspread.exceptions.APIError),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _safe_get(row: list, index: int, default: str = "") -> str:
    """Read a cell, tolerating short rows and blank cells."""
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet creation.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def _get_or_create_sheet(
        self,
        title: str,
        columns: list[str],
        rows: int,
    ) -> gspread.Worksheet:
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=rows,
                cols=len(columns),
            )
            sheet.append_row(columns)
        return sheet

    def get_definitions_sheet(self) -> gspread.Worksheet:
        """Get or create the PaymentDefinitions worksheet."""
        return self._get_or_create_sheet(
            self._settings.definitions_sheet_name, DEFINITION_COLUMNS, 500
        )

    def get_occurrences_sheet(self) -> gspread.Worksheet:
        """Get or create the Transactions worksheet."""
        return self._get_or_create_sheet(
            self._settings.occurrences_sheet_name, OCCURRENCE_COLUMNS, 5000
        )

    def get_audit_sheet(self) -> gspread.Worksheet:
        """Get or create the Audit worksheet."""
        return self._get_or_create_sheet(
            self._settings.audit_sheet_name, AUDIT_COLUMNS, 5000
        )


class GoogleSheetsPaymentStorage(PaymentStorageInterface):
    """
    Google Sheets implementation of the generation storage gateway.

    Definitions and occurrences live in two worksheets, one row each.
    Dates are stored as ISO strings, amounts as plain decimal strings.

    gspread is synchronous, so every API call runs in a worker thread
    and retry backoff sleeps without holding the event loop.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_definition(self, row: list) -> PaymentDefinition:
        """Convert a spreadsheet row to a PaymentDefinition."""
        amount = _safe_get(row, 4)
        day = _safe_get(row, 6)
        month = _safe_get(row, 7)
        cursor = _safe_get(row, 8)

        return PaymentDefinition(
            id=UUID(_safe_get(row, 0)),
            user_id=UUID(_safe_get(row, 1)),
            title=_safe_get(row, 2),
            category=_safe_get(row, 3),
            amount=Decimal(amount) if amount else None,
            recurrence_type=_safe_get(row, 5) or None,
            recurrence_day=int(day) if day else None,
            recurrence_month=int(month) if month else None,
            last_generated_date=date.fromisoformat(cursor) if cursor else None,
        )

    def _occurrence_to_row(self, occurrence: Occurrence) -> list:
        """Convert an Occurrence to a spreadsheet row."""
        return [
            str(occurrence.id),
            str(occurrence.user_id),
            str(occurrence.definition_id) if occurrence.definition_id else "",
            occurrence.title,
            str(occurrence.amount),
            occurrence.category,
            occurrence.due_date.isoformat(),
            occurrence.status.value,
            occurrence.created_at.isoformat(),
        ]

    @transient_retry
    async def _read_rows(self, sheet: gspread.Worksheet) -> list[list]:
        rows = await asyncio.to_thread(sheet.get_all_values)
        # Skip header
        return rows[1:]

    async def _append_rows(self, sheet: gspread.Worksheet, rows: list[list]) -> None:
        # Not retried: an error response does not mean the rows were not written
        await asyncio.to_thread(sheet.append_rows, rows, value_input_option="RAW")

    @transient_retry
    async def _write_cell(self, sheet: gspread.Worksheet, row: int, col: int, value: str) -> None:
        # RAW keeps ISO dates as text instead of locale-formatted dates
        await asyncio.to_thread(
            sheet.update,
            range_name=rowcol_to_a1(row, col),
            values=[[value]],
            value_input_option="RAW",
        )

    async def list_definitions(self, user_id: UUID) -> list[PaymentDefinition]:
        """List the user's definitions, skipping rows that fail validation."""
        try:
            sheet = await asyncio.to_thread(self._client.get_definitions_sheet)
            all_rows = await self._read_rows(sheet)
        except Exception as e:
            raise StorageError(f"Failed to list definitions: {e}")

        definitions = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            if _safe_get(row, 1) != str(user_id):
                continue

            try:
                definitions.append(self._row_to_definition(row))
            except (ValueError, InvalidOperation) as e:
                logger.warning(
                    "definition_row_skipped",
                    definition_id=row[0],
                    error=str(e),
                )

        return definitions

    async def list_occurrence_dates(
        self,
        definition_id: UUID,
        on_or_after: date,
    ) -> list[date]:
        """List stored due dates for a definition on or after a day."""
        try:
            sheet = await asyncio.to_thread(self._client.get_occurrences_sheet)
            all_rows = await self._read_rows(sheet)
        except Exception as e:
            raise StorageError(f"Failed to list occurrence dates: {e}")

        dates = []
        for row in all_rows:
            if _safe_get(row, 2) != str(definition_id):
                continue
            try:
                due_date = date.fromisoformat(_safe_get(row, 6))
            except ValueError:
                continue  # Skip malformed rows
            if due_date >= on_or_after:
                dates.append(due_date)

        return sorted(dates)

    async def insert_occurrences(self, rows: list[Occurrence]) -> bool:
        """Append the whole batch in one API call."""
        if not rows:
            return True
        try:
            sheet = await asyncio.to_thread(self._client.get_occurrences_sheet)
            await self._append_rows(sheet, [self._occurrence_to_row(o) for o in rows])
            return True
        except Exception as e:
            raise StorageError(f"Failed to insert occurrences: {e}")

    async def update_definition_cursor(
        self,
        definition_id: UUID,
        cursor: date,
    ) -> bool:
        """Write last_generated_date into the definition's row."""
        try:
            sheet = await asyncio.to_thread(self._client.get_definitions_sheet)
            all_rows = await self._read_rows(sheet)

            # Row 1 is the header
            for idx, row in enumerate(all_rows, start=2):
                if row and row[0] == str(definition_id):
                    await self._write_cell(sheet, idx, CURSOR_COLUMN, cursor.isoformat())
                    return True

            raise NotFoundError(f"Definition not found: {definition_id}")
        except NotFoundError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update cursor: {e}")


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        entity_id = _safe_get(row, 5)
        correlation_id = _safe_get(row, 6)
        details = _safe_get(row, 8)

        return AuditEvent(
            event_id=UUID(_safe_get(row, 0)),
            timestamp=datetime.fromisoformat(_safe_get(row, 1)),
            event_type=AuditEventType(_safe_get(row, 2)),
            severity=AuditSeverity(_safe_get(row, 3)),
            entity_type=_safe_get(row, 4) or None,
            entity_id=UUID(entity_id) if entity_id else None,
            correlation_id=UUID(correlation_id) if correlation_id else None,
            description=_safe_get(row, 7),
            details=json.loads(details) if details else {},
            error_message=_safe_get(row, 9) or None,
        )

    @transient_retry
    async def _read_events(self) -> list[AuditEvent]:
        sheet = await asyncio.to_thread(self._client.get_audit_sheet)
        rows = await asyncio.to_thread(sheet.get_all_values)
        events = []
        for row in rows[1:]:
            if not row or not row[0]:
                continue
            try:
                events.append(self._row_to_event(row))
            except ValueError:
                continue
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = await asyncio.to_thread(self._client.get_audit_sheet)
            await asyncio.to_thread(
                sheet.append_row, event.to_sheets_row(), value_input_option="RAW"
            )
            return True
        except Exception as e:
            # Audit logging must not break the generation pass
            logger.warning(
                "audit_event_write_failed",
                event_id=str(event.event_id),
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        try:
            events = [
                e for e in await self._read_events()
                if e.correlation_id == correlation_id
            ]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events.sort(key=lambda e: e.timestamp)
        return events
