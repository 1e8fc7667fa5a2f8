"""
Google Sheets Activity Log Mirror

DESIGN DECISION: The treasurer reads the activity log in a spreadsheet
they already share with the club committee. One row per AuditEvent,
append-only.

Only the activity log lives here. Requests (and their authoritative
status history) stay in a RequestStoreInterface implementation, which
needs compare-and-set semantics a spreadsheet cannot give.
"""

import json
from datetime import datetime
from typing import Callable, Optional
from uuid import UUID

import gspread
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from treasury.config import get_settings
from treasury.config.settings import GoogleSheetsSettings
from treasury.models.audit import AuditEvent, AuditEventType, AuditSeverity
from treasury.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    StorageError,
)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]

# Header row of the activity log worksheet, in AuditEvent.to_sheets_row() order
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "actor_id",
    "actor_role",
    "description",
    "details_json",
    "error_code",
    "error_message",
]


def _optional(value: str) -> Optional[str]:
    return value or None


def _optional_uuid(value: str) -> Optional[UUID]:
    return UUID(value) if value else None


class GoogleSheetsClient:
    """
    Opens the club spreadsheet with a service account.

    The gspread client, spreadsheet and worksheet are looked up once and
    reused.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._settings = settings or get_settings().google_sheets
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._audit_sheet: Optional[gspread.Worksheet] = None

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """Authorize against the Sheets API (retried on transient failures)."""
        if self._client is not None:
            return self._client

        path = self._settings.credentials_path
        try:
            credentials = Credentials.from_service_account_file(path, scopes=SCOPES)
        except FileNotFoundError:
            raise ConnectionError(f"Service account file not found: {path}")
        except ValueError as e:
            raise ConnectionError(f"Service account file {path} is invalid: {e}")

        try:
            self._client = gspread.authorize(credentials)
        except Exception as e:
            raise ConnectionError(f"Google Sheets authorization failed: {e}")
        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        if self._spreadsheet is None:
            try:
                self._spreadsheet = self.connect().open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"No spreadsheet {self._settings.spreadsheet_id} shared with the service account"
                )
        return self._spreadsheet

    def get_audit_sheet(self) -> gspread.Worksheet:
        """The activity log worksheet, created with its header row on first use."""
        if self._audit_sheet is not None:
            return self._audit_sheet

        spreadsheet = self.get_spreadsheet()
        name = self._settings.audit_sheet_name
        try:
            sheet = spreadsheet.worksheet(name)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=name, rows=5000, cols=len(AUDIT_COLUMNS))
            sheet.append_row(AUDIT_COLUMNS)

        self._audit_sheet = sheet
        return sheet


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    AuditStorageInterface over one worksheet.

    Reads scan the whole sheet. That is fine for a club's volume; the
    authoritative per-request history is on the request itself.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Parse one sheet row; short rows are padded with blanks."""
        padded = list(row) + [""] * (len(AUDIT_COLUMNS) - len(row))
        cell = dict(zip(AUDIT_COLUMNS, padded))

        return AuditEvent(
            event_id=UUID(cell["event_id"]),
            timestamp=datetime.fromisoformat(cell["timestamp"]),
            event_type=AuditEventType(cell["event_type"]),
            severity=AuditSeverity(cell["severity"]),
            entity_type=_optional(cell["entity_type"]),
            entity_id=_optional_uuid(cell["entity_id"]),
            correlation_id=_optional_uuid(cell["correlation_id"]),
            actor_id=_optional(cell["actor_id"]),
            actor_role=_optional(cell["actor_role"]),
            description=cell["description"],
            details=json.loads(cell["details_json"]) if cell["details_json"] else {},
            error_code=_optional(cell["error_code"]),
            error_message=_optional(cell["error_message"]),
        )

    def _select(
        self,
        predicate: Callable[[AuditEvent], bool],
        newest_first: bool = False,
    ) -> list[AuditEvent]:
        try:
            rows = self._client.get_audit_sheet().get_all_values()
        except Exception as e:
            raise StorageError(f"Failed to read the activity log: {e}")

        events = []
        for row in rows[1:]:
            if not row or not row[0]:
                continue
            try:
                event = self._row_to_event(row)
            except ValueError:
                # Hand-edited rows that no longer parse are left out
                continue
            if predicate(event):
                events.append(event)

        events.sort(key=lambda e: e.timestamp, reverse=newest_first)
        return events

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def append_event(self, event: AuditEvent) -> bool:
        try:
            self._client.get_audit_sheet().append_row(
                event.to_sheets_row(), value_input_option="RAW"
            )
        except Exception as e:
            raise StorageError(f"Failed to write activity log row: {e}")
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        return self._select(lambda e: e.correlation_id == correlation_id)

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        return self._select(
            lambda e: e.entity_type == entity_type and e.entity_id == entity_id
        )

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return self._select(lambda e: True, newest_first=True)[:limit]
