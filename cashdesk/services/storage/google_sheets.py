"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is the hosted document store because:
1. Non-technical staff can read the books directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

Each collection is one worksheet. Row 1 is the header (the model's field
names); every following row is one document. Nested values (lists,
dicts) are JSON-encoded into their cell.

TRADEOFFS:
- No transactions (multi-document writes are sequential)
- Whole-sheet reads, filtered in Python
- Only connection establishment is retried; a failed read or write is
  reported to the caller as is
"""

import json
from typing import Any, Generic, Optional, Type, get_origin

import gspread
import structlog
from google.oauth2.service_account import Credentials
from gspread.utils import rowcol_to_a1
from pydantic import BaseModel, ValidationError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from cashdesk.config import GoogleSheetsSettings, get_settings
from cashdesk.models.audit import ActivityLogEntry, EntityType
from cashdesk.services.storage.interface import (
    ActivityLogStorageInterface,
    ConnectionError,
    DocumentStorageInterface,
    DuplicateError,
    NotFoundError,
    RecordT,
    StorageError,
)

logger = structlog.get_logger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/spreadsheets",
    "https://www.googleapis.com/auth/drive",
]


# =============================================================================
# ROW CONVERSION
# =============================================================================

def record_columns(model_cls: Type[BaseModel]) -> list[str]:
    """Header row for a model: every persisted field, in declaration order."""
    return [
        name for name, field in model_cls.model_fields.items()
        if not field.exclude
    ]


def _nested_fields(model_cls: Type[BaseModel]) -> set[str]:
    return {
        name for name, field in model_cls.model_fields.items()
        if get_origin(field.annotation) in (list, dict)
    }


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, dict)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def record_to_row(record: BaseModel, columns: list[str]) -> list[str]:
    """Serialize a record into cells, following `columns`."""
    data = record.model_dump(mode="json")
    return [_cell(data.get(column)) for column in columns]


def row_to_record(model_cls: Type[RecordT], header: list[str], row: list[str]) -> RecordT:
    """
    Build a record from a sheet row.

    Empty cells are left out so model defaults apply. Raises ValueError
    (or pydantic's ValidationError) on a malformed row.
    """
    nested = _nested_fields(model_cls)
    data: dict[str, Any] = {}
    for column, cell in zip(header, row):
        if not column or cell == "":
            continue
        data[column] = json.loads(cell) if column in nested else cell
    return model_cls.model_validate(data)


# =============================================================================
# CLIENT
# =============================================================================

class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and worksheet lookup. Connecting is retried;
    nothing else is.
    """

    def __init__(self, settings: Optional[GoogleSheetsSettings] = None):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = settings or get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_exception_type(ConnectionError),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=SCOPES,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError as e:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                ) from e
            except (ValueError, OSError, gspread.exceptions.GSpreadException) as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}") from e

            logger.info("sheets_connected", spreadsheet_id=self._settings.spreadsheet_id)

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound as e:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                ) from e
        return self._spreadsheet

    def get_worksheet(self, collection: str, columns: list[str]) -> gspread.Worksheet:
        """Get or create the worksheet of a collection."""
        if collection in self._worksheets:
            return self._worksheets[collection]

        title = self._settings.worksheet_name(collection)
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            # Create the sheet with headers
            sheet = spreadsheet.add_worksheet(
                title=title,
                rows=self._settings.default_rows,
                cols=len(columns),
            )
            sheet.append_row(columns, value_input_option="RAW")
            logger.info("worksheet_created", collection=collection, title=title)

        self._worksheets[collection] = sheet
        return sheet


# =============================================================================
# DOCUMENT STORAGE
# =============================================================================

class GoogleSheetsDocumentStorage(DocumentStorageInterface[RecordT], Generic[RecordT]):
    """
    One collection stored as one worksheet.

    The id column is looked up by header name, so columns may be
    reordered by hand in the sheet without breaking reads.
    """

    def __init__(
        self,
        collection: str,
        model_cls: Type[RecordT],
        client: Optional[GoogleSheetsClient] = None,
    ):
        self.collection = collection
        self._model_cls = model_cls
        self._columns = record_columns(model_cls)
        self._client = client or GoogleSheetsClient()

    def _sheet(self) -> gspread.Worksheet:
        return self._client.get_worksheet(self.collection, self._columns)

    def _read(self) -> tuple[gspread.Worksheet, list[str], list[list[str]]]:
        sheet = self._sheet()
        try:
            values = sheet.get_all_values()
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to read {self.collection}: {e}") from e
        header = values[0] if values else list(self._columns)
        return sheet, header, values[1:]

    def _find_row(self, header: list[str], rows: list[list[str]], record_id: str) -> Optional[int]:
        """1-based sheet row number of a document, or None."""
        id_index = header.index("id") if "id" in header else 0
        for offset, row in enumerate(rows, start=2):  # row 1 is the header
            if len(row) > id_index and row[id_index] == record_id:
                return offset
        return None

    def _parse_rows(self, header: list[str], rows: list[list[str]]) -> list[RecordT]:
        records = []
        for row in rows:
            if not any(row):
                continue
            try:
                records.append(row_to_record(self._model_cls, header, row))
            except (ValidationError, ValueError) as e:
                logger.warning(
                    "malformed_row_skipped",
                    collection=self.collection,
                    error=str(e),
                )
        return records

    async def add(self, record: RecordT) -> RecordT:
        sheet, header, rows = self._read()
        if self._find_row(header, rows, record.id) is not None:
            raise DuplicateError(f"{self.collection} document already exists: {record.id}")
        try:
            sheet.append_row(record_to_row(record, header), value_input_option="RAW")
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to save {self.collection} document: {e}") from e
        return record

    async def get(self, record_id: str) -> Optional[RecordT]:
        _, header, rows = self._read()
        row_number = self._find_row(header, rows, record_id)
        if row_number is None:
            return None
        records = self._parse_rows(header, [rows[row_number - 2]])
        return records[0] if records else None

    async def update(self, record: RecordT) -> RecordT:
        sheet, header, rows = self._read()
        row_number = self._find_row(header, rows, record.id)
        if row_number is None:
            raise NotFoundError(f"{self.collection} document not found: {record.id}")
        try:
            sheet.update(
                range_name=rowcol_to_a1(row_number, 1),
                values=[record_to_row(record, header)],
                value_input_option="RAW",
            )
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to update {self.collection} document: {e}") from e
        return record

    async def delete(self, record_id: str) -> bool:
        sheet, header, rows = self._read()
        row_number = self._find_row(header, rows, record_id)
        if row_number is None:
            return False
        try:
            sheet.delete_rows(row_number)
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to delete {self.collection} document: {e}") from e
        return True

    async def list_all(self) -> list[RecordT]:
        _, header, rows = self._read()
        return self._parse_rows(header, rows)


# =============================================================================
# ACTIVITY LOG STORAGE
# =============================================================================

class GoogleSheetsActivityLogStorage(ActivityLogStorageInterface):
    """
    Google Sheets implementation of activity log storage.

    Entries are append-only.
    """

    collection = "activity_logs"

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()
        self._columns = record_columns(ActivityLogEntry)

    def _entries(self) -> list[ActivityLogEntry]:
        sheet = self._client.get_worksheet(self.collection, self._columns)
        try:
            values = sheet.get_all_values()
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to read activity logs: {e}") from e
        if not values:
            return []

        header, rows = values[0], values[1:]
        entries = []
        for row in rows:
            if not any(row):
                continue
            try:
                entries.append(row_to_record(ActivityLogEntry, header, row))
            except (ValidationError, ValueError) as e:
                logger.warning("malformed_activity_row_skipped", error=str(e))
        return entries

    async def append_entry(self, entry: ActivityLogEntry) -> bool:
        sheet = self._client.get_worksheet(self.collection, self._columns)
        try:
            sheet.append_row(record_to_row(entry, self._columns), value_input_option="RAW")
        except gspread.exceptions.GSpreadException as e:
            raise StorageError(f"Failed to write activity entry: {e}") from e
        return True

    async def list_entries(self, limit: Optional[int] = None) -> list[ActivityLogEntry]:
        entries = sorted(self._entries(), key=lambda e: e.timestamp, reverse=True)
        return entries if limit is None else entries[:limit]

    async def get_entries_by_entity(
        self,
        entity_type: EntityType,
        entity_id: str,
    ) -> list[ActivityLogEntry]:
        entries = [
            e for e in self._entries()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        entries.sort(key=lambda e: e.timestamp)
        return entries
