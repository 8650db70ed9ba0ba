"""
Tests for storage backends.

The Google Sheets storage runs against an in-process fake worksheet;
no network calls are made.
"""

import asyncio
from datetime import date
from decimal import Decimal

import pytest
from gspread.utils import a1_to_rowcol
from tenacity import stop_after_attempt, wait_none

from cashdesk.config import GoogleSheetsSettings
from cashdesk.models import (
    ActivityLogEntry,
    ActivityType,
    CashInflow,
    EntityType,
    InflowSource,
    Unit,
)
from cashdesk.services.storage import (
    ConnectionError,
    DuplicateError,
    GoogleSheetsActivityLogStorage,
    GoogleSheetsClient,
    GoogleSheetsDocumentStorage,
    InMemoryActivityLogStorage,
    InMemoryDocumentStorage,
    NotFoundError,
    record_columns,
    record_to_row,
    row_to_record,
)


class FakeWorksheet:
    """Just enough of gspread.Worksheet for the storage classes."""

    def __init__(self, header):
        self.rows = [list(header)]

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append(list(values))

    def update(self, range_name=None, values=None, value_input_option=None):
        row, _ = a1_to_rowcol(range_name)
        self.rows[row - 1] = list(values[0])

    def delete_rows(self, index):
        del self.rows[index - 1]


class FakeSheetsClient:
    def __init__(self):
        self.worksheets = {}

    def get_worksheet(self, collection, columns):
        if collection not in self.worksheets:
            self.worksheets[collection] = FakeWorksheet(columns)
        return self.worksheets[collection]


def run(coro):
    return asyncio.run(coro)


def make_inflow(**overrides) -> CashInflow:
    data = dict(
        inflow_date=date(2024, 1, 5),
        amount=Decimal("1500.50"),
        source=InflowSource.PCA,
        project_id="p1",
        description="Avance",
        user_id="u1",
    )
    data.update(overrides)
    return CashInflow(**data)


class TestRowConversion:
    """Tests for record <-> row conversion."""

    def test_columns_skip_excluded_fields(self):
        from cashdesk.models import Expense
        assert "items" not in record_columns(Expense)
        assert record_columns(Unit)[0] == "id"

    def test_row_values_are_text(self):
        inflow = make_inflow()
        columns = record_columns(CashInflow)
        row = record_to_row(inflow, columns)
        assert row[columns.index("amount")] == "1500.50"
        assert row[columns.index("source")] == "pca"
        assert row[columns.index("inflow_date")] == "2024-01-05"

    def test_empty_cells_use_defaults(self):
        header = ["id", "name", "description"]
        unit = row_to_record(Unit, header, ["x1", "kg", ""])
        assert unit.id == "x1"
        assert unit.description == ""

    def test_nested_values_are_json(self):
        entry = ActivityLogEntry(
            user_id="u1",
            activity_type=ActivityType.CREATE,
            entity_type=EntityType.UNIT,
            entity_id="x1",
            entity_data={"name": "kg", "tags": ["a"]},
        )
        columns = record_columns(ActivityLogEntry)
        restored = row_to_record(ActivityLogEntry, columns, record_to_row(entry, columns))
        assert restored.entity_data == {"name": "kg", "tags": ["a"]}
        assert restored.timestamp == entry.timestamp


class TestGoogleSheetsDocumentStorage:
    """Tests for the worksheet-backed collection."""

    @pytest.fixture
    def client(self):
        return FakeSheetsClient()

    @pytest.fixture
    def storage(self, client):
        return GoogleSheetsDocumentStorage("cash_inflow", CashInflow, client)

    def test_add_and_get(self, storage, client):
        inflow = make_inflow()
        run(storage.add(inflow))

        loaded = run(storage.get(inflow.id))
        assert loaded.amount == Decimal("1500.50")
        assert loaded.source == InflowSource.PCA
        assert len(client.worksheets["cash_inflow"].rows) == 2

    def test_add_duplicate_rejected(self, storage):
        inflow = make_inflow()
        run(storage.add(inflow))
        with pytest.raises(DuplicateError):
            run(storage.add(inflow))

    def test_update_rewrites_row(self, storage):
        inflow = make_inflow()
        run(storage.add(inflow))
        run(storage.add(make_inflow()))

        run(storage.update(inflow.model_copy(update={"description": "Avance corrigée"})))
        assert run(storage.get(inflow.id)).description == "Avance corrigée"
        assert len(run(storage.list_all())) == 2

    def test_update_missing_raises(self, storage):
        with pytest.raises(NotFoundError):
            run(storage.update(make_inflow()))

    def test_delete(self, storage):
        inflow = make_inflow()
        run(storage.add(inflow))
        assert run(storage.delete(inflow.id)) is True
        assert run(storage.get(inflow.id)) is None
        assert run(storage.delete(inflow.id)) is False

    def test_malformed_rows_skipped(self, storage, client):
        run(storage.add(make_inflow()))
        sheet = client.worksheets["cash_inflow"]
        sheet.rows.append(["broken", "", "", "", "", "not a date", "abc", "nowhere"])
        sheet.rows.append([])

        assert len(run(storage.list_all())) == 1

    def test_reordered_columns_still_read(self, storage, client):
        inflow = make_inflow()
        run(storage.add(inflow))
        sheet = client.worksheets["cash_inflow"]
        sheet.rows = [list(reversed(row)) for row in sheet.rows]

        assert run(storage.get(inflow.id)).project_id == "p1"

    def test_find(self, storage):
        run(storage.add(make_inflow(user_id="u1")))
        run(storage.add(make_inflow(user_id="u2", source=InflowSource.BANK)))
        assert len(run(storage.find(user_id="u2"))) == 1
        assert len(run(storage.find(source="pca"))) == 1


class TestGoogleSheetsActivityLogStorage:

    def test_entries_newest_first(self):
        storage = GoogleSheetsActivityLogStorage(FakeSheetsClient())
        first = ActivityLogEntry(
            user_id="u1", activity_type=ActivityType.CREATE,
            entity_type=EntityType.UNIT, entity_id="x1",
        )
        second = ActivityLogEntry(
            user_id="u1", activity_type=ActivityType.DELETE,
            entity_type=EntityType.UNIT, entity_id="x1",
        )
        run(storage.append_entry(first))
        run(storage.append_entry(second))

        entries = run(storage.list_entries())
        assert [e.id for e in entries] == [second.id, first.id]
        assert len(run(storage.list_entries(limit=1))) == 1
        history = run(storage.get_entries_by_entity(EntityType.UNIT, "x1"))
        assert [e.id for e in history] == [first.id, second.id]


class TestGoogleSheetsClient:

    def test_missing_credentials_raise_connection_error(self, tmp_path):
        """Test that connecting is retried, then reports a ConnectionError."""
        with pytest.warns(UserWarning):
            settings = GoogleSheetsSettings(
                credentials_path=str(tmp_path / "missing.json"),
                spreadsheet_id="sheet-id",
            )
        client = GoogleSheetsClient(settings)
        connect = GoogleSheetsClient.connect.retry_with(stop=stop_after_attempt(2), wait=wait_none())

        with pytest.raises(ConnectionError, match="credentials file not found"):
            connect(client)

    def test_worksheet_name_prefix(self, tmp_path):
        credentials = tmp_path / "credentials.json"
        credentials.write_text("{}")
        settings = GoogleSheetsSettings(
            credentials_path=str(credentials),
            spreadsheet_id="sheet-id",
            worksheet_prefix="test_",
        )
        assert settings.worksheet_name("cash_inflow") == "test_cash_inflow"


class TestInMemoryStorage:
    """Tests for the in-memory backend."""

    def test_duplicate_and_missing(self):
        storage = InMemoryDocumentStorage("units")
        unit = Unit(name="kg")
        run(storage.add(unit))
        with pytest.raises(DuplicateError):
            run(storage.add(unit))
        with pytest.raises(NotFoundError):
            run(storage.update(Unit(name="sac")))

    def test_records_are_copied(self):
        storage = InMemoryDocumentStorage("units")
        unit = Unit(name="kg")
        run(storage.add(unit))

        loaded = run(storage.get(unit.id))
        loaded.name = "tonne"
        assert run(storage.get(unit.id)).name == "kg"

    def test_activity_log_limit(self):
        storage = InMemoryActivityLogStorage()
        for _ in range(3):
            run(storage.append_entry(ActivityLogEntry(
                user_id="u1", activity_type=ActivityType.CREATE,
                entity_type=EntityType.PROJECT, entity_id="p1",
            )))
        assert len(run(storage.list_entries(limit=2))) == 2
