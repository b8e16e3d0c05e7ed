"""
Tests for the Google Sheets remote store and change feed.

The spreadsheet is replaced by an in-process fake so no credentials or
network are needed; only the gspread calls the store makes are modelled.
"""

import asyncio
from decimal import Decimal

import gspread
import pytest

from budget_sync.config import GoogleSheetsSettings
from budget_sync.models import BudgetSettings, ChangeEventType, EntityKind, Frequency, PaymentMode
from budget_sync.services.storage import (
    GoogleSheetsChangeFeed,
    GoogleSheetsClient,
    GoogleSheetsRemoteStore,
)
from budget_sync.services.storage.google_sheets import CHANGE_COLUMNS, EXPENSE_COLUMNS

from conftest import OWNER, make_expense


class FakeWorksheet:
    def __init__(self, title):
        self.title = title
        self.rows: list[list[str]] = []

    def get_all_values(self):
        return [list(row) for row in self.rows]

    def append_row(self, values, value_input_option=None):
        self.rows.append([str(v) for v in values])

    def append_rows(self, values, value_input_option=None):
        for row in values:
            self.append_row(row)

    def delete_rows(self, index):
        del self.rows[index - 1]

    def update_cell(self, row, col, value):
        self.rows[row - 1][col - 1] = str(value)


class FakeSpreadsheet:
    def __init__(self):
        self.sheets: dict[str, FakeWorksheet] = {}

    def worksheet(self, title):
        if title not in self.sheets:
            raise gspread.WorksheetNotFound(title)
        return self.sheets[title]

    def add_worksheet(self, title, rows, cols):
        self.sheets[title] = FakeWorksheet(title)
        return self.sheets[title]


@pytest.fixture
def spreadsheet():
    return FakeSpreadsheet()


@pytest.fixture
def sheets_client(spreadsheet):
    client = GoogleSheetsClient(
        GoogleSheetsSettings(credentials_path="unused.json", spreadsheet_id="sheet-id")
    )
    client._spreadsheet = spreadsheet
    return client


@pytest.fixture
def sheets_remote(sheets_client):
    return GoogleSheetsRemoteStore(sheets_client, origin="device-a")


class TestGoogleSheetsClient:
    """Worksheet creation."""

    def test_missing_sheets_are_created_with_headers(self, sheets_client, spreadsheet):
        sheet = sheets_client.get_expenses_sheet()
        assert sheet.rows == [EXPENSE_COLUMNS]
        assert sheets_client.get_changes_sheet().rows == [CHANGE_COLUMNS]

        # Second lookup reuses the sheet
        assert sheets_client.get_expenses_sheet() is sheet
        assert set(spreadsheet.sheets) == {"Expenses", "Changes"}


class TestGoogleSheetsRemoteStore:
    """Replace-sync and settings upsert against the fake spreadsheet."""

    @pytest.mark.asyncio
    async def test_insert_and_fetch(self, sheets_remote):
        expense = make_expense(
            "Insurance",
            "45.50",
            frequency=Frequency.QUARTERLY,
            start_month=2,
            monthly_amounts=[Decimal("1.25")] * 12,
        )
        assert await sheets_remote.insert_expenses(OWNER, [expense]) == 1

        fetched = await sheets_remote.fetch_expenses(OWNER)
        assert len(fetched) == 1
        assert fetched[0].id == expense.id
        assert fetched[0].amount == Decimal("45.50")
        assert fetched[0].frequency == Frequency.QUARTERLY
        assert fetched[0].start_month == 2
        assert fetched[0].monthly_amounts == [Decimal("1.25")] * 12
        assert fetched[0].sync_key() == expense.sync_key()

    @pytest.mark.asyncio
    async def test_fetch_is_owner_scoped(self, sheets_remote):
        await sheets_remote.insert_expenses(OWNER, [make_expense("Mine")])
        await sheets_remote.insert_expenses(
            "owner-2", [make_expense("Theirs", owner_id="owner-2")]
        )
        assert [e.name for e in await sheets_remote.fetch_expenses(OWNER)] == ["Mine"]

    @pytest.mark.asyncio
    async def test_delete_all_keeps_other_owners(self, sheets_remote, sheets_client):
        await sheets_remote.insert_expenses(OWNER, [make_expense("A"), make_expense("B")])
        await sheets_remote.insert_expenses(
            "owner-2", [make_expense("C", owner_id="owner-2")]
        )
        await sheets_remote.insert_expenses(OWNER, [make_expense("D")])

        assert await sheets_remote.delete_all_expenses(OWNER) == 3
        assert await sheets_remote.fetch_expenses(OWNER) == []
        assert len(await sheets_remote.fetch_expenses("owner-2")) == 1
        assert len(sheets_client.get_expenses_sheet().rows) == 2  # Header + C

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, sheets_remote, sheets_client):
        await sheets_remote.insert_expenses(OWNER, [make_expense("Good")])
        sheets_client.get_expenses_sheet().rows.append(
            ["bad-id", OWNER, "Broken", "not-a-number"]
        )
        assert [e.name for e in await sheets_remote.fetch_expenses(OWNER)] == ["Good"]

    @pytest.mark.asyncio
    async def test_writes_are_logged_with_origin(self, sheets_remote, sheets_client):
        await sheets_remote.delete_all_expenses(OWNER)  # Nothing removed, nothing logged
        await sheets_remote.insert_expenses(OWNER, [])
        await sheets_remote.insert_expenses(OWNER, [make_expense()])
        await sheets_remote.delete_all_expenses(OWNER)

        log = sheets_client.get_changes_sheet().rows[1:]
        assert [row[2] for row in log] == ["insert", "delete"]
        assert all(row[0] == OWNER and row[1] == "records" for row in log)
        assert all(row[3] == "device-a" for row in log)

    @pytest.mark.asyncio
    async def test_settings_upsert(self, sheets_remote, sheets_client):
        assert await sheets_remote.fetch_settings(OWNER) is None

        await sheets_remote.upsert_settings(
            BudgetSettings(owner_id=OWNER, monthly_payment=Decimal("1000"))
        )
        await sheets_remote.upsert_settings(
            BudgetSettings(
                owner_id=OWNER,
                payment_mode=PaymentMode.VARIABLE,
                monthly_payments=[Decimal("80")] * 12,
                previous_balance=Decimal("12.50"),
            )
        )

        rows = sheets_client.get_settings_sheet().rows
        assert len(rows) == 2  # Header + one owner row
        loaded = await sheets_remote.fetch_settings(OWNER)
        assert loaded.payment_mode == PaymentMode.VARIABLE
        assert loaded.monthly_payments == [Decimal("80")] * 12
        assert loaded.previous_balance == Decimal("12.50")

        log = sheets_client.get_changes_sheet().rows[1:]
        assert [row[2] for row in log] == ["insert", "update"]

    def test_origin_defaults_to_unique_value(self, sheets_client):
        first = GoogleSheetsRemoteStore(sheets_client)
        second = GoogleSheetsRemoteStore(sheets_client)
        assert first.origin != second.origin


class TestGoogleSheetsChangeFeed:
    """Polling the change log."""

    @pytest.mark.asyncio
    async def test_first_poll_skips_existing_history(self, sheets_client, sheets_remote):
        await sheets_remote.insert_expenses(OWNER, [make_expense()])
        feed = GoogleSheetsChangeFeed(sheets_client, poll_interval=3600)

        assert await feed.poll_once() == 0
        assert await feed.poll_once() == 0

    @pytest.mark.asyncio
    async def test_new_rows_are_delivered_to_matching_subscribers(
        self, sheets_client, sheets_remote
    ):
        feed = GoogleSheetsChangeFeed(sheets_client, poll_interval=3600)
        records, settings = [], []
        sub_records = feed.subscribe(OWNER, EntityKind.RECORDS, records.append)
        sub_settings = feed.subscribe(OWNER, EntityKind.SETTINGS, settings.append)
        await asyncio.sleep(0)  # First poll sets the cursor

        other_device = GoogleSheetsRemoteStore(sheets_client, origin="device-b")
        await other_device.insert_expenses(OWNER, [make_expense()])
        await other_device.insert_expenses(
            "owner-2", [make_expense(owner_id="owner-2")]
        )

        assert await feed.poll_once() == 1
        assert len(records) == 1
        assert records[0].event_type == ChangeEventType.INSERT
        assert records[0].origin == "device-b"
        assert settings == []

        sub_records.unsubscribe()
        sub_settings.unsubscribe()

    @pytest.mark.asyncio
    async def test_malformed_log_rows_are_skipped(self, sheets_client):
        feed = GoogleSheetsChangeFeed(sheets_client, poll_interval=3600)
        events = []
        subscription = feed.subscribe(OWNER, EntityKind.RECORDS, events.append)
        await asyncio.sleep(0)

        sheets_client.get_changes_sheet().append_row([OWNER, "unknown-kind", "insert", "x", ""])
        assert await feed.poll_once() == 0
        assert events == []
        subscription.unsubscribe()
