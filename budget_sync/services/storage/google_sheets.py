"""
Google Sheets Remote Store Implementation

DESIGN DECISION: Google Sheets is used as the shared remote backend because:
1. Non-technical users can view their budget directly in Sheets
2. No database server to run
3. Every device with the service account can reach the same data

TRADEOFFS:
- No transactions: a push is delete-then-insert and is NOT atomic
  (a crash between the two steps leaves the owner with no remote rows
  until the next push; the local copy is unaffected)
- No server push: other devices learn about changes by polling the
  change-log worksheet (see GoogleSheetsChangeFeed)
- Limited query capabilities (we filter by owner in Python)

Every write also appends a row to the change-log worksheet stamped with the
writer's origin, so a device can ignore the changes it caused itself.
"""

import asyncio
import json
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import uuid4

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from budget_sync.config import GoogleSheetsSettings, get_settings
from budget_sync.models.budget import BudgetSettings, PaymentMode
from budget_sync.models.expense import Expense, Frequency, utc_now
from budget_sync.models.sync import ChangeEvent, ChangeEventType, EntityKind
from budget_sync.services.storage.interface import (
    ChangeCallback,
    ChangeFeedInterface,
    ConnectionError,
    RemoteStoreError,
    RemoteStoreInterface,
    Subscription,
)


logger = structlog.get_logger("budget_sync.remote")


# Column mappings for Expenses sheet
EXPENSE_COLUMNS = [
    "id",
    "owner_id",
    "name",
    "amount",
    "frequency",
    "start_month",
    "end_month",
    "monthly_amounts_json",
    "created_at",
    "updated_at",
]

# Column mappings for Settings sheet
SETTINGS_COLUMNS = [
    "owner_id",
    "payment_mode",
    "monthly_payment",
    "monthly_payments_json",
    "previous_balance",
    "updated_at",
]

# Column mappings for the change log
CHANGE_COLUMNS = [
    "owner_id",
    "kind",
    "event_type",
    "origin",
    "occurred_at",
]


def _safe_get(row: list, index: int, default: str = "") -> str:
    try:
        return row[index] if row[index] else default
    except IndexError:
        return default


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
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

    def get_expenses_sheet(self) -> gspread.Worksheet:
        """Get or create the Expenses worksheet."""
        return self._get_or_create_sheet(
            self._settings.expenses_sheet_name, EXPENSE_COLUMNS, 1000
        )

    def get_settings_sheet(self) -> gspread.Worksheet:
        """Get or create the Settings worksheet."""
        return self._get_or_create_sheet(
            self._settings.settings_sheet_name, SETTINGS_COLUMNS, 100
        )

    def get_changes_sheet(self) -> gspread.Worksheet:
        """Get or create the change-log worksheet."""
        return self._get_or_create_sheet(
            self._settings.changes_sheet_name,
            CHANGE_COLUMNS,
            5000,  # More rows for the change log
        )


class GoogleSheetsRemoteStore(RemoteStoreInterface):
    """
    Google Sheets implementation of the remote store.

    Expenses are stored one per row in a shared worksheet; rows of all
    owners live side by side and are filtered by the owner_id column.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        origin: Optional[str] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._origin = origin or str(uuid4())

    @property
    def origin(self) -> str:
        return self._origin

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _expense_to_row(self, expense: Expense) -> list:
        """Convert an Expense to a spreadsheet row."""
        return [
            expense.id,
            expense.owner_id,
            expense.name,
            str(expense.amount),
            expense.frequency.value,
            expense.start_month,
            expense.end_month,
            json.dumps([str(v) for v in expense.monthly_amounts])
            if expense.monthly_amounts is not None else "",
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
        ]

    def _row_to_expense(self, row: list) -> Expense:
        """Convert a spreadsheet row to an Expense."""
        amounts_json = _safe_get(row, 7)
        return Expense(
            id=_safe_get(row, 0),
            owner_id=_safe_get(row, 1),
            name=_safe_get(row, 2),
            amount=Decimal(_safe_get(row, 3, "0")),
            frequency=Frequency(_safe_get(row, 4, Frequency.MONTHLY.value)),
            start_month=int(_safe_get(row, 5, "1")),
            end_month=int(_safe_get(row, 6, "12")),
            monthly_amounts=[Decimal(v) for v in json.loads(amounts_json)]
            if amounts_json else None,
            created_at=datetime.fromisoformat(_safe_get(row, 8)),
            updated_at=datetime.fromisoformat(_safe_get(row, 9)),
        )

    def _settings_to_row(self, settings: BudgetSettings) -> list:
        return [
            settings.owner_id,
            settings.payment_mode.value,
            str(settings.monthly_payment),
            json.dumps([str(v) for v in settings.monthly_payments])
            if settings.monthly_payments is not None else "",
            str(settings.previous_balance),
            settings.updated_at.isoformat(),
        ]

    def _row_to_settings(self, row: list) -> BudgetSettings:
        payments_json = _safe_get(row, 3)
        return BudgetSettings(
            owner_id=_safe_get(row, 0),
            payment_mode=PaymentMode(_safe_get(row, 1, PaymentMode.FIXED.value)),
            monthly_payment=Decimal(_safe_get(row, 2, "0")),
            monthly_payments=[Decimal(v) for v in json.loads(payments_json)]
            if payments_json else None,
            previous_balance=Decimal(_safe_get(row, 4, "0")),
            updated_at=datetime.fromisoformat(_safe_get(row, 5)),
        )

    def _record_change(
        self,
        owner_id: str,
        kind: EntityKind,
        event_type: ChangeEventType,
    ) -> None:
        """Append a change-log row so other devices can pick the write up."""
        sheet = self._client.get_changes_sheet()
        sheet.append_row(
            [owner_id, kind.value, event_type.value, self._origin, utc_now().isoformat()],
            value_input_option="RAW",
        )

    # =========================================================================
    # EXPENSES
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def delete_all_expenses(self, owner_id: str) -> int:
        """Delete every row of an owner, bottom-up so row indices stay valid."""
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()

            indices = [
                idx
                for idx, row in enumerate(all_rows[1:], start=2)  # Row 1 is header
                if len(row) > 1 and row[1] == owner_id
            ]
            for idx in reversed(indices):
                sheet.delete_rows(idx)

            if indices:
                self._record_change(owner_id, EntityKind.RECORDS, ChangeEventType.DELETE)
            return len(indices)
        except Exception as e:
            raise RemoteStoreError(f"Failed to delete expenses: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def insert_expenses(self, owner_id: str, expenses: list[Expense]) -> int:
        if not expenses:
            return 0
        try:
            sheet = self._client.get_expenses_sheet()
            sheet.append_rows(
                [self._expense_to_row(e) for e in expenses],
                value_input_option="RAW",
            )
            self._record_change(owner_id, EntityKind.RECORDS, ChangeEventType.INSERT)
            return len(expenses)
        except Exception as e:
            raise RemoteStoreError(f"Failed to insert expenses: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def fetch_expenses(self, owner_id: str) -> list[Expense]:
        try:
            sheet = self._client.get_expenses_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise RemoteStoreError(f"Failed to fetch expenses: {e}")

        expenses = []
        for row in all_rows:
            if len(row) < 2 or row[1] != owner_id:
                continue
            try:
                expenses.append(self._row_to_expense(row))
            except Exception as e:
                logger.warning(
                    "Skipping malformed expense row",
                    owner_id=owner_id,
                    row_id=_safe_get(row, 0),
                    error=str(e),
                )
        return expenses

    # =========================================================================
    # SETTINGS
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def upsert_settings(self, settings: BudgetSettings) -> None:
        """Insert or update the owner's settings row (conflict key: owner_id)."""
        try:
            sheet = self._client.get_settings_sheet()
            all_rows = sheet.get_all_values()
            new_row = self._settings_to_row(settings)

            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == settings.owner_id:
                    for col_idx, value in enumerate(new_row, start=1):
                        sheet.update_cell(idx, col_idx, value)
                    self._record_change(
                        settings.owner_id, EntityKind.SETTINGS, ChangeEventType.UPDATE
                    )
                    return

            sheet.append_row(new_row, value_input_option="RAW")
            self._record_change(
                settings.owner_id, EntityKind.SETTINGS, ChangeEventType.INSERT
            )
        except Exception as e:
            raise RemoteStoreError(f"Failed to upsert settings: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def fetch_settings(self, owner_id: str) -> Optional[BudgetSettings]:
        try:
            sheet = self._client.get_settings_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise RemoteStoreError(f"Failed to fetch settings: {e}")

        for row in all_rows:
            if row and row[0] == owner_id:
                return self._row_to_settings(row)
        return None


class GoogleSheetsChangeFeed(ChangeFeedInterface):
    """
    Change feed that polls the change-log worksheet.

    Only rows appended after the first poll are delivered; history present
    when the feed starts is skipped. The polling task runs while at least
    one subscription is active.
    """

    def __init__(
        self,
        client: Optional[GoogleSheetsClient] = None,
        poll_interval: Optional[float] = None,
    ):
        self._client = client or GoogleSheetsClient()
        self._poll_interval = (
            poll_interval
            if poll_interval is not None
            else get_settings().sync.poll_interval_seconds
        )
        self._subscribers: dict[tuple[str, EntityKind], list[ChangeCallback]] = {}
        self._cursor: Optional[int] = None
        self._task: Optional[asyncio.Task] = None

    def subscribe(
        self,
        owner_id: str,
        kind: EntityKind,
        callback: ChangeCallback,
    ) -> Subscription:
        key = (owner_id, kind)
        self._subscribers.setdefault(key, []).append(callback)

        if self._task is None or self._task.done():
            self._task = asyncio.get_running_loop().create_task(self._poll_loop())

        def release() -> None:
            callbacks = self._subscribers.get(key, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(key, None)
            if not self._subscribers:
                self.close()

        return Subscription(release)

    def close(self) -> None:
        """Stop polling."""
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except Exception as e:
                # Polling keeps going; the next tick retries
                logger.warning("Change feed poll failed", error=str(e))
            await asyncio.sleep(self._poll_interval)

    async def poll_once(self) -> int:
        """
        Read the change log once and deliver new rows to subscribers.

        Returns:
            Number of events delivered
        """
        sheet = self._client.get_changes_sheet()
        rows = sheet.get_all_values()[1:]  # Skip header

        if self._cursor is None:
            self._cursor = len(rows)
            return 0

        new_rows = rows[self._cursor:]
        self._cursor = len(rows)

        delivered = 0
        for row in new_rows:
            try:
                event = ChangeEvent(
                    owner_id=_safe_get(row, 0),
                    kind=EntityKind(_safe_get(row, 1)),
                    event_type=ChangeEventType(_safe_get(row, 2)),
                    origin=_safe_get(row, 3),
                    occurred_at=datetime.fromisoformat(_safe_get(row, 4)),
                )
            except Exception:
                continue  # Skip malformed rows

            for callback in list(self._subscribers.get((event.owner_id, event.kind), [])):
                callback(event)
                delivered += 1
        return delivered
