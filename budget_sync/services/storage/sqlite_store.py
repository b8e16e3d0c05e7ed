"""
SQLite Local Store Implementation

DESIGN DECISION: The working copy lives in an embedded SQLite database because:
1. It is always available - no network, no server process
2. Writes are durable the moment they return, so optimistic edits survive a crash
3. It ships with Python

TRADEOFFS:
- One connection per store; callers share it cooperatively on one event loop
- Calls are synchronous under the hood; they are fast enough on a local file
  that the async interface never needs to hand them to a thread

Amounts are stored as TEXT so that Decimal values round-trip exactly.
The same database also holds the append-only audit log (sync_log table).
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from budget_sync.config import get_settings
from budget_sync.models.audit import AuditEvent, AuditEventType, AuditSeverity
from budget_sync.models.budget import BudgetSettings, PaymentMode
from budget_sync.models.expense import Expense, Frequency
from budget_sync.services.storage.interface import (
    AuditStorageInterface,
    DuplicateError,
    LocalStoreError,
    LocalStoreInterface,
    NotFoundError,
)


SCHEMA = """
CREATE TABLE IF NOT EXISTS expenses (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    name TEXT NOT NULL,
    amount TEXT NOT NULL,
    frequency TEXT NOT NULL,
    start_month INTEGER NOT NULL CHECK (start_month BETWEEN 1 AND 12),
    end_month INTEGER NOT NULL CHECK (end_month BETWEEN 1 AND 12),
    monthly_amounts TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_expenses_owner ON expenses(owner_id);

CREATE TABLE IF NOT EXISTS settings (
    owner_id TEXT PRIMARY KEY,
    payment_mode TEXT NOT NULL,
    monthly_payment TEXT NOT NULL,
    monthly_payments TEXT,
    previous_balance TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS sync_log (
    event_id TEXT PRIMARY KEY,
    timestamp TEXT NOT NULL,
    event_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    owner_id TEXT,
    entity_type TEXT,
    entity_id TEXT,
    description TEXT NOT NULL,
    details_json TEXT,
    error_message TEXT,
    is_user_action INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS idx_sync_log_timestamp ON sync_log(timestamp DESC);
"""

EXPENSE_COLUMNS = (
    "id, owner_id, name, amount, frequency, start_month, end_month, "
    "monthly_amounts, created_at, updated_at"
)


def _decimals_to_json(values: Optional[list[Decimal]]) -> Optional[str]:
    if values is None:
        return None
    return json.dumps([str(v) for v in values])


def _json_to_decimals(raw: Optional[str]) -> Optional[list[Decimal]]:
    if not raw:
        return None
    return [Decimal(v) for v in json.loads(raw)]


class SQLiteLocalStore(LocalStoreInterface, AuditStorageInterface):
    """
    SQLite implementation of the local store.

    Expenses are stored one row per record, settings one row per owner.
    """

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path or get_settings().local_store.path
        self._conn: Optional[sqlite3.Connection] = None
        self._init_schema()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the persistent database connection."""
        if self._conn is None:
            try:
                self._conn = sqlite3.connect(self.db_path)
            except sqlite3.Error as e:
                raise LocalStoreError(f"Failed to open local database {self.db_path}: {e}")
            self._conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        """Transaction scope: commit on success, roll back and wrap on failure."""
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except sqlite3.IntegrityError as e:
            conn.rollback()
            raise DuplicateError(str(e))
        except sqlite3.Error as e:
            conn.rollback()
            raise LocalStoreError(str(e))
        except Exception:
            conn.rollback()
            raise

    def _init_schema(self) -> None:
        with self._connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _expense_to_row(self, expense: Expense) -> tuple:
        return (
            expense.id,
            expense.owner_id,
            expense.name,
            str(expense.amount),
            expense.frequency.value,
            expense.start_month,
            expense.end_month,
            _decimals_to_json(expense.monthly_amounts),
            expense.created_at.isoformat(),
            expense.updated_at.isoformat(),
        )

    def _row_to_expense(self, row: sqlite3.Row) -> Expense:
        return Expense(
            id=row["id"],
            owner_id=row["owner_id"],
            name=row["name"],
            amount=Decimal(row["amount"]),
            frequency=Frequency(row["frequency"]),
            start_month=row["start_month"],
            end_month=row["end_month"],
            monthly_amounts=_json_to_decimals(row["monthly_amounts"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    def _row_to_settings(self, row: sqlite3.Row) -> BudgetSettings:
        return BudgetSettings(
            owner_id=row["owner_id"],
            payment_mode=PaymentMode(row["payment_mode"]),
            monthly_payment=Decimal(row["monthly_payment"]),
            monthly_payments=_json_to_decimals(row["monthly_payments"]),
            previous_balance=Decimal(row["previous_balance"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
        )

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def list_expenses(self, owner_id: str) -> list[Expense]:
        with self._connection() as conn:
            rows = conn.execute(
                f"SELECT {EXPENSE_COLUMNS} FROM expenses "
                "WHERE owner_id = ? ORDER BY created_at DESC, id",
                (owner_id,),
            ).fetchall()
        return [self._row_to_expense(row) for row in rows]

    async def get_expense(self, owner_id: str, expense_id: str) -> Optional[Expense]:
        with self._connection() as conn:
            row = conn.execute(
                f"SELECT {EXPENSE_COLUMNS} FROM expenses WHERE owner_id = ? AND id = ?",
                (owner_id, expense_id),
            ).fetchone()
        return self._row_to_expense(row) if row else None

    async def insert_expense(self, expense: Expense) -> Expense:
        with self._connection() as conn:
            conn.execute(
                f"INSERT INTO expenses ({EXPENSE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                self._expense_to_row(expense),
            )
        return expense

    async def insert_expenses(self, expenses: list[Expense]) -> int:
        if not expenses:
            return 0
        with self._connection() as conn:
            conn.executemany(
                f"INSERT INTO expenses ({EXPENSE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._expense_to_row(e) for e in expenses],
            )
        return len(expenses)

    async def update_expense(self, expense: Expense) -> Expense:
        with self._connection() as conn:
            cursor = conn.execute(
                """UPDATE expenses
                   SET name = ?, amount = ?, frequency = ?, start_month = ?,
                       end_month = ?, monthly_amounts = ?, updated_at = ?
                   WHERE id = ? AND owner_id = ?""",
                (
                    expense.name,
                    str(expense.amount),
                    expense.frequency.value,
                    expense.start_month,
                    expense.end_month,
                    _decimals_to_json(expense.monthly_amounts),
                    expense.updated_at.isoformat(),
                    expense.id,
                    expense.owner_id,
                ),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Expense not found: {expense.id}")
        return expense

    async def delete_expense(self, owner_id: str, expense_id: str) -> bool:
        with self._connection() as conn:
            cursor = conn.execute(
                "DELETE FROM expenses WHERE id = ? AND owner_id = ?",
                (expense_id, owner_id),
            )
        return cursor.rowcount > 0

    async def delete_expenses(self, owner_id: str, expense_ids: list[str]) -> int:
        if not expense_ids:
            return 0
        placeholders = ",".join("?" for _ in expense_ids)
        with self._connection() as conn:
            cursor = conn.execute(
                f"DELETE FROM expenses WHERE owner_id = ? AND id IN ({placeholders})",
                (owner_id, *expense_ids),
            )
        return cursor.rowcount

    async def replace_expenses(self, owner_id: str, expenses: list[Expense]) -> None:
        # Single transaction: readers never see the empty intermediate state
        with self._connection() as conn:
            conn.execute("DELETE FROM expenses WHERE owner_id = ?", (owner_id,))
            conn.executemany(
                f"INSERT INTO expenses ({EXPENSE_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [self._expense_to_row(e) for e in expenses],
            )

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_settings(self, owner_id: str) -> Optional[BudgetSettings]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT * FROM settings WHERE owner_id = ?",
                (owner_id,),
            ).fetchone()
        return self._row_to_settings(row) if row else None

    async def save_settings(self, settings: BudgetSettings) -> BudgetSettings:
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO settings
                   (owner_id, payment_mode, monthly_payment, monthly_payments,
                    previous_balance, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?)
                   ON CONFLICT(owner_id) DO UPDATE SET
                       payment_mode = excluded.payment_mode,
                       monthly_payment = excluded.monthly_payment,
                       monthly_payments = excluded.monthly_payments,
                       previous_balance = excluded.previous_balance,
                       updated_at = excluded.updated_at""",
                (
                    settings.owner_id,
                    settings.payment_mode.value,
                    str(settings.monthly_payment),
                    _decimals_to_json(settings.monthly_payments),
                    str(settings.previous_balance),
                    settings.updated_at.isoformat(),
                ),
            )
        return settings

    # =========================================================================
    # AUDIT LOG
    # =========================================================================

    async def append_event(self, event: AuditEvent) -> bool:
        with self._connection() as conn:
            conn.execute(
                """INSERT INTO sync_log
                   (event_id, timestamp, event_type, severity, owner_id, entity_type,
                    entity_id, description, details_json, error_message, is_user_action)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                event.to_row(),
            )
        return True

    async def get_recent_events(
        self,
        owner_id: Optional[str] = None,
        limit: int = 100,
    ) -> list[AuditEvent]:
        query = "SELECT * FROM sync_log"
        params: tuple = ()
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params = (owner_id,)
        query += " ORDER BY timestamp DESC LIMIT ?"
        with self._connection() as conn:
            rows = conn.execute(query, (*params, limit)).fetchall()

        return [
            AuditEvent(
                event_id=UUID(row["event_id"]),
                timestamp=datetime.fromisoformat(row["timestamp"]),
                event_type=AuditEventType(row["event_type"]),
                severity=AuditSeverity(row["severity"]),
                owner_id=row["owner_id"],
                entity_type=row["entity_type"],
                entity_id=row["entity_id"],
                description=row["description"],
                details=json.loads(row["details_json"]) if row["details_json"] else {},
                error_message=row["error_message"],
                is_user_action=bool(row["is_user_action"]),
            )
            for row in rows
        ]
