"""Ledger Store - SQLite persistence for accounts, holdings and history.

Tables:
- accounts: one row per ledger account (unique on user + number + source)
- holdings: current state, one row per (account, symbol)
- position_snapshots / balance_snapshots: dated historical facts
- transactions: unique on (account, external_transaction_id)
- statements: one row per uploaded statement (status + linkage)
- quality_checks: quality-check outcome and fix attempts per statement

Every snapshot, transaction and holding written from an upload carries the
statement id (``uploaded_statement_id`` / ``last_updated_from``) so one
statement's writes can be removed as a unit.

A LedgerStore is passed explicitly to every component; each operation opens
its own short-lived connection, so the store is safe to share between the
writer's worker threads.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from account_matcher.models import ExistingAccount
from account_matcher.normalize import institutions_match


sqlite3.register_adapter(Decimal, float)
sqlite3.register_adapter(date, lambda d: d.isoformat())
sqlite3.register_adapter(datetime, lambda d: d.isoformat())


DATA_SOURCE_UPLOAD = "manual_upload"
SNAPSHOT_TYPE_MANUAL = "manual"

STATEMENT_JSON_COLUMNS = {"linked_account_ids", "extracted_data", "account_mappings"}
QUALITY_CHECK_JSON_COLUMNS = {"checks", "fix_attempts", "status_history"}


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


def upload_tag(statement_id: str) -> str:
    """Value of holdings.last_updated_from for rows written by a statement."""
    return f"upload:{statement_id}"


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        account_number TEXT,
        account_type TEXT,
        account_category TEXT NOT NULL DEFAULT 'brokerage',
        institution_name TEXT,
        account_nickname TEXT,
        account_group TEXT,
        data_source TEXT NOT NULL DEFAULT 'manual_upload',
        is_aggregate INTEGER NOT NULL DEFAULT 0,
        total_market_value REAL NOT NULL DEFAULT 0,
        equity_value REAL NOT NULL DEFAULT 0,
        cash_balance REAL,
        buying_power REAL,
        holdings_count INTEGER NOT NULL DEFAULT 0,
        stated_total_value REAL,
        last_synced_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(user_id, account_number, data_source)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS holdings (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL REFERENCES accounts(id),
        symbol TEXT NOT NULL,
        name TEXT,
        cusip TEXT,
        asset_type TEXT,
        quantity REAL NOT NULL DEFAULT 0,
        short_quantity REAL NOT NULL DEFAULT 0,
        purchase_price REAL,
        cost_basis_total REAL,
        current_price REAL,
        market_value REAL NOT NULL DEFAULT 0,
        valuation_date TEXT,
        day_profit_loss REAL,
        unrealized_profit_loss REAL,
        unrealized_profit_loss_pct REAL,
        data_source TEXT,
        last_updated_from TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL,
        UNIQUE(account_id, symbol)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS position_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL REFERENCES accounts(id),
        snapshot_date TEXT NOT NULL,
        symbol TEXT NOT NULL,
        snapshot_type TEXT NOT NULL DEFAULT 'manual',
        cusip TEXT,
        asset_type TEXT,
        description TEXT,
        quantity REAL NOT NULL,
        short_quantity REAL,
        average_cost_basis REAL,
        market_price_per_share REAL,
        market_value REAL,
        cost_basis_total REAL,
        unrealized_profit_loss REAL,
        unrealized_profit_loss_pct REAL,
        day_change_amount REAL,
        day_change_pct REAL,
        uploaded_statement_id TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(account_id, snapshot_date, symbol, snapshot_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS balance_snapshots (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL REFERENCES accounts(id),
        snapshot_date TEXT NOT NULL,
        snapshot_type TEXT NOT NULL DEFAULT 'manual',
        liquidation_value REAL,
        cash_balance REAL,
        available_funds REAL,
        total_cash REAL,
        equity REAL,
        long_market_value REAL,
        buying_power REAL,
        uploaded_statement_id TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(account_id, snapshot_date, snapshot_type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS transactions (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id TEXT NOT NULL REFERENCES accounts(id),
        external_transaction_id TEXT NOT NULL,
        transaction_date TEXT NOT NULL,
        settlement_date TEXT,
        symbol TEXT,
        cusip TEXT,
        asset_type TEXT,
        description TEXT NOT NULL,
        action TEXT NOT NULL,
        quantity REAL,
        price_per_share REAL,
        total_amount REAL NOT NULL,
        fees REAL NOT NULL DEFAULT 0,
        commission REAL NOT NULL DEFAULT 0,
        data_source TEXT,
        uploaded_statement_id TEXT,
        created_at TEXT NOT NULL,
        UNIQUE(account_id, external_transaction_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS statements (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        filename TEXT,
        file_type TEXT,
        parse_status TEXT NOT NULL DEFAULT 'pending',
        parse_error TEXT,
        account_id TEXT,
        linked_account_ids TEXT NOT NULL DEFAULT '[]',
        extracted_data TEXT,
        raw_response TEXT,
        account_mappings TEXT,
        transactions_created INTEGER NOT NULL DEFAULT 0,
        positions_created INTEGER NOT NULL DEFAULT 0,
        statement_start_date TEXT,
        statement_end_date TEXT,
        extraction_schema_version INTEGER,
        confirmed_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS quality_checks (
        id TEXT PRIMARY KEY,
        user_id TEXT NOT NULL,
        statement_id TEXT NOT NULL REFERENCES statements(id),
        check_status TEXT NOT NULL,
        checks TEXT,
        fix_attempts TEXT NOT NULL DEFAULT '[]',
        fix_count INTEGER NOT NULL DEFAULT 0,
        status_history TEXT NOT NULL DEFAULT '[]',
        resolved_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_accounts_user ON accounts(user_id)",
    "CREATE INDEX IF NOT EXISTS idx_holdings_upload ON holdings(last_updated_from)",
    "CREATE INDEX IF NOT EXISTS idx_position_snapshots_statement ON position_snapshots(uploaded_statement_id)",
    "CREATE INDEX IF NOT EXISTS idx_balance_snapshots_statement ON balance_snapshots(uploaded_statement_id)",
    "CREATE INDEX IF NOT EXISTS idx_balance_snapshots_account_date ON balance_snapshots(account_id, snapshot_date)",
    "CREATE INDEX IF NOT EXISTS idx_transactions_statement ON transactions(uploaded_statement_id)",
    "CREATE INDEX IF NOT EXISTS idx_quality_checks_statement ON quality_checks(statement_id)",
]


POSITION_SNAPSHOT_COLUMNS = [
    "account_id", "snapshot_date", "symbol", "snapshot_type", "cusip", "asset_type",
    "description", "quantity", "short_quantity", "average_cost_basis",
    "market_price_per_share", "market_value", "cost_basis_total",
    "unrealized_profit_loss", "unrealized_profit_loss_pct", "day_change_amount",
    "day_change_pct", "uploaded_statement_id", "created_at",
]

BALANCE_SNAPSHOT_COLUMNS = [
    "account_id", "snapshot_date", "snapshot_type", "liquidation_value", "cash_balance",
    "available_funds", "total_cash", "equity", "long_market_value", "buying_power",
    "uploaded_statement_id", "created_at",
]

TRANSACTION_COLUMNS = [
    "account_id", "external_transaction_id", "transaction_date", "settlement_date",
    "symbol", "cusip", "asset_type", "description", "action", "quantity",
    "price_per_share", "total_amount", "fees", "commission", "data_source",
    "uploaded_statement_id", "created_at",
]

HOLDING_COLUMNS = [
    "account_id", "symbol", "name", "cusip", "asset_type", "quantity", "short_quantity",
    "purchase_price", "cost_basis_total", "current_price", "market_value",
    "valuation_date", "day_profit_loss", "unrealized_profit_loss",
    "unrealized_profit_loss_pct", "data_source", "last_updated_from",
    "created_at", "updated_at",
]

ACCOUNT_INSERT_COLUMNS = [
    "id", "user_id", "account_number", "account_type", "account_category",
    "institution_name", "account_nickname", "account_group", "data_source",
    "is_aggregate", "created_at", "updated_at",
]


def _upsert_sql(table: str, columns: Sequence[str], conflict: Sequence[str],
                keep: Sequence[str] = ("created_at",)) -> str:
    """INSERT ... ON CONFLICT DO UPDATE for every non-key column."""
    placeholders = ", ".join("?" for _ in columns)
    updates = ", ".join(
        f"{c} = excluded.{c}" for c in columns if c not in conflict and c not in keep
    )
    return (
        f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT({', '.join(conflict)}) DO UPDATE SET {updates}"
    )


def _row_values(row: Dict[str, Any], columns: Sequence[str]) -> tuple:
    return tuple(row.get(c) for c in columns)


def _decode(row: Optional[sqlite3.Row], json_columns: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    data = dict(row)
    for column in json_columns:
        if data.get(column) is not None:
            data[column] = json.loads(data[column])
    return data


def _encode(fields: Dict[str, Any], json_columns: Iterable[str]) -> Dict[str, Any]:
    encoded = dict(fields)
    for column in json_columns:
        if column in encoded and encoded[column] is not None:
            encoded[column] = json.dumps(encoded[column], default=str)
    return encoded


class LedgerStore:
    """SQLite-backed ledger store."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)

    # =========================================================================
    # Connections
    # =========================================================================

    def connect(self) -> sqlite3.Connection:
        """Open a connection with row factory and a generous busy timeout."""
        conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def transaction(self):
        """Connection that commits on success and rolls back on error."""
        conn = self.connect()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def init_db(self) -> None:
        """Create all ledger tables and indexes if they don't exist."""
        conn = self.connect()
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            for statement in SCHEMA:
                conn.execute(statement)
            conn.commit()
        finally:
            conn.close()

    # =========================================================================
    # Accounts
    # =========================================================================

    def list_accounts(self, user_id: str) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM accounts WHERE user_id = ? ORDER BY created_at, id", (user_id,)
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def list_existing_accounts(self, user_id: str) -> List[ExistingAccount]:
        """The user's accounts in the shape the matcher consumes."""
        return [
            ExistingAccount(
                id=row["id"],
                account_number=row["account_number"],
                account_type=row["account_type"],
                institution_name=row["institution_name"],
                account_nickname=row["account_nickname"],
                is_aggregate=bool(row["is_aggregate"]),
            )
            for row in self.list_accounts(user_id)
        ]

    def get_account(self, account_id: str) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            return _decode(row)
        finally:
            conn.close()

    def get_accounts(self, account_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not account_ids:
            return []
        placeholders = ", ".join("?" for _ in account_ids)
        conn = self.connect()
        try:
            rows = conn.execute(
                f"SELECT * FROM accounts WHERE id IN ({placeholders})", tuple(account_ids)
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def insert_accounts(self, rows: Sequence[Dict[str, Any]]) -> None:
        """Insert several accounts in one statement.

        Raises:
            sqlite3.IntegrityError: If any row violates the (user, number, source)
                uniqueness constraint; nothing is inserted in that case.
        """
        if not rows:
            return
        sql = (
            f"INSERT INTO accounts ({', '.join(ACCOUNT_INSERT_COLUMNS)}) "
            f"VALUES ({', '.join('?' for _ in ACCOUNT_INSERT_COLUMNS)})"
        )
        with self.transaction() as conn:
            conn.executemany(sql, [_row_values(r, ACCOUNT_INSERT_COLUMNS) for r in rows])

    def insert_account(self, row: Dict[str, Any]) -> None:
        self.insert_accounts([row])

    def find_account_by_number(
        self,
        user_id: str,
        account_number: str,
        data_source: str = DATA_SOURCE_UPLOAD,
    ) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute(
                """
                SELECT * FROM accounts
                WHERE user_id = ? AND account_number = ? AND data_source = ?
                """,
                (user_id, account_number, data_source),
            ).fetchone()
            return _decode(row)
        finally:
            conn.close()

    def find_aggregate_account(self, user_id: str, institution_name: Optional[str]) -> Optional[str]:
        """Id of the user's aggregate account for an institution, if one exists."""
        for row in self.list_accounts(user_id):
            if row["is_aggregate"] and institutions_match(institution_name, row["institution_name"]):
                return row["id"]
        return None

    def update_account(self, account_id: str, fields: Dict[str, Any]) -> None:
        if not fields:
            return
        fields = dict(fields, updated_at=utc_now())
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self.transaction() as conn:
            conn.execute(
                f"UPDATE accounts SET {assignments} WHERE id = ?",
                (*fields.values(), account_id),
            )

    # =========================================================================
    # Statements
    # =========================================================================

    def create_statement(
        self,
        user_id: str,
        filename: Optional[str] = None,
        file_type: Optional[str] = None,
        statement_id: Optional[str] = None,
    ) -> str:
        statement_id = statement_id or str(uuid.uuid4())
        now = utc_now()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO statements (id, user_id, filename, file_type, parse_status, created_at, updated_at)
                VALUES (?, ?, ?, ?, 'pending', ?, ?)
                """,
                (statement_id, user_id, filename, file_type, now, now),
            )
        return statement_id

    def get_statement(self, statement_id: str) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute("SELECT * FROM statements WHERE id = ?", (statement_id,)).fetchone()
            return _decode(row, STATEMENT_JSON_COLUMNS)
        finally:
            conn.close()

    def update_statement(self, statement_id: str, **fields) -> None:
        if not fields:
            return
        fields = _encode(dict(fields, updated_at=utc_now()), STATEMENT_JSON_COLUMNS)
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self.transaction() as conn:
            conn.execute(
                f"UPDATE statements SET {assignments} WHERE id = ?",
                (*fields.values(), statement_id),
            )

    # =========================================================================
    # Snapshots & Transactions (bulk upserts)
    # =========================================================================

    def upsert_position_snapshots(self, rows: Sequence[Dict[str, Any]]) -> int:
        return self._upsert_many(
            "position_snapshots",
            POSITION_SNAPSHOT_COLUMNS,
            ("account_id", "snapshot_date", "symbol", "snapshot_type"),
            rows,
        )

    def upsert_balance_snapshots(self, rows: Sequence[Dict[str, Any]]) -> int:
        return self._upsert_many(
            "balance_snapshots",
            BALANCE_SNAPSHOT_COLUMNS,
            ("account_id", "snapshot_date", "snapshot_type"),
            rows,
        )

    def upsert_transactions(self, rows: Sequence[Dict[str, Any]]) -> int:
        return self._upsert_many(
            "transactions",
            TRANSACTION_COLUMNS,
            ("account_id", "external_transaction_id"),
            rows,
        )

    def _upsert_many(self, table: str, columns: Sequence[str], conflict: Sequence[str],
                     rows: Sequence[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        sql = _upsert_sql(table, columns, conflict)
        with self.transaction() as conn:
            conn.executemany(sql, [_row_values(r, columns) for r in rows])
        return len(rows)

    def latest_balance_snapshot(self, account_id: str) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute(
                """
                SELECT * FROM balance_snapshots
                WHERE account_id = ?
                ORDER BY snapshot_date DESC, id DESC
                LIMIT 1
                """,
                (account_id,),
            ).fetchone()
            return _decode(row)
        finally:
            conn.close()

    def list_transactions(self, account_id: str) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM transactions WHERE account_id = ? ORDER BY transaction_date, id",
                (account_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def list_position_snapshots(self, account_id: str) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM position_snapshots WHERE account_id = ? ORDER BY snapshot_date, symbol",
                (account_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def list_balance_snapshots(self, account_id: str) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM balance_snapshots WHERE account_id = ? ORDER BY snapshot_date",
                (account_id,),
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def count_statement_transactions(self, statement_id: str) -> int:
        conn = self.connect()
        try:
            row = conn.execute(
                "SELECT COUNT(*) FROM transactions WHERE uploaded_statement_id = ?",
                (statement_id,),
            ).fetchone()
            return row[0]
        finally:
            conn.close()

    # =========================================================================
    # Holdings
    # =========================================================================

    def get_holdings(self, account_id: str) -> List[Dict[str, Any]]:
        conn = self.connect()
        try:
            rows = conn.execute(
                "SELECT * FROM holdings WHERE account_id = ? ORDER BY symbol", (account_id,)
            ).fetchall()
            return [dict(r) for r in rows]
        finally:
            conn.close()

    def save_holdings(
        self,
        statement_id: str,
        upserts: Sequence[Dict[str, Any]],
        close_ids: Sequence[int] = (),
    ) -> None:
        """Upsert holdings by (account, symbol) and zero out closed ones, atomically.

        Closed rows are tagged with the closing statement so clearing that
        statement removes the close along with its other rows.
        """
        now = utc_now()
        tag = upload_tag(statement_id)
        with self.transaction() as conn:
            if upserts:
                conn.executemany(
                    _upsert_sql("holdings", HOLDING_COLUMNS, ("account_id", "symbol")),
                    [_row_values(r, HOLDING_COLUMNS) for r in upserts],
                )
            if close_ids:
                conn.executemany(
                    """
                    UPDATE holdings
                    SET quantity = 0, short_quantity = 0, market_value = 0,
                        last_updated_from = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    [(tag, now, holding_id) for holding_id in close_ids],
                )

    def count_active_holdings(self, account_ids: Sequence[str]) -> int:
        if not account_ids:
            return 0
        placeholders = ", ".join("?" for _ in account_ids)
        conn = self.connect()
        try:
            row = conn.execute(
                f"SELECT COUNT(*) FROM holdings WHERE quantity > 0 AND account_id IN ({placeholders})",
                tuple(account_ids),
            ).fetchone()
            return row[0]
        finally:
            conn.close()

    # =========================================================================
    # Statement Cleanup
    # =========================================================================

    def delete_statement_rows(self, statement_id: str) -> Dict[str, Any]:
        """Delete every transaction, snapshot and holding written by a statement.

        Returns:
            Dict with per-table deletion counts and the affected account ids
        """
        tag = upload_tag(statement_id)
        with self.transaction() as conn:
            affected = set()
            for table, column, value in (
                ("transactions", "uploaded_statement_id", statement_id),
                ("position_snapshots", "uploaded_statement_id", statement_id),
                ("balance_snapshots", "uploaded_statement_id", statement_id),
                ("holdings", "last_updated_from", tag),
            ):
                rows = conn.execute(
                    f"SELECT DISTINCT account_id FROM {table} WHERE {column} = ?", (value,)
                ).fetchall()
                affected.update(r[0] for r in rows)

            counts = {
                "transactions_deleted": conn.execute(
                    "DELETE FROM transactions WHERE uploaded_statement_id = ?", (statement_id,)
                ).rowcount,
                "position_snapshots_deleted": conn.execute(
                    "DELETE FROM position_snapshots WHERE uploaded_statement_id = ?", (statement_id,)
                ).rowcount,
                "balance_snapshots_deleted": conn.execute(
                    "DELETE FROM balance_snapshots WHERE uploaded_statement_id = ?", (statement_id,)
                ).rowcount,
                "holdings_deleted": conn.execute(
                    "DELETE FROM holdings WHERE last_updated_from = ?", (tag,)
                ).rowcount,
            }
        counts["account_ids"] = sorted(affected)
        return counts

    # =========================================================================
    # Quality Checks
    # =========================================================================

    def create_quality_check(self, user_id: str, statement_id: str, check_status: str,
                             checks: Optional[Dict[str, Any]] = None,
                             status_history: Optional[List[Dict[str, Any]]] = None) -> str:
        quality_check_id = str(uuid.uuid4())
        now = utc_now()
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO quality_checks
                    (id, user_id, statement_id, check_status, checks, fix_attempts, fix_count,
                     status_history, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, '[]', 0, ?, ?, ?)
                """,
                (
                    quality_check_id, user_id, statement_id, check_status,
                    json.dumps(checks, default=str) if checks is not None else None,
                    json.dumps(status_history or [], default=str),
                    now, now,
                ),
            )
        return quality_check_id

    def get_quality_check(self, quality_check_id: str) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute(
                "SELECT * FROM quality_checks WHERE id = ?", (quality_check_id,)
            ).fetchone()
            return _decode(row, QUALITY_CHECK_JSON_COLUMNS)
        finally:
            conn.close()

    def get_latest_quality_check(self, statement_id: str) -> Optional[Dict[str, Any]]:
        conn = self.connect()
        try:
            row = conn.execute(
                """
                SELECT * FROM quality_checks
                WHERE statement_id = ?
                ORDER BY created_at DESC, rowid DESC
                LIMIT 1
                """,
                (statement_id,),
            ).fetchone()
            return _decode(row, QUALITY_CHECK_JSON_COLUMNS)
        finally:
            conn.close()

    def update_quality_check(self, quality_check_id: str, **fields) -> None:
        if not fields:
            return
        fields = _encode(dict(fields, updated_at=utc_now()), QUALITY_CHECK_JSON_COLUMNS)
        assignments = ", ".join(f"{k} = ?" for k in fields)
        with self.transaction() as conn:
            conn.execute(
                f"UPDATE quality_checks SET {assignments} WHERE id = ?",
                (*fields.values(), quality_check_id),
            )
