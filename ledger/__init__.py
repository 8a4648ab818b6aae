"""Ledger Module.

SQLite-backed ledger (accounts, holdings, snapshots, transactions,
statements, quality checks) and the reconciling writer that persists a
validated extraction into it.

Usage:
    from ledger import LedgerStore, write_extraction

    store = LedgerStore("statement_ledger.db")
    store.init_db()
    report = write_extraction(store, user_id, statement_id, extraction, mapping)
"""

from ledger.cleanup import clear_statement_data, revert_statement
from ledger.dedup import dedup_balances, dedup_positions, dedup_transactions
from ledger.holdings import compute_account_summary, reconcile_holdings, recompute_account_summary
from ledger.models import (
    AccountAction,
    AccountSummary,
    AccountWriteResult,
    AggregateWriteResult,
    CleanupResult,
    HoldingsReconcileResult,
    WriteReport,
    WriteTotals,
)
from ledger.store import LedgerStore, upload_tag
from ledger.writer import external_transaction_id, write_extraction

__all__ = [
    "LedgerStore",
    "upload_tag",
    "write_extraction",
    "external_transaction_id",
    "reconcile_holdings",
    "recompute_account_summary",
    "compute_account_summary",
    "clear_statement_data",
    "revert_statement",
    "dedup_positions",
    "dedup_balances",
    "dedup_transactions",
    "AccountAction",
    "AccountSummary",
    "AccountWriteResult",
    "AggregateWriteResult",
    "CleanupResult",
    "HoldingsReconcileResult",
    "WriteReport",
    "WriteTotals",
]
