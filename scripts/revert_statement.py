"""Revert a statement: delete everything it wrote to the ledger.

Usage:
    python scripts/revert_statement.py <statement_id> [--db path]
"""

import argparse
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging
from ledger.cleanup import revert_statement
from ledger.store import LedgerStore


def main():
    parser = argparse.ArgumentParser(description="Revert a statement's ledger rows")
    parser.add_argument("statement_id")
    parser.add_argument("--db", default=None, help="Ledger database path (default: LEDGER_DB_PATH)")
    args = parser.parse_args()

    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)

    store = LedgerStore(args.db or settings.ledger_db_path)
    if store.get_statement(args.statement_id) is None:
        print(f"Statement not found: {args.statement_id}", file=sys.stderr)
        return 1

    result = revert_statement(store, args.statement_id)
    print(f"Reverted {args.statement_id}:")
    print(f"  transactions deleted:       {result.transactions_deleted}")
    print(f"  position snapshots deleted: {result.position_snapshots_deleted}")
    print(f"  balance snapshots deleted:  {result.balance_snapshots_deleted}")
    print(f"  holdings deleted:           {result.holdings_deleted}")
    print(f"  accounts recomputed:        {len(result.accounts_recomputed)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
