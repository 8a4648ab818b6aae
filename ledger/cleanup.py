"""Statement cleanup - remove everything one statement wrote.

Rows are found through their statement linkage (``uploaded_statement_id`` on
snapshots and transactions, ``last_updated_from`` on holdings). After the
delete, every affected account's summary is recomputed so the removed
contributions disappear from its totals.
"""

from typing import Iterable

from core.observability.logging import get_logger, with_correlation
from ledger.holdings import recompute_account_summary
from ledger.models import CleanupResult
from ledger.store import LedgerStore


logger = get_logger(__name__)


def clear_statement_data(store: LedgerStore, statement_id: str,
                         extra_account_ids: Iterable[str] = ()) -> CleanupResult:
    """Delete a statement's ledger rows and recompute affected accounts.

    Args:
        store: Ledger store
        statement_id: Statement whose rows are removed
        extra_account_ids: Accounts to recompute even if no row was deleted
            from them (e.g. the statement's linked accounts)

    Returns:
        CleanupResult with deletion counts
    """
    with with_correlation(statement_id=statement_id, stage="cleanup"):
        deleted = store.delete_statement_rows(statement_id)

        account_ids = list(deleted["account_ids"])
        for account_id in extra_account_ids:
            if account_id not in account_ids and store.get_account(account_id) is not None:
                account_ids.append(account_id)

        for account_id in account_ids:
            recompute_account_summary(store, account_id)

        result = CleanupResult(
            statement_id=statement_id,
            transactions_deleted=deleted["transactions_deleted"],
            position_snapshots_deleted=deleted["position_snapshots_deleted"],
            balance_snapshots_deleted=deleted["balance_snapshots_deleted"],
            holdings_deleted=deleted["holdings_deleted"],
            accounts_recomputed=account_ids,
        )
        logger.info(
            "Cleared statement data",
            extra_fields={"rows_deleted": result.rows_deleted, "accounts": len(account_ids)},
        )
    return result


def revert_statement(store: LedgerStore, statement_id: str) -> CleanupResult:
    """Undo a confirmed statement: clear its rows and reset its linkage.

    The extracted document stays on the statement so it can be confirmed again.
    """
    statement = store.get_statement(statement_id)
    linked = (statement or {}).get("linked_account_ids") or []
    result = clear_statement_data(store, statement_id, linked)
    store.update_statement(
        statement_id,
        parse_status="reverted",
        account_id=None,
        linked_account_ids=[],
        transactions_created=0,
        positions_created=0,
        confirmed_at=None,
    )
    return result
