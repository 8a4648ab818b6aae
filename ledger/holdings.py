"""Holdings reconciliation and account summaries.

Holdings are current state: one row per (account, symbol). Reconciling an
account diffs the statement's position set against those rows:

- symbol not held before   -> open a holding
- symbol held before       -> update quantity / value / cost
- held before, absent now  -> close (zero out, the row is kept)

The account summary is then recomputed from the holdings plus the latest
balance snapshot.
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from core.models.extraction import AssetType, Position
from core.observability.logging import get_logger
from ledger.dedup import latest_positions_by_symbol
from ledger.models import (
    AccountSummary,
    HoldingChange,
    HoldingChangeType,
    HoldingsReconcileResult,
)
from ledger.store import DATA_SOURCE_UPLOAD, LedgerStore, upload_tag, utc_now


logger = get_logger(__name__)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Stored REAL -> Decimal without binary float noise."""
    if value is None:
        return None
    return Decimal(str(value))


def _same(stored: Any, new: Optional[Decimal]) -> bool:
    if stored is None or new is None:
        return stored is None and new is None
    return to_decimal(stored) == new


def holding_row(account_id: str, position: Position, statement_id: str, now: str) -> Dict[str, Any]:
    """Holding columns for one position."""
    return {
        "account_id": account_id,
        "symbol": position.symbol,
        "name": position.description or position.symbol,
        "cusip": position.cusip,
        "asset_type": (position.asset_type or AssetType.EQUITY).value,
        "quantity": position.quantity,
        "short_quantity": position.short_quantity or Decimal("0"),
        "purchase_price": position.average_cost_basis,
        "cost_basis_total": position.cost_basis_total,
        "current_price": position.market_price_per_share,
        "market_value": position.market_value or Decimal("0"),
        "valuation_date": position.snapshot_date,
        "day_profit_loss": position.day_change_amount,
        "unrealized_profit_loss": position.unrealized_profit_loss,
        "unrealized_profit_loss_pct": position.unrealized_profit_loss_pct,
        "data_source": DATA_SOURCE_UPLOAD,
        "last_updated_from": upload_tag(statement_id),
        "created_at": now,
        "updated_at": now,
    }


def _classify(existing: Dict[str, Any], position: Position) -> HoldingChangeType:
    if not _same(existing["quantity"], position.quantity):
        return HoldingChangeType.QUANTITY_CHANGE
    if not (
        _same(existing["market_value"], position.market_value or Decimal("0"))
        and _same(existing["current_price"], position.market_price_per_share)
        and _same(existing["cost_basis_total"], position.cost_basis_total)
    ):
        return HoldingChangeType.VALUE_UPDATE
    return HoldingChangeType.UNCHANGED


def reconcile_holdings(
    store: LedgerStore,
    account_id: str,
    positions: Sequence[Position],
    statement_id: str,
) -> HoldingsReconcileResult:
    """Open, update and close an account's holdings to match a position set.

    Args:
        store: Ledger store
        account_id: Account to reconcile
        positions: Deduplicated positions for the account (any dates)
        statement_id: Statement the positions came from

    Returns:
        HoldingsReconcileResult with per-symbol changes
    """
    result = HoldingsReconcileResult(account_id=account_id)
    current = latest_positions_by_symbol(positions)
    existing = {h["symbol"]: h for h in store.get_holdings(account_id)}
    now = utc_now()

    upserts: List[Dict[str, Any]] = []
    for position in current:
        row = holding_row(account_id, position, statement_id, now)
        held = existing.get(position.symbol)
        if held is None:
            change = HoldingChangeType.NEW_POSITION
            result.created += 1
        else:
            row["created_at"] = held["created_at"]
            change = _classify(held, position)
            if change == HoldingChangeType.UNCHANGED:
                result.unchanged += 1
            else:
                result.updated += 1
        upserts.append(row)
        result.changes.append(
            HoldingChange(
                symbol=position.symbol,
                change_type=change,
                old_quantity=to_decimal(held["quantity"]) if held else None,
                new_quantity=position.quantity,
            )
        )

    incoming = {p.symbol for p in current}
    close_ids = []
    for symbol, held in existing.items():
        if symbol in incoming:
            continue
        if (held["quantity"] or 0) == 0 and (held["short_quantity"] or 0) == 0:
            continue
        close_ids.append(held["id"])
        result.closed += 1
        result.changes.append(
            HoldingChange(
                symbol=symbol,
                change_type=HoldingChangeType.CLOSED_POSITION,
                old_quantity=to_decimal(held["quantity"]),
                new_quantity=Decimal("0"),
            )
        )

    store.save_holdings(statement_id, upserts, close_ids)

    logger.debug(
        f"Reconciled holdings for account {account_id}",
        extra_fields={
            "created": result.created,
            "updated": result.updated,
            "unchanged": result.unchanged,
            "closed": result.closed,
        },
    )
    return result


def compute_account_summary(
    account_id: str,
    holdings: Sequence[Dict[str, Any]],
    latest_balance: Optional[Dict[str, Any]],
) -> AccountSummary:
    """Summary fields from holdings rows and the latest balance snapshot row.

    total_market_value is equity + cash when the account has active holdings,
    otherwise the stated liquidation value (0 when nothing is stated).
    """
    active = [h for h in holdings if (h["quantity"] or 0) > 0]
    equity = sum((to_decimal(h["market_value"]) or Decimal("0") for h in active), Decimal("0"))

    cash = None
    buying_power = None
    stated = None
    if latest_balance:
        cash = to_decimal(latest_balance.get("cash_balance"))
        if cash is None:
            cash = to_decimal(latest_balance.get("total_cash"))
        buying_power = to_decimal(latest_balance.get("buying_power"))
        stated = to_decimal(latest_balance.get("liquidation_value"))

    if active:
        total = equity + (cash or Decimal("0"))
    else:
        total = stated if stated is not None else Decimal("0")

    return AccountSummary(
        account_id=account_id,
        total_market_value=total,
        equity_value=equity,
        cash_balance=cash,
        buying_power=buying_power,
        holdings_count=len(active),
        stated_total_value=stated,
    )


def recompute_account_summary(store: LedgerStore, account_id: str) -> AccountSummary:
    """Recompute and persist an account's summary fields."""
    summary = compute_account_summary(
        account_id,
        store.get_holdings(account_id),
        store.latest_balance_snapshot(account_id),
    )
    store.update_account(
        account_id,
        {
            "total_market_value": summary.total_market_value,
            "equity_value": summary.equity_value,
            "cash_balance": summary.cash_balance,
            "buying_power": summary.buying_power,
            "holdings_count": summary.holdings_count,
            "stated_total_value": summary.stated_total_value,
            "last_synced_at": utc_now(),
        },
    )
    return summary
