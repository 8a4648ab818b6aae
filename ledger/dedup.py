"""Line-item deduplication before writing.

Statements often repeat a line (page breaks, lot-level detail, a summary
table restating a detail table). The writer collapses duplicates so each
conflict key is written once:

- positions by (date, symbol): quantities and money sum, prices take the latest
- balances by date: later non-null values fill in
- transactions by (date, symbol, action, quantity, price, amount): first wins,
  missing fees/commission are backfilled from later copies
"""

from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from core.models.extraction import Balance, Position, Transaction


SUMMED_POSITION_FIELDS = (
    "quantity",
    "short_quantity",
    "market_value",
    "cost_basis_total",
    "unrealized_profit_loss",
    "day_change_amount",
)

LATEST_POSITION_FIELDS = (
    "average_cost_basis",
    "market_price_per_share",
    "unrealized_profit_loss_pct",
    "day_change_pct",
)

FIRST_POSITION_FIELDS = ("cusip", "asset_type", "asset_subtype", "description")

BALANCE_FIELDS = (
    "liquidation_value",
    "cash_balance",
    "available_funds",
    "total_cash",
    "equity",
    "long_market_value",
    "buying_power",
)


def _add(a: Optional[Decimal], b: Optional[Decimal]) -> Optional[Decimal]:
    if a is None:
        return b
    if b is None:
        return a
    return a + b


def dedup_positions(positions: Sequence[Position]) -> List[Position]:
    """Collapse positions sharing (snapshot_date, symbol); order of first appearance is kept."""
    merged: "OrderedDict[Tuple, Position]" = OrderedDict()
    for position in positions:
        key = (position.snapshot_date, position.symbol)
        current = merged.get(key)
        if current is None:
            merged[key] = position
            continue

        update: Dict[str, object] = {}
        for field in SUMMED_POSITION_FIELDS:
            update[field] = _add(getattr(current, field), getattr(position, field))
        for field in LATEST_POSITION_FIELDS:
            value = getattr(position, field)
            if value is not None:
                update[field] = value
        for field in FIRST_POSITION_FIELDS:
            if getattr(current, field) is None and getattr(position, field) is not None:
                update[field] = getattr(position, field)
        merged[key] = current.model_copy(update=update)

    return list(merged.values())


def dedup_balances(balances: Sequence[Balance]) -> List[Balance]:
    """Collapse balances sharing a snapshot_date, later non-null values winning."""
    merged: "OrderedDict[object, Balance]" = OrderedDict()
    for balance in balances:
        current = merged.get(balance.snapshot_date)
        if current is None:
            merged[balance.snapshot_date] = balance
            continue
        update = {
            field: getattr(balance, field)
            for field in BALANCE_FIELDS
            if getattr(balance, field) is not None
        }
        merged[balance.snapshot_date] = current.model_copy(update=update)
    return list(merged.values())


def transaction_key(tx: Transaction) -> Tuple:
    return (
        tx.transaction_date,
        tx.symbol,
        tx.action,
        tx.quantity,
        tx.price_per_share,
        tx.total_amount,
    )


def dedup_transactions(transactions: Sequence[Transaction]) -> List[Tuple[int, Transaction]]:
    """Drop repeated transactions.

    Returns:
        (line index, transaction) pairs for the kept transactions. The index is
        the position of the first occurrence in the input and feeds the
        deterministic external transaction id.
    """
    kept: "OrderedDict[Tuple, Tuple[int, Transaction]]" = OrderedDict()
    for index, tx in enumerate(transactions):
        key = transaction_key(tx)
        if key not in kept:
            kept[key] = (index, tx)
            continue

        first_index, first = kept[key]
        update = {}
        if first.fees is None and tx.fees is not None:
            update["fees"] = tx.fees
        if first.commission is None and tx.commission is not None:
            update["commission"] = tx.commission
        if update:
            kept[key] = (first_index, first.model_copy(update=update))

    return list(kept.values())


def latest_positions_by_symbol(positions: Sequence[Position]) -> List[Position]:
    """One position per symbol, from its latest snapshot date (input must be deduplicated)."""
    latest: "OrderedDict[str, Position]" = OrderedDict()
    for position in positions:
        current = latest.get(position.symbol)
        if current is None or position.snapshot_date >= current.snapshot_date:
            latest[position.symbol] = position
    return list(latest.values())
