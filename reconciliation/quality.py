"""Quality checks - compare what a document claimed with what landed in the ledger.

Hard checks (a failure triggers the fix cycle):
- total_value: sum of each real account's latest stated liquidation value vs
  the written accounts' total_market_value (within 5%)
- position_count: distinct held symbols per account vs active holdings (exact)

Soft checks (warnings only):
- transaction_count: deduplicated transactions vs rows tagged with the statement
- balance_sanity: cash + equity vs stated total within the document (2%)
- position_sum: position market values vs balance equity (10%)
"""

from decimal import Decimal
from typing import List, Sequence

from core.models.extraction import ExtractionDocument
from core.observability.logging import get_logger
from ledger.dedup import dedup_transactions
from ledger.holdings import to_decimal
from ledger.store import LedgerStore
from reconciliation.models import (
    BalanceSanityCheck,
    CheckResult,
    CountCheck,
    ValueCheck,
)


logger = get_logger(__name__)

ZERO = Decimal("0")

TOTAL_VALUE_THRESHOLD = Decimal("0.05")
BALANCE_SANITY_THRESHOLD = Decimal("0.02")
POSITION_SUM_THRESHOLD = Decimal("0.10")


def format_dollars(value: Decimal) -> str:
    return f"${abs(value):,.0f}"


# =============================================================================
# Expected Values (from the document)
# =============================================================================

def expected_total_value(extraction: ExtractionDocument) -> Decimal:
    """Sum of each account's latest stated liquidation value."""
    total = ZERO
    for entry in extraction.accounts:
        latest = entry.latest_balance()
        if latest is not None and latest.liquidation_value is not None:
            total += latest.liquidation_value
    return total


def expected_position_count(extraction: ExtractionDocument) -> int:
    """Holdings the writer should leave open: distinct held symbols per account."""
    count = 0
    for entry in extraction.accounts:
        count += len({p.symbol for p in entry.positions if p.quantity > 0})
    count += len({p.symbol for p in extraction.unallocated_positions if p.quantity > 0})
    return count


def expected_transaction_count(extraction: ExtractionDocument) -> int:
    return sum(len(dedup_transactions(entry.transactions)) for entry in extraction.accounts)


def balance_summary(extraction: ExtractionDocument):
    """(cash, equity, total) summed over each account's latest balance."""
    cash = equity = total = ZERO
    for entry in extraction.accounts:
        latest = entry.latest_balance()
        if latest is None:
            continue
        cash += latest.cash or ZERO
        equity += latest.equity_value or ZERO
        total += latest.liquidation_value or ZERO
    return cash, equity, total


def position_market_value_sum(extraction: ExtractionDocument) -> Decimal:
    return sum((p.market_value or ZERO for p in extraction.iter_positions()), ZERO)


def _fraction(diff: Decimal, base: Decimal) -> Decimal:
    return diff / base if base != 0 else ZERO


# =============================================================================
# Check Evaluation
# =============================================================================

def evaluate_checks(
    extraction: ExtractionDocument,
    ledger_total: Decimal,
    ledger_holdings_count: int,
    ledger_transaction_count: int,
) -> CheckResult:
    """Pure comparison of document figures against ledger actuals."""
    expected_total = expected_total_value(extraction)
    total_diff = ledger_total - expected_total
    total_pct = _fraction(total_diff, expected_total)
    total_value = ValueCheck(
        expected=expected_total,
        actual=ledger_total,
        diff=total_diff,
        diff_pct=total_pct,
        passed=expected_total == 0 or abs(total_pct) < TOTAL_VALUE_THRESHOLD,
    )

    expected_positions = expected_position_count(extraction)
    position_count = CountCheck(
        expected=expected_positions,
        actual=ledger_holdings_count,
        passed=expected_positions == ledger_holdings_count,
    )

    expected_transactions = expected_transaction_count(extraction)
    transaction_count = CountCheck(
        expected=expected_transactions,
        actual=ledger_transaction_count,
        passed=expected_transactions == ledger_transaction_count,
    )

    cash, equity, stated_total = balance_summary(extraction)
    balance_sanity = BalanceSanityCheck(
        cash=cash,
        equity=equity,
        total=stated_total,
        expected_total=cash + equity,
        passed=stated_total == 0
        or abs(cash + equity - stated_total) / abs(stated_total) < BALANCE_SANITY_THRESHOLD,
    )

    market_sum = position_market_value_sum(extraction)
    position_diff = market_sum - equity
    position_pct = _fraction(position_diff, equity)
    position_sum = ValueCheck(
        expected=equity,
        actual=market_sum,
        diff=position_diff,
        diff_pct=position_pct,
        passed=equity == 0 or abs(position_pct) < POSITION_SUM_THRESHOLD,
    )

    issues: List[str] = []
    if not total_value.passed:
        issues.append(
            f"Dashboard shows {format_dollars(ledger_total)} but statement claims "
            f"{format_dollars(expected_total)} ({total_pct * 100:.1f}% off)"
        )
    if not position_count.passed:
        issues.append(f"Expected {expected_positions} positions but found {ledger_holdings_count} in ledger")
    if not transaction_count.passed:
        issues.append(
            f"Expected {expected_transactions} transactions but found {ledger_transaction_count} in ledger"
        )
    if not balance_sanity.passed:
        issues.append(
            f"Balance sanity: cash ({format_dollars(cash)}) + equity ({format_dollars(equity)}) "
            f"doesn't match total ({format_dollars(stated_total)})"
        )
    if not position_sum.passed:
        issues.append(
            f"Position market values sum to {format_dollars(market_sum)} but equity is {format_dollars(equity)}"
        )

    overall = total_value.passed and position_count.passed
    if overall and not issues:
        summary = "All quality checks passed"
    elif overall:
        summary = f"Hard checks passed with warnings: {'; '.join(issues)}"
    else:
        summary = f"Quality issues found: {'; '.join(issues)}"

    return CheckResult(
        total_value=total_value,
        position_count=position_count,
        transaction_count=transaction_count,
        balance_sanity=balance_sanity,
        position_sum=position_sum,
        overall_passed=overall,
        summary=summary,
        issues=issues,
    )


def run_quality_checks(
    store: LedgerStore,
    statement_id: str,
    extraction: ExtractionDocument,
    account_ids: Sequence[str],
) -> CheckResult:
    """Compare an extraction with the ledger state it produced.

    Args:
        store: Ledger store
        statement_id: Statement that was written
        extraction: The document that was written
        account_ids: Accounts linked to the statement (aggregate included)

    Returns:
        CheckResult
    """
    accounts = store.get_accounts(list(account_ids))
    ledger_total = sum(
        (to_decimal(a["total_market_value"]) or ZERO for a in accounts if not a["is_aggregate"]),
        ZERO,
    )
    result = evaluate_checks(
        extraction,
        ledger_total=ledger_total,
        ledger_holdings_count=store.count_active_holdings(list(account_ids)),
        ledger_transaction_count=store.count_statement_transactions(statement_id),
    )

    logger.info(
        f"Quality check {'passed' if result.overall_passed else 'failed'}",
        extra_fields={
            "statement_id": statement_id,
            "failed_hard": result.failed_hard_checks,
            "failed_soft": result.failed_soft_checks,
        },
    )
    return result
