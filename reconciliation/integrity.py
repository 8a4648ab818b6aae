"""Integrity Checker - internal consistency of one extraction document.

Checks (each yields a signed difference and a percentage):
- per account: stated balance vs position market values + cash
- per account: stated balance but no positions at all
- per account: liability accounts must not report a positive balance
- document: printed grand total vs sum of account balances
- document: printed day change vs sum of position day changes
- optionally, per account: stated balance vs the ledger total after writing

Severity thresholds:
    error    |diff| > $5,000 or > 5%
    warning  |diff| > $500   or > 1%
    info     otherwise

The report passes iff no error-severity discrepancy exists.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, List, Optional

from core.models.extraction import ExtractionDocument
from core.observability.logging import get_logger
from reconciliation.models import (
    IntegrityDiscrepancy,
    IntegrityReport,
    IntegritySummary,
    Severity,
)


logger = get_logger(__name__)

ZERO = Decimal("0")

ERROR_AMOUNT = Decimal("5000")
ERROR_PCT = Decimal("5")
WARNING_AMOUNT = Decimal("500")
WARNING_PCT = Decimal("1")

BALANCE_TOLERANCE = Decimal("1")
EMPTY_ACCOUNT_THRESHOLD = Decimal("1000")
DAY_CHANGE_TOLERANCE = Decimal("100")
DAY_CHANGE_PCT = Decimal("5")


def classify(abs_diff: Decimal, pct_diff: Decimal) -> Severity:
    if abs_diff > ERROR_AMOUNT or pct_diff > ERROR_PCT:
        return Severity.ERROR
    if abs_diff > WARNING_AMOUNT or pct_diff > WARNING_PCT:
        return Severity.WARNING
    return Severity.INFO


def percent_of(abs_diff: Decimal, base: Decimal) -> Decimal:
    """abs_diff as a percentage of |base| (0 when base is 0)."""
    if base == 0:
        return ZERO
    return (abs_diff / abs(base) * 100).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


def format_money(value: Decimal) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}${abs(value):,.2f}"


def _compare(check: str, expected: Decimal, computed: Decimal) -> IntegrityDiscrepancy:
    diff = expected - computed
    pct = percent_of(abs(diff), expected)
    return IntegrityDiscrepancy(
        check=check,
        expected=expected,
        computed=computed,
        difference=diff,
        difference_pct=pct,
        severity=classify(abs(diff), pct),
    )


def check_integrity(
    extraction: ExtractionDocument,
    ledger_totals: Optional[Dict[int, Decimal]] = None,
) -> IntegrityReport:
    """Run integrity checks on a validated extraction.

    Args:
        extraction: Validated extraction document
        ledger_totals: Optional ledger total per account index, compared
            against each account's stated balance

    Returns:
        IntegrityReport
    """
    discrepancies: List[IntegrityDiscrepancy] = []
    total_balances = ZERO
    total_positions = ZERO
    liability_total = ZERO
    position_count = 0
    has_unallocated = bool(extraction.unallocated_positions)

    # Per account
    for index, entry in enumerate(extraction.accounts):
        info = entry.account_info
        label = entry.label
        position_sum = sum((p.market_value or ZERO for p in entry.positions), ZERO)
        position_count += len(entry.positions)
        total_positions += position_sum

        balance = entry.latest_balance()
        stated = balance.liquidation_value if balance else None
        if stated is None:
            continue

        total_balances += stated
        if info.is_liability:
            liability_total += stated

        if (
            abs(stated) > EMPTY_ACCOUNT_THRESHOLD
            and not entry.positions
            and not info.is_liability
            and not has_unallocated
        ):
            discrepancies.append(IntegrityDiscrepancy(
                check=f'Account "{label}": claims {format_money(stated)} but has 0 positions',
                expected=ZERO,
                computed=stated,
                difference=stated,
                difference_pct=Decimal("100"),
                severity=Severity.ERROR,
            ))

        if entry.positions:
            computed = position_sum + (balance.cash_balance or ZERO)
            if abs(stated - computed) > BALANCE_TOLERANCE:
                discrepancies.append(
                    _compare(f'Account "{label}": balance vs positions+cash', stated, computed)
                )

        if info.is_liability and stated > 0:
            discrepancies.append(IntegrityDiscrepancy(
                check=(
                    f'Account "{label}" ({info.account_type.value}): '
                    "expected negative liquidation_value for liability"
                ),
                expected=-abs(stated),
                computed=stated,
                difference=stated * 2,
                difference_pct=Decimal("200"),
                severity=Severity.WARNING,
            ))

        if ledger_totals and index in ledger_totals:
            ledger_total = Decimal(str(ledger_totals[index]))
            if abs(stated - ledger_total) > BALANCE_TOLERANCE:
                discrepancies.append(
                    _compare(f'Account "{label}": stated balance vs ledger total', stated, ledger_total)
                )

    unallocated_sum = sum((p.market_value or ZERO for p in extraction.unallocated_positions), ZERO)
    total_positions += unallocated_sum
    position_count += len(extraction.unallocated_positions)

    # Document total vs account balances
    totals = extraction.document_totals
    doc_total = totals.total_value if totals else None
    if doc_total is not None and total_balances != 0:
        if abs(doc_total - total_balances) > BALANCE_TOLERANCE:
            discrepancies.append(
                _compare("Document total vs sum of account balances", doc_total, total_balances)
            )

    # Day change
    doc_day_change = totals.total_day_change if totals else None
    if doc_day_change is not None:
        computed_day_change = sum(
            (p.day_change_amount or ZERO for p in extraction.iter_positions()), ZERO
        )
        diff = abs(doc_day_change - computed_day_change)
        if diff > DAY_CHANGE_TOLERANCE and percent_of(diff, doc_day_change) > DAY_CHANGE_PCT:
            discrepancies.append(_compare(
                "Document day change vs sum of position day changes",
                doc_day_change,
                computed_day_change,
            ))

    passed = not any(d.severity == Severity.ERROR for d in discrepancies)
    report = IntegrityReport(
        passed=passed,
        discrepancies=discrepancies,
        summary=IntegritySummary(
            document_reported_total=doc_total,
            computed_total=total_positions + liability_total,
            total_account_balances=total_balances,
            total_position_values=total_positions,
            liability_total=liability_total,
            account_count=len(extraction.accounts),
            position_count=position_count,
        ),
    )

    if discrepancies:
        logger.info(
            f"Integrity check {'passed' if passed else 'failed'} with {len(discrepancies)} discrepancies",
            extra_fields={"errors": len(report.errors), "warnings": len(report.warnings)},
        )
    return report
