"""Dual-Result Comparator - diff two independent extractions of one document.

Accounts are paired first by a strict key (institution|type|last-4 number),
then by fuzzy rules. Within paired accounts:
- positions match on (symbol, date); quantity and market value are diffed
- transactions match on (date, symbol, action, amount), falling back to
  (date, symbol, action) which is reported as an amount difference
- balances match on date; liquidation value and cash are diffed

Agreement is "full" with no discrepancies, "significant_differences" when
any error exists, otherwise "minor_differences".
"""

from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Sequence, Set, Tuple, Union

from pydantic import BaseModel, Field

from core.models.extraction import (
    AccountEntry,
    Balance,
    ExtractionDocument,
    Position,
    Transaction,
)
from core.observability.logging import get_logger
from reconciliation.models import Severity


logger = get_logger(__name__)

QUANTITY_TOLERANCE = Decimal("0.001")
MONEY_TOLERANCE = Decimal("1")
AMOUNT_TOLERANCE = Decimal("0.01")
VALUE_ERROR_GAP = Decimal("5000")
VALUE_WARNING_GAP = Decimal("500")


class DiscrepancyCategory(str, Enum):
    ACCOUNT = "account"
    POSITION = "position"
    TRANSACTION = "transaction"
    BALANCE = "balance"
    METADATA = "metadata"


class Agreement(str, Enum):
    FULL = "full"
    MINOR_DIFFERENCES = "minor_differences"
    SIGNIFICANT_DIFFERENCES = "significant_differences"


DisplayValue = Optional[Union[int, float, str]]


class Discrepancy(BaseModel):
    severity: Severity
    category: DiscrepancyCategory
    description: str
    primary_value: DisplayValue = None
    verification_value: DisplayValue = None


class ComparisonSummary(BaseModel):
    total: int = 0
    errors: int = 0
    warnings: int = 0
    infos: int = 0


class ComparisonResult(BaseModel):
    discrepancies: List[Discrepancy] = Field(default_factory=list)
    summary: ComparisonSummary = Field(default_factory=ComparisonSummary)
    agreement: Agreement = Agreement.FULL


# =============================================================================
# Helpers
# =============================================================================

def _institution(name: Optional[str]) -> str:
    text = (name or "").lower().strip()
    for prefix in ("charles ", "the "):
        if text.startswith(prefix):
            text = text[len(prefix):]
    return text


def _last4(number: Optional[str]) -> str:
    return (number or "").lstrip(".")[-4:]


def _type(entry: AccountEntry) -> str:
    account_type = entry.account_info.account_type
    return account_type.value if account_type else ""


def account_key(entry: AccountEntry) -> str:
    info = entry.account_info
    return f"{_institution(info.institution_name)}|{_type(entry)}|{_last4(info.account_number)}"


def accounts_fuzzy_match(a: AccountEntry, b: AccountEntry) -> bool:
    """Likely the same account despite small differences between the two runs."""
    a_nick = (a.account_info.account_nickname or "").lower().strip()
    b_nick = (b.account_info.account_nickname or "").lower().strip()
    if a_nick and a_nick == b_nick:
        return True

    a_inst = _institution(a.account_info.institution_name)
    b_inst = _institution(b.account_info.institution_name)
    a_type = _type(a)
    b_type = _type(b)

    def references(nick: str, inst: str, acct_type: str) -> bool:
        return bool(nick) and ((inst and inst in nick) or (acct_type and acct_type in nick))

    if references(a_nick, b_inst, b_type):
        if references(b_nick, a_inst, a_type):
            return True
        if a_type == b_type or a_inst == b_inst:
            return True
    if references(b_nick, a_inst, a_type) and (a_type == b_type or a_inst == b_inst):
        return True

    a_num = _last4(a.account_info.account_number)
    b_num = _last4(b.account_info.account_number)
    if a_num and a_num == b_num and (a_type == b_type or (a_inst and a_inst == b_inst)):
        return True

    if a_type and a_type == b_type and a_inst and b_inst:
        return a_inst in b_inst or b_inst in a_inst
    return False


def differs(a: Optional[Decimal], b: Optional[Decimal], tolerance: Decimal) -> bool:
    if a is None and b is None:
        return False
    if a is None or b is None:
        return True
    return abs(a - b) > tolerance


def value_severity(a: Optional[Decimal], b: Optional[Decimal]) -> Severity:
    if a is None or b is None:
        return Severity.WARNING
    gap = abs(a - b)
    if gap > VALUE_ERROR_GAP:
        return Severity.ERROR
    if gap > VALUE_WARNING_GAP:
        return Severity.WARNING
    return Severity.INFO


def fmt(value: Optional[Decimal]) -> Optional[str]:
    if value is None:
        return None
    return f"{value:,.2f}"


def _number(value: Optional[Decimal]) -> Optional[float]:
    return float(value) if value is not None else None


def _account_name(entry: AccountEntry, index: int) -> str:
    info = entry.account_info
    return info.account_nickname or info.account_number or f"Account #{index + 1}"


# =============================================================================
# Account Pairing
# =============================================================================

def pair_accounts(
    primary: Sequence[AccountEntry],
    verification: Sequence[AccountEntry],
) -> Dict[int, int]:
    """Primary index -> verification index, strict keys first, then fuzzy."""
    pairs: Dict[int, int] = {}
    used: Set[int] = set()

    verification_keys = [account_key(v) for v in verification]
    for pi, entry in enumerate(primary):
        key = account_key(entry)
        for vi, vkey in enumerate(verification_keys):
            if vi not in used and key == vkey:
                pairs[pi] = vi
                used.add(vi)
                break

    for pi, entry in enumerate(primary):
        if pi in pairs:
            continue
        for vi, other in enumerate(verification):
            if vi not in used and accounts_fuzzy_match(entry, other):
                pairs[pi] = vi
                used.add(vi)
                break

    return pairs


# =============================================================================
# Per-Type Comparisons
# =============================================================================

def compare_positions(primary: Sequence[Position], verification: Sequence[Position],
                      label: str, out: List[Discrepancy]) -> None:
    if len(primary) != len(verification):
        out.append(Discrepancy(
            severity=Severity.WARNING,
            category=DiscrepancyCategory.POSITION,
            description=f"{label}: position count differs",
            primary_value=len(primary),
            verification_value=len(verification),
        ))

    by_key: Dict[Tuple, Position] = {(p.symbol, p.snapshot_date): p for p in verification}
    primary_keys = {(p.symbol, p.snapshot_date) for p in primary}

    for pp in primary:
        vp = by_key.get((pp.symbol, pp.snapshot_date))
        if vp is None:
            out.append(Discrepancy(
                severity=Severity.WARNING,
                category=DiscrepancyCategory.POSITION,
                description=f"{label}: {pp.symbol} in primary but missing in verification",
                primary_value=f"{pp.quantity} shares",
            ))
            continue

        if differs(pp.quantity, vp.quantity, QUANTITY_TOLERANCE):
            out.append(Discrepancy(
                severity=Severity.ERROR,
                category=DiscrepancyCategory.POSITION,
                description=f"{label}: {pp.symbol} quantity differs",
                primary_value=_number(pp.quantity),
                verification_value=_number(vp.quantity),
            ))
        if differs(pp.market_value, vp.market_value, MONEY_TOLERANCE):
            out.append(Discrepancy(
                severity=value_severity(pp.market_value, vp.market_value),
                category=DiscrepancyCategory.POSITION,
                description=f"{label}: {pp.symbol} market value differs",
                primary_value=fmt(pp.market_value),
                verification_value=fmt(vp.market_value),
            ))

    for vp in verification:
        if (vp.symbol, vp.snapshot_date) not in primary_keys:
            out.append(Discrepancy(
                severity=Severity.WARNING,
                category=DiscrepancyCategory.POSITION,
                description=f"{label}: {vp.symbol} in verification but missing in primary",
                verification_value=f"{vp.quantity} shares",
            ))


def compare_transactions(primary: Sequence[Transaction], verification: Sequence[Transaction],
                         label: str, out: List[Discrepancy]) -> None:
    if len(primary) != len(verification):
        out.append(Discrepancy(
            severity=Severity.ERROR if abs(len(primary) - len(verification)) > 5 else Severity.WARNING,
            category=DiscrepancyCategory.TRANSACTION,
            description=f"{label}: transaction count differs",
            primary_value=len(primary),
            verification_value=len(verification),
        ))

    used: Set[int] = set()

    def find(pt: Transaction, strict: bool) -> Optional[int]:
        for vi, vt in enumerate(verification):
            if vi in used:
                continue
            if (vt.transaction_date, vt.symbol, vt.action) != (pt.transaction_date, pt.symbol, pt.action):
                continue
            if strict and differs(vt.total_amount, pt.total_amount, AMOUNT_TOLERANCE):
                continue
            return vi
        return None

    for pt in primary:
        vi = find(pt, strict=True)
        if vi is not None:
            used.add(vi)
            continue

        # Unmatched transactions are already covered by the count difference
        vi = find(pt, strict=False)
        if vi is None:
            continue
        used.add(vi)
        vt = verification[vi]
        out.append(Discrepancy(
            severity=value_severity(pt.total_amount, vt.total_amount),
            category=DiscrepancyCategory.TRANSACTION,
            description=(
                f"{label}: {pt.action.value} {pt.symbol or ''} "
                f"{pt.transaction_date.isoformat()} amount differs"
            ),
            primary_value=fmt(pt.total_amount),
            verification_value=fmt(vt.total_amount),
        ))


def compare_balances(primary: Sequence[Balance], verification: Sequence[Balance],
                     label: str, out: List[Discrepancy]) -> None:
    by_date = {b.snapshot_date: b for b in verification}

    for pb in primary:
        day = pb.snapshot_date.isoformat()
        vb = by_date.get(pb.snapshot_date)
        if vb is None:
            if verification:
                out.append(Discrepancy(
                    severity=Severity.INFO,
                    category=DiscrepancyCategory.BALANCE,
                    description=f"{label}: balance snapshot {day} missing in verification",
                    primary_value=fmt(pb.liquidation_value),
                ))
            continue

        if differs(pb.liquidation_value, vb.liquidation_value, MONEY_TOLERANCE):
            out.append(Discrepancy(
                severity=value_severity(pb.liquidation_value, vb.liquidation_value),
                category=DiscrepancyCategory.BALANCE,
                description=f"{label}: liquidation value differs ({day})",
                primary_value=fmt(pb.liquidation_value),
                verification_value=fmt(vb.liquidation_value),
            ))
        if differs(pb.cash_balance, vb.cash_balance, MONEY_TOLERANCE):
            out.append(Discrepancy(
                severity=value_severity(pb.cash_balance, vb.cash_balance),
                category=DiscrepancyCategory.BALANCE,
                description=f"{label}: cash balance differs ({day})",
                primary_value=fmt(pb.cash_balance),
                verification_value=fmt(vb.cash_balance),
            ))


# =============================================================================
# Public API
# =============================================================================

def compare_extractions(primary: ExtractionDocument, verification: ExtractionDocument) -> ComparisonResult:
    """Compare two extractions of the same source document.

    Args:
        primary: Extraction from the primary model
        verification: Independent extraction used for verification

    Returns:
        ComparisonResult with discrepancies and an agreement level
    """
    out: List[Discrepancy] = []

    if primary.confidence != verification.confidence:
        out.append(Discrepancy(
            severity=Severity.INFO,
            category=DiscrepancyCategory.METADATA,
            description="Confidence level differs",
            primary_value=primary.confidence.value,
            verification_value=verification.confidence.value,
        ))

    p_type = primary.document.document_type
    v_type = verification.document.document_type
    if p_type != v_type:
        out.append(Discrepancy(
            severity=Severity.WARNING,
            category=DiscrepancyCategory.METADATA,
            description="Document type differs",
            primary_value=p_type.value if p_type else None,
            verification_value=v_type.value if v_type else None,
        ))

    p_count = len(primary.accounts)
    v_count = len(verification.accounts)
    if p_count != v_count:
        out.append(Discrepancy(
            severity=Severity.ERROR if p_count == 0 or v_count == 0 else Severity.WARNING,
            category=DiscrepancyCategory.ACCOUNT,
            description="Account count differs",
            primary_value=p_count,
            verification_value=v_count,
        ))

    pairs = pair_accounts(primary.accounts, verification.accounts)
    paired_verification = set(pairs.values())

    for pi, entry in enumerate(primary.accounts):
        if pi not in pairs:
            name = _account_name(entry, pi)
            out.append(Discrepancy(
                severity=Severity.WARNING,
                category=DiscrepancyCategory.ACCOUNT,
                description=f'Account "{name}" in primary but not matched in verification',
                primary_value=name,
            ))
    for vi, entry in enumerate(verification.accounts):
        if vi not in paired_verification:
            name = _account_name(entry, vi)
            out.append(Discrepancy(
                severity=Severity.WARNING,
                category=DiscrepancyCategory.ACCOUNT,
                description=f'Account "{name}" in verification but not matched in primary',
                verification_value=name,
            ))

    for pi, vi in pairs.items():
        p_entry = primary.accounts[pi]
        v_entry = verification.accounts[vi]
        label = _account_name(p_entry, pi)
        compare_positions(p_entry.positions, v_entry.positions, label, out)
        compare_transactions(p_entry.transactions, v_entry.transactions, label, out)
        compare_balances(p_entry.balances, v_entry.balances, label, out)

    if primary.unallocated_positions or verification.unallocated_positions:
        compare_positions(primary.unallocated_positions, verification.unallocated_positions, "Aggregate", out)

    p_total = primary.document_totals.total_value if primary.document_totals else None
    v_total = verification.document_totals.total_value if verification.document_totals else None
    if differs(p_total, v_total, MONEY_TOLERANCE):
        out.append(Discrepancy(
            severity=value_severity(p_total, v_total),
            category=DiscrepancyCategory.METADATA,
            description="Document total value differs",
            primary_value=fmt(p_total),
            verification_value=fmt(v_total),
        ))

    summary = ComparisonSummary(
        total=len(out),
        errors=sum(1 for d in out if d.severity == Severity.ERROR),
        warnings=sum(1 for d in out if d.severity == Severity.WARNING),
        infos=sum(1 for d in out if d.severity == Severity.INFO),
    )
    if summary.errors:
        agreement = Agreement.SIGNIFICANT_DIFFERENCES
    elif summary.total:
        agreement = Agreement.MINOR_DIFFERENCES
    else:
        agreement = Agreement.FULL

    logger.info(
        f"Compared extractions: {agreement.value}",
        extra_fields=summary.model_dump(),
    )
    return ComparisonResult(discrepancies=out, summary=summary, agreement=agreement)
