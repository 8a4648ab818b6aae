"""Reconciliation Data Models.

- IntegrityDiscrepancy / IntegrityReport: document-internal consistency
- ValueCheck / CountCheck / BalanceSanityCheck / CheckResult: the hard and
  soft checks comparing a document against what landed in the ledger
"""

from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field

from core.models.extraction import DecimalValue, OptionalDecimal


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.ERROR: 2}


# =============================================================================
# Integrity Report
# =============================================================================

class IntegrityDiscrepancy(BaseModel):
    """One comparison that did not line up.

    ``difference`` is expected - computed; ``difference_pct`` is in percent.
    """
    check: str
    expected: DecimalValue
    computed: DecimalValue
    difference: DecimalValue
    difference_pct: DecimalValue
    severity: Severity


class IntegritySummary(BaseModel):
    document_reported_total: OptionalDecimal = None
    computed_total: DecimalValue = Decimal("0")
    total_account_balances: DecimalValue = Decimal("0")
    total_position_values: DecimalValue = Decimal("0")
    liability_total: DecimalValue = Decimal("0")
    account_count: int = 0
    position_count: int = 0


class IntegrityReport(BaseModel):
    passed: bool
    discrepancies: List[IntegrityDiscrepancy] = Field(default_factory=list)
    summary: IntegritySummary = Field(default_factory=IntegritySummary)

    @property
    def errors(self) -> List[IntegrityDiscrepancy]:
        return [d for d in self.discrepancies if d.severity == Severity.ERROR]

    @property
    def warnings(self) -> List[IntegrityDiscrepancy]:
        return [d for d in self.discrepancies if d.severity == Severity.WARNING]


# =============================================================================
# Quality Check Result
# =============================================================================

class ValueCheck(BaseModel):
    """Dollar comparison; ``diff_pct`` is a fraction (0.05 == 5%)."""
    expected: DecimalValue
    actual: DecimalValue
    diff: DecimalValue
    diff_pct: DecimalValue
    passed: bool


class CountCheck(BaseModel):
    expected: int
    actual: int
    passed: bool


class BalanceSanityCheck(BaseModel):
    """cash + equity against the stated total, within the document itself."""
    cash: DecimalValue
    equity: DecimalValue
    total: DecimalValue
    expected_total: DecimalValue
    passed: bool


class CheckResult(BaseModel):
    """Hard checks (total_value, position_count) decide overall_passed;
    the others are warnings."""
    total_value: ValueCheck
    position_count: CountCheck
    transaction_count: CountCheck
    balance_sanity: BalanceSanityCheck
    position_sum: ValueCheck
    overall_passed: bool
    summary: str
    issues: List[str] = Field(default_factory=list)

    @property
    def failed_hard_checks(self) -> List[str]:
        failed = []
        if not self.total_value.passed:
            failed.append("total_value")
        if not self.position_count.passed:
            failed.append("position_count")
        return failed

    @property
    def failed_soft_checks(self) -> List[str]:
        failed = []
        if not self.transaction_count.passed:
            failed.append("transaction_count")
        if not self.balance_sanity.passed:
            failed.append("balance_sanity")
        if not self.position_sum.passed:
            failed.append("position_sum")
        return failed


def worst_severity(severities: List[Severity]) -> Optional[Severity]:
    if not severities:
        return None
    return max(severities, key=lambda s: SEVERITY_RANK[s])
