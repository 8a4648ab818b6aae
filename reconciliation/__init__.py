"""Reconciliation Module.

Consistency checks over extraction documents:
- check_integrity: internal consistency of one document
- run_quality_checks: a document against the ledger state it produced
- compare_extractions: two independent extractions of the same source
"""

from reconciliation.compare import (
    Agreement,
    ComparisonResult,
    Discrepancy,
    compare_extractions,
)
from reconciliation.integrity import check_integrity
from reconciliation.models import (
    BalanceSanityCheck,
    CheckResult,
    CountCheck,
    IntegrityDiscrepancy,
    IntegrityReport,
    Severity,
    ValueCheck,
)
from reconciliation.quality import evaluate_checks, run_quality_checks

__all__ = [
    "check_integrity",
    "run_quality_checks",
    "evaluate_checks",
    "compare_extractions",
    "Agreement",
    "ComparisonResult",
    "Discrepancy",
    "BalanceSanityCheck",
    "CheckResult",
    "CountCheck",
    "IntegrityDiscrepancy",
    "IntegrityReport",
    "Severity",
    "ValueCheck",
]
