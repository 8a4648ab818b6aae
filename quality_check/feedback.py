"""Corrective feedback for a re-extraction.

The feedback block lists the failed checks with expected vs actual numbers
and summarizes the previous extraction, then is appended to the text part of
the same source payload that is sent back to the extraction model.
"""

from dataclasses import replace
from decimal import Decimal

from core.models.extraction import ExtractionDocument
from extraction.runner import SourceDocument
from reconciliation.models import CheckResult


FEEDBACK_HEADER = "=== QUALITY CHECK FEEDBACK ==="


def _dollars(value: Decimal) -> str:
    return f"${abs(value):,.0f}"


def _issue_lines(check: CheckResult) -> list:
    issues = []

    if not check.total_value.passed:
        issues.append(
            f"TOTAL VALUE MISMATCH: The extraction produced a total value of {_dollars(check.total_value.expected)} "
            f"but the sum written to the ledger was {_dollars(check.total_value.actual)} "
            f"({check.total_value.diff_pct * 100:.1f}% difference). "
            "Ensure that balance liquidation_value matches the document's stated total account value."
        )
    if not check.position_count.passed:
        issues.append(
            f"POSITION COUNT MISMATCH: Expected {check.position_count.expected} positions "
            f"but only {check.position_count.actual} were written to the ledger. "
            "Ensure ALL positions visible in the document are extracted, including those in summary sections."
        )
    if not check.transaction_count.passed:
        issues.append(
            f"TRANSACTION COUNT: Expected {check.transaction_count.expected} transactions "
            f"but {check.transaction_count.actual} were written."
        )
    if not check.balance_sanity.passed:
        issues.append(
            f"BALANCE SANITY: cash ({_dollars(check.balance_sanity.cash)}) + "
            f"equity ({_dollars(check.balance_sanity.equity)}) does not equal "
            f"total ({_dollars(check.balance_sanity.total)})."
        )
    if not check.position_sum.passed:
        issues.append(
            f"POSITION VALUES: Sum of position market_value ({_dollars(check.position_sum.actual)}) "
            f"does not match equity from balance ({_dollars(check.position_sum.expected)}). "
            "Ensure ALL positions have accurate market_value fields."
        )

    return issues


def build_quality_fix_prompt(check: CheckResult, original: ExtractionDocument) -> str:
    """Feedback block describing what went wrong with the previous extraction."""
    breakdown = "\n".join(
        f"  Account {i}: {entry.account_info.institution_name or 'Unknown'} "
        f"({entry.account_info.account_type.value if entry.account_info.account_type else 'unknown type'}) - "
        f"{len(entry.positions)} positions, {len(entry.transactions)} transactions, "
        f"{len(entry.balances)} balances"
        for i, entry in enumerate(original.accounts)
    )
    issues = "\n".join(f"- {line}" for line in _issue_lines(check))
    notes = "; ".join(original.notes) if original.notes else "(none)"

    return (
        f"\n\n{FEEDBACK_HEADER}\n\n"
        "A previous extraction of this document had quality issues. Please re-extract more carefully.\n\n"
        f"Issues found:\n{issues}\n\n"
        "Previous extraction summary:\n"
        f"- {len(original.accounts)} accounts detected\n"
        f"- {len(original.unallocated_positions)} unallocated positions\n"
        f"- Confidence: {original.confidence.value}\n"
        f"- Notes: {notes}\n"
        f"- Account breakdown:\n{breakdown}\n\n"
        "Pay special attention to:\n"
        "1. Extract EVERY position with accurate market_value\n"
        "2. Balance liquidation_value must match the document's stated total\n"
        "3. Include ALL accounts - do not merge or skip any\n"
        "4. If positions span multiple accounts, use unallocated_positions\n\n"
        "Respond ONLY with the corrected JSON object."
    )


def inject_feedback(source: SourceDocument, feedback: str) -> SourceDocument:
    """Copy of the source with feedback appended to its text part.

    Binary payloads (PDF, images) can't be edited, so the feedback becomes
    (or extends) the text sent alongside them.
    """
    return replace(source, text_content=(source.text_content or "") + feedback)
