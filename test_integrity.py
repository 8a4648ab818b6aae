"""Tests for document integrity checks and the ledger quality checks."""

import copy
from decimal import Decimal

import pytest

from conftest import CORRECTED_RESPONSE, SCHWAB_RESPONSE, SHORT_RESPONSE, single_account_response
from extraction.validator import validate_extraction
from reconciliation import Severity, check_integrity, evaluate_checks
from reconciliation.integrity import classify, percent_of


def _extraction(raw):
    result = validate_extraction(raw)
    assert result.valid
    return result.extraction


def _liability_response(liquidation_value) -> dict:
    return {
        "schema_version": 1,
        "document": {"institution_name": "Rocket Mortgage"},
        "accounts": [{
            "account_info": {
                "account_number": "55555",
                "account_type": "mortgage",
                "institution_name": "Rocket Mortgage",
                "account_nickname": "Home Loan",
            },
            "balances": [{"snapshot_date": "2024-03-31", "liquidation_value": liquidation_value}],
        }],
    }


# =============================================================================
# Integrity Checker
# =============================================================================

class TestSeverity:

    @pytest.mark.parametrize("abs_diff, pct, expected", [
        (Decimal("5001"), Decimal("0.5"), Severity.ERROR),
        (Decimal("10"), Decimal("5.01"), Severity.ERROR),
        (Decimal("501"), Decimal("0.5"), Severity.WARNING),
        (Decimal("10"), Decimal("1.5"), Severity.WARNING),
        (Decimal("500"), Decimal("1"), Severity.INFO),
    ])
    def test_classify(self, abs_diff, pct, expected):
        assert classify(abs_diff, pct) == expected

    def test_percent_of_zero_base(self):
        assert percent_of(Decimal("10"), Decimal("0")) == Decimal("0")


class TestCheckIntegrity:

    def test_consistent_document_passes_cleanly(self):
        report = check_integrity(_extraction(SCHWAB_RESPONSE))
        assert report.passed
        assert report.discrepancies == []
        assert report.summary.total_account_balances == Decimal("23750")
        assert report.summary.total_position_values == Decimal("22250")
        assert report.summary.document_reported_total == Decimal("23750")
        assert report.summary.account_count == 2
        assert report.summary.position_count == 4

    def test_missing_positions_is_an_error(self):
        report = check_integrity(_extraction(SHORT_RESPONSE))
        assert not report.passed
        error = report.errors[0]
        assert "balance vs positions+cash" in error.check
        assert error.expected == Decimal("100000")
        assert error.computed == Decimal("80000")
        assert error.difference == Decimal("20000")
        assert error.difference_pct == Decimal("20.00")

    def test_small_gap_is_info(self):
        raw = single_account_response(
            [{"snapshot_date": "2024-03-31", "symbol": "AAPL", "quantity": 100, "market_value": 99990}],
            liquidation_value=100000,
        )
        report = check_integrity(_extraction(raw))
        assert report.passed
        assert report.discrepancies[0].severity == Severity.INFO

    def test_balance_without_positions_is_an_error(self):
        raw = single_account_response([], liquidation_value=250000)
        report = check_integrity(_extraction(raw))
        assert not report.passed
        assert report.errors[0].check.endswith("claims $250,000.00 but has 0 positions")

    def test_unallocated_positions_suppress_empty_account_error(self):
        raw = single_account_response([], liquidation_value=250000)
        raw["unallocated_positions"] = [
            {"snapshot_date": "2024-03-31", "symbol": "VTI", "quantity": 1000, "market_value": 250000},
        ]
        report = check_integrity(_extraction(raw))
        assert report.passed

    def test_positive_liability_balance_is_a_warning(self):
        report = check_integrity(_extraction(_liability_response(350000)))
        assert report.passed
        warning = report.warnings[0]
        assert "expected negative liquidation_value for liability" in warning.check
        assert warning.expected == Decimal("-350000")
        assert report.summary.liability_total == Decimal("350000")

    def test_negative_liability_balance_is_fine(self):
        report = check_integrity(_extraction(_liability_response(-350000)))
        assert report.discrepancies == []

    def test_document_total_mismatch(self):
        raw = copy.deepcopy(SCHWAB_RESPONSE)
        raw["document_totals"]["total_value"] = 33750
        report = check_integrity(_extraction(raw))
        assert not report.passed
        assert report.errors[0].check == "Document total vs sum of account balances"
        assert report.errors[0].difference == Decimal("10000")

    def test_day_change_mismatch(self):
        raw = copy.deepcopy(SCHWAB_RESPONSE)
        raw["accounts"][0]["positions"][2]["day_change_amount"] = 150
        raw["document_totals"]["total_day_change"] = 400
        report = check_integrity(_extraction(raw))
        checks = [d.check for d in report.discrepancies]
        assert "Document day change vs sum of position day changes" in checks

    def test_day_change_within_tolerance(self):
        raw = copy.deepcopy(SCHWAB_RESPONSE)
        raw["accounts"][0]["positions"][2]["day_change_amount"] = 150
        raw["document_totals"]["total_day_change"] = 200
        report = check_integrity(_extraction(raw))
        assert report.discrepancies == []

    def test_ledger_totals_are_compared(self):
        report = check_integrity(_extraction(SCHWAB_RESPONSE), ledger_totals={0: Decimal("11250"), 1: 9000})
        checks = [d.check for d in report.discrepancies]
        assert checks == ['Account "Schwab IRA": stated balance vs ledger total']


# =============================================================================
# Quality Checks (pure evaluation)
# =============================================================================

class TestEvaluateChecks:

    def test_matching_ledger_passes(self):
        result = evaluate_checks(
            _extraction(SCHWAB_RESPONSE),
            ledger_total=Decimal("23750"),
            ledger_holdings_count=3,
            ledger_transaction_count=3,
        )
        assert result.overall_passed
        assert result.summary == "All quality checks passed"
        assert result.position_count.expected == 3
        assert result.failed_hard_checks == []
        assert result.failed_soft_checks == []

    def test_total_value_outside_five_percent_fails(self):
        result = evaluate_checks(
            _extraction(SHORT_RESPONSE),
            ledger_total=Decimal("80000"),
            ledger_holdings_count=1,
            ledger_transaction_count=0,
        )
        assert not result.overall_passed
        assert result.failed_hard_checks == ["total_value"]
        assert result.total_value.diff == Decimal("-20000")
        assert result.total_value.diff_pct == Decimal("-0.2")
        assert result.summary.startswith("Quality issues found: ")
        assert "Dashboard shows $80,000 but statement claims $100,000 (-20.0% off)" in result.summary

    def test_within_five_percent_passes(self):
        result = evaluate_checks(
            _extraction(CORRECTED_RESPONSE),
            ledger_total=Decimal("99500"),
            ledger_holdings_count=2,
            ledger_transaction_count=0,
        )
        assert result.total_value.passed
        assert result.overall_passed

    def test_position_count_is_exact(self):
        result = evaluate_checks(
            _extraction(CORRECTED_RESPONSE),
            ledger_total=Decimal("99500"),
            ledger_holdings_count=1,
            ledger_transaction_count=0,
        )
        assert result.failed_hard_checks == ["position_count"]
        assert "Expected 2 positions but found 1 in ledger" in result.issues

    def test_soft_failures_only_warn(self):
        result = evaluate_checks(
            _extraction(SCHWAB_RESPONSE),
            ledger_total=Decimal("23750"),
            ledger_holdings_count=3,
            ledger_transaction_count=2,
        )
        assert result.overall_passed
        assert result.failed_soft_checks == ["transaction_count"]
        assert result.summary.startswith("Hard checks passed with warnings")

    def test_empty_document_passes(self):
        result = evaluate_checks(
            _extraction({"accounts": []}),
            ledger_total=Decimal("0"),
            ledger_holdings_count=0,
            ledger_transaction_count=0,
        )
        assert result.overall_passed
