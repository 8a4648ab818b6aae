"""Tests for the dual-result comparator."""

import copy

from conftest import SCHWAB_RESPONSE
from core.models.extraction import AccountEntry, AccountInfo, AccountType
from extraction.validator import validate_extraction
from reconciliation import Agreement, Severity, compare_extractions
from reconciliation.compare import DiscrepancyCategory, account_key, accounts_fuzzy_match, pair_accounts


def _extraction(raw):
    return validate_extraction(raw).extraction


def _descriptions(result):
    return [d.description for d in result.discrepancies]


def _account(**info) -> AccountEntry:
    return AccountEntry(account_info=AccountInfo(**info))


class TestAccountPairing:

    def test_account_key_normalizes_institution_and_number(self):
        entry = _account(institution_name="Charles Schwab", account_type=AccountType.IRA, account_number="...1234")
        assert account_key(entry) == "schwab|ira|1234"

    def test_strict_key_pairs_reordered_accounts(self):
        primary = _extraction(SCHWAB_RESPONSE).accounts
        verification = list(reversed(primary))
        assert pair_accounts(primary, verification) == {0: 1, 1: 0}

    def test_fuzzy_match_on_nickname(self):
        a = _account(account_nickname="Joint Brokerage", institution_name="Fidelity")
        b = _account(account_nickname="joint brokerage", institution_name="Fidelity Investments")
        assert accounts_fuzzy_match(a, b)

    def test_fuzzy_match_on_last4_and_type(self):
        a = _account(account_number="XXXX-5902", account_type=AccountType.INDIVIDUAL)
        b = _account(account_number="5902", account_type=AccountType.INDIVIDUAL, institution_name="Schwab")
        assert accounts_fuzzy_match(a, b)

    def test_different_accounts_do_not_match(self):
        a = _account(account_number="1111", account_type=AccountType.IRA, institution_name="Vanguard")
        b = _account(account_number="2222", account_type=AccountType.INDIVIDUAL, institution_name="Fidelity")
        assert not accounts_fuzzy_match(a, b)


class TestCompareExtractions:

    def test_identical_extractions_fully_agree(self):
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(SCHWAB_RESPONSE))
        assert result.agreement == Agreement.FULL
        assert result.discrepancies == []
        assert result.summary.total == 0

    def test_quantity_difference_is_significant(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"][1]["positions"][0]["quantity"] = 55
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))

        assert result.agreement == Agreement.SIGNIFICANT_DIFFERENCES
        quantity = result.discrepancies[0]
        assert quantity.severity == Severity.ERROR
        assert quantity.category == DiscrepancyCategory.POSITION
        assert quantity.description == "Schwab IRA: VTI quantity differs"
        assert quantity.primary_value == 50
        assert quantity.verification_value == 55

    def test_small_value_difference_is_minor(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"][0]["balances"][0]["cash_balance"] = 1100
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))

        assert result.agreement == Agreement.MINOR_DIFFERENCES
        assert _descriptions(result) == ["Schwab Individual: cash balance differs (2024-01-31)"]
        assert result.discrepancies[0].severity == Severity.INFO
        assert result.discrepancies[0].primary_value == "1,000.00"

    def test_missing_position_on_each_side(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"][1]["positions"][0]["symbol"] = "VOO"
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))
        descriptions = _descriptions(result)
        assert "Schwab IRA: VTI in primary but missing in verification" in descriptions
        assert "Schwab IRA: VOO in verification but missing in primary" in descriptions

    def test_transaction_amount_difference(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"][0]["transactions"][1]["total_amount"] = 3000
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))

        [discrepancy] = result.discrepancies
        assert discrepancy.category == DiscrepancyCategory.TRANSACTION
        assert discrepancy.description == "Schwab Individual: dividend MSFT 2024-01-15 amount differs"
        assert discrepancy.severity == Severity.WARNING

    def test_transaction_count_difference(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"][0]["transactions"].pop()
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))
        assert _descriptions(result) == ["Schwab Individual: transaction count differs"]
        assert result.discrepancies[0].severity == Severity.WARNING

    def test_unmatched_accounts_and_count(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"].pop()
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))
        descriptions = _descriptions(result)
        assert "Account count differs" in descriptions
        assert 'Account "Schwab IRA" in primary but not matched in verification' in descriptions

    def test_empty_verification_is_significant(self):
        empty = {"schema_version": 1, "accounts": [], "confidence": "high"}
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(empty))
        by_description = {d.description: d for d in result.discrepancies}
        assert by_description["Account count differs"].severity == Severity.ERROR
        assert by_description["Document type differs"].severity == Severity.WARNING
        assert result.agreement == Agreement.SIGNIFICANT_DIFFERENCES

    def test_metadata_differences(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["confidence"] = "medium"
        other["document"]["document_type"] = "portfolio_summary"
        other["document_totals"]["total_value"] = 23000
        result = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other))

        by_description = {d.description: d for d in result.discrepancies}
        assert by_description["Confidence level differs"].severity == Severity.INFO
        assert by_description["Document type differs"].severity == Severity.WARNING
        assert by_description["Document total value differs"].severity == Severity.WARNING
        assert result.summary.total == 3
        assert result.summary.warnings == 2
        assert result.summary.infos == 1

    def test_unallocated_positions_compared_as_aggregate(self):
        primary = copy.deepcopy(SCHWAB_RESPONSE)
        primary["unallocated_positions"] = [
            {"snapshot_date": "2024-01-31", "symbol": "SWVXX", "quantity": 100, "market_value": 100},
        ]
        result = compare_extractions(_extraction(primary), _extraction(SCHWAB_RESPONSE))
        descriptions = _descriptions(result)
        assert "Aggregate: position count differs" in descriptions
        assert "Aggregate: SWVXX in primary but missing in verification" in descriptions

    def test_result_serializes(self):
        other = copy.deepcopy(SCHWAB_RESPONSE)
        other["accounts"][1]["positions"][0]["quantity"] = 55
        data = compare_extractions(_extraction(SCHWAB_RESPONSE), _extraction(other)).model_dump(mode="json")
        assert data["agreement"] == "significant_differences"
        assert data["discrepancies"][0]["severity"] == "error"
        assert data["summary"]["errors"] == 1
