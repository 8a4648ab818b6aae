"""Tests for the extraction validator and value parsers."""

import copy
import json
from datetime import date
from decimal import Decimal

import pytest

from conftest import SCHWAB_RESPONSE
from core.models.extraction import (
    AccountType,
    AssetType,
    Confidence,
    TransactionAction,
    parse_date,
    parse_decimal,
)
from extraction.coercion import normalize_action, normalize_symbol
from extraction.validator import ExtractionValidationError, strip_code_fences, validate_extraction


def _tx(**overrides) -> dict:
    tx = {
        "transaction_date": "2024-01-10",
        "symbol": "AAPL",
        "description": "Bought AAPL",
        "action": "buy",
        "quantity": 5,
        "price_per_share": 150,
        "total_amount": -750,
    }
    tx.update(overrides)
    return tx


def _doc_with_transactions(*transactions) -> dict:
    return {
        "schema_version": 1,
        "document": {"institution_name": "Schwab"},
        "accounts": [{"account_info": {"account_number": "1234"}, "transactions": list(transactions)}],
        "confidence": "medium",
    }


# =============================================================================
# Value Parsers
# =============================================================================

class TestParseDate:
    """Date formats seen in extraction output."""

    @pytest.mark.parametrize("raw, expected", [
        ("2024-01-15", date(2024, 1, 15)),
        ("2024-01-15T10:30:00Z", date(2024, 1, 15)),
        ("01/15/2024", date(2024, 1, 15)),
        ("1/5/2024 settled", date(2024, 1, 5)),
        ("Balance as of 03/31/2024", date(2024, 3, 31)),
        ("15-Jan-2024", date(2024, 1, 15)),
        ("15 January 2024", date(2024, 1, 15)),
        ("Jan 15, 2024", date(2024, 1, 15)),
        ("Sept. 3 2024", date(2024, 9, 3)),
    ])
    def test_accepted_formats(self, raw, expected):
        assert parse_date(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "   ", "yesterday", "2024-02-30", 20240115])
    def test_rejected_values(self, raw):
        assert parse_date(raw) is None


class TestParseDecimal:

    @pytest.mark.parametrize("raw, expected", [
        ("$1,234.56", Decimal("1234.56")),
        ("(1,234.50)", Decimal("-1234.50")),
        ("12.5%", Decimal("12.5")),
        (" 42 ", Decimal("42")),
        (7, Decimal("7")),
        (0.1, Decimal("0.1")),
    ])
    def test_accepted_formats(self, raw, expected):
        assert parse_decimal(raw) == expected

    @pytest.mark.parametrize("raw", [None, "", "-", "N/A", True, float("nan"), float("inf"), "Infinity"])
    def test_rejected_values(self, raw):
        assert parse_decimal(raw) is None


class TestEnumAliases:

    @pytest.mark.parametrize("raw, expected", [
        ("buy", TransactionAction.BUY),
        ("Purchase", TransactionAction.BUY),
        ("BTO", TransactionAction.BUY),
        ("CDIV", TransactionAction.DIVIDEND),
        ("ACATI", TransactionAction.TRANSFER_IN),
        ("Wire In", TransactionAction.TRANSFER_IN),
        ("buy-to-cover", TransactionAction.BUY_TO_COVER),
    ])
    def test_action_aliases(self, raw, expected):
        assert normalize_action(raw) == expected

    def test_unknown_action_is_none(self):
        assert normalize_action("moon landing") is None

    def test_symbol_placeholders(self):
        assert normalize_symbol(" aapl ") == "AAPL"
        assert normalize_symbol("---") is None
        assert normalize_symbol("N/A") is None


# =============================================================================
# Structural Parsing
# =============================================================================

class TestStructure:
    """Fence stripping, object location and fatal structural errors."""

    def test_code_fence_is_stripped(self):
        raw = "```json\n" + json.dumps(SCHWAB_RESPONSE) + "\n```"
        result = validate_extraction(raw)
        assert result.valid
        assert len(result.extraction.accounts) == 2

    def test_strip_code_fences_without_fence(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'

    def test_object_found_inside_prose(self):
        raw = "Here is the extraction you asked for:\n" + json.dumps(SCHWAB_RESPONSE) + "\nLet me know!"
        result = validate_extraction(raw)
        assert result.valid
        assert "Extracted JSON object from surrounding text" in result.coercions

    def test_no_object_is_an_error(self):
        result = validate_extraction("I could not read this document.")
        assert not result.valid
        assert result.extraction is None
        assert result.errors[0].message == "No JSON object found"

    def test_truncated_json_is_an_error(self):
        text = json.dumps(SCHWAB_RESPONSE)
        result = validate_extraction(text[: len(text) // 2])
        assert not result.valid
        assert result.extraction is None
        assert result.errors[0].message.startswith("Invalid JSON")

    def test_top_level_array_is_an_error(self):
        result = validate_extraction("[1, 2, 3]")
        assert not result.valid
        assert result.errors

    def test_accounts_not_a_list_is_an_error(self):
        result = validate_extraction({"accounts": "many"})
        assert not result.valid
        assert result.errors[0].path == "accounts"

    def test_validation_error_message_lists_reasons(self):
        result = validate_extraction("nothing here")
        error = ExtractionValidationError(result)
        assert "No JSON object found" in str(error)
        assert error.result is result

    def test_legacy_flat_layout_is_wrapped(self):
        raw = {
            "account_info": {"institution_name": "Robinhood", "account_number": "5555"},
            "transactions": [_tx()],
            "positions": [{"snapshot_date": "2024-01-31", "symbol": "AAPL", "quantity": 1}],
        }
        result = validate_extraction(raw)
        assert result.valid
        assert len(result.extraction.accounts) == 1
        assert result.extraction.accounts[0].account_info.account_number == "5555"
        assert result.extraction.document.institution_name == "Robinhood"
        assert "Wrapped top-level data into single account entry" in result.coercions

    def test_missing_schema_version_is_coerced(self):
        raw = dict(SCHWAB_RESPONSE)
        del raw["schema_version"]
        result = validate_extraction(raw)
        assert result.valid
        assert any("schema_version" in c for c in result.coercions)


# =============================================================================
# Line Items
# =============================================================================

class TestLineItems:
    """Per-item coercion and dropping."""

    def test_bad_item_is_dropped_not_fatal(self):
        raw = _doc_with_transactions(_tx(), _tx(transaction_date="not a date"), _tx(action=""))
        result = validate_extraction(raw)
        assert result.valid
        assert len(result.extraction.accounts[0].transactions) == 1
        skipped = [w for w in result.warnings if w.message.startswith("Skipped")]
        assert len(skipped) == 2

    def test_position_missing_symbol_or_quantity_is_dropped(self):
        raw = {
            "accounts": [{
                "positions": [
                    {"snapshot_date": "2024-01-31", "symbol": "AAPL", "quantity": "10"},
                    {"snapshot_date": "2024-01-31", "quantity": 5},
                    {"snapshot_date": "2024-01-31", "symbol": "MSFT"},
                ],
            }],
        }
        result = validate_extraction(raw)
        assert [p.symbol for p in result.extraction.accounts[0].positions] == ["AAPL"]

    def test_total_amount_computed_from_quantity_and_price(self):
        raw = _doc_with_transactions(_tx(total_amount=None, quantity=4, price_per_share="$25.50"))
        tx = validate_extraction(raw).extraction.accounts[0].transactions[0]
        assert tx.total_amount == Decimal("-102.00")

    def test_total_amount_never_null(self):
        raw = _doc_with_transactions(
            _tx(total_amount=None, quantity=None, price_per_share=None, action="dividend"),
            _tx(total_amount="(12.34)", action="fee"),
        )
        transactions = validate_extraction(raw).extraction.accounts[0].transactions
        assert [t.total_amount for t in transactions] == [Decimal("0"), Decimal("-12.34")]
        assert all(t.total_amount.is_finite() for t in transactions)

    def test_dates_normalized_with_coercion_note(self):
        raw = _doc_with_transactions(_tx(transaction_date="01/10/2024"))
        result = validate_extraction(raw)
        assert result.extraction.accounts[0].transactions[0].transaction_date == date(2024, 1, 10)
        assert any("coerced to 2024-01-10" in c for c in result.coercions)

    def test_unknown_action_falls_back_to_other(self):
        raw = _doc_with_transactions(_tx(action="mystery code"))
        result = validate_extraction(raw)
        assert result.extraction.accounts[0].transactions[0].action == TransactionAction.OTHER
        assert any('"mystery code" not recognized' in c for c in result.coercions)

    def test_account_number_and_enums_coerced(self):
        raw = {
            "accounts": [{
                "account_info": {"account_number": 987654, "account_type": "Traditional IRA"},
                "positions": [
                    {"snapshot_date": "2024-01-31", "symbol": "BND", "quantity": 3, "asset_type": "bond"},
                ],
            }],
            "confidence": "HIGH",
        }
        extraction = validate_extraction(raw).extraction
        info = extraction.accounts[0].account_info
        assert info.account_number == "987654"
        assert info.account_type == AccountType.IRA
        assert extraction.accounts[0].positions[0].asset_type == AssetType.FIXED_INCOME
        assert extraction.confidence == Confidence.HIGH


# =============================================================================
# Document-Level Behavior
# =============================================================================

class TestDocument:

    def test_empty_document_is_valid_with_warning(self):
        result = validate_extraction('{"schema_version": 1, "accounts": [], "unallocated_positions": []}')
        assert result.valid
        assert result.extraction.is_empty
        assert any("no accounts" in w.message for w in result.warnings)

    def test_round_trip_has_no_further_coercions(self):
        first = validate_extraction(json.dumps(SCHWAB_RESPONSE))
        assert first.valid

        serialized = first.extraction.model_dump(mode="json")
        second = validate_extraction(json.dumps(serialized))

        assert second.valid
        assert second.coercions == []
        assert second.extraction == first.extraction

    def test_round_trip_from_parsed_object(self):
        first = validate_extraction(SCHWAB_RESPONSE)
        second = validate_extraction(first.extraction.model_dump(mode="json"))
        assert second.coercions == []
        assert second.extraction == first.extraction

    def test_round_trip_keeps_high_precision_values(self):
        raw = copy.deepcopy(SCHWAB_RESPONSE)
        buy = raw["accounts"][0]["transactions"][0]
        buy.update(quantity="10.123456789", price_per_share="187.654321987")
        del buy["total_amount"]
        raw["accounts"][1]["balances"][0]["liquidation_value"] = "12345678901234567.89"

        first = validate_extraction(json.dumps(raw))
        computed = first.extraction.accounts[0].transactions[0].total_amount
        assert computed == -(Decimal("10.123456789") * Decimal("187.654321987"))

        second = validate_extraction(first.extraction.model_dump_json())

        assert second.valid
        assert second.coercions == []
        assert second.extraction == first.extraction
        assert second.extraction.accounts[0].transactions[0].total_amount == computed
        balance = second.extraction.accounts[1].balances[0]
        assert balance.liquidation_value == Decimal("12345678901234567.89")

    def test_formatted_total_string_is_a_coercion(self):
        raw = copy.deepcopy(SCHWAB_RESPONSE)
        raw["accounts"][0]["transactions"][1]["total_amount"] = "$1,030.00"
        result = validate_extraction(raw)
        assert result.extraction.accounts[0].transactions[1].total_amount == Decimal("1030.00")
        assert "accounts[0].transactions[1].total_amount coerced from string to number" in result.coercions

    def test_notes_string_becomes_list(self):
        raw = dict(SCHWAB_RESPONSE, notes="Two accounts on one statement")
        result = validate_extraction(raw)
        assert result.extraction.notes == ["Two accounts on one statement"]
