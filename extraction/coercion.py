"""Enum normalization for extraction output.

Extraction models rarely spell enum values exactly as the schema does.
Broker exports use their own transaction codes ("BTO", "CDIV", "ACATI"),
and free text uses synonyms ("purchase", "Traditional IRA"). These tables
map the spellings seen in practice onto the closed enums.

Keys are normalized before lookup:
- actions / account types / document types: lower-case, runs of
  whitespace or hyphens replaced with "_"
- asset types: upper-case, same separator rule
"""

import re
from typing import Optional

from core.models.extraction import (
    AccountType,
    AssetType,
    Confidence,
    DocumentType,
    TransactionAction,
)


A = TransactionAction

ACTION_ALIASES = {
    # Plain-language synonyms
    "purchase": A.BUY,
    "bought": A.BUY,
    "buy_to_open": A.BUY,
    "sale": A.SELL,
    "sold": A.SELL,
    "sell_to_close": A.SELL,
    "short_sale": A.SELL_SHORT,
    "div": A.DIVIDEND,
    "cash_dividend": A.DIVIDEND,
    "qualified_dividend": A.DIVIDEND,
    "int": A.INTEREST,
    "bank_interest": A.INTEREST,
    "stock_lending": A.INTEREST,
    "deposit": A.TRANSFER_IN,
    "acat_transfer": A.TRANSFER_IN,
    "withdrawal": A.TRANSFER_OUT,
    "transfer": A.JOURNAL,
    "security_transfer": A.JOURNAL,
    "internal_transfer": A.JOURNAL,
    "journaled_shares": A.JOURNAL,
    "roth_conversion": A.JOURNAL,
    "service_fee": A.FEE,
    "adr_fee": A.FEE,
    "adr_mgmt_fee": A.FEE,
    "reinvest_shares": A.REINVESTMENT,
    "long_term_cap_gain_reinvest": A.REINVESTMENT,
    "drip": A.REINVESTMENT,
    "dividend_reinvestment": A.REINVESTMENT,
    "forward_split": A.STOCK_SPLIT,
    "reverse_split": A.STOCK_SPLIT,
    "acquisition": A.MERGER,
    "spin_off": A.SPINOFF,
    "misc_cash_entry": A.OTHER,

    # Robinhood activity codes
    "bto": A.BUY,
    "stc": A.SELL,
    "sto": A.SELL_SHORT,
    "btc": A.BUY_TO_COVER,
    "cdiv": A.DIVIDEND,
    "slip": A.INTEREST,
    "ach": A.TRANSFER_IN,
    "acati": A.TRANSFER_IN,
    "acato": A.TRANSFER_OUT,
    "jnls": A.JOURNAL,
    "t/a": A.JOURNAL,
    "gold": A.FEE,
    "gdbp": A.FEE,
    "soff": A.SPINOFF,
    "spl": A.STOCK_SPLIT,
    "cil": A.OTHER,
    "crrd": A.OTHER,
    "cfri": A.OTHER,
    "futswp": A.OTHER,
    "mtch": A.OTHER,
    "gmpc": A.OTHER,
    "dcf": A.OTHER,

    # Schwab export descriptions
    "wire_in": A.TRANSFER_IN,
    "ach_in": A.TRANSFER_IN,
    "wire_out": A.TRANSFER_OUT,
    "ach_out": A.TRANSFER_OUT,
    "margin_interest": A.INTEREST,
    "foreign_tax_paid": A.FEE,
    "return_of_capital": A.DIVIDEND,
}

ASSET_TYPE_ALIASES = {
    "STOCK": AssetType.EQUITY,
    "STOCKS": AssetType.EQUITY,
    "BOND": AssetType.FIXED_INCOME,
    "BONDS": AssetType.FIXED_INCOME,
    "FUND": AssetType.MUTUAL_FUND,
    "MONEY_MARKET": AssetType.CASH_EQUIVALENT,
    "CASH": AssetType.CASH_EQUIVALENT,
}

ACCOUNT_TYPE_ALIASES = {
    "brokerage": AccountType.INDIVIDUAL,
    "traditional_ira": AccountType.IRA,
    "trad_ira": AccountType.IRA,
    "solo_401k": AccountType.K401,
    "solo_401(k)": AccountType.K401,
    "401(k)": AccountType.K401,
    "heloc_loan": AccountType.HELOC,
    "credit": AccountType.CREDIT_CARD,
    "loan": AccountType.AUTO_LOAN,
    "property": AccountType.REAL_ESTATE,
}

_SEPARATORS = re.compile(r"[\s-]+")


def _enum_key(value: str) -> str:
    return _SEPARATORS.sub("_", value.strip().lower())


def normalize_symbol(value) -> Optional[str]:
    """Trim and upper-case a ticker; placeholder values become None."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    if trimmed in ("", "---", "N/A"):
        return None
    return trimmed.upper()


def normalize_action(value) -> Optional[TransactionAction]:
    """Map an action spelling or broker code to a TransactionAction.

    Returns None when the value is not a string or is not recognized; the
    validator decides how to treat unknown values.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    key = _enum_key(value)
    try:
        return TransactionAction(key)
    except ValueError:
        return ACTION_ALIASES.get(key)


def normalize_asset_type(value) -> Optional[AssetType]:
    if not isinstance(value, str):
        return None
    key = _SEPARATORS.sub("_", value.strip().upper())
    try:
        return AssetType(key)
    except ValueError:
        return ASSET_TYPE_ALIASES.get(key)


def normalize_account_type(value) -> Optional[AccountType]:
    if not isinstance(value, str):
        return None
    key = _enum_key(value)
    try:
        return AccountType(key)
    except ValueError:
        return ACCOUNT_TYPE_ALIASES.get(key)


def normalize_document_type(value) -> Optional[DocumentType]:
    if not isinstance(value, str):
        return None
    try:
        return DocumentType(_enum_key(value))
    except ValueError:
        return None


def normalize_confidence(value) -> Confidence:
    """Confidence level, defaulting to low for anything unrecognized."""
    if not isinstance(value, str):
        return Confidence.LOW
    try:
        return Confidence(value.strip().lower())
    except ValueError:
        return Confidence.LOW


def optional_string(value) -> Optional[str]:
    """Non-empty stripped string, else None."""
    if not isinstance(value, str):
        return None
    stripped = value.strip()
    return stripped or None
