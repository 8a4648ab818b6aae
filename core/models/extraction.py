"""Extraction document models - the typed shape of one statement extraction.

These models represent what the extraction model reported about a
statement: accounts, their transactions/positions/balances, positions that
could not be attributed to a single account, and document-level totals.

The value parsers below are shared with the validator in
``extraction.validator`` so that a document validated from raw model output
and a document re-loaded from its own JSON serialization parse identically.
"""

from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterator, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.functional_serializers import PlainSerializer
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


CURRENT_SCHEMA_VERSION = 1


# =============================================================================
# Enums
# =============================================================================

class TransactionAction(str, Enum):
    BUY = "buy"
    SELL = "sell"
    BUY_TO_COVER = "buy_to_cover"
    SELL_SHORT = "sell_short"
    DIVIDEND = "dividend"
    CAPITAL_GAIN_LONG = "capital_gain_long"
    CAPITAL_GAIN_SHORT = "capital_gain_short"
    INTEREST = "interest"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    FEE = "fee"
    COMMISSION = "commission"
    STOCK_SPLIT = "stock_split"
    MERGER = "merger"
    SPINOFF = "spinoff"
    REINVESTMENT = "reinvestment"
    JOURNAL = "journal"
    OTHER = "other"


class AssetType(str, Enum):
    EQUITY = "EQUITY"
    OPTION = "OPTION"
    MUTUAL_FUND = "MUTUAL_FUND"
    FIXED_INCOME = "FIXED_INCOME"
    ETF = "ETF"
    CASH_EQUIVALENT = "CASH_EQUIVALENT"
    REAL_ESTATE = "REAL_ESTATE"
    PRECIOUS_METAL = "PRECIOUS_METAL"
    VEHICLE = "VEHICLE"
    JEWELRY = "JEWELRY"
    COLLECTIBLE = "COLLECTIBLE"
    OTHER_ASSET = "OTHER_ASSET"


class AccountType(str, Enum):
    INDIVIDUAL = "individual"
    IRA = "ira"
    ROTH_IRA = "roth_ira"
    JOINT = "joint"
    TRUST = "trust"
    K401 = "401k"
    B403 = "403b"
    PLAN_529 = "529"
    CUSTODIAL = "custodial"
    MARGIN = "margin"
    CHECKING = "checking"
    SAVINGS = "savings"
    CREDIT_CARD = "credit_card"
    MORTGAGE = "mortgage"
    HELOC = "heloc"
    AUTO_LOAN = "auto_loan"
    REAL_ESTATE = "real_estate"
    VIEW_ONLY = "view_only"
    SEP_IRA = "sep_ira"
    SIMPLE_IRA = "simple_ira"
    ROLLOVER_IRA = "rollover_ira"
    INHERITED_IRA = "inherited_ira"
    EDUCATION = "education"
    HSA = "hsa"
    OTHER = "other"


class DocumentType(str, Enum):
    PORTFOLIO_SUMMARY = "portfolio_summary"
    TRANSACTION_EXPORT = "transaction_export"
    TAX_1099 = "tax_1099"
    STATEMENT = "statement"
    CSV_EXPORT = "csv_export"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class AccountCategory(str, Enum):
    """Ledger-side grouping derived from the account type."""
    BROKERAGE = "brokerage"
    BANKING = "banking"
    CREDIT = "credit"
    LOAN = "loan"
    REAL_ESTATE = "real_estate"


LIABILITY_ACCOUNT_TYPES = {
    AccountType.MORTGAGE,
    AccountType.HELOC,
    AccountType.CREDIT_CARD,
    AccountType.AUTO_LOAN,
}

_CATEGORY_BY_TYPE = {
    AccountType.CHECKING: AccountCategory.BANKING,
    AccountType.SAVINGS: AccountCategory.BANKING,
    AccountType.CREDIT_CARD: AccountCategory.CREDIT,
    AccountType.MORTGAGE: AccountCategory.LOAN,
    AccountType.HELOC: AccountCategory.LOAN,
    AccountType.AUTO_LOAN: AccountCategory.LOAN,
    AccountType.REAL_ESTATE: AccountCategory.REAL_ESTATE,
}


def account_category_for(account_type: Optional[AccountType]) -> AccountCategory:
    """Map an account type to its ledger category (default brokerage)."""
    if account_type is None:
        return AccountCategory.BROKERAGE
    return _CATEGORY_BY_TYPE.get(AccountType(account_type), AccountCategory.BROKERAGE)


# =============================================================================
# Value Parsers (handle various input formats from LLM extraction)
# =============================================================================

_MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_ISO_DATE_RE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})(?:[T ].*)?$")
_AS_OF_RE = re.compile(r"\bas\s+of\s+(\d{1,2})/(\d{1,2})/(\d{4})\b", re.IGNORECASE)
_US_DATE_RE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})\b")
_DAY_MONTH_YEAR_RE = re.compile(r"^(\d{1,2})[-\s]([A-Za-z]{3,9})\.?[-\s,]+(\d{4})$")
_MONTH_DAY_YEAR_RE = re.compile(r"^([A-Za-z]{3,9})\.?\s+(\d{1,2}),?\s+(\d{4})$")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _month_number(name: str) -> Optional[int]:
    return _MONTHS.get(name[:3].lower())


def parse_date(value) -> Optional[date]:
    """Parse a calendar date from the formats extraction models produce.

    Accepts ISO dates and timestamps, US ``M/D/YYYY`` (optionally followed
    by text), an "as of M/D/YYYY" qualifier anywhere in the string,
    ``D-Mon-YYYY`` / ``D Mon YYYY`` and ``Mon D, YYYY``.

    Returns:
        The parsed date, or None when the value is empty or unrecognized.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    m = _ISO_DATE_RE.match(s)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _AS_OF_RE.search(s)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))

    m = _US_DATE_RE.match(s)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))

    m = _DAY_MONTH_YEAR_RE.match(s)
    if m:
        month = _month_number(m.group(2))
        if month:
            return _safe_date(int(m.group(3)), month, int(m.group(1)))

    m = _MONTH_DAY_YEAR_RE.match(s)
    if m:
        month = _month_number(m.group(1))
        if month:
            return _safe_date(int(m.group(3)), month, int(m.group(2)))

    return None


def parse_decimal(value) -> Optional[Decimal]:
    """Parse a finite number from various formats.

    Strings may carry ``$``, ``,``, ``%`` and whitespace; ``(1,234.50)`` is
    accounting notation for a negative amount. Empty strings and a lone
    ``-`` mean "no value".

    Returns:
        Decimal value, or None for empty, non-numeric or non-finite input.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return Decimal(str(value))
    if not isinstance(value, str):
        return None

    s = re.sub(r"[\s$,%]", "", value)
    if s in ("", "-"):
        return None
    if s.startswith("(") and s.endswith(")"):
        s = "-" + s[1:-1]

    try:
        result = Decimal(s)
    except InvalidOperation:
        return None
    return result if result.is_finite() else None


def _serialize_decimal(value: Optional[Decimal]) -> Union[float, str, None]:
    """JSON number when a float holds the value exactly, else its decimal text."""
    if value is None:
        return None
    as_float = float(value)
    if math.isfinite(as_float) and Decimal(repr(as_float)) == value:
        return as_float
    return str(value)


# Annotated types for automatic parsing; money serializes without losing digits
DecimalValue = Annotated[
    Decimal,
    BeforeValidator(parse_decimal),
    PlainSerializer(_serialize_decimal, return_type=Union[float, str], when_used="json"),
]
OptionalDecimal = Annotated[
    Optional[Decimal],
    BeforeValidator(parse_decimal),
    PlainSerializer(_serialize_decimal, return_type=Union[float, str, None], when_used="json"),
]
DateValue = Annotated[date, BeforeValidator(parse_date)]
OptionalDate = Annotated[Optional[date], BeforeValidator(parse_date)]


# =============================================================================
# Base Model
# =============================================================================

class ExtractionBase(BaseModel):
    """Base model for all extraction document structures."""
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# Line Items
# =============================================================================

class Transaction(ExtractionBase):
    """One transaction line. ``total_amount`` is negative for money leaving the account."""
    transaction_date: DateValue
    settlement_date: OptionalDate = None
    symbol: Optional[str] = None
    cusip: Optional[str] = None
    asset_type: Optional[AssetType] = None
    asset_subtype: Optional[str] = None
    description: str
    action: TransactionAction
    quantity: OptionalDecimal = None
    price_per_share: OptionalDecimal = None
    total_amount: DecimalValue
    fees: OptionalDecimal = None
    commission: OptionalDecimal = None


class Position(ExtractionBase):
    """A point-in-time holding as stated by the document."""
    snapshot_date: DateValue
    symbol: str
    cusip: Optional[str] = None
    asset_type: Optional[AssetType] = None
    asset_subtype: Optional[str] = None
    description: Optional[str] = None
    quantity: DecimalValue
    short_quantity: OptionalDecimal = None
    average_cost_basis: OptionalDecimal = None
    market_price_per_share: OptionalDecimal = None
    market_value: OptionalDecimal = None
    cost_basis_total: OptionalDecimal = None
    unrealized_profit_loss: OptionalDecimal = None
    unrealized_profit_loss_pct: OptionalDecimal = None
    day_change_amount: OptionalDecimal = None
    day_change_pct: OptionalDecimal = None


class Balance(ExtractionBase):
    """Account-level balance figures at one point in time."""
    snapshot_date: DateValue
    liquidation_value: OptionalDecimal = None
    cash_balance: OptionalDecimal = None
    available_funds: OptionalDecimal = None
    total_cash: OptionalDecimal = None
    equity: OptionalDecimal = None
    long_market_value: OptionalDecimal = None
    buying_power: OptionalDecimal = None

    @property
    def cash(self) -> Optional[Decimal]:
        """Cash figure, preferring cash_balance over total_cash."""
        return self.cash_balance if self.cash_balance is not None else self.total_cash

    @property
    def equity_value(self) -> Optional[Decimal]:
        """Invested value, preferring equity over long_market_value."""
        return self.equity if self.equity is not None else self.long_market_value


# =============================================================================
# Accounts & Document
# =============================================================================

class AccountInfo(ExtractionBase):
    """Identity of one account as printed on the statement."""
    account_number: Optional[str] = None
    account_type: Optional[AccountType] = None
    institution_name: Optional[str] = None
    account_nickname: Optional[str] = None
    account_group: Optional[str] = None

    @property
    def is_liability(self) -> bool:
        return self.account_type in LIABILITY_ACCOUNT_TYPES


class AccountEntry(ExtractionBase):
    """One account and its line items. The lists are never null."""
    account_info: AccountInfo = Field(default_factory=AccountInfo)
    transactions: List[Transaction] = Field(default_factory=list)
    positions: List[Position] = Field(default_factory=list)
    balances: List[Balance] = Field(default_factory=list)

    @property
    def label(self) -> str:
        info = self.account_info
        return info.account_nickname or info.institution_name or "Unknown Account"

    @property
    def has_data(self) -> bool:
        return bool(self.transactions or self.positions or self.balances)

    def latest_balance(self) -> Optional[Balance]:
        """The balance with the latest snapshot date (last listed wins ties)."""
        if not self.balances:
            return None
        indexed = list(enumerate(self.balances))
        return max(indexed, key=lambda pair: (pair[1].snapshot_date, pair[0]))[1]


class DocumentMetadata(ExtractionBase):
    """Document-level metadata."""
    institution_name: Optional[str] = None
    document_type: Optional[DocumentType] = None
    statement_start_date: OptionalDate = None
    statement_end_date: OptionalDate = None


class DocumentTotals(ExtractionBase):
    """Totals printed by the document itself (used for integrity checks)."""
    total_value: OptionalDecimal = None
    total_day_change: OptionalDecimal = None
    total_day_change_pct: OptionalDecimal = None


class ExtractionDocument(ExtractionBase):
    """Root of a validated extraction (one per statement per extraction attempt)."""
    schema_version: int = CURRENT_SCHEMA_VERSION
    document: DocumentMetadata = Field(default_factory=DocumentMetadata)
    accounts: List[AccountEntry] = Field(default_factory=list)
    unallocated_positions: List[Position] = Field(default_factory=list)
    confidence: Confidence = Confidence.LOW
    document_totals: Optional[DocumentTotals] = None
    notes: List[str] = Field(default_factory=list)

    def iter_positions(self) -> Iterator[Position]:
        """All positions, per-account first, then unallocated."""
        for account in self.accounts:
            yield from account.positions
        yield from self.unallocated_positions

    @property
    def transaction_count(self) -> int:
        return sum(len(a.transactions) for a in self.accounts)

    @property
    def position_count(self) -> int:
        return sum(len(a.positions) for a in self.accounts) + len(self.unallocated_positions)

    @property
    def balance_count(self) -> int:
        return sum(len(a.balances) for a in self.accounts)

    @property
    def is_empty(self) -> bool:
        return not self.accounts and not self.unallocated_positions
