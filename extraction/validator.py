"""Extraction validator - raw model text to a typed ExtractionDocument.

Extraction model output is unreliable rather than hostile, so the
validator salvages as much of a partially-correct response as it can:

- Structural failures (no JSON object, unparsable JSON, top-level value not
  an object, ``accounts`` not an array) fail the attempt: ``valid=False``
  and ``extraction=None``.
- A malformed line item (transaction, position, balance) is dropped and
  reported as a warning; the rest of the document survives.
- Every value that had to be rewritten (date formats, action aliases,
  computed totals, wrapped legacy layouts) is reported as a coercion.

Exposes:
- validate_extraction(raw) -> ValidationResult
"""

import json
import re
from decimal import Decimal
from typing import Any, List, Optional, Union

from pydantic import BaseModel, Field

from core.models.extraction import (
    CURRENT_SCHEMA_VERSION,
    AccountEntry,
    AccountInfo,
    Balance,
    DocumentMetadata,
    DocumentTotals,
    ExtractionDocument,
    Position,
    Transaction,
    TransactionAction,
    parse_date,
    parse_decimal,
)
from core.observability.logging import get_logger
from extraction.coercion import (
    normalize_account_type,
    normalize_action,
    normalize_asset_type,
    normalize_confidence,
    normalize_document_type,
    normalize_symbol,
    optional_string,
)


logger = get_logger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```[A-Za-z0-9_-]*[ \t]*\n?")
_FENCE_CLOSE_RE = re.compile(r"\n?```\s*$")

# Actions whose computed quantity x price total is money leaving the account
_OUTFLOW_ACTIONS = {TransactionAction.BUY, TransactionAction.BUY_TO_COVER}


# =============================================================================
# Result Models
# =============================================================================

class ValidationIssue(BaseModel):
    """One error or warning raised while validating."""
    path: str
    message: str
    value: Optional[Any] = None


class ValidationResult(BaseModel):
    """Outcome of validating one raw extraction response."""
    valid: bool
    extraction: Optional[ExtractionDocument] = None
    errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[ValidationIssue] = Field(default_factory=list)
    coercions: List[str] = Field(default_factory=list)


class ExtractionValidationError(ValueError):
    """Raised when a caller needs a document but validation failed structurally."""

    def __init__(self, result: ValidationResult):
        self.result = result
        reasons = "; ".join(f"{e.path or '<root>'}: {e.message}" for e in result.errors)
        super().__init__(f"Extraction failed validation: {reasons or 'no document produced'}")


# =============================================================================
# Utility Functions
# =============================================================================

def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if present."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = _FENCE_OPEN_RE.sub("", stripped, count=1)
        stripped = _FENCE_CLOSE_RE.sub("", stripped, count=1)
    return stripped.strip()


def _preview(value: Any, limit: int = 200) -> str:
    text = json.dumps(value, default=str)
    return text if len(text) <= limit else text[:limit] + "..."


# =============================================================================
# Validator
# =============================================================================

class ExtractionValidator:
    """Single-use validator; collects errors, warnings and coercions as it walks."""

    def __init__(self):
        self.errors: List[ValidationIssue] = []
        self.warnings: List[ValidationIssue] = []
        self.coercions: List[str] = []

    # -------------------------------------------------------------------------
    # Recording helpers
    # -------------------------------------------------------------------------

    def _error(self, path: str, message: str, value: Any = None):
        self.errors.append(ValidationIssue(path=path, message=message, value=value))

    def _warn(self, path: str, message: str):
        self.warnings.append(ValidationIssue(path=path, message=message))

    def _skip(self, path: str, message: str, value: Any):
        """Record a dropped line item."""
        self.warnings.append(ValidationIssue(
            path=path,
            message=f"Skipped: {message} (value: {_preview(value)})",
        ))

    def _coerce(self, note: str):
        self.coercions.append(note)

    def _result(self, extraction: Optional[ExtractionDocument]) -> ValidationResult:
        return ValidationResult(
            valid=not self.errors and extraction is not None,
            extraction=extraction if not self.errors else None,
            errors=self.errors,
            warnings=self.warnings,
            coercions=self.coercions,
        )

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    def validate(self, raw: Union[str, dict]) -> ValidationResult:
        if isinstance(raw, dict):
            return self._result(self._validate_document(raw))

        if not isinstance(raw, str):
            self._error("", "Expected text or object", type(raw).__name__)
            return self._result(None)

        text = strip_code_fences(raw)

        if not text.startswith("{"):
            start = text.find("{")
            end = text.rfind("}")
            if start < 0 or end <= start:
                self._error("", "No JSON object found", text[:200])
                return self._result(None)
            text = text[start:end + 1]
            self._coerce("Extracted JSON object from surrounding text")

        try:
            parsed = json.loads(text, parse_float=Decimal)
        except json.JSONDecodeError as e:
            self._error("", f"Invalid JSON: {e.msg} at line {e.lineno} column {e.colno}", text[:200])
            return self._result(None)

        if not isinstance(parsed, dict):
            self._error("", "Top-level value must be an object", type(parsed).__name__)
            return self._result(None)

        return self._result(self._validate_document(parsed))

    # -------------------------------------------------------------------------
    # Document
    # -------------------------------------------------------------------------

    def _validate_document(self, raw: dict) -> Optional[ExtractionDocument]:
        version = raw.get("schema_version")
        if version is None:
            self._coerce(f"Added missing schema_version ({CURRENT_SCHEMA_VERSION})")
        elif version != CURRENT_SCHEMA_VERSION:
            self._warn(
                "schema_version",
                f"Unexpected schema_version {version!r}, expected {CURRENT_SCHEMA_VERSION}",
            )

        metadata = self._validate_metadata(raw)

        accounts_raw = raw.get("accounts")
        accounts: List[AccountEntry] = []
        if accounts_raw is None:
            if any(key in raw for key in ("transactions", "positions", "balances")):
                legacy = {
                    "account_info": raw.get("account_info"),
                    "transactions": raw.get("transactions") or [],
                    "positions": raw.get("positions") or [],
                    "balances": raw.get("balances") or [],
                }
                self._coerce("Wrapped top-level data into single account entry")
                account = self._validate_account(legacy, "accounts[0]")
                if account is not None:
                    accounts.append(account)
        elif not isinstance(accounts_raw, list):
            self._error("accounts", "Expected array", type(accounts_raw).__name__)
            return None
        else:
            for i, item in enumerate(accounts_raw):
                account = self._validate_account(item, f"accounts[{i}]")
                if account is not None:
                    accounts.append(account)

        unallocated = self._validate_items(
            raw.get("unallocated_positions"), "unallocated_positions", self._validate_position
        )

        totals = None
        totals_raw = raw.get("document_totals")
        if isinstance(totals_raw, dict):
            totals = DocumentTotals(
                total_value=parse_decimal(totals_raw.get("total_value")),
                total_day_change=parse_decimal(totals_raw.get("total_day_change")),
                total_day_change_pct=parse_decimal(totals_raw.get("total_day_change_pct")),
            )
        elif totals_raw is not None:
            self._warn("document_totals", "Expected object, ignoring")

        notes_raw = raw.get("notes")
        if isinstance(notes_raw, list):
            notes = [str(n) for n in notes_raw if n is not None]
        elif isinstance(notes_raw, str):
            notes = [notes_raw] if notes_raw.strip() else []
            self._coerce("Converted notes string to list")
        else:
            notes = []

        extraction = ExtractionDocument(
            schema_version=CURRENT_SCHEMA_VERSION,
            document=metadata,
            accounts=accounts,
            unallocated_positions=unallocated,
            confidence=normalize_confidence(raw.get("confidence")),
            document_totals=totals,
            notes=notes,
        )

        if extraction.is_empty:
            self._warn("", "Extraction contains no accounts and no unallocated positions")
        if extraction.transaction_count + extraction.position_count + extraction.balance_count == 0:
            self._warn("", "Extraction contains no positions, transactions, or balances")

        return extraction

    def _validate_metadata(self, raw: dict) -> DocumentMetadata:
        doc_raw = raw.get("document")
        if isinstance(doc_raw, dict):
            return DocumentMetadata(
                institution_name=optional_string(doc_raw.get("institution_name")),
                document_type=normalize_document_type(doc_raw.get("document_type")),
                statement_start_date=parse_date(doc_raw.get("statement_start_date")),
                statement_end_date=parse_date(doc_raw.get("statement_end_date")),
            )

        if doc_raw is not None:
            self._warn("document", "Expected object, using defaults")
        self._coerce("Added missing document metadata block")

        # Legacy single-account layout carried these at the top level
        info = raw.get("account_info") if isinstance(raw.get("account_info"), dict) else {}
        return DocumentMetadata(
            institution_name=optional_string(info.get("institution_name")),
            document_type=normalize_document_type(raw.get("document_type")),
            statement_start_date=parse_date(raw.get("statement_start_date")),
            statement_end_date=parse_date(raw.get("statement_end_date")),
        )

    def _validate_items(self, raw_items: Any, path: str, validate_one) -> list:
        if raw_items is None:
            return []
        if not isinstance(raw_items, list):
            self._warn(path, f"Expected array, got {type(raw_items).__name__}; ignoring")
            return []
        items = []
        for i, item in enumerate(raw_items):
            validated = validate_one(item, f"{path}[{i}]")
            if validated is not None:
                items.append(validated)
        return items

    # -------------------------------------------------------------------------
    # Accounts & line items
    # -------------------------------------------------------------------------

    def _validate_account(self, raw: Any, path: str) -> Optional[AccountEntry]:
        if not isinstance(raw, dict):
            self._skip(path, "Expected object", type(raw).__name__)
            return None

        info_raw = raw.get("account_info")
        if isinstance(info_raw, dict):
            account_number = info_raw.get("account_number")
            if isinstance(account_number, (int, Decimal)) and not isinstance(account_number, bool):
                account_number = str(account_number)
            info = AccountInfo(
                account_number=optional_string(account_number),
                account_type=normalize_account_type(info_raw.get("account_type")),
                institution_name=optional_string(info_raw.get("institution_name")),
                account_nickname=optional_string(info_raw.get("account_nickname")),
                account_group=optional_string(info_raw.get("account_group")),
            )
        else:
            if info_raw is not None:
                self._warn(f"{path}.account_info", "Expected object, using defaults")
            info = AccountInfo()

        return AccountEntry(
            account_info=info,
            transactions=self._validate_items(
                raw.get("transactions"), f"{path}.transactions", self._validate_transaction
            ),
            positions=self._validate_items(
                raw.get("positions"), f"{path}.positions", self._validate_position
            ),
            balances=self._validate_items(
                raw.get("balances"), f"{path}.balances", self._validate_balance
            ),
        )

    def _validate_transaction(self, raw: Any, path: str) -> Optional[Transaction]:
        if not isinstance(raw, dict):
            self._skip(path, "Expected object", type(raw).__name__)
            return None

        raw_date = raw.get("transaction_date")
        tx_date = parse_date(raw_date)
        if tx_date is None:
            self._skip(f"{path}.transaction_date", "Required date in YYYY-MM-DD format", raw_date)
            return None
        if raw_date != tx_date.isoformat():
            self._coerce(f"{path}.transaction_date coerced to {tx_date.isoformat()}")

        raw_action = raw.get("action")
        action = normalize_action(raw_action)
        if action is None:
            if not isinstance(raw_action, str) or not raw_action.strip():
                self._skip(f"{path}.action", "Required action", raw_action)
                return None
            action = TransactionAction.OTHER
            self._coerce(f'{path}.action "{raw_action}" not recognized, using "other"')
        elif raw_action != action.value:
            self._coerce(f'{path}.action normalized from "{raw_action}" to "{action.value}"')

        symbol = normalize_symbol(raw.get("symbol"))

        description = optional_string(raw.get("description"))
        if description is None:
            description = symbol or action.value
            self._coerce(f"{path}.description defaulted to {description!r}")

        quantity = parse_decimal(raw.get("quantity"))
        price = parse_decimal(raw.get("price_per_share"))

        raw_total = raw.get("total_amount")
        total_amount = parse_decimal(raw_total)
        if total_amount is None:
            if quantity is not None and price is not None:
                total_amount = quantity * price
                if action in _OUTFLOW_ACTIONS and total_amount > 0:
                    total_amount = -total_amount
                self._coerce(f"{path}.total_amount computed from quantity * price")
            else:
                total_amount = Decimal("0")
                self._coerce(f"{path}.total_amount defaulted to 0")
        elif isinstance(raw_total, str) and raw_total.strip() != str(total_amount):
            # Plain decimal text is how high-precision amounts serialize
            self._coerce(f"{path}.total_amount coerced from string to number")

        return Transaction(
            transaction_date=tx_date,
            settlement_date=parse_date(raw.get("settlement_date")),
            symbol=symbol,
            cusip=optional_string(raw.get("cusip")),
            asset_type=normalize_asset_type(raw.get("asset_type")),
            asset_subtype=optional_string(raw.get("asset_subtype")),
            description=description,
            action=action,
            quantity=quantity,
            price_per_share=price,
            total_amount=total_amount,
            fees=parse_decimal(raw.get("fees")),
            commission=parse_decimal(raw.get("commission")),
        )

    def _validate_position(self, raw: Any, path: str) -> Optional[Position]:
        if not isinstance(raw, dict):
            self._skip(path, "Expected object", type(raw).__name__)
            return None

        raw_date = raw.get("snapshot_date")
        snapshot_date = parse_date(raw_date)
        if snapshot_date is None:
            self._skip(f"{path}.snapshot_date", "Required date in YYYY-MM-DD format", raw_date)
            return None

        symbol = normalize_symbol(raw.get("symbol"))
        if symbol is None:
            self._skip(f"{path}.symbol", "Required string", raw.get("symbol"))
            return None

        quantity = parse_decimal(raw.get("quantity"))
        if quantity is None:
            self._skip(f"{path}.quantity", "Required number", raw.get("quantity"))
            return None

        return Position(
            snapshot_date=snapshot_date,
            symbol=symbol,
            cusip=optional_string(raw.get("cusip")),
            asset_type=normalize_asset_type(raw.get("asset_type")),
            asset_subtype=optional_string(raw.get("asset_subtype")),
            description=optional_string(raw.get("description")),
            quantity=quantity,
            short_quantity=parse_decimal(raw.get("short_quantity")),
            average_cost_basis=parse_decimal(raw.get("average_cost_basis")),
            market_price_per_share=parse_decimal(raw.get("market_price_per_share")),
            market_value=parse_decimal(raw.get("market_value")),
            cost_basis_total=parse_decimal(raw.get("cost_basis_total")),
            unrealized_profit_loss=parse_decimal(raw.get("unrealized_profit_loss")),
            unrealized_profit_loss_pct=parse_decimal(raw.get("unrealized_profit_loss_pct")),
            day_change_amount=parse_decimal(raw.get("day_change_amount")),
            day_change_pct=parse_decimal(raw.get("day_change_pct")),
        )

    def _validate_balance(self, raw: Any, path: str) -> Optional[Balance]:
        if not isinstance(raw, dict):
            self._skip(path, "Expected object", type(raw).__name__)
            return None

        raw_date = raw.get("snapshot_date")
        snapshot_date = parse_date(raw_date)
        if snapshot_date is None:
            self._skip(f"{path}.snapshot_date", "Required date in YYYY-MM-DD format", raw_date)
            return None

        return Balance(
            snapshot_date=snapshot_date,
            liquidation_value=parse_decimal(raw.get("liquidation_value")),
            cash_balance=parse_decimal(raw.get("cash_balance")),
            available_funds=parse_decimal(raw.get("available_funds")),
            total_cash=parse_decimal(raw.get("total_cash")),
            equity=parse_decimal(raw.get("equity")),
            long_market_value=parse_decimal(raw.get("long_market_value")),
            buying_power=parse_decimal(raw.get("buying_power")),
        )


# =============================================================================
# Public API
# =============================================================================

def validate_extraction(raw: Union[str, dict]) -> ValidationResult:
    """Validate raw extraction model output.

    Args:
        raw: Model response text (may be fenced or wrapped in prose), or an
            already-parsed JSON object

    Returns:
        ValidationResult with the typed document (or None on structural
        failure) plus errors, warnings and coercion notes
    """
    result = ExtractionValidator().validate(raw)

    extraction = result.extraction
    logger.info(
        "Validated extraction",
        extra_fields={
            "valid": result.valid,
            "errors": len(result.errors),
            "warnings": len(result.warnings),
            "coercions": len(result.coercions),
            "accounts": len(extraction.accounts) if extraction else 0,
            "positions": extraction.position_count if extraction else 0,
            "transactions": extraction.transaction_count if extraction else 0,
        },
    )
    return result
