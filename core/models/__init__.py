"""Core data models - the typed extraction document.

This package contains the models shared by every pipeline stage.
"""

from core.models.extraction import (
    # Value types
    DecimalValue,
    OptionalDecimal,
    DateValue,
    OptionalDate,
    parse_date,
    parse_decimal,

    # Enums
    TransactionAction,
    AssetType,
    AccountType,
    DocumentType,
    Confidence,
    AccountCategory,
    LIABILITY_ACCOUNT_TYPES,
    CURRENT_SCHEMA_VERSION,
    account_category_for,

    # Document
    ExtractionBase,
    Transaction,
    Position,
    Balance,
    AccountInfo,
    AccountEntry,
    DocumentMetadata,
    DocumentTotals,
    ExtractionDocument,
)

__all__ = [
    "DecimalValue",
    "OptionalDecimal",
    "DateValue",
    "OptionalDate",
    "parse_date",
    "parse_decimal",
    "TransactionAction",
    "AssetType",
    "AccountType",
    "DocumentType",
    "Confidence",
    "AccountCategory",
    "LIABILITY_ACCOUNT_TYPES",
    "CURRENT_SCHEMA_VERSION",
    "account_category_for",
    "ExtractionBase",
    "Transaction",
    "Position",
    "Balance",
    "AccountInfo",
    "AccountEntry",
    "DocumentMetadata",
    "DocumentTotals",
    "ExtractionDocument",
]
