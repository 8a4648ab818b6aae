"""Extraction package - model contract, client and output validation."""

from extraction.validator import (
    ExtractionValidationError,
    ValidationIssue,
    ValidationResult,
    validate_extraction,
)
from extraction.runner import (
    ExtractionClient,
    OpenAIExtractionClient,
    SourceDocument,
    extract_document,
    load_source,
)

__all__ = [
    "ExtractionValidationError",
    "ValidationIssue",
    "ValidationResult",
    "validate_extraction",
    "ExtractionClient",
    "OpenAIExtractionClient",
    "SourceDocument",
    "extract_document",
    "load_source",
]
