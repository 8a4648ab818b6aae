"""Compare two extraction responses for the same document.

Prints the discrepancies found between a primary and a verification
extraction, most severe first.

Usage:
    python scripts/compare_extractions.py primary.json verification.json [--json]
"""

import argparse
import sys
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from extraction.validator import ExtractionValidationError, validate_extraction
from reconciliation.compare import compare_extractions


def load_document(path: Path):
    result = validate_extraction(path.read_text(encoding="utf-8"))
    if not result.valid or result.extraction is None:
        raise ExtractionValidationError(result)
    return result.extraction


def main():
    parser = argparse.ArgumentParser(description="Compare primary and verification extractions")
    parser.add_argument("primary", type=Path, help="Primary extraction response")
    parser.add_argument("verification", type=Path, help="Verification extraction response")
    parser.add_argument("--json", action="store_true", help="Print the full result as JSON")
    args = parser.parse_args()

    try:
        primary = load_document(args.primary)
        verification = load_document(args.verification)
    except ExtractionValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    result = compare_extractions(primary, verification)

    if args.json:
        print(result.model_dump_json(indent=2))
    else:
        print("=" * 60)
        print(f"Agreement: {result.agreement.value}")
        print(
            f"Discrepancies: {result.summary.total} "
            f"({result.summary.errors} errors, {result.summary.warnings} warnings, {result.summary.infos} info)"
        )
        print("=" * 60)
        for d in result.discrepancies:
            print(f"[{d.severity.value.upper():7}] {d.category.value}: {d.description}")
            if d.primary_value is not None or d.verification_value is not None:
                print(f"          primary={d.primary_value} verification={d.verification_value}")

    return 1 if result.summary.errors else 0


if __name__ == "__main__":
    sys.exit(main())
