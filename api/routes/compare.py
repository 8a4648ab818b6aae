"""Dual-extraction comparison endpoint."""

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from extraction.validator import validate_extraction
from reconciliation.compare import ComparisonResult, compare_extractions


router = APIRouter()


class CompareRequest(BaseModel):
    """Two raw extraction responses for the same document."""
    primary_raw: str
    verification_raw: str


@router.post("", response_model=ComparisonResult)
def compare(request: CompareRequest) -> ComparisonResult:
    """Compare a primary extraction against a verification extraction."""
    documents = []
    for label, raw in (("primary", request.primary_raw), ("verification", request.verification_raw)):
        result = validate_extraction(raw)
        if not result.valid or result.extraction is None:
            raise HTTPException(
                status_code=422,
                detail={
                    "message": f"{label} extraction failed validation",
                    "errors": [issue.model_dump(mode="json") for issue in result.errors],
                },
            )
        documents.append(result.extraction)

    return compare_extractions(documents[0], documents[1])
