"""Statement endpoints.

Processing of extraction responses, quality checks, the fix cycle and
statement revert.
"""

import base64
import binascii
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from api.dependencies import get_extraction_client, get_store
from extraction.runner import ExtractionClient, SourceDocument
from extraction.validator import ExtractionValidationError
from ledger.cleanup import revert_statement
from ledger.models import CleanupResult, WriteTotals
from ledger.store import LedgerStore
from quality_check.models import QualityCheck, QualityCheckStatus
from quality_check.orchestrator import (
    QualityCheckNotFoundError,
    QualityCheckOrchestrator,
    StatementNotFoundError,
)
from reconciliation.models import IntegrityReport


router = APIRouter()


# =============================================================================
# Request / Response Models
# =============================================================================

class SourceRequest(BaseModel):
    """Uploaded document content."""
    filename: str
    file_type: str
    text_content: Optional[str] = None
    binary_b64: Optional[str] = Field(None, description="Base64-encoded PDF or image bytes")
    mime_type: Optional[str] = None

    def to_source(self) -> SourceDocument:
        binary = None
        if self.binary_b64:
            try:
                binary = base64.b64decode(self.binary_b64, validate=True)
            except binascii.Error:
                raise HTTPException(status_code=400, detail="binary_b64 is not valid base64")
        return SourceDocument(
            filename=self.filename,
            file_type=self.file_type,
            text_content=self.text_content,
            binary_content=binary,
            mime_type=self.mime_type,
        )


class ProcessRequest(BaseModel):
    """Request to process a raw extraction response for a statement."""
    user_id: str
    raw_text: str
    source: Optional[SourceRequest] = None


class ProcessResponse(BaseModel):
    statement_id: str
    linked_account_ids: List[str]
    totals: WriteTotals
    integrity: IntegrityReport
    quality_check: QualityCheck


class StatementResponse(BaseModel):
    """Statement record."""
    id: str
    user_id: str
    filename: Optional[str] = None
    file_type: Optional[str] = None
    parse_status: str
    parse_error: Optional[str] = None
    account_id: Optional[str] = None
    linked_account_ids: List[str] = []
    transactions_created: int = 0
    positions_created: int = 0
    statement_start_date: Optional[str] = None
    statement_end_date: Optional[str] = None
    account_mappings: Optional[Dict[str, Any]] = None
    extracted_data: Optional[Dict[str, Any]] = None
    confirmed_at: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def _orchestrator(store: LedgerStore, extractor: Optional[ExtractionClient] = None) -> QualityCheckOrchestrator:
    return QualityCheckOrchestrator(store, extractor)


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/{statement_id}", response_model=StatementResponse)
def get_statement(statement_id: str, store: LedgerStore = Depends(get_store)) -> StatementResponse:
    """Get a statement by ID."""
    statement = store.get_statement(statement_id)
    if statement is None:
        raise HTTPException(status_code=404, detail=f"Statement {statement_id} not found")
    return StatementResponse(**{k: v for k, v in statement.items() if k in StatementResponse.model_fields})


@router.post("/{statement_id}/process", response_model=ProcessResponse)
def process_statement(
    statement_id: str,
    request: ProcessRequest,
    store: LedgerStore = Depends(get_store),
) -> ProcessResponse:
    """Validate, write and quality-check a raw extraction response.

    Returns 422 with the validation errors when the response has no usable
    document.
    """
    source = request.source.to_source() if request.source else None
    try:
        result = _orchestrator(store).process_statement(
            request.user_id, statement_id, request.raw_text, source
        )
    except ExtractionValidationError as e:
        raise HTTPException(
            status_code=422,
            detail={
                "message": str(e),
                "errors": [issue.model_dump(mode="json") for issue in e.result.errors],
            },
        )

    return ProcessResponse(
        statement_id=statement_id,
        linked_account_ids=result.write_report.linked_account_ids,
        totals=result.write_report.totals,
        integrity=result.integrity,
        quality_check=result.quality_check,
    )


@router.get("/{statement_id}/quality-check", response_model=QualityCheck)
def get_quality_check(statement_id: str, store: LedgerStore = Depends(get_store)) -> QualityCheck:
    """Most recent quality check for a statement."""
    qc = _orchestrator(store).get_latest_quality_check(statement_id)
    if qc is None:
        raise HTTPException(status_code=404, detail=f"No quality check for statement {statement_id}")
    return qc


@router.post("/{statement_id}/quality-check", response_model=QualityCheck)
def run_quality_check(statement_id: str, store: LedgerStore = Depends(get_store)) -> QualityCheck:
    """Re-run the quality check against the current ledger state."""
    try:
        return _orchestrator(store).run_quality_check(statement_id)
    except StatementNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.post("/{statement_id}/quality-check/fix", response_model=QualityCheck)
def trigger_fix(
    statement_id: str,
    request: SourceRequest,
    store: LedgerStore = Depends(get_store),
    extractor: ExtractionClient = Depends(get_extraction_client),
) -> QualityCheck:
    """Run the single fix cycle for the statement's failed quality check."""
    orchestrator = _orchestrator(store, extractor)
    qc = orchestrator.get_latest_quality_check(statement_id)
    if qc is None:
        raise HTTPException(status_code=404, detail=f"No quality check for statement {statement_id}")
    if qc.check_status != QualityCheckStatus.FAILED:
        raise HTTPException(
            status_code=409,
            detail=f"Quality check is {qc.check_status.value}; only failed checks can be fixed",
        )

    try:
        return orchestrator.trigger_fix(qc.id, request.to_source())
    except (StatementNotFoundError, QualityCheckNotFoundError) as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{statement_id}/revert", response_model=CleanupResult)
def revert(statement_id: str, store: LedgerStore = Depends(get_store)) -> CleanupResult:
    """Remove everything a statement wrote to the ledger."""
    if store.get_statement(statement_id) is None:
        raise HTTPException(status_code=404, detail=f"Statement {statement_id} not found")
    return revert_statement(store, statement_id)
