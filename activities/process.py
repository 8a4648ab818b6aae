"""Statement processing activities.

Temporal activities wrapping the extraction client and the quality-check
orchestrator:
- extract_statement_activity: send a source document to the extraction model
- process_statement_activity: validate, match, write and check a response
- run_quality_check_activity: re-run the quality check for a statement
- trigger_fix_activity: one feedback-driven re-extraction cycle

Inputs and outputs are plain dataclasses so they serialize with Temporal's
default data converter. The ledger work is synchronous and runs in a thread.
"""

import asyncio
import base64
from dataclasses import dataclass
from typing import Optional

from temporalio import activity

from core.config import get_settings
from extraction.runner import ExtractionClient, OpenAIExtractionClient, SourceDocument
from ledger.store import LedgerStore
from quality_check.models import QualityCheck
from quality_check.orchestrator import QualityCheckOrchestrator


@dataclass
class SourceInput:
    """Serializable form of a source document.

    Attributes:
        filename: Original upload filename
        file_type: Upload type (pdf, csv, image, text, ...)
        text_content: Text content, if any
        binary_b64: Base64-encoded binary content (PDF, image)
        mime_type: MIME type of the binary content
    """
    filename: str
    file_type: str
    text_content: Optional[str] = None
    binary_b64: Optional[str] = None
    mime_type: Optional[str] = None

    def to_source(self) -> SourceDocument:
        return SourceDocument(
            filename=self.filename,
            file_type=self.file_type,
            text_content=self.text_content,
            binary_content=base64.b64decode(self.binary_b64) if self.binary_b64 else None,
            mime_type=self.mime_type,
        )


@dataclass
class ProcessStatementInput:
    """Input for process_statement_activity.

    Attributes:
        user_id: Statement owner
        statement_id: Statement to write (created if missing)
        raw_text: Raw extraction model response
        source: The document the response was extracted from
        db_path: Ledger database path (defaults to settings)
    """
    user_id: str
    statement_id: str
    raw_text: str
    source: Optional[SourceInput] = None
    db_path: Optional[str] = None


@dataclass
class ExtractStatementInput:
    source: SourceInput


@dataclass
class QualityCheckInput:
    statement_id: str
    db_path: Optional[str] = None


@dataclass
class TriggerFixInput:
    quality_check_id: str
    source: SourceInput
    db_path: Optional[str] = None


@dataclass
class QualityCheckOutput:
    """Quality check outcome returned to workflows.

    Attributes:
        statement_id: Checked statement
        quality_check_id: Quality check row id
        check_status: passed, failed, fixed or unresolved
        summary: Human-readable check summary
        error: Fix-attempt error, if any
    """
    statement_id: str
    quality_check_id: str
    check_status: str
    summary: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ProcessStatementOutput:
    statement_id: str
    accounts_processed: int
    accounts_created: int
    accounts_failed: int
    transactions_created: int
    snapshots_written: int
    integrity_passed: bool
    quality_check: QualityCheckOutput


# =============================================================================
# Helpers
# =============================================================================

def _store(db_path: Optional[str]) -> LedgerStore:
    store = LedgerStore(db_path or get_settings().ledger_db_path)
    store.init_db()
    return store


def build_extraction_client() -> ExtractionClient:
    """Extraction client used by the fix cycle."""
    return OpenAIExtractionClient()


def _qc_output(qc: QualityCheck) -> QualityCheckOutput:
    attempt = qc.latest_attempt
    return QualityCheckOutput(
        statement_id=qc.statement_id,
        quality_check_id=qc.id,
        check_status=qc.check_status.value,
        summary=qc.checks.summary if qc.checks else None,
        error=attempt.error if attempt else None,
    )


# =============================================================================
# Activities
# =============================================================================

@activity.defn
async def extract_statement_activity(input: ExtractStatementInput) -> str:
    """Send a source document to the extraction model and return its raw response."""
    activity.logger.info(f"Extracting {input.source.filename} ({input.source.file_type})")
    client = build_extraction_client()
    raw_text = await asyncio.to_thread(client.extract, input.source.to_source())
    activity.logger.info(f"Extraction returned {len(raw_text)} characters")
    return raw_text


@activity.defn
async def process_statement_activity(input: ProcessStatementInput) -> ProcessStatementOutput:
    """Validate, match, write and quality-check one extraction response.

    Raises:
        ExtractionValidationError: If the response has no usable document
    """
    activity.logger.info(f"Processing statement {input.statement_id}")

    orchestrator = QualityCheckOrchestrator(_store(input.db_path))
    source = input.source.to_source() if input.source else None
    result = await asyncio.to_thread(
        orchestrator.process_statement,
        input.user_id,
        input.statement_id,
        input.raw_text,
        source,
    )

    totals = result.write_report.totals
    activity.logger.info(
        f"Statement {input.statement_id} written: {totals.accounts_processed} accounts, "
        f"quality check {result.quality_check.check_status.value}"
    )
    return ProcessStatementOutput(
        statement_id=input.statement_id,
        accounts_processed=totals.accounts_processed,
        accounts_created=totals.accounts_created,
        accounts_failed=totals.accounts_failed,
        transactions_created=totals.transactions_created,
        snapshots_written=totals.snapshots_written,
        integrity_passed=result.integrity.passed,
        quality_check=_qc_output(result.quality_check),
    )


@activity.defn
async def run_quality_check_activity(input: QualityCheckInput) -> QualityCheckOutput:
    activity.logger.info(f"Running quality check for statement {input.statement_id}")
    orchestrator = QualityCheckOrchestrator(_store(input.db_path))
    qc = await asyncio.to_thread(orchestrator.run_quality_check, input.statement_id)
    return _qc_output(qc)


@activity.defn
async def trigger_fix_activity(input: TriggerFixInput) -> QualityCheckOutput:
    """Run the single fix cycle for a failed quality check."""
    activity.logger.info(f"Triggering fix for quality check {input.quality_check_id}")
    orchestrator = QualityCheckOrchestrator(_store(input.db_path), build_extraction_client())
    qc = await asyncio.to_thread(orchestrator.trigger_fix, input.quality_check_id, input.source.to_source())
    activity.logger.info(f"Fix finished: {qc.check_status.value}")
    return _qc_output(qc)
