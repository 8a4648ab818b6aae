"""Quality-Check Orchestrator.

Runs a statement through validate -> match -> write -> check and drives the
quality-check state machine:

    running -> passed                      (statement completed)
    running -> failed                      (statement qc_failed)
    running -> unresolved                  (the check itself raised)
    failed  -> fixing -> fixed             (new document replaces the old one)
    failed  -> fixing -> unresolved        (ledger cleared, old document kept)

The fix cycle happens at most once per check: the failed checks are turned
into feedback, appended to the source payload and sent to the extraction
model; the statement's rows are cleared and the new response is written and
re-checked. Any exception inside the cycle ends in ``unresolved`` with the
error recorded on the fix attempt.
"""

import time
from datetime import datetime, timezone
from typing import List, Optional

from account_matcher import match_accounts
from core.models.extraction import ExtractionDocument
from core.observability.logging import get_logger, with_correlation
from core.observability.metrics import get_metrics
from extraction.runner import ExtractionClient, SourceDocument
from extraction.validator import ExtractionValidationError, validate_extraction
from ledger.cleanup import clear_statement_data
from ledger.store import LedgerStore
from ledger.writer import write_extraction
from quality_check.feedback import build_quality_fix_prompt, inject_feedback
from quality_check.models import (
    ALLOWED_TRANSITIONS,
    FixAttempt,
    FixAttemptStatus,
    InvalidTransitionError,
    ProcessingResult,
    QualityCheck,
    QualityCheckStatus,
    StatusTransition,
)
from reconciliation.integrity import check_integrity
from reconciliation.quality import run_quality_checks


logger = get_logger(__name__)


class StatementNotFoundError(LookupError):
    def __init__(self, statement_id: str):
        self.statement_id = statement_id
        super().__init__(f"Statement not found: {statement_id}")


class QualityCheckNotFoundError(LookupError):
    def __init__(self, quality_check_id: str):
        self.quality_check_id = quality_check_id
        super().__init__(f"Quality check not found: {quality_check_id}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class QualityCheckOrchestrator:
    """Coordinates processing and the quality-check lifecycle for statements.

    Args:
        store: Ledger store
        extractor: Extraction client used for the fix cycle (optional when
            only processing pre-extracted responses)
        concurrency: Writer worker count (defaults to settings)
    """

    def __init__(
        self,
        store: LedgerStore,
        extractor: Optional[ExtractionClient] = None,
        concurrency: Optional[int] = None,
    ):
        self.store = store
        self.extractor = extractor
        self.concurrency = concurrency

    # =========================================================================
    # Lookups
    # =========================================================================

    def _statement(self, statement_id: str) -> dict:
        statement = self.store.get_statement(statement_id)
        if statement is None:
            raise StatementNotFoundError(statement_id)
        return statement

    def get_quality_check(self, quality_check_id: str) -> QualityCheck:
        row = self.store.get_quality_check(quality_check_id)
        if row is None:
            raise QualityCheckNotFoundError(quality_check_id)
        return QualityCheck.from_row(row)

    def get_latest_quality_check(self, statement_id: str) -> Optional[QualityCheck]:
        row = self.store.get_latest_quality_check(statement_id)
        return QualityCheck.from_row(row) if row else None

    # =========================================================================
    # State Machine
    # =========================================================================

    def _transition(self, qc: QualityCheck, status: QualityCheckStatus) -> None:
        if status not in ALLOWED_TRANSITIONS[qc.check_status]:
            raise InvalidTransitionError(qc.check_status, status)
        qc.check_status = status
        qc.status_history.append(StatusTransition(status=status, at=_now()))
        if qc.is_terminal and status != QualityCheckStatus.PASSED:
            qc.resolved_at = _now()
        get_metrics().record_quality_check(status.value)

    def _save(self, qc: QualityCheck) -> None:
        qc.fix_count = len(qc.fix_attempts)
        data = qc.model_dump(mode="json")
        self.store.update_quality_check(
            qc.id,
            check_status=data["check_status"],
            checks=data["checks"],
            fix_attempts=data["fix_attempts"],
            fix_count=len(qc.fix_attempts),
            status_history=data["status_history"],
            resolved_at=data["resolved_at"],
        )

    # =========================================================================
    # Processing
    # =========================================================================

    def process_statement(
        self,
        user_id: str,
        statement_id: str,
        raw_text: str,
        source: Optional[SourceDocument] = None,
    ) -> ProcessingResult:
        """Validate, match, write and check one raw extraction response.

        Raises:
            ExtractionValidationError: If the response has no usable document
        """
        with with_correlation(statement_id=statement_id, user_id=user_id):
            start = time.time()
            if self.store.get_statement(statement_id) is None:
                self.store.create_statement(
                    user_id,
                    filename=source.filename if source else None,
                    file_type=source.file_type if source else None,
                    statement_id=statement_id,
                )

            with with_correlation(stage="validate"):
                validation = validate_extraction(raw_text)
            if not validation.valid or validation.extraction is None:
                error = ExtractionValidationError(validation)
                self.store.update_statement(
                    statement_id, parse_status="failed", parse_error=str(error), raw_response=raw_text
                )
                get_metrics().record_statement_processed(completed=False)
                logger.warning("Extraction failed validation", extra_fields={"errors": len(validation.errors)})
                raise error

            extraction = validation.extraction
            self.store.update_statement(statement_id, raw_response=raw_text)

            with with_correlation(stage="match"):
                mapping = match_accounts(extraction, self.store.list_existing_accounts(user_id))

            report = write_extraction(
                self.store, user_id, statement_id, extraction, mapping, concurrency=self.concurrency
            )
            integrity = check_integrity(extraction)
            qc = self.run_quality_check(statement_id)

            get_metrics().record_statement_processed(completed=True)
            get_metrics().record_stage_time("process", (time.time() - start) * 1000)

        return ProcessingResult(
            statement_id=statement_id,
            validation=validation,
            mapping=mapping,
            write_report=report,
            integrity=integrity,
            quality_check=qc,
        )

    def run_quality_check(self, statement_id: str) -> QualityCheck:
        """Check a written statement against the ledger and record the outcome."""
        statement = self._statement(statement_id)
        if statement.get("extracted_data") is None:
            raise ValueError(f"Statement {statement_id} has no extracted data")

        extraction = ExtractionDocument.model_validate(statement["extracted_data"])
        linked = statement.get("linked_account_ids") or []

        started = _now()
        quality_check_id = self.store.create_quality_check(
            statement["user_id"],
            statement_id,
            QualityCheckStatus.RUNNING.value,
            status_history=[{"status": QualityCheckStatus.RUNNING.value, "at": started.isoformat()}],
        )
        qc = self.get_quality_check(quality_check_id)

        with with_correlation(statement_id=statement_id, quality_check_id=qc.id, stage="quality_check"):
            try:
                result = run_quality_checks(self.store, statement_id, extraction, linked)
                qc.checks = result
                if result.overall_passed:
                    self._transition(qc, QualityCheckStatus.PASSED)
                    self.store.update_statement(statement_id, parse_status="completed", parse_error=None)
                else:
                    self._transition(qc, QualityCheckStatus.FAILED)
                    self.store.update_statement(
                        statement_id, parse_status="qc_failed", parse_error=f"Quality issue: {result.summary}"
                    )
                self._save(qc)
            except Exception as e:
                logger.exception("Quality check errored")
                self._abort_check(qc, statement_id, str(e) or type(e).__name__)
                raise

            logger.info(f"Quality check {qc.check_status.value}", extra_fields={"summary": result.summary})
        return qc

    def _abort_check(self, qc: QualityCheck, statement_id: str, error: str) -> None:
        """Move a check that raised mid-run out of ``running``."""
        if qc.check_status == QualityCheckStatus.RUNNING:
            self._transition(qc, QualityCheckStatus.UNRESOLVED)
        self._save(qc)
        self.store.update_statement(
            statement_id, parse_status="qc_failed", parse_error=f"Quality check error: {error}"
        )

    # =========================================================================
    # Fix Cycle
    # =========================================================================

    def trigger_fix(self, quality_check_id: str, source: SourceDocument) -> QualityCheck:
        """Re-extract once with quality feedback and re-check.

        Returns:
            The quality check in state ``fixed`` or ``unresolved``
        """
        qc = self.get_quality_check(quality_check_id)
        statement = self._statement(qc.statement_id)
        statement_id = qc.statement_id
        user_id = statement["user_id"]
        original_data = statement.get("extracted_data")
        original = ExtractionDocument.model_validate(original_data) if original_data else ExtractionDocument()
        linked: List[str] = statement.get("linked_account_ids") or []

        self._transition(qc, QualityCheckStatus.FIXING)
        attempt = FixAttempt(phase=1, started_at=_now())
        qc.fix_attempts.append(attempt)
        self._save(qc)

        with with_correlation(statement_id=statement_id, quality_check_id=qc.id, stage="fix"):
            logger.info("Starting fix attempt", extra_fields={"failed_checks": qc.checks.failed_hard_checks})
            try:
                feedback = build_quality_fix_prompt(qc.checks, original)
                attempt.prompt_used = feedback
                if self.extractor is None:
                    raise RuntimeError("No extraction client configured for the fix cycle")

                raw_text = self.extractor.extract(inject_feedback(source, feedback))
                validation = validate_extraction(raw_text)
                if not validation.valid or validation.extraction is None:
                    raise ExtractionValidationError(validation)
                new_extraction = validation.extraction
                attempt.new_extraction = new_extraction

                clear_statement_data(self.store, statement_id, linked)
                mapping = match_accounts(new_extraction, self.store.list_existing_accounts(user_id))
                report = write_extraction(
                    self.store, user_id, statement_id, new_extraction, mapping, concurrency=self.concurrency
                )
                linked = report.linked_account_ids
                re_check = run_quality_checks(self.store, statement_id, new_extraction, linked)
                attempt.re_check = re_check
                attempt.completed_at = _now()

                if re_check.overall_passed:
                    attempt.status = FixAttemptStatus.SUCCEEDED
                    qc.checks = re_check
                    self._transition(qc, QualityCheckStatus.FIXED)
                    self._save(qc)
                    self.store.update_statement(
                        statement_id, parse_status="completed", parse_error=None, raw_response=raw_text
                    )
                    logger.info("Fix attempt succeeded", extra_fields={"summary": re_check.summary})
                    return qc

                error = re_check.summary
            except Exception as e:
                logger.exception("Fix attempt failed")
                error = str(e) or type(e).__name__

            attempt.status = FixAttemptStatus.FAILED
            attempt.error = error
            attempt.completed_at = attempt.completed_at or _now()
            self._mark_unresolved(qc, statement_id, linked, original_data, error)
        return qc

    def _mark_unresolved(self, qc: QualityCheck, statement_id: str, linked: List[str],
                         original_data: Optional[dict], error: str) -> None:
        """Leave the ledger cleared and restore the original document for review."""
        try:
            clear_statement_data(self.store, statement_id, linked)
        except Exception:
            logger.exception("Failed to clear statement data after unresolved fix")

        self._transition(qc, QualityCheckStatus.UNRESOLVED)
        self._save(qc)
        self.store.update_statement(
            statement_id,
            parse_status="qc_failed",
            parse_error=f"Auto-fix failed: {error}",
            extracted_data=original_data,
            account_id=None,
            linked_account_ids=[],
            transactions_created=0,
            positions_created=0,
        )
        logger.warning("Quality check unresolved", extra_fields={"error": error})

    def check_and_fix(self, statement_id: str, source: Optional[SourceDocument] = None) -> QualityCheck:
        """Run the quality check, then the fix cycle if it failed and a source is available."""
        qc = self.run_quality_check(statement_id)
        if qc.check_status == QualityCheckStatus.FAILED and source is not None:
            return self.trigger_fix(qc.id, source)
        return qc
