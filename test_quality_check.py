"""Tests for the quality-check orchestrator and the self-healing fix cycle."""

import json
import sqlite3

import pytest

import quality_check.orchestrator as orchestrator_module
from conftest import (
    CORRECTED_RESPONSE,
    SCHWAB_RESPONSE,
    SHORT_RESPONSE,
    USER_ID,
    FakeExtractionClient,
)
from core.observability.metrics import get_metrics
from extraction.runner import SourceDocument
from extraction.validator import ExtractionValidationError
from quality_check import (
    FEEDBACK_HEADER,
    FixAttemptStatus,
    InvalidTransitionError,
    QualityCheckNotFoundError,
    QualityCheckOrchestrator,
    QualityCheckStatus,
    StatementNotFoundError,
    build_quality_fix_prompt,
    inject_feedback,
)


def _history(qc):
    return [t.status for t in qc.status_history]


@pytest.fixture
def short_statement(store):
    """A statement whose first extraction missed $20,000 of holdings."""
    orchestrator = QualityCheckOrchestrator(store)
    result = orchestrator.process_statement(USER_ID, "stmt-short", json.dumps(SHORT_RESPONSE))
    assert result.quality_check.check_status == QualityCheckStatus.FAILED
    return result


# =============================================================================
# Processing
# =============================================================================

class TestProcessStatement:

    def test_consistent_statement_passes(self, store, source):
        orchestrator = QualityCheckOrchestrator(store)
        result = orchestrator.process_statement(USER_ID, "stmt-1", json.dumps(SCHWAB_RESPONSE), source)

        assert result.passed
        assert result.integrity.passed
        assert result.write_report.totals.accounts_created == 2
        qc = result.quality_check
        assert qc.check_status == QualityCheckStatus.PASSED
        assert _history(qc) == [QualityCheckStatus.RUNNING, QualityCheckStatus.PASSED]
        assert qc.resolved_at is None
        assert qc.checks.summary == "All quality checks passed"

        statement = store.get_statement("stmt-1")
        assert statement["parse_status"] == "completed"
        assert statement["filename"] == "statement.csv"
        assert statement["raw_response"] == json.dumps(SCHWAB_RESPONSE)

    def test_failed_check_marks_statement(self, store, short_statement):
        qc = short_statement.quality_check
        assert qc.checks.failed_hard_checks == ["total_value"]
        assert not short_statement.passed

        statement = store.get_statement("stmt-short")
        assert statement["parse_status"] == "qc_failed"
        assert statement["parse_error"].startswith("Quality issue: Quality issues found:")

    def test_invalid_response_raises_and_marks_failed(self, store):
        orchestrator = QualityCheckOrchestrator(store)
        with pytest.raises(ExtractionValidationError):
            orchestrator.process_statement(USER_ID, "stmt-bad", "the model refused")

        statement = store.get_statement("stmt-bad")
        assert statement["parse_status"] == "failed"
        assert "No JSON object found" in statement["parse_error"]
        assert store.get_latest_quality_check("stmt-bad") is None
        assert get_metrics().get_summary()["statements"]["validation_failed"] == 1

    def test_metrics_recorded(self, store):
        QualityCheckOrchestrator(store).process_statement(USER_ID, "stmt-1", json.dumps(SCHWAB_RESPONSE))
        summary = get_metrics().get_summary()
        assert summary["statements"] == {"processed": 1, "completed": 1, "validation_failed": 0}
        assert summary["accounts"]["created"] == 2
        assert summary["quality_checks"] == {"passed": 1}
        assert "write" in summary["timings"]
        assert "process" in summary["timings"]


class TestRunQualityCheck:

    def test_missing_statement(self, store):
        with pytest.raises(StatementNotFoundError):
            QualityCheckOrchestrator(store).run_quality_check("nope")

    def test_statement_without_extraction(self, store):
        store.create_statement(USER_ID, statement_id="stmt-empty")
        with pytest.raises(ValueError):
            QualityCheckOrchestrator(store).run_quality_check("stmt-empty")

    def test_rerun_creates_new_record(self, store, short_statement):
        orchestrator = QualityCheckOrchestrator(store)
        again = orchestrator.run_quality_check("stmt-short")
        assert again.id != short_statement.quality_check.id
        assert orchestrator.get_latest_quality_check("stmt-short").id == again.id

    def test_check_that_raises_is_not_left_running(self, store, short_statement, monkeypatch):
        def broken_checks(*args, **kwargs):
            raise sqlite3.OperationalError("database is locked")

        monkeypatch.setattr(orchestrator_module, "run_quality_checks", broken_checks)
        orchestrator = QualityCheckOrchestrator(store)

        with pytest.raises(sqlite3.OperationalError):
            orchestrator.run_quality_check("stmt-short")

        qc = orchestrator.get_latest_quality_check("stmt-short")
        assert qc.id != short_statement.quality_check.id
        assert qc.check_status == QualityCheckStatus.UNRESOLVED
        assert _history(qc) == [QualityCheckStatus.RUNNING, QualityCheckStatus.UNRESOLVED]
        assert qc.resolved_at is not None

        statement = store.get_statement("stmt-short")
        assert statement["parse_status"] == "qc_failed"
        assert statement["parse_error"] == "Quality check error: database is locked"

    def test_unknown_quality_check(self, store):
        with pytest.raises(QualityCheckNotFoundError):
            QualityCheckOrchestrator(store).get_quality_check("missing")


# =============================================================================
# Fix Cycle
# =============================================================================

class TestFixCycle:

    def test_corrected_extraction_fixes_the_check(self, store, source, short_statement):
        extractor = FakeExtractionClient(CORRECTED_RESPONSE)
        orchestrator = QualityCheckOrchestrator(store, extractor)

        qc = orchestrator.trigger_fix(short_statement.quality_check.id, source)

        assert qc.check_status == QualityCheckStatus.FIXED
        assert _history(qc) == [
            QualityCheckStatus.RUNNING,
            QualityCheckStatus.FAILED,
            QualityCheckStatus.FIXING,
            QualityCheckStatus.FIXED,
        ]
        assert qc.resolved_at is not None
        assert qc.fix_count == 1
        attempt = qc.latest_attempt
        assert attempt.status == FixAttemptStatus.SUCCEEDED
        assert attempt.re_check.total_value.actual == 99500
        assert attempt.new_extraction.accounts[0].positions[1].symbol == "MSFT"

        stored = orchestrator.get_quality_check(qc.id)
        assert stored.check_status == QualityCheckStatus.FIXED
        assert stored.fix_count == 1

        statement = store.get_statement("stmt-short")
        assert statement["parse_status"] == "completed"
        assert len(statement["extracted_data"]["accounts"][0]["positions"]) == 2

        account = store.get_account(statement["linked_account_ids"][0])
        assert account["total_market_value"] == 99500
        assert account["holdings_count"] == 2

    def test_feedback_is_sent_with_the_source(self, store, source, short_statement):
        extractor = FakeExtractionClient(CORRECTED_RESPONSE)
        QualityCheckOrchestrator(store, extractor).trigger_fix(short_statement.quality_check.id, source)

        sent = extractor.sources[0]
        assert sent.filename == "statement.csv"
        assert sent.text_content.startswith(source.text_content)
        assert FEEDBACK_HEADER in sent.text_content
        assert "TOTAL VALUE MISMATCH" in sent.text_content

    def test_statement_stays_qc_failed_while_fixing(self, store, source, short_statement):
        seen = []

        class RecordingClient(FakeExtractionClient):
            def extract(self, source):
                seen.append(store.get_statement("stmt-short")["parse_status"])
                return super().extract(source)

        orchestrator = QualityCheckOrchestrator(store, RecordingClient(CORRECTED_RESPONSE))
        orchestrator.trigger_fix(short_statement.quality_check.id, source)

        assert seen == ["qc_failed"]
        assert store.get_statement("stmt-short")["parse_status"] == "completed"

    def test_extractor_error_leaves_check_unresolved(self, store, source, short_statement):
        extractor = FakeExtractionClient(RuntimeError("model timeout"))
        qc = QualityCheckOrchestrator(store, extractor).trigger_fix(short_statement.quality_check.id, source)

        assert qc.check_status == QualityCheckStatus.UNRESOLVED
        assert qc.resolved_at is not None
        attempt = qc.latest_attempt
        assert attempt.status == FixAttemptStatus.FAILED
        assert attempt.error == "model timeout"
        assert FEEDBACK_HEADER in attempt.prompt_used

        statement = store.get_statement("stmt-short")
        assert statement["parse_status"] == "qc_failed"
        assert statement["parse_error"] == "Auto-fix failed: model timeout"
        assert statement["linked_account_ids"] == []
        assert statement["extracted_data"] == short_statement.validation.extraction.model_dump(mode="json")
        assert statement["extracted_data"]["accounts"][0]["positions"][0]["symbol"] == "AAPL"
        assert store.count_statement_transactions("stmt-short") == 0
        account_id = short_statement.write_report.linked_account_ids[0]
        assert store.count_active_holdings([account_id]) == 0

    def test_failed_recheck_leaves_check_unresolved(self, store, source, short_statement):
        extractor = FakeExtractionClient(SHORT_RESPONSE)
        qc = QualityCheckOrchestrator(store, extractor).trigger_fix(short_statement.quality_check.id, source)

        assert qc.check_status == QualityCheckStatus.UNRESOLVED
        attempt = qc.latest_attempt
        assert attempt.re_check is not None
        assert not attempt.re_check.overall_passed
        assert attempt.error.startswith("Quality issues found:")

        account_id = short_statement.write_report.linked_account_ids[0]
        assert store.get_holdings(account_id) == []
        assert store.get_account(account_id)["total_market_value"] == 0

    def test_invalid_reextraction_leaves_check_unresolved(self, store, source, short_statement):
        extractor = FakeExtractionClient("still not json")
        qc = QualityCheckOrchestrator(store, extractor).trigger_fix(short_statement.quality_check.id, source)
        assert qc.check_status == QualityCheckStatus.UNRESOLVED
        assert "No JSON object found" in qc.latest_attempt.error

    def test_missing_extractor_leaves_check_unresolved(self, store, source, short_statement):
        qc = QualityCheckOrchestrator(store).trigger_fix(short_statement.quality_check.id, source)
        assert qc.check_status == QualityCheckStatus.UNRESOLVED
        assert "No extraction client" in qc.latest_attempt.error

    def test_only_failed_checks_can_be_fixed(self, store, source):
        orchestrator = QualityCheckOrchestrator(store, FakeExtractionClient(CORRECTED_RESPONSE))
        result = orchestrator.process_statement(USER_ID, "stmt-1", json.dumps(SCHWAB_RESPONSE))

        with pytest.raises(InvalidTransitionError):
            orchestrator.trigger_fix(result.quality_check.id, source)

    def test_fix_runs_at_most_once(self, store, source, short_statement):
        orchestrator = QualityCheckOrchestrator(store, FakeExtractionClient(SHORT_RESPONSE, CORRECTED_RESPONSE))
        qc = orchestrator.trigger_fix(short_statement.quality_check.id, source)
        assert qc.check_status == QualityCheckStatus.UNRESOLVED

        with pytest.raises(InvalidTransitionError):
            orchestrator.trigger_fix(qc.id, source)

    def test_check_and_fix(self, store, source):
        orchestrator = QualityCheckOrchestrator(store, FakeExtractionClient(CORRECTED_RESPONSE))
        first = QualityCheckOrchestrator(store).process_statement(USER_ID, "stmt-2", json.dumps(SHORT_RESPONSE))
        assert first.quality_check.check_status == QualityCheckStatus.FAILED

        qc = orchestrator.check_and_fix("stmt-2", source)
        assert qc.check_status == QualityCheckStatus.FIXED
        assert get_metrics().get_summary()["quality_checks"]["fixed"] == 1


# =============================================================================
# Feedback
# =============================================================================

class TestFeedback:

    def test_prompt_lists_failed_checks_and_breakdown(self, short_statement):
        qc = short_statement.quality_check
        original = short_statement.validation.extraction
        prompt = build_quality_fix_prompt(qc.checks, original)

        assert FEEDBACK_HEADER in prompt
        assert "TOTAL VALUE MISMATCH" in prompt
        assert "$100,000" in prompt and "$80,000" in prompt
        assert "POSITION COUNT MISMATCH" not in prompt
        assert "- 1 accounts detected" in prompt
        assert "Account 0: Fidelity (individual) - 1 positions, 0 transactions, 1 balances" in prompt

    def test_inject_feedback_into_binary_source(self):
        pdf = SourceDocument(filename="s.pdf", file_type="pdf", binary_content=b"%PDF-1.7", mime_type="application/pdf")
        injected = inject_feedback(pdf, "\n\nFEEDBACK")
        assert injected.binary_content == b"%PDF-1.7"
        assert injected.text_content == "\n\nFEEDBACK"
        assert pdf.text_content is None
