"""Tests for the Temporal activities, run in temporalio's ActivityEnvironment."""

import asyncio
import base64
import json

import pytest
from temporalio.testing import ActivityEnvironment

import activities.process as process_module
from activities import (
    ExtractStatementInput,
    ProcessStatementInput,
    QualityCheckInput,
    SourceInput,
    TriggerFixInput,
    extract_statement_activity,
    process_statement_activity,
    run_quality_check_activity,
    trigger_fix_activity,
)
from conftest import CORRECTED_RESPONSE, SCHWAB_RESPONSE, SHORT_RESPONSE, USER_ID, FakeExtractionClient
from extraction.validator import ExtractionValidationError


def run_activity(fn, arg):
    async def _run():
        return await ActivityEnvironment().run(fn, arg)
    return asyncio.run(_run())


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "activities.db")


@pytest.fixture
def source_input():
    return SourceInput(filename="statement.csv", file_type="csv", text_content="Symbol,Qty\nAAPL,400\n")


@pytest.fixture
def fake_client(monkeypatch):
    """Install a fake extraction client; returns a setter for its responses."""
    def install(*responses):
        client = FakeExtractionClient(*responses)
        monkeypatch.setattr(process_module, "build_extraction_client", lambda: client)
        return client

    return install


class TestSourceInput:

    def test_binary_payload_is_decoded(self):
        payload = b"%PDF-1.7 fake"
        source = SourceInput(
            filename="s.pdf",
            file_type="pdf",
            binary_b64=base64.b64encode(payload).decode(),
            mime_type="application/pdf",
        ).to_source()
        assert source.binary_content == payload
        assert source.text_content is None

    def test_text_payload(self, source_input):
        source = source_input.to_source()
        assert source.binary_content is None
        assert source.text_content.startswith("Symbol")


class TestExtractActivity:

    def test_returns_raw_model_text(self, fake_client, source_input):
        client = fake_client(SCHWAB_RESPONSE)
        raw = run_activity(extract_statement_activity, ExtractStatementInput(source=source_input))
        assert json.loads(raw) == SCHWAB_RESPONSE
        assert client.sources[0].filename == "statement.csv"


class TestProcessActivity:

    def test_consistent_statement(self, db_path):
        output = run_activity(
            process_statement_activity,
            ProcessStatementInput(
                user_id=USER_ID, statement_id="stmt-1", raw_text=json.dumps(SCHWAB_RESPONSE), db_path=db_path
            ),
        )
        assert output.statement_id == "stmt-1"
        assert output.accounts_processed == 2
        assert output.accounts_created == 2
        assert output.accounts_failed == 0
        assert output.transactions_created == 3
        assert output.integrity_passed
        assert output.quality_check.check_status == "passed"
        assert output.quality_check.summary == "All quality checks passed"

    def test_invalid_response_raises(self, db_path):
        with pytest.raises(ExtractionValidationError):
            run_activity(
                process_statement_activity,
                ProcessStatementInput(user_id=USER_ID, statement_id="stmt-1", raw_text="{", db_path=db_path),
            )

    def test_rerun_quality_check(self, db_path):
        run_activity(
            process_statement_activity,
            ProcessStatementInput(
                user_id=USER_ID, statement_id="stmt-1", raw_text=json.dumps(SCHWAB_RESPONSE), db_path=db_path
            ),
        )
        output = run_activity(run_quality_check_activity, QualityCheckInput(statement_id="stmt-1", db_path=db_path))
        assert output.check_status == "passed"


class TestFixActivity:

    def test_failed_check_is_fixed(self, db_path, source_input, fake_client):
        processed = run_activity(
            process_statement_activity,
            ProcessStatementInput(
                user_id=USER_ID,
                statement_id="stmt-short",
                raw_text=json.dumps(SHORT_RESPONSE),
                source=source_input,
                db_path=db_path,
            ),
        )
        assert processed.quality_check.check_status == "failed"
        assert not processed.integrity_passed

        client = fake_client(CORRECTED_RESPONSE)
        fixed = run_activity(
            trigger_fix_activity,
            TriggerFixInput(
                quality_check_id=processed.quality_check.quality_check_id,
                source=source_input,
                db_path=db_path,
            ),
        )
        assert fixed.check_status == "fixed"
        assert fixed.error is None
        assert len(client.sources) == 1

    def test_unresolved_reports_error(self, db_path, source_input, fake_client):
        processed = run_activity(
            process_statement_activity,
            ProcessStatementInput(
                user_id=USER_ID, statement_id="stmt-short", raw_text=json.dumps(SHORT_RESPONSE), db_path=db_path
            ),
        )
        fake_client(TimeoutError("model timed out"))
        result = run_activity(
            trigger_fix_activity,
            TriggerFixInput(
                quality_check_id=processed.quality_check.quality_check_id,
                source=source_input,
                db_path=db_path,
            ),
        )
        assert result.check_status == "unresolved"
        assert result.error == "model timed out"
