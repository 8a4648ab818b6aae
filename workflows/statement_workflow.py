"""Statement Processing Workflow.

Takes one uploaded statement through extraction, ledger write, quality check
and (at most once) the feedback-driven fix cycle.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from temporalio import workflow
from temporalio.common import RetryPolicy

with workflow.unsafe.imports_passed_through():
    from activities.process import (
        extract_statement_activity,
        process_statement_activity,
        trigger_fix_activity,
        ExtractStatementInput,
        ProcessStatementInput,
        SourceInput,
        TriggerFixInput,
    )


@dataclass
class StatementWorkflowInput:
    """Input for StatementProcessingWorkflow.

    Attributes:
        user_id: Statement owner
        statement_id: Statement identifier (also used as workflow id)
        source: Uploaded document; needed for extraction and the fix cycle
        raw_text: Pre-extracted model response (skips the extraction step)
        auto_fix: Run the fix cycle when the quality check fails
        db_path: Ledger database path (defaults to worker settings)
    """
    user_id: str
    statement_id: str
    source: Optional[SourceInput] = None
    raw_text: Optional[str] = None
    auto_fix: bool = True
    db_path: Optional[str] = None


@workflow.defn
class StatementProcessingWorkflow:
    """Workflow for processing one financial statement.

    1. Extract the document (unless a raw response is supplied)
    2. Validate, match, write and quality-check
    3. On a failed check, run one fix cycle
    """

    @workflow.run
    async def run(self, input: StatementWorkflowInput) -> dict:
        workflow.logger.info(f"Starting statement workflow for {input.statement_id}")

        raw_text = input.raw_text
        if raw_text is None:
            if input.source is None:
                raise ValueError("Either raw_text or source is required")
            raw_text = await workflow.execute_activity(
                extract_statement_activity,
                ExtractStatementInput(source=input.source),
                start_to_close_timeout=timedelta(minutes=10),  # LLM calls can be slow
                retry_policy=RetryPolicy(maximum_attempts=3),
            )

        # Validation failures are not retryable; the response won't change
        processed = await workflow.execute_activity(
            process_statement_activity,
            ProcessStatementInput(
                user_id=input.user_id,
                statement_id=input.statement_id,
                raw_text=raw_text,
                source=input.source,
                db_path=input.db_path,
            ),
            start_to_close_timeout=timedelta(minutes=5),
            retry_policy=RetryPolicy(maximum_attempts=1),
        )

        quality_check = processed.quality_check
        workflow.logger.info(
            f"Statement {input.statement_id}: {processed.accounts_processed} accounts, "
            f"quality check {quality_check.check_status}"
        )

        if quality_check.check_status == "failed" and input.auto_fix and input.source is not None:
            workflow.logger.info(f"Quality check failed, triggering fix: {quality_check.summary}")
            quality_check = await workflow.execute_activity(
                trigger_fix_activity,
                TriggerFixInput(
                    quality_check_id=quality_check.quality_check_id,
                    source=input.source,
                    db_path=input.db_path,
                ),
                start_to_close_timeout=timedelta(minutes=15),
                retry_policy=RetryPolicy(maximum_attempts=1),
            )

        return {
            "statement_id": input.statement_id,
            "accounts_processed": processed.accounts_processed,
            "accounts_created": processed.accounts_created,
            "accounts_failed": processed.accounts_failed,
            "transactions_created": processed.transactions_created,
            "snapshots_written": processed.snapshots_written,
            "integrity_passed": processed.integrity_passed,
            "quality_check_id": quality_check.quality_check_id,
            "check_status": quality_check.check_status,
            "summary": quality_check.summary,
            "fix_error": quality_check.error,
        }
