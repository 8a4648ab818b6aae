"""Process a statement locally or through the Temporal workflow.

Local mode runs extraction (unless --raw is given), the ledger write and the
quality check in-process against the configured ledger database. With
--workflow the same steps run as a StatementProcessingWorkflow on the worker.

Examples:
    python scripts/process_statement.py --user u1 --file schwab.pdf --fix
    python scripts/process_statement.py --user u1 --raw response.json
    python scripts/process_statement.py --user u1 --file schwab.pdf --workflow
"""

import argparse
import asyncio
import base64
import json
import sys
import uuid
from pathlib import Path
from typing import Optional

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from core.observability.metrics import get_metrics
from extraction.runner import OpenAIExtractionClient, SourceDocument, load_source
from extraction.validator import ExtractionValidationError
from ledger.store import LedgerStore
from quality_check.models import QualityCheckStatus
from quality_check.orchestrator import QualityCheckOrchestrator


logger = get_logger(__name__)


def process_locally(user_id: str, statement_id: str, source: Optional[SourceDocument],
                    raw_text: Optional[str], fix: bool, db_path: Optional[str]) -> dict:
    """Run the pipeline in-process and return a result summary."""
    store = LedgerStore(db_path or get_settings().ledger_db_path)
    store.init_db()

    extractor = OpenAIExtractionClient() if (raw_text is None or fix) else None
    orchestrator = QualityCheckOrchestrator(store, extractor)

    if raw_text is None:
        logger.info(f"Extracting {source.filename}...")
        raw_text = extractor.extract(source)

    result = orchestrator.process_statement(user_id, statement_id, raw_text, source)
    qc = result.quality_check
    if fix and qc.check_status == QualityCheckStatus.FAILED and source is not None:
        logger.info(f"Quality check failed ({qc.checks.summary}), running fix cycle...")
        qc = orchestrator.trigger_fix(qc.id, source)

    return {
        "statement_id": statement_id,
        "totals": result.write_report.totals.model_dump(),
        "linked_account_ids": result.write_report.linked_account_ids,
        "integrity": result.integrity.model_dump(mode="json"),
        "quality_check": {
            "id": qc.id,
            "status": qc.check_status.value,
            "summary": qc.checks.summary if qc.checks else None,
        },
        "validation_warnings": len(result.validation.warnings),
        "coercions": result.validation.coercions,
    }


async def process_with_workflow(user_id: str, statement_id: str, source: Optional[SourceDocument],
                                raw_text: Optional[str], fix: bool) -> dict:
    """Start a StatementProcessingWorkflow and wait for its result."""
    from activities.process import SourceInput
    from temporal_client import get_temporal_client
    from workflows.statement_workflow import StatementProcessingWorkflow, StatementWorkflowInput

    source_input = None
    if source is not None:
        source_input = SourceInput(
            filename=source.filename,
            file_type=source.file_type,
            text_content=source.text_content,
            binary_b64=base64.b64encode(source.binary_content).decode("ascii") if source.binary_content else None,
            mime_type=source.mime_type,
        )

    task_queue = get_settings().temporal_task_queue
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    handle = await client.start_workflow(
        StatementProcessingWorkflow.run,
        StatementWorkflowInput(
            user_id=user_id,
            statement_id=statement_id,
            source=source_input,
            raw_text=raw_text,
            auto_fix=fix,
        ),
        task_queue=task_queue,
        id=f"statement-{statement_id}",
    )
    logger.info(f"Workflow started: {handle.id}")
    logger.info("Waiting for result (this may take several minutes for LLM extraction)...")
    return await handle.result()


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(description="Process a financial statement into the ledger")
    parser.add_argument("--user", required=True, help="Statement owner user id")
    parser.add_argument("--file", type=Path, help="Source document (PDF, image, CSV, text)")
    parser.add_argument("--raw", type=Path, help="Pre-extracted model response (skips extraction)")
    parser.add_argument("--statement-id", default=None, help="Statement id (default: random)")
    parser.add_argument("--fix", action="store_true", help="Run the fix cycle if the quality check fails")
    parser.add_argument("--workflow", action="store_true", help="Run through the Temporal worker")
    parser.add_argument("--db", default=None, help="Ledger database path (default: LEDGER_DB_PATH)")
    args = parser.parse_args()

    if args.file is None and args.raw is None:
        parser.error("one of --file or --raw is required")

    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)

    source = load_source(args.file) if args.file else None
    raw_text = args.raw.read_text(encoding="utf-8") if args.raw else None
    statement_id = args.statement_id or str(uuid.uuid4())

    try:
        if args.workflow:
            result = asyncio.run(process_with_workflow(args.user, statement_id, source, raw_text, args.fix))
        else:
            result = process_locally(args.user, statement_id, source, raw_text, args.fix, args.db)
            result["metrics"] = get_metrics().get_summary()
    except ExtractionValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        logger.error(f"Processing failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(json.dumps(result, indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
