"""Worker for the statement ledger pipeline.

Connects to Temporal, polls the statement task queue and executes the
statement workflows and activities.

Run with --queue <name> to override the task queue from settings.
"""

import argparse
import asyncio
import sys
from pathlib import Path

from temporalio.worker import Worker

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.ping_workflow import PingWorkflow
from workflows.statement_workflow import StatementProcessingWorkflow
from activities.process import (
    extract_statement_activity,
    process_statement_activity,
    run_quality_check_activity,
    trigger_fix_activity,
)


logger = get_logger(__name__)

WORKFLOWS = [PingWorkflow, StatementProcessingWorkflow]

ACTIVITIES = [
    extract_statement_activity,
    process_statement_activity,
    run_quality_check_activity,
    trigger_fix_activity,
]


async def run_worker(queue: str = None):
    """Start a worker listening on the task queue.

    Args:
        queue: Task queue to poll (defaults to TEMPORAL_TASK_QUEUE)

    Raises:
        Exception: If connection to Temporal fails
    """
    task_queue = queue or get_settings().temporal_task_queue
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    worker = Worker(
        client,
        task_queue=task_queue,
        workflows=WORKFLOWS,
        activities=ACTIVITIES,
    )
    logger.info(f"Worker created for queue '{task_queue}':")
    logger.info(f"  - Workflows: {len(WORKFLOWS)}")
    logger.info(f"  - Activities: {len(ACTIVITIES)}")

    try:
        logger.info("Worker running... (Ctrl+C to stop)")
        await worker.run()
    except Exception as e:
        logger.error(f"Worker error: {e}", exc_info=True)
        raise


def main():
    """Entry point for worker with CLI args."""
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Statement Ledger Temporal Worker")
    parser.add_argument(
        "--queue", "-q",
        default=settings.temporal_task_queue,
        help=f"Task queue to poll (default: {settings.temporal_task_queue})"
    )
    args = parser.parse_args()

    configure_logging(level=settings.log_level_value, json_format=settings.log_json)
    try:
        asyncio.run(run_worker(queue=args.queue))
    except KeyboardInterrupt:
        logger.info("Worker interrupted by user")


if __name__ == "__main__":
    main()
