"""Start ping workflow on Temporal.

Connects to Temporal, starts a PingWorkflow on the statement task queue and
prints the result. Useful to confirm a worker is running.
"""

import asyncio
import sys
import uuid
from pathlib import Path

# Add repo root to path
sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from core.config import get_settings
from core.observability.logging import configure_logging, get_logger
from temporal_client import get_temporal_client
from workflows.ping_workflow import PingWorkflow


logger = get_logger(__name__)


async def start_ping_workflow() -> str:
    """Start ping workflow and return its result ("ok")."""
    task_queue = get_settings().temporal_task_queue
    client = await get_temporal_client()
    logger.info(f"Connected to Temporal: {client.namespace}")

    logger.info(f"Starting PingWorkflow on task queue '{task_queue}'...")
    handle = await client.start_workflow(
        PingWorkflow.run,
        task_queue=task_queue,
        id=f"ping-{uuid.uuid4().hex[:8]}",
    )
    logger.info(f"Workflow started: {handle.id}")
    return await handle.result()


def main():
    """Entry point."""
    configure_logging()
    try:
        result = asyncio.run(start_ping_workflow())
        print(result)
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
