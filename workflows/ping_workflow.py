"""Connectivity check workflow for the statement ledger worker."""

from temporalio import workflow


@workflow.defn
class PingWorkflow:
    """Returns "ok" to confirm the worker picks up tasks on its queue."""

    @workflow.run
    async def run(self) -> str:
        return "ok"
