"""Workflow definitions module."""

from workflows.ping_workflow import PingWorkflow
from workflows.statement_workflow import StatementProcessingWorkflow, StatementWorkflowInput

__all__ = ["PingWorkflow", "StatementProcessingWorkflow", "StatementWorkflowInput"]
