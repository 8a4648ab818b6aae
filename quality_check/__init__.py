"""Quality Check Module.

Processes statements end to end and runs the self-healing quality-check
loop (check, one feedback-driven re-extraction, re-check).

Usage:
    from quality_check import QualityCheckOrchestrator

    orchestrator = QualityCheckOrchestrator(store, extractor)
    result = orchestrator.process_statement(user_id, statement_id, raw_text, source)
    if result.quality_check.check_status == "failed":
        orchestrator.trigger_fix(result.quality_check.id, source)
"""

from quality_check.feedback import FEEDBACK_HEADER, build_quality_fix_prompt, inject_feedback
from quality_check.models import (
    FixAttempt,
    FixAttemptStatus,
    InvalidTransitionError,
    ProcessingResult,
    QualityCheck,
    QualityCheckStatus,
)
from quality_check.orchestrator import (
    QualityCheckNotFoundError,
    QualityCheckOrchestrator,
    StatementNotFoundError,
)

__all__ = [
    "QualityCheckOrchestrator",
    "QualityCheckNotFoundError",
    "StatementNotFoundError",
    "FixAttempt",
    "FixAttemptStatus",
    "InvalidTransitionError",
    "ProcessingResult",
    "QualityCheck",
    "QualityCheckStatus",
    "FEEDBACK_HEADER",
    "build_quality_fix_prompt",
    "inject_feedback",
]
