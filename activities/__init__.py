"""Activity definitions module."""

from activities.process import (
    extract_statement_activity,
    process_statement_activity,
    run_quality_check_activity,
    trigger_fix_activity,
    ExtractStatementInput,
    ProcessStatementInput,
    ProcessStatementOutput,
    QualityCheckInput,
    QualityCheckOutput,
    SourceInput,
    TriggerFixInput,
)

__all__ = [
    "extract_statement_activity",
    "process_statement_activity",
    "run_quality_check_activity",
    "trigger_fix_activity",
    "ExtractStatementInput",
    "ProcessStatementInput",
    "ProcessStatementOutput",
    "QualityCheckInput",
    "QualityCheckOutput",
    "SourceInput",
    "TriggerFixInput",
]
