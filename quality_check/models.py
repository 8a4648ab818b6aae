"""Quality Check Data Models.

State machine for one statement's quality check:

    running -> passed | failed
    failed  -> fixing -> fixed | unresolved

``passed``, ``fixed`` and ``unresolved`` are terminal. Each transition is
recorded with its timestamp in ``status_history``.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from core.models.extraction import ExtractionDocument
from extraction.validator import ValidationResult
from account_matcher.models import AccountMapResult
from ledger.models import WriteReport
from reconciliation.models import CheckResult, IntegrityReport


class QualityCheckStatus(str, Enum):
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"
    FIXING = "fixing"
    FIXED = "fixed"
    UNRESOLVED = "unresolved"


ALLOWED_TRANSITIONS = {
    QualityCheckStatus.RUNNING: {
        QualityCheckStatus.PASSED, QualityCheckStatus.FAILED, QualityCheckStatus.UNRESOLVED,
    },
    QualityCheckStatus.FAILED: {QualityCheckStatus.FIXING},
    QualityCheckStatus.FIXING: {QualityCheckStatus.FIXED, QualityCheckStatus.UNRESOLVED},
    QualityCheckStatus.PASSED: set(),
    QualityCheckStatus.FIXED: set(),
    QualityCheckStatus.UNRESOLVED: set(),
}


class InvalidTransitionError(ValueError):
    def __init__(self, current: QualityCheckStatus, target: QualityCheckStatus):
        self.current = current
        self.target = target
        super().__init__(f"Quality check cannot move from {current.value} to {target.value}")


class FixAttemptStatus(str, Enum):
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class FixAttempt(BaseModel):
    """One re-extraction cycle with quality feedback."""
    phase: int = 1
    started_at: datetime
    completed_at: Optional[datetime] = None
    status: FixAttemptStatus = FixAttemptStatus.RUNNING
    prompt_used: Optional[str] = None
    new_extraction: Optional[ExtractionDocument] = None
    re_check: Optional[CheckResult] = None
    error: Optional[str] = None


class StatusTransition(BaseModel):
    status: QualityCheckStatus
    at: datetime


class QualityCheck(BaseModel):
    """Quality check record as stored in the ledger."""
    id: str
    user_id: str
    statement_id: str
    check_status: QualityCheckStatus
    checks: Optional[CheckResult] = None
    fix_attempts: List[FixAttempt] = Field(default_factory=list)
    fix_count: int = 0
    status_history: List[StatusTransition] = Field(default_factory=list)
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QualityCheck":
        return cls.model_validate(row)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.check_status]

    @property
    def latest_attempt(self) -> Optional[FixAttempt]:
        return self.fix_attempts[-1] if self.fix_attempts else None


class ProcessingResult(BaseModel):
    """Outcome of validating, matching, writing and checking one statement."""
    statement_id: str
    validation: ValidationResult
    mapping: AccountMapResult
    write_report: WriteReport
    integrity: IntegrityReport
    quality_check: QualityCheck

    @property
    def passed(self) -> bool:
        return self.quality_check.check_status in (QualityCheckStatus.PASSED, QualityCheckStatus.FIXED)
