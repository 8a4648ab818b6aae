"""
Metrics Collection for the Statement Pipeline

Collects in-process metrics for:
- Statements processed (completed, failed validation)
- Accounts written (created, matched, failed)
- Quality-check outcomes (passed, failed, fixed, unresolved)
- Stage processing times (average, p95)
"""

import statistics
from collections import defaultdict
from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, List, Optional


# =============================================================================
# Metric Data Classes
# =============================================================================

@dataclass
class StatementMetrics:
    """Counts for statement-level processing."""
    processed: int = 0
    completed: int = 0
    validation_failed: int = 0


@dataclass
class AccountMetrics:
    """Counts for per-account write outcomes."""
    created: int = 0
    matched: int = 0
    failed: int = 0


@dataclass
class TimingMetrics:
    """Processing time samples per stage (bounded window)."""
    max_samples: int = 1000
    by_stage: Dict[str, List[float]] = field(default_factory=lambda: defaultdict(list))

    def add_sample(self, stage: str, duration_ms: float):
        samples = self.by_stage[stage]
        samples.append(duration_ms)
        if len(samples) > self.max_samples:
            self.by_stage[stage] = samples[-self.max_samples:]

    def get_average(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        return statistics.mean(samples) if samples else 0.0

    def get_p95(self, stage: str) -> float:
        samples = self.by_stage.get(stage, [])
        if not samples:
            return 0.0
        sorted_samples = sorted(samples)
        idx = int(len(sorted_samples) * 0.95)
        return sorted_samples[min(idx, len(sorted_samples) - 1)]


# =============================================================================
# Metrics Collector (Singleton)
# =============================================================================

class PipelineMetrics:
    """
    Thread-safe metrics collector for the statement pipeline.

    Usage:
        metrics = PipelineMetrics.instance()
        metrics.record_statement_processed(completed=True)
        metrics.record_stage_time("write", duration_ms=420.0)
    """

    _instance: Optional["PipelineMetrics"] = None
    _instance_lock = Lock()

    def __init__(self):
        self.statements = StatementMetrics()
        self.accounts = AccountMetrics()
        self.quality_checks: Dict[str, int] = defaultdict(int)
        self.timings = TimingMetrics()
        self._lock = Lock()

    @classmethod
    def instance(cls) -> "PipelineMetrics":
        """Get singleton instance."""
        if cls._instance is None:
            with cls._instance_lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def reset(self):
        """Reset all counters (tests)."""
        with self._lock:
            self.statements = StatementMetrics()
            self.accounts = AccountMetrics()
            self.quality_checks = defaultdict(int)
            self.timings = TimingMetrics()

    def record_statement_processed(self, completed: bool):
        with self._lock:
            self.statements.processed += 1
            if completed:
                self.statements.completed += 1
            else:
                self.statements.validation_failed += 1

    def record_account_written(self, action: str, failed: bool = False):
        with self._lock:
            if failed:
                self.accounts.failed += 1
            elif action == "created":
                self.accounts.created += 1
            else:
                self.accounts.matched += 1

    def record_quality_check(self, status: str):
        """Record a quality-check status transition (passed, failed, fixed, unresolved)."""
        with self._lock:
            self.quality_checks[status] += 1

    def record_stage_time(self, stage: str, duration_ms: float):
        with self._lock:
            self.timings.add_sample(stage, duration_ms)

    def get_timing_stats(self, stage: str) -> Dict[str, float]:
        with self._lock:
            return {
                "average_ms": self.timings.get_average(stage),
                "p95_ms": self.timings.get_p95(stage),
                "sample_count": len(self.timings.by_stage.get(stage, [])),
            }

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of all metrics as plain dicts."""
        with self._lock:
            return {
                "statements": {
                    "processed": self.statements.processed,
                    "completed": self.statements.completed,
                    "validation_failed": self.statements.validation_failed,
                },
                "accounts": {
                    "created": self.accounts.created,
                    "matched": self.accounts.matched,
                    "failed": self.accounts.failed,
                },
                "quality_checks": dict(self.quality_checks),
                "timings": {
                    stage: {
                        "average_ms": self.timings.get_average(stage),
                        "p95_ms": self.timings.get_p95(stage),
                    }
                    for stage in self.timings.by_stage
                },
            }


def get_metrics() -> PipelineMetrics:
    """Get the metrics collector instance."""
    return PipelineMetrics.instance()
