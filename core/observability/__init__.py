"""
Observability Module for the Statement Pipeline

Provides:
- Structured logging with correlation IDs
- In-process metrics (statements, accounts, quality checks, stage timings)
"""

from core.observability.metrics import (
    PipelineMetrics,
    get_metrics,
)

from core.observability.logging import (
    get_logger,
    configure_logging,
    CorrelationContext,
    with_correlation,
)

__all__ = [
    # Metrics
    "PipelineMetrics",
    "get_metrics",
    # Logging
    "get_logger",
    "configure_logging",
    "CorrelationContext",
    "with_correlation",
]
