"""Core module - shared models, configuration and observability.

This module contains the canonical extraction document models, the
runtime settings and the logging/metrics stack used by every stage of
the statement pipeline.

Stage-specific logic lives in its own package (extraction/, account_matcher/,
ledger/, reconciliation/, quality_check/).
"""

__version__ = "1.0.0"
