"""
Structured Logging with Correlation IDs

Every record carries the ids of the statement run it belongs to:
- statement_id / user_id: the uploaded statement and its owner
- quality_check_id: the quality-check / fix cycle
- account_id: the ledger account being written
- workflow_id: the Temporal workflow execution
- stage: validate, match, write, quality_check or fix

Usage:
    from core.observability.logging import get_logger, with_correlation

    logger = get_logger(__name__)

    with with_correlation(statement_id="stmt-001", stage="write"):
        logger.info("Writing accounts", extra_fields={"accounts": 2})
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, Optional


# =============================================================================
# Correlation Context
# =============================================================================

@dataclass(frozen=True)
class CorrelationContext:
    """Ids shared by every log line of one statement's pipeline run."""
    statement_id: Optional[str] = None
    user_id: Optional[str] = None
    quality_check_id: Optional[str] = None
    account_id: Optional[str] = None
    workflow_id: Optional[str] = None
    stage: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in asdict(self).items() if v is not None}

    def merge(self, **kwargs) -> "CorrelationContext":
        """Copy with ``kwargs`` applied; None leaves the current value."""
        data = self.to_dict()
        data.update({k: v for k, v in kwargs.items() if v is not None})
        return CorrelationContext(**data)


_correlation_context: ContextVar[CorrelationContext] = ContextVar(
    "correlation_context", default=CorrelationContext()
)


def get_correlation_context() -> CorrelationContext:
    return _correlation_context.get()


@contextmanager
def with_correlation(**kwargs):
    """Bind correlation ids for the duration of the block; blocks nest.

    Worker threads do not inherit a ContextVar; run their callables through
    ``contextvars.copy_context().run`` to keep ids attached.
    """
    ctx = get_correlation_context().merge(**kwargs)
    token = _correlation_context.set(ctx)
    try:
        yield ctx
    finally:
        _correlation_context.reset(token)


# =============================================================================
# Formatters
# =============================================================================

def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class StructuredFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message, ids, extra fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": _record_time(record).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        log_data.update(get_correlation_context().to_dict())
        log_data.update(getattr(record, "extra_fields", None) or {})

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class HumanReadableFormatter(logging.Formatter):
    """
    Console format:
    2025-01-09 12:00:00 [INFO ] ledger.writer [stmt-001/write]: Wrote account holdings=3
    """

    def format(self, record: logging.LogRecord) -> str:
        ctx = get_correlation_context()
        parts = [
            ctx.statement_id,
            f"qc:{ctx.quality_check_id[:8]}" if ctx.quality_check_id else None,
            f"acct:{ctx.account_id[:8]}" if ctx.account_id else None,
            ctx.stage,
        ]
        correlation = "/".join(p for p in parts if p) or "-"
        timestamp = _record_time(record).strftime("%Y-%m-%d %H:%M:%S")

        msg = f"{timestamp} [{record.levelname:5}] {record.name} [{correlation}]: {record.getMessage()}"

        extra_fields = getattr(record, "extra_fields", None)
        if extra_fields:
            msg += " " + " ".join(f"{k}={v}" for k, v in extra_fields.items())
        if record.exc_info:
            msg += "\n" + self.formatException(record.exc_info)
        return msg


# =============================================================================
# Logger
# =============================================================================

class CorrelatedLogger:
    """
    Thin wrapper over ``logging.Logger`` that accepts per-call fields:
        logger.info("Wrote account", extra_fields={"holdings_created": 3})
    """

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(self, level: int, msg: str, *args, extra_fields: Optional[Dict[str, Any]] = None,
             exc_info=None):
        # stacklevel 3 attributes the record to the caller of info()/warning()/...
        self._logger.log(
            level, msg, *args,
            exc_info=exc_info,
            extra={"extra_fields": extra_fields or {}},
            stacklevel=3,
        )

    def debug(self, msg: str, *args, **kwargs):
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args, **kwargs):
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args, **kwargs):
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args, **kwargs):
        self._log(logging.ERROR, msg, *args, **kwargs)

    def exception(self, msg: str, *args, **kwargs):
        kwargs["exc_info"] = True
        self._log(logging.ERROR, msg, *args, **kwargs)


# =============================================================================
# Setup
# =============================================================================

_loggers: Dict[str, CorrelatedLogger] = {}
_configured = False

PIPELINE_LOGGERS = [
    "extraction",
    "account_matcher",
    "ledger",
    "reconciliation",
    "quality_check",
    "activities",
    "workflows",
    "api",
    "core",
]


def configure_logging(level: int = logging.INFO, json_format: bool = False):
    """Install one stdout handler on the root logger; later calls are no-ops.

    Args:
        level: Level for the handler and the pipeline loggers
        json_format: StructuredFormatter when True, HumanReadableFormatter otherwise
    """
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    for logger_name in PIPELINE_LOGGERS:
        logging.getLogger(logger_name).setLevel(level)

    # Third-party noise
    for noisy in ("httpx", "httpcore", "openai"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    logging.getLogger("temporalio").setLevel(logging.INFO)

    _configured = True


def get_logger(name: str) -> CorrelatedLogger:
    """Cached CorrelatedLogger for ``name`` (typically ``__name__``)."""
    if name not in _loggers:
        if not _configured:
            configure_logging()
        _loggers[name] = CorrelatedLogger(logging.getLogger(name))
    return _loggers[name]
