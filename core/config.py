"""Runtime configuration.

Settings are read from the process environment. A ``.env`` file at the
repository root is loaded first (if present) so local development does not
need exported variables.

Usage:
    from core.config import get_settings

    settings = get_settings()
    store = LedgerStore(settings.ledger_db_path)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


REPO_ROOT = Path(__file__).resolve().parents[1]

env_path = REPO_ROOT / ".env"
if env_path.exists():
    load_dotenv(env_path)


# =============================================================================
# Defaults
# =============================================================================

DEFAULT_DB_PATH = REPO_ROOT / "statement_ledger.db"
DEFAULT_EXTRACTION_MODEL = "gpt-4o"
DEFAULT_EXTRACTION_TIMEOUT_SECONDS = 600.0
DEFAULT_WRITER_CONCURRENCY = 5
DEFAULT_TASK_QUEUE = "statement-ledger"


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {value!r}")


@dataclass
class Settings:
    """Pipeline settings.

    Attributes:
        ledger_db_path: SQLite file holding the ledger tables
        openai_api_key: API key for the extraction model (optional until used)
        extraction_model: Chat model used for statement extraction
        extraction_timeout_seconds: Timeout for one model round-trip
        writer_concurrency: Worker pool size for holdings/summary phases
        log_level: Root log level name
        log_json: Emit JSON log lines instead of human-readable ones
        temporal_endpoint: Temporal frontend host:port
        temporal_namespace: Temporal namespace
        temporal_api_key: API key for Temporal Cloud (optional for local dev)
        temporal_task_queue: Task queue polled by the worker
    """
    ledger_db_path: Path = DEFAULT_DB_PATH
    openai_api_key: Optional[str] = None
    extraction_model: str = DEFAULT_EXTRACTION_MODEL
    extraction_timeout_seconds: float = DEFAULT_EXTRACTION_TIMEOUT_SECONDS
    writer_concurrency: int = DEFAULT_WRITER_CONCURRENCY
    log_level: str = "INFO"
    log_json: bool = False
    temporal_endpoint: Optional[str] = None
    temporal_namespace: str = "default"
    temporal_api_key: Optional[str] = None
    temporal_task_queue: str = DEFAULT_TASK_QUEUE

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        db_path = os.getenv("LEDGER_DB_PATH")
        concurrency = _env_int("WRITER_CONCURRENCY", DEFAULT_WRITER_CONCURRENCY)
        if concurrency < 1:
            raise ValueError("WRITER_CONCURRENCY must be at least 1")

        return cls(
            ledger_db_path=Path(db_path) if db_path else DEFAULT_DB_PATH,
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            extraction_model=os.getenv("EXTRACTION_MODEL", DEFAULT_EXTRACTION_MODEL),
            extraction_timeout_seconds=_env_float(
                "EXTRACTION_TIMEOUT_SECONDS", DEFAULT_EXTRACTION_TIMEOUT_SECONDS
            ),
            writer_concurrency=concurrency,
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_json=_env_bool("LOG_JSON"),
            temporal_endpoint=os.getenv("TEMPORAL_ENDPOINT"),
            temporal_namespace=os.getenv("TEMPORAL_NAMESPACE", "default"),
            temporal_api_key=os.getenv("TEMPORAL_API_KEY"),
            temporal_task_queue=os.getenv("TEMPORAL_TASK_QUEUE", DEFAULT_TASK_QUEUE),
        )

    @property
    def log_level_value(self) -> int:
        return getattr(logging, self.log_level, logging.INFO)


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Return the process-wide settings, reading the environment once."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Forget cached settings (used by tests that patch the environment)."""
    global _settings
    _settings = None
