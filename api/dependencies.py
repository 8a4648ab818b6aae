"""Request dependencies shared by the API routes.

Tests replace these through ``app.dependency_overrides``.
"""

from core.config import get_settings
from extraction.runner import ExtractionClient, OpenAIExtractionClient
from ledger.store import LedgerStore


_initialized_paths = set()


def get_store() -> LedgerStore:
    """Ledger store for the configured database, created on first use."""
    path = str(get_settings().ledger_db_path)
    store = LedgerStore(path)
    if path not in _initialized_paths:
        store.init_db()
        _initialized_paths.add(path)
    return store


def get_extraction_client() -> ExtractionClient:
    return OpenAIExtractionClient()
