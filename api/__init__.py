"""API Package.

FastAPI server for the statement ledger.
"""

from api.server import create_app, app

__all__ = [
    "create_app",
    "app",
]
