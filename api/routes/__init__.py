"""API Routes Package."""

from api.routes import accounts, compare, health, statements

__all__ = [
    "accounts",
    "compare",
    "health",
    "statements",
]
