"""FastAPI server for the statement ledger.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import accounts, compare, health, statements
from core.config import get_settings
from core.observability.logging import configure_logging, get_logger


logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)
    logger.info("Statement ledger API starting up...")

    yield

    logger.info("Statement ledger API shutting down...")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Statement Ledger API",
        description="API for writing extracted financial statements to the ledger and checking their quality",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(statements.router, prefix="/statements", tags=["Statements"])
    app.include_router(accounts.router, prefix="/accounts", tags=["Accounts"])
    app.include_router(compare.router, prefix="/compare", tags=["Compare"])

    return app


# Default app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=True)
