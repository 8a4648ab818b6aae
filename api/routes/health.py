"""Health check endpoints."""

from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.dependencies import get_store
from core.observability.metrics import get_metrics
from ledger.store import LedgerStore


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    timestamp: str
    version: str
    services: Dict[str, str]


@router.get("/health", response_model=HealthResponse)
def health_check(store: LedgerStore = Depends(get_store)) -> HealthResponse:
    """Health check endpoint."""
    try:
        with store.transaction() as conn:
            conn.execute("SELECT 1")
        storage = "up"
    except Exception:
        storage = "down"

    return HealthResponse(
        status="healthy" if storage == "up" else "degraded",
        timestamp=datetime.now(timezone.utc).isoformat(),
        version="1.0.0",
        services={"api": "up", "storage": storage},
    )


@router.get("/ready")
async def readiness_check() -> Dict[str, str]:
    """Readiness probe for Kubernetes."""
    return {"status": "ready"}


@router.get("/metrics")
async def metrics() -> Dict[str, Any]:
    """In-process pipeline counters and stage timings."""
    return get_metrics().get_summary()
