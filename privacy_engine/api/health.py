"""Health check endpoints.

/health        - Liveness probe: is the process up?
/health/ready  - Readiness probe: can we serve traffic? (DB reachable when storage is sql)

These are public endpoints - no auth required.
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from privacy_engine.config import Settings, StorageBackend, get_settings
from privacy_engine.database import get_engine

router = APIRouter(prefix="/health", tags=["health"])


@router.get("")
async def liveness() -> dict:
    """Liveness probe - always returns 200 if the process is running."""
    return {"status": "ok", "timestamp": datetime.now(UTC).isoformat()}


@router.get("/ready")
async def readiness(settings: Settings = Depends(get_settings)) -> dict:
    """Readiness probe - checks DB connectivity for the sql backend."""
    if settings.storage_backend == StorageBackend.MEMORY:
        storage_status = "ok"
    else:
        try:
            engine = get_engine()
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            storage_status = "ok"
        except (SQLAlchemyError, OSError, RuntimeError) as exc:
            storage_status = f"error: {exc}"

    is_ready = storage_status == "ok"
    return {
        "status": "ready" if is_ready else "not_ready",
        "storage": settings.storage_backend.value,
        "storage_status": storage_status,
        "timestamp": datetime.now(UTC).isoformat(),
    }
