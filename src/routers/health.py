"""Health check endpoint — public, no auth required."""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Request

from src.config import get_settings
from src.integrations.postgres_store import PostgresConnectionStore
from src.services.database import get_pool

router = APIRouter(tags=["system"])
logger = logging.getLogger("rebate.health")


@router.get("/health")
async def health_check(request: Request) -> dict:
    """Liveness probe. Returns 200 if the API process is up.

    When connections are stored in Postgres, also performs a lightweight
    DB connectivity check.  The in-memory store has no database to probe.
    """
    settings = get_settings()
    services = getattr(request.app.state, "integrations", None)
    uses_db = services is not None and isinstance(services.store, PostgresConnectionStore)

    database = "not_configured"
    if uses_db:
        database = "unreachable"
        try:
            pool = get_pool()
            async with pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            database = "connected"
        except Exception as exc:
            logger.warning("Health check DB probe failed: %s", exc)

    return {
        "status": "degraded" if database == "unreachable" or services is None else "healthy",
        "version": settings.app_version,
        "environment": settings.environment,
        "database": database,
        "integrations": sorted(s.value for s in services.managers) if services else [],
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
