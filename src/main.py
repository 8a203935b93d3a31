"""Rebate Wearables API — FastAPI application entry point.

Run locally:
    uvicorn src.main:app --reload --port 8000
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.config import get_settings
from src.integrations.postgres_store import PostgresConnectionStore
from src.integrations.services import build_services
from src.middleware.clerk_auth import ClerkAuthMiddleware
from src.routers import health, integrations
from src.services.database import close_pool, init_pool

# ---------- Logging ----------

logging.basicConfig(
    level=get_settings().log_level.upper(),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("rebate")


# ---------- Lifespan ----------

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup / shutdown hooks."""
    settings = get_settings()
    logger.info(
        "Starting %s v%s [%s]",
        settings.app_name,
        settings.app_version,
        settings.environment,
    )
    if settings.database_url:
        await init_pool(settings)

    services = build_services(settings)
    if isinstance(services.store, PostgresConnectionStore):
        await services.store.ensure_schema()
    app.state.integrations = services

    yield

    await close_pool()
    logger.info("%s shut down", settings.app_name)


# ---------- App factory ----------

def create_app() -> FastAPI:
    settings = get_settings()

    app = FastAPI(
        title=f"{settings.app_name} API",
        description="Wearable account connections and biometric data sync.",
        version=settings.app_version,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # ---------- Middleware ----------

    # Clerk JWT authentication
    app.add_middleware(ClerkAuthMiddleware, settings=settings)

    # Added last so it wraps auth and answers preflight requests
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ---------- System routes (no auth) ----------
    app.include_router(health.router)

    # ---------- API v1 routes ----------
    app.include_router(integrations.router, prefix="/api/v1")

    return app


app = create_app()
