"""FastAPI application entrypoint.

Application startup order:
1. Load settings (from environment)
2. Configure structured logging
3. Initialize database engine and session factory (sql backend only)
4. Wire the PrivacyService and load retention policies
5. Register middleware and include routers

Shutdown order:
1. Close DB connection pool
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from privacy_engine import __version__
from privacy_engine.api.privacy import privacy_error_handler
from privacy_engine.api.router import api_v1_router, public_router
from privacy_engine.compliance.service import build_service
from privacy_engine.config import StorageBackend, get_settings
from privacy_engine.core.errors import PrivacyError
from privacy_engine.database import close_db, init_db
from privacy_engine.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings = get_settings()

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.json_logs,
        log_level="DEBUG" if settings.debug else settings.log_level,
    )

    log.info(
        "app.starting",
        environment=settings.environment,
        storage=settings.storage_backend,
        db_url=settings.database_url.split("@")[-1],
    )

    if settings.storage_backend == StorageBackend.SQL:
        init_db(settings)

    service = build_service(settings)
    await service.load_policies(include_defaults=settings.load_default_policies)
    app.state.privacy_service = service

    log.info("app.ready")

    yield

    await close_db()
    log.info("app.shutdown")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()

    app = FastAPI(
        title="Privacy Engine",
        description=(
            "GDPR/AVG data subject rights, consent ledger and retention policy "
            "evaluation with Dutch statutory retention floors."
        ),
        version=__version__,
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )

    # ------------------------------------------------------------------ #
    # Middleware
    # ------------------------------------------------------------------ #

    # Unique request ID for log correlation
    app.add_middleware(RequestIdMiddleware)

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #

    app.include_router(public_router)
    app.include_router(api_v1_router)

    # ------------------------------------------------------------------ #
    # Exception handlers
    # ------------------------------------------------------------------ #

    app.add_exception_handler(PrivacyError, privacy_error_handler)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "Internal server error", "context": {}},
        )

    return app


# Module-level app instance for uvicorn
app = create_app()
