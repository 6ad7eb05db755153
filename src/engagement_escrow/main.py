"""FastAPI application entry point for the engagement escrow service.

Lifecycle:
    1. Startup: Initialize logging, database, Redis, create tables (dev mode).
    2. Running: Serve the REST API at /api/v1/*.
    3. Shutdown: Close database and Redis connections gracefully.

Run with:
    uv run uvicorn engagement_escrow.main:app --reload --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from fastapi import FastAPI

from engagement_escrow import __version__
from engagement_escrow.config import get_settings
from engagement_escrow.logging_config import get_logger, setup_logging

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    settings = get_settings()

    setup_logging(
        log_level=settings.app_log_level,
        json_logs=not settings.is_development,
    )
    logger = get_logger(__name__)
    logger.info(
        "app.starting",
        env=settings.app_env,
        debug=settings.app_debug,
        processor=settings.processor_backend.value,
    )

    from engagement_escrow.infrastructure.database.engine import close_db, init_db

    await init_db()

    from engagement_escrow.infrastructure.redis_client import close_redis, init_redis

    try:
        await init_redis()
    except Exception as exc:
        logger.warning("app.redis_unavailable", error=str(exc))

    logger.info("app.started", host=settings.app_host, port=settings.app_port)

    yield

    logger.info("app.shutting_down")
    await close_db()
    await close_redis()
    logger.info("app.stopped")


def create_app() -> FastAPI:
    """Application factory - creates and configures the FastAPI app."""
    settings = get_settings()

    app = FastAPI(
        title="Engagement Escrow",
        description=(
            "Offer negotiation, engagement lifecycle and escrow settlement "
            "for a B2B talent marketplace."
        ),
        version=__version__,
        lifespan=lifespan,
        debug=settings.app_debug,
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
    )

    from engagement_escrow.api.middleware import setup_middleware

    setup_middleware(app)

    from engagement_escrow.api.routes.disputes import router as disputes_router
    from engagement_escrow.api.routes.engagements import router as engagements_router
    from engagement_escrow.api.routes.escrow import router as escrow_router
    from engagement_escrow.api.routes.fees import router as fees_router
    from engagement_escrow.api.routes.health import router as health_router
    from engagement_escrow.api.routes.offers import router as offers_router

    app.include_router(health_router)
    app.include_router(fees_router)
    app.include_router(offers_router)
    app.include_router(engagements_router)
    app.include_router(escrow_router)
    app.include_router(disputes_router)

    return app


# The app instance used by Uvicorn
app = create_app()
