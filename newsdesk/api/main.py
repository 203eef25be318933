#!/usr/bin/env python3
"""
Newsdesk API
============

FastAPI application exposing idempotent newsletter publishing and
delivery administration. Delivery workers run in-process unless
DELIVERY_WORKER_ENABLED=false (then run newsdesk.core.outbox.runner).

Usage:
    uvicorn newsdesk.api.main:app
    python -m newsdesk.api.main
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from ..config import Settings, get_settings
from ..core.database import DatabaseAdapter, DatabaseConfig
from ..core.observability import configure_logging, init_metrics, init_tracing
from ..core.outbox import delivery_workers_lifespan
from ..core.outbox.worker import EmailSender
from .routers.deliveries import router as deliveries_router
from .routers.newsletters import router as newsletters_router
from .shared.middleware import register_error_handlers
from .shared.routers.health import router as health_router

logger = logging.getLogger(__name__)

SERVICE_NAME = "newsdesk-api"


def init_observability(settings: Settings):
    """Configure logging, tracing and metrics from settings."""
    configure_logging(
        level=settings.LOG_LEVEL,
        structured=settings.LOG_STRUCTURED,
        service_name=SERVICE_NAME
    )
    init_tracing(
        service_name=SERVICE_NAME,
        otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        console_export=settings.OTEL_CONSOLE_EXPORT
    )
    init_metrics(
        service_name=SERVICE_NAME,
        otlp_endpoint=settings.OTEL_EXPORTER_OTLP_ENDPOINT,
        console_export=settings.OTEL_CONSOLE_EXPORT
    )

    for issue in settings.validate():
        logger.warning(f"Configuration: {issue}")


def create_app(
    settings: Optional[Settings] = None,
    db: Optional[DatabaseAdapter] = None,
    email_client: Optional[EmailSender] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Configuration (defaults to the environment)
        db: Pre-built database adapter; the app creates and owns one otherwise
        email_client: Email sender for in-process workers
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifespan - startup and shutdown."""
        init_observability(settings)

        owns_db = app.state.db is None
        if owns_db:
            app.state.db = DatabaseAdapter(DatabaseConfig.from_settings(settings))
        await app.state.db.connect()

        try:
            async with delivery_workers_lifespan(app.state.db, settings, email_client) as workers:
                app.state.delivery_workers = workers
                yield
        finally:
            app.state.delivery_workers = []
            if owns_db:
                await app.state.db.disconnect()
                app.state.db = None
                logger.info("Database disconnected")

    app = FastAPI(
        title="Newsdesk API",
        description="Idempotent newsletter publishing with a transactional delivery outbox",
        version="0.1.0",
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.db = db
    app.state.delivery_workers = []

    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(newsletters_router)
    app.include_router(deliveries_router)

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT)
