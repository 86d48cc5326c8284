"""
FastAPI application entrypoint for the social account sync service.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI

from app.api.routes import router as api_router
from app.core.config import get_settings
from app.core.logging import configure_logging, log_platform_configuration
from app.dependencies import build_message_sync_service

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Own the sync scheduler for the lifetime of the process."""
    settings = get_settings()
    log_platform_configuration(settings)

    sync_service = build_message_sync_service(settings)
    app.state.message_sync = sync_service
    if settings.sync.enabled:
        sync_service.start(settings.sync.interval_minutes)
    else:
        logger.info("Message sync disabled by configuration")
    try:
        yield
    finally:
        await sync_service.stop()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title="Social Account Sync",
        version="0.1.0",
        description="Connects social media accounts over OAuth and mirrors their inbound messages.",
        lifespan=lifespan,
    )
    app.include_router(api_router, prefix="/api")
    return app


app = create_app()

__all__ = ["app", "create_app"]
