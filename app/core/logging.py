"""
Logging utilities for the FastAPI application and the sync scheduler.

Provides a consistent logging format and helpers that keep OAuth secrets
out of log output.
"""

import logging
import sys
from typing import Optional

from app.models.account import Platform

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stdout,
    )


def mask_secret(value: Optional[str]) -> str:
    """Report presence of a secret without revealing it."""
    return "SET" if value else "NOT SET"


def log_platform_configuration(settings) -> None:
    """Log which platforms have OAuth credentials, never the credentials."""
    for platform in Platform:
        platform_settings = settings.platform(platform)
        logger.info(
            "%s OAuth config: client_id=%s client_secret=%s redirect_uri=%s",
            platform.display_name,
            mask_secret(platform_settings.client_id),
            mask_secret(platform_settings.client_secret),
            platform_settings.redirect_uri or "NOT SET",
        )


__all__ = ["configure_logging", "log_platform_configuration", "mask_secret"]
