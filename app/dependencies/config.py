"""
Settings dependency for routes that read configuration directly.
"""

from app.core.config import AppSettings, get_settings


def get_app_settings() -> AppSettings:
    """FastAPI dependency returning the cached application settings."""
    return get_settings()


__all__ = ["get_app_settings"]
