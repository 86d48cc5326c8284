"""Expose dependency helpers for FastAPI routers."""

from .clients import (
    build_message_sync_service,
    get_account_connection_service,
    get_account_store,
    get_connector_registry,
    get_message_store,
    get_message_sync_service,
    get_oauth_state_codec,
    get_token_cipher_service,
    get_token_refresh_service,
    get_webhook_ingress,
)
from .config import get_app_settings

__all__ = [
    "build_message_sync_service",
    "get_account_connection_service",
    "get_account_store",
    "get_app_settings",
    "get_connector_registry",
    "get_message_store",
    "get_message_sync_service",
    "get_oauth_state_codec",
    "get_token_cipher_service",
    "get_token_refresh_service",
    "get_webhook_ingress",
]
