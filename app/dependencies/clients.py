"""
Factory functions to provide shared clients and services as FastAPI dependencies.
"""

from functools import lru_cache

from fastapi import Request

from app.clients import OAuthStateCodec
from app.connectors import ConnectorRegistry
from app.core.config import AppSettings, get_settings
from app.services import (
    AccountConnectionService,
    AccountStore,
    MessageStore,
    MessageSyncService,
    TokenCipherService,
    TokenRefreshService,
    WebhookIngress,
)


@lru_cache()
def _settings() -> AppSettings:
    """Internal helper to cache settings for client factories."""
    return get_settings()


@lru_cache()
def get_token_cipher_service() -> TokenCipherService:
    """Provide symmetric encryption helper for token storage."""
    settings = _settings()
    return TokenCipherService(secret=settings.security.token_encryption_secret)


@lru_cache()
def get_oauth_state_codec() -> OAuthStateCodec:
    """Provide the OAuth state codec, keyed by the state secret when set."""
    settings = _settings()
    secret = settings.oauth.state_secret or settings.security.token_encryption_secret
    return OAuthStateCodec(secret_key=secret, ttl_seconds=settings.oauth.state_ttl_seconds)


@lru_cache()
def get_connector_registry() -> ConnectorRegistry:
    """Provide one connector per platform built from settings."""
    return ConnectorRegistry.from_settings(_settings())


@lru_cache()
def get_account_store() -> AccountStore:
    """Provide the shared SQLite account store."""
    settings = _settings()
    return AccountStore(settings.database_path, get_token_cipher_service())


@lru_cache()
def get_message_store() -> MessageStore:
    """Provide the shared SQLite message store."""
    settings = _settings()
    return MessageStore(settings.database_path)


def get_token_refresh_service() -> TokenRefreshService:
    """Build a token refresh service over the shared store and connectors."""
    return TokenRefreshService(get_account_store(), get_connector_registry())


def get_account_connection_service() -> AccountConnectionService:
    """Build the OAuth connection flow service."""
    return AccountConnectionService(
        connectors=get_connector_registry(),
        state_codec=get_oauth_state_codec(),
        accounts=get_account_store(),
        messages=get_message_store(),
    )


def get_webhook_ingress() -> WebhookIngress:
    """Build the webhook ingress service."""
    return WebhookIngress(
        connectors=get_connector_registry(),
        accounts=get_account_store(),
        messages=get_message_store(),
    )


def build_message_sync_service(settings: AppSettings) -> MessageSyncService:
    """Construct the sync scheduler; the application owns its lifetime."""
    return MessageSyncService(
        accounts=get_account_store(),
        messages=get_message_store(),
        connectors=get_connector_registry(),
        token_refresh=get_token_refresh_service(),
        batch_size=settings.sync.batch_size,
        batch_delay_seconds=settings.sync.batch_delay_seconds,
        account_timeout_seconds=settings.sync.account_timeout_seconds,
    )


def get_message_sync_service(request: Request) -> MessageSyncService:
    """Return the scheduler attached to the running application."""
    service = getattr(request.app.state, "message_sync", None)
    if service is None:
        service = build_message_sync_service(_settings())
        request.app.state.message_sync = service
    return service


__all__ = [
    "build_message_sync_service",
    "get_account_connection_service",
    "get_account_store",
    "get_connector_registry",
    "get_message_store",
    "get_message_sync_service",
    "get_oauth_state_codec",
    "get_token_cipher_service",
    "get_token_refresh_service",
    "get_webhook_ingress",
]
