"""Service layer exports."""

from .account_connection import AccountConnectionService
from .account_store import AccountStore
from .message_store import MessageStore
from .message_sync import MessageSyncService
from .token_cipher import TokenCipherService
from .token_refresh import TokenRefreshService
from .webhook_ingress import WebhookIngress

__all__ = [
    "AccountConnectionService",
    "AccountStore",
    "MessageStore",
    "MessageSyncService",
    "TokenCipherService",
    "TokenRefreshService",
    "WebhookIngress",
]
