"""Public schema exports."""

from .accounts import AccountResponse, AuthorizationResponse, TokenRefreshResponse
from .sync import SyncResultResponse, SyncRunResponse, SyncStatusResponse

__all__ = [
    "AccountResponse",
    "AuthorizationResponse",
    "SyncResultResponse",
    "SyncRunResponse",
    "SyncStatusResponse",
    "TokenRefreshResponse",
]
