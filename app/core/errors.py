"""
Error taxonomy shared by connectors, stores and the HTTP layer.

Connector methods raise only these exceptions; the sync and OAuth callback
boundaries convert them into ``SyncResult`` values or redirects.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    NOT_CONFIGURED = "not_configured"
    INVALID_PLATFORM = "invalid_platform"
    INVALID_STATE = "invalid_state"
    EXPIRED_STATE = "expired_state"
    PLATFORM_MISMATCH = "platform_mismatch"
    OAUTH_EXCHANGE_FAILED = "oauth_exchange_failed"
    INVALID_TOKEN = "invalid_token"
    REFRESH_FAILED = "refresh_failed"
    FETCH_FAILED = "fetch_failed"
    NOT_SUPPORTED = "not_supported"
    MALFORMED_PAYLOAD = "malformed_payload"
    CHALLENGE_REJECTED = "challenge_rejected"
    ACCOUNT_NOT_FOUND = "account_not_found"


class IntegrationError(Exception):
    """Base class for every failure raised by the integration layer."""

    code: ErrorCode = ErrorCode.FETCH_FAILED

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class NotConfiguredError(IntegrationError):
    """Platform client id, secret or redirect URI is missing."""

    code = ErrorCode.NOT_CONFIGURED


class InvalidPlatformError(IntegrationError):
    code = ErrorCode.INVALID_PLATFORM


class OAuthStateError(IntegrationError):
    """Base class for rejected OAuth state tokens."""

    code = ErrorCode.INVALID_STATE


class InvalidStateError(OAuthStateError):
    code = ErrorCode.INVALID_STATE


class ExpiredStateError(OAuthStateError):
    code = ErrorCode.EXPIRED_STATE


class PlatformMismatchError(OAuthStateError):
    code = ErrorCode.PLATFORM_MISMATCH


class OAuthExchangeError(IntegrationError):
    """Provider rejected the authorization code; ``detail`` holds its response."""

    code = ErrorCode.OAUTH_EXCHANGE_FAILED


class InvalidTokenError(IntegrationError):
    """Access token was rejected; the account must be re-authenticated."""

    code = ErrorCode.INVALID_TOKEN


class RefreshFailedError(IntegrationError):
    code = ErrorCode.REFRESH_FAILED


class FetchFailedError(IntegrationError):
    """Transient network or API failure, eligible for retry on the next pass."""

    code = ErrorCode.FETCH_FAILED


class NotSupportedError(IntegrationError):
    code = ErrorCode.NOT_SUPPORTED


class MalformedPayloadError(IntegrationError):
    code = ErrorCode.MALFORMED_PAYLOAD


class ChallengeRejectedError(IntegrationError):
    """Webhook handshake carried a wrong verify token or no challenge."""

    code = ErrorCode.CHALLENGE_REJECTED


class AccountNotFoundError(IntegrationError):
    code = ErrorCode.ACCOUNT_NOT_FOUND


# Failures that require the user to re-authenticate.
REAUTH_REQUIRED_CODES = frozenset({ErrorCode.INVALID_TOKEN, ErrorCode.REFRESH_FAILED})


__all__ = [
    "AccountNotFoundError",
    "ChallengeRejectedError",
    "ErrorCode",
    "ExpiredStateError",
    "FetchFailedError",
    "IntegrationError",
    "InvalidPlatformError",
    "InvalidStateError",
    "InvalidTokenError",
    "MalformedPayloadError",
    "NotConfiguredError",
    "NotSupportedError",
    "OAuthExchangeError",
    "OAuthStateError",
    "PlatformMismatchError",
    "REAUTH_REQUIRED_CODES",
    "RefreshFailedError",
]
