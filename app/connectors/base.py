"""
Shared contract and HTTP plumbing for platform connectors.

Every connector exposes the same capability set. Platforms that lack a
capability either return an empty result (messaging) or raise
``NotSupportedError`` (webhook handshakes); they never fail in any other way.
All transport and provider failures are translated into the errors from
``app.core.errors`` before leaving a connector method.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from app.core.config import PlatformSettings
from app.core.errors import (
    FetchFailedError,
    IntegrationError,
    InvalidTokenError,
    MalformedPayloadError,
    NotConfiguredError,
    NotSupportedError,
    OAuthExchangeError,
    RefreshFailedError,
)
from app.models.account import Account, Platform
from app.models.message import InboundMessage, WebhookEvent
from app.models.oauth import PlatformProfile, TokenGrant

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

# Providers can index items after the pass that moved the cursor; re-read this
# much history and let message-id dedupe absorb repeats.
SYNC_CURSOR_OVERLAP = timedelta(minutes=10)


@dataclass(slots=True)
class ChallengeResponse:
    body: str
    media_type: str = "text/plain"


def hmac_digest(secret: str, payload: bytes, algorithm=hashlib.sha256) -> bytes:
    return hmac.new(secret.encode("utf-8"), payload, algorithm).digest()


def signatures_match(provided: Optional[str], expected: str) -> bool:
    if not provided:
        return False
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def parse_iso_datetime(value: Optional[str]) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def from_epoch_millis(value: Optional[int | str]) -> datetime:
    if value in (None, ""):
        return datetime.now(timezone.utc)
    millis = int(value)
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError) as exc:
        raise ValueError(f"Timestamp out of range: {value!r}") from exc


def is_after_cursor(received_at: datetime, cursor: Optional[datetime]) -> bool:
    """True when an item may not have been seen by the pass that set ``cursor``."""
    return cursor is None or received_at > cursor - SYNC_CURSOR_OVERLAP


class PlatformConnector(ABC):
    """Uniform OAuth, profile, messaging and webhook contract for one platform."""

    platform: Platform
    AUTH_URL: str
    TOKEN_URL: str
    SIGNATURE_HEADER: str = "X-Hub-Signature-256"
    scope_separator: str = " "
    default_token_lifetime: Optional[int] = None

    def __init__(
        self,
        settings: PlatformSettings,
        *,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._settings = settings
        self._timeout = timeout
        self._transport = transport

    @property
    def is_configured(self) -> bool:
        return self._settings.is_configured

    @property
    def supports_messaging(self) -> bool:
        return False

    # -- OAuth -----------------------------------------------------------

    def build_authorization_url(self, state: str) -> str:
        """Construct the provider consent URL carrying ``state``."""
        settings = self.require_config()
        params = {
            "client_id": settings.client_id,
            "redirect_uri": settings.redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(settings.scopes),
            "state": state,
        }
        params.update(self._extra_authorization_params(state))
        return f"{self.AUTH_URL}?{urlencode(params)}"

    def _extra_authorization_params(self, state: str) -> Dict[str, str]:
        return {}

    async def exchange_code_for_token(self, code: str, state: str) -> TokenGrant:
        """Exchange an authorization code once. Codes are single-use; never retried."""
        settings = self.require_config()
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.redirect_uri,
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
        }
        response = await self._send(
            "POST", self.TOKEN_URL, failure=OAuthExchangeError, data=payload
        )
        return self._parse_token_response(response, failure=OAuthExchangeError)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        settings = self.require_config()
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": settings.client_id,
            "client_secret": settings.client_secret,
        }
        response = await self._send(
            "POST", self.TOKEN_URL, failure=RefreshFailedError, data=payload
        )
        return self._parse_token_response(response, failure=RefreshFailedError)

    # -- Data ------------------------------------------------------------

    @abstractmethod
    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        """Return the profile behind ``access_token``."""

    async def fetch_account_profile(self, account: Account) -> PlatformProfile:
        """Fetch the current profile with the account's stored token."""
        if not account.access_token:
            raise InvalidTokenError(f"{self.platform.display_name} account has no access token.")
        return await self.fetch_profile(account.access_token)

    async def fetch_new_messages(self, account: Account) -> List[InboundMessage]:
        """Return messages not yet seen for the account.

        Platforms without messaging API access only read the profile so a
        revoked token is still detected, then report nothing new. The sync
        service calls ``fetch_account_profile`` itself for these platforms and
        stores the result.
        """
        await self.fetch_account_profile(account)
        logger.debug(
            "Messaging API not available for %s; nothing to sync",
            self.platform.display_name,
            extra={"account_id": account.id},
        )
        return []

    # -- Webhooks --------------------------------------------------------

    @abstractmethod
    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        """Check ``signature`` against an HMAC of the exact bytes received."""

    def respond_to_challenge(self, params: Mapping[str, str]) -> ChallengeResponse:
        raise NotSupportedError(
            f"{self.platform.display_name} does not use a webhook challenge handshake."
        )

    def parse_webhook(self, raw_payload: bytes) -> List[WebhookEvent]:
        """Decode a verified payload. The default accepts JSON carrying no messages."""
        self._load_json(raw_payload)
        return []

    # -- Helpers ---------------------------------------------------------

    def require_config(self) -> PlatformSettings:
        if not self._settings.is_configured:
            prefix = self.platform.value.upper()
            raise NotConfiguredError(
                f"OAuth not configured for {self.platform.display_name}. Please set "
                f"{prefix}_CLIENT_ID, {prefix}_CLIENT_SECRET and {prefix}_REDIRECT_URI."
            )
        return self._settings

    def _webhook_secret(self) -> Optional[str]:
        return self._settings.signing_secret

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    async def _send(
        self,
        method: str,
        url: str,
        *,
        failure: Type[IntegrationError] = FetchFailedError,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            raise failure(f"{self.platform.display_name} request timed out.") from exc
        except httpx.HTTPError as exc:
            raise failure(f"{self.platform.display_name} request failed: {exc}") from exc

    async def _get_api(self, url: str, access_token: str, **kwargs: Any) -> Dict[str, Any]:
        """GET an API resource, mapping token rejection to ``InvalidTokenError``."""
        headers = {"Authorization": f"Bearer {access_token}", "Accept": "application/json"}
        headers.update(kwargs.pop("headers", {}))
        response = await self._send("GET", url, headers=headers, **kwargs)
        return self._check_api_response(response)

    def _check_api_response(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code == httpx.codes.UNAUTHORIZED or self._is_invalid_token(response):
            raise InvalidTokenError(
                f"{self.platform.display_name} rejected the access token.",
                detail=response.text,
            )
        if not response.is_success:
            raise FetchFailedError(
                f"{self.platform.display_name} API error: {response.status_code}",
                detail=response.text,
            )
        return self._load_json(response.content, failure=FetchFailedError)

    def _is_invalid_token(self, response: httpx.Response) -> bool:
        return False

    def _parse_token_response(
        self, response: httpx.Response, *, failure: Type[IntegrationError]
    ) -> TokenGrant:
        if not response.is_success:
            logger.warning(
                "%s token endpoint returned %s",
                self.platform.display_name,
                response.status_code,
            )
            raise failure(
                f"{self.platform.display_name} OAuth error: {response.text}",
                detail=response.text,
            )
        payload = self._load_json(response.content, failure=failure)
        return self._token_grant_from(payload, failure=failure)

    def _token_grant_from(
        self, payload: Dict[str, Any], *, failure: Type[IntegrationError]
    ) -> TokenGrant:
        access_token = payload.get("access_token")
        if not access_token:
            raise failure(
                f"Incomplete token payload returned from {self.platform.display_name}.",
                detail=json.dumps({k: v for k, v in payload.items() if "token" not in k}),
            )
        expires_in = payload.get("expires_in") or self.default_token_lifetime
        return TokenGrant(
            access_token=access_token,
            refresh_token=payload.get("refresh_token"),
            expires_in=int(expires_in) if expires_in else None,
        )

    def _decode(self, model: Type[ModelT], payload: Any, what: str = "profile") -> ModelT:
        try:
            return model.model_validate(payload)
        except ValidationError as exc:
            raise FetchFailedError(
                f"Unexpected {self.platform.display_name} {what} payload."
            ) from exc

    def _load_json(
        self, raw: bytes, *, failure: Type[IntegrationError] = MalformedPayloadError
    ) -> Dict[str, Any]:
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            raise failure(f"{self.platform.display_name} returned invalid JSON.") from exc
        if not isinstance(payload, dict):
            raise failure(f"{self.platform.display_name} returned an unexpected payload.")
        return payload


__all__ = [
    "ChallengeResponse",
    "PlatformConnector",
    "SYNC_CURSOR_OVERLAP",
    "from_epoch_millis",
    "hmac_digest",
    "is_after_cursor",
    "parse_iso_datetime",
    "signatures_match",
]
