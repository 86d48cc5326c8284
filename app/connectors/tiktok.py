"""
TikTok connector (Login Kit v2).

TikTok names the client id ``client_key``, reports OAuth failures as JSON
bodies with HTTP 200, and signs webhooks with ``Tiktok-Signature:
t=<timestamp>,s=<hex>``. There is no direct-message API and no webhook
challenge handshake.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Optional, Type
from urllib.parse import urlencode

import httpx
from pydantic import BaseModel, ValidationError

from app.connectors.base import PlatformConnector, hmac_digest, signatures_match
from app.core.errors import (
    IntegrationError,
    MalformedPayloadError,
    OAuthExchangeError,
    RefreshFailedError,
)
from app.models.account import Platform
from app.models.message import WebhookEvent
from app.models.oauth import PlatformProfile, TokenGrant

_INVALID_TOKEN_CODES = frozenset({"access_token_invalid", "scope_not_authorized"})


class _TikTokUser(BaseModel):
    open_id: str
    union_id: Optional[str] = None
    display_name: Optional[str] = None
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    bio_description: Optional[str] = None
    follower_count: Optional[int] = None
    following_count: Optional[int] = None


class _TikTokUserData(BaseModel):
    user: _TikTokUser


class _TikTokUserInfoResponse(BaseModel):
    data: _TikTokUserData


class TikTokWebhookEnvelope(BaseModel):
    client_key: Optional[str] = None
    event: str
    create_time: Optional[int] = None
    user_openid: Optional[str] = None
    content: Optional[str] = None


class TikTokConnector(PlatformConnector):
    platform = Platform.TIKTOK
    AUTH_URL = "https://www.tiktok.com/v2/auth/authorize/"
    TOKEN_URL = "https://open.tiktokapis.com/v2/oauth/token/"
    USER_INFO_URL = "https://open.tiktokapis.com/v2/user/info/"
    SIGNATURE_HEADER = "Tiktok-Signature"
    scope_separator = ","
    _USER_FIELDS = (
        "open_id,union_id,avatar_url,display_name,username,"
        "bio_description,follower_count,following_count"
    )

    def build_authorization_url(self, state: str) -> str:
        settings = self.require_config()
        params = {
            "client_key": settings.client_id,
            "redirect_uri": settings.redirect_uri,
            "response_type": "code",
            "scope": self.scope_separator.join(settings.scopes),
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(params)}"

    async def exchange_code_for_token(self, code: str, state: str) -> TokenGrant:
        settings = self.require_config()
        payload = {
            "client_key": settings.client_id,
            "client_secret": settings.client_secret,
            "code": code,
            "grant_type": "authorization_code",
            "redirect_uri": settings.redirect_uri,
        }
        response = await self._send(
            "POST", self.TOKEN_URL, failure=OAuthExchangeError, data=payload
        )
        return self._parse_token_response(response, failure=OAuthExchangeError)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        settings = self.require_config()
        payload = {
            "client_key": settings.client_id,
            "client_secret": settings.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }
        response = await self._send(
            "POST", self.TOKEN_URL, failure=RefreshFailedError, data=payload
        )
        return self._parse_token_response(response, failure=RefreshFailedError)

    def _token_grant_from(
        self, payload: Dict[str, Any], *, failure: Type[IntegrationError]
    ) -> TokenGrant:
        if payload.get("error"):
            description = payload.get("error_description") or payload["error"]
            raise failure(f"TikTok OAuth error: {description}", detail=str(description))
        return super()._token_grant_from(payload, failure=failure)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        payload = await self._get_api(
            self.USER_INFO_URL, access_token, params={"fields": self._USER_FIELDS}
        )
        user = self._decode(_TikTokUserInfoResponse, payload).data.user
        return PlatformProfile(
            platform_id=user.open_id,
            username=user.username or user.display_name or user.open_id,
            display_name=user.display_name,
            avatar_url=user.avatar_url,
            bio=user.bio_description,
            followers_count=user.follower_count,
            following_count=user.following_count,
            extra={"union_id": user.union_id},
        )

    def _is_invalid_token(self, response: httpx.Response) -> bool:
        try:
            error = response.json().get("error") or {}
        except ValueError:
            return False
        return isinstance(error, dict) and error.get("code") in _INVALID_TOKEN_CODES

    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self._webhook_secret()
        if not secret or not signature:
            return False
        parts = dict(
            item.split("=", 1) for item in signature.split(",") if "=" in item
        )
        timestamp, provided = parts.get("t"), parts.get("s")
        if not timestamp or not provided:
            return False
        signed_payload = timestamp.encode("utf-8") + b"." + raw_payload
        expected = hmac_digest(secret, signed_payload, hashlib.sha256).hex()
        return signatures_match(provided, expected)

    def parse_webhook(self, raw_payload: bytes) -> List[WebhookEvent]:
        try:
            envelope = TikTokWebhookEnvelope.model_validate_json(raw_payload)
        except ValidationError as exc:
            raise MalformedPayloadError("Invalid TikTok webhook payload.") from exc
        # Events cover authorization and video publishing, never messages.
        return [
            WebhookEvent(
                platform=self.platform,
                event_type=envelope.event,
                recipient_id=envelope.user_openid,
            )
        ]


__all__ = ["TikTokConnector", "TikTokWebhookEnvelope"]
