"""
Instagram and Facebook connectors.

Both platforms run on Meta's Graph infrastructure and share the webhook
handshake (``hub.challenge``), the ``X-Hub-Signature-256`` signature scheme
and the Graph error format. Neither exposes inbox polling to standard apps:
Instagram Basic Display has no messaging API and Facebook page messaging
requires a reviewed page token, so both report an empty inbox on sync and
receive messages through webhooks only.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List, Mapping, Optional

import httpx
from pydantic import BaseModel, Field, ValidationError

from app.connectors.base import (
    ChallengeResponse,
    PlatformConnector,
    from_epoch_millis,
    hmac_digest,
    signatures_match,
)
from app.core.errors import (
    ChallengeRejectedError,
    MalformedPayloadError,
    OAuthExchangeError,
    RefreshFailedError,
)
from app.models.account import Platform
from app.models.message import InboundMessage, MessageType, WebhookEvent
from app.models.oauth import PlatformProfile, TokenGrant

# Graph API error code for expired or revoked tokens.
_GRAPH_INVALID_TOKEN_CODE = 190


class _MetaParty(BaseModel):
    id: str
    username: Optional[str] = None


class _MetaMessageBody(BaseModel):
    mid: str
    text: Optional[str] = None
    is_echo: bool = False


class _MetaMessaging(BaseModel):
    sender: _MetaParty
    recipient: _MetaParty
    timestamp: Optional[int] = None
    message: Optional[_MetaMessageBody] = None


class _MetaCommentValue(BaseModel):
    id: Optional[str] = None
    comment_id: Optional[str] = None
    text: Optional[str] = None
    message: Optional[str] = None
    sender: Optional[_MetaParty] = Field(None, alias="from")
    created_time: Optional[int] = None
    post_id: Optional[str] = None


class _MetaChange(BaseModel):
    field: str
    value: Dict[str, Any] = Field(default_factory=dict)


class _MetaEntry(BaseModel):
    id: str
    time: Optional[int] = None
    messaging: List[_MetaMessaging] = Field(default_factory=list)
    changes: List[_MetaChange] = Field(default_factory=list)


class MetaWebhookEnvelope(BaseModel):
    object: str
    entry: List[_MetaEntry] = Field(default_factory=list)


class MetaGraphConnector(PlatformConnector):
    """Behaviour shared by Graph-based platforms."""

    SIGNATURE_HEADER = "X-Hub-Signature-256"
    scope_separator = ","
    default_token_lifetime = 60 * 24 * 3600
    _COMMENT_FIELDS = frozenset({"comments", "feed", "mentions"})

    def _is_invalid_token(self, response: httpx.Response) -> bool:
        if response.is_success:
            return False
        try:
            error = response.json().get("error") or {}
        except ValueError:
            return False
        return error.get("code") == _GRAPH_INVALID_TOKEN_CODE

    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self._webhook_secret()
        if not secret:
            return False
        expected = "sha256=" + hmac_digest(secret, raw_payload, hashlib.sha256).hex()
        return signatures_match(signature, expected)

    def respond_to_challenge(self, params: Mapping[str, str]) -> ChallengeResponse:
        mode = params.get("hub.mode")
        challenge = params.get("hub.challenge")
        token = params.get("hub.verify_token")
        expected = self._settings.webhook_verify_token
        if mode != "subscribe" or not challenge:
            raise ChallengeRejectedError("Missing hub.mode or hub.challenge.")
        if not expected or not signatures_match(token, expected):
            raise ChallengeRejectedError("Invalid verify token.")
        return ChallengeResponse(body=challenge)

    def parse_webhook(self, raw_payload: bytes) -> List[WebhookEvent]:
        try:
            envelope = MetaWebhookEnvelope.model_validate_json(raw_payload)
        except ValidationError as exc:
            raise MalformedPayloadError(
                f"Invalid {self.platform.display_name} webhook payload."
            ) from exc

        events: List[WebhookEvent] = []
        for entry in envelope.entry:
            messages = [
                self._message_from_messaging(item, item.message)
                for item in entry.messaging
                if item.message and not item.message.is_echo
            ]
            for change in entry.changes:
                if change.field in self._COMMENT_FIELDS:
                    comment = self._message_from_change(change, entry)
                    if comment is not None:
                        messages.append(comment)
            event_type = "messages" if entry.messaging else "changes"
            events.append(
                WebhookEvent(
                    platform=self.platform,
                    event_type=event_type,
                    recipient_id=entry.id,
                    messages=messages,
                )
            )
        return events

    @staticmethod
    def _message_from_messaging(
        item: _MetaMessaging, body: _MetaMessageBody
    ) -> InboundMessage:
        return InboundMessage(
            platform_message_id=body.mid,
            type=MessageType.DM,
            content=body.text or "",
            sender_id=item.sender.id,
            sender_username=item.sender.username or item.sender.id,
            received_at=from_epoch_millis(item.timestamp),
            thread_id=item.sender.id,
        )

    def _message_from_change(
        self, change: _MetaChange, entry: _MetaEntry
    ) -> Optional[InboundMessage]:
        try:
            value = _MetaCommentValue.model_validate(change.value)
        except ValidationError as exc:
            raise MalformedPayloadError("Invalid comment change payload.") from exc
        message_id = value.comment_id or value.id
        if not message_id:
            return None
        sender = value.sender or _MetaParty(id="unknown")
        created = value.created_time * 1000 if value.created_time else entry.time
        return InboundMessage(
            platform_message_id=message_id,
            type=MessageType.MENTION if change.field == "mentions" else MessageType.COMMENT,
            content=value.text or value.message or "",
            sender_id=sender.id,
            sender_username=sender.username or sender.id,
            received_at=from_epoch_millis(created),
            parent_message_id=value.post_id,
        )


class _InstagramMe(BaseModel):
    id: str
    username: str
    account_type: str = "PERSONAL"
    media_count: Optional[int] = None
    profile_picture_url: Optional[str] = None


class InstagramConnector(MetaGraphConnector):
    platform = Platform.INSTAGRAM
    AUTH_URL = "https://api.instagram.com/oauth/authorize"
    TOKEN_URL = "https://api.instagram.com/oauth/access_token"
    GRAPH_URL = "https://graph.instagram.com"

    async def exchange_code_for_token(self, code: str, state: str) -> TokenGrant:
        short_lived = await super().exchange_code_for_token(code, state)
        settings = self.require_config()
        # Basic Display issues a one-hour token; trade it for the 60-day one.
        response = await self._send(
            "GET",
            f"{self.GRAPH_URL}/access_token",
            failure=OAuthExchangeError,
            params={
                "grant_type": "ig_exchange_token",
                "client_secret": settings.client_secret,
                "access_token": short_lived.access_token,
            },
        )
        return self._parse_token_response(response, failure=OAuthExchangeError)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Extend a long-lived token. Instagram refreshes with the token itself."""
        self.require_config()
        response = await self._send(
            "GET",
            f"{self.GRAPH_URL}/refresh_access_token",
            failure=RefreshFailedError,
            params={"grant_type": "ig_refresh_token", "access_token": refresh_token},
        )
        return self._parse_token_response(response, failure=RefreshFailedError)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        payload = await self._get_api(
            f"{self.GRAPH_URL}/me",
            access_token,
            params={"fields": "id,username,account_type,media_count,profile_picture_url"},
        )
        me = self._decode(_InstagramMe, payload)
        return PlatformProfile(
            platform_id=me.id,
            username=me.username,
            display_name=me.username,
            avatar_url=me.profile_picture_url,
            extra={"account_type": me.account_type, "media_count": me.media_count},
        )


class _FacebookPictureData(BaseModel):
    url: Optional[str] = None


class _FacebookPicture(BaseModel):
    data: _FacebookPictureData = Field(default_factory=_FacebookPictureData)


class _FacebookMe(BaseModel):
    id: str
    name: str
    picture: Optional[_FacebookPicture] = None


class FacebookConnector(MetaGraphConnector):
    platform = Platform.FACEBOOK
    GRAPH_URL = "https://graph.facebook.com/v18.0"
    AUTH_URL = "https://www.facebook.com/v18.0/dialog/oauth"
    TOKEN_URL = f"{GRAPH_URL}/oauth/access_token"

    async def exchange_code_for_token(self, code: str, state: str) -> TokenGrant:
        settings = self.require_config()
        response = await self._send(
            "GET",
            self.TOKEN_URL,
            failure=OAuthExchangeError,
            params={
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "redirect_uri": settings.redirect_uri,
                "code": code,
            },
        )
        short_lived = self._parse_token_response(response, failure=OAuthExchangeError)
        return await self._exchange_long_lived(short_lived.access_token, OAuthExchangeError)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        """Re-issue a long-lived user token from a still-valid one."""
        self.require_config()
        return await self._exchange_long_lived(refresh_token, RefreshFailedError)

    async def _exchange_long_lived(self, token: str, failure) -> TokenGrant:
        settings = self._settings
        response = await self._send(
            "GET",
            self.TOKEN_URL,
            failure=failure,
            params={
                "grant_type": "fb_exchange_token",
                "client_id": settings.client_id,
                "client_secret": settings.client_secret,
                "fb_exchange_token": token,
            },
        )
        return self._parse_token_response(response, failure=failure)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        payload = await self._get_api(
            f"{self.GRAPH_URL}/me",
            access_token,
            params={"fields": "id,name,picture{url}"},
        )
        me = self._decode(_FacebookMe, payload)
        return PlatformProfile(
            platform_id=me.id,
            username=me.name.lower().replace(" ", "."),
            display_name=me.name,
            avatar_url=me.picture.data.url if me.picture else None,
        )


__all__ = ["FacebookConnector", "InstagramConnector", "MetaGraphConnector", "MetaWebhookEnvelope"]
