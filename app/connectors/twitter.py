"""
Twitter (X) connector: OAuth 2.0 with PKCE, DM polling and Account Activity
webhooks.

PKCE needs the code verifier again at the token exchange. Rather than
persisting it, the verifier is derived from the state token with an HMAC
keyed by the client secret, so the callback can recompute it from the state
it receives.
"""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from app.connectors.base import (
    ChallengeResponse,
    PlatformConnector,
    from_epoch_millis,
    hmac_digest,
    is_after_cursor,
    parse_iso_datetime,
    signatures_match,
)
from app.core.errors import (
    ChallengeRejectedError,
    InvalidTokenError,
    MalformedPayloadError,
    OAuthExchangeError,
    RefreshFailedError,
)
from app.models.account import Account, Platform
from app.models.message import InboundMessage, MessageType, WebhookEvent
from app.models.oauth import PlatformProfile, TokenGrant


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


class _PublicMetrics(BaseModel):
    followers_count: Optional[int] = None
    following_count: Optional[int] = None


class _TwitterUser(BaseModel):
    id: str
    name: Optional[str] = None
    username: str
    description: Optional[str] = None
    profile_image_url: Optional[str] = None
    public_metrics: _PublicMetrics = Field(default_factory=_PublicMetrics)


class _TwitterUserResponse(BaseModel):
    data: _TwitterUser


class _DMEvent(BaseModel):
    id: str
    event_type: Optional[str] = None
    text: str = ""
    sender_id: Optional[str] = None
    dm_conversation_id: Optional[str] = None
    created_at: Optional[str] = None


class _DMIncludes(BaseModel):
    users: List[_TwitterUser] = Field(default_factory=list)


class _DMEventsResponse(BaseModel):
    data: List[_DMEvent] = Field(default_factory=list)
    includes: _DMIncludes = Field(default_factory=_DMIncludes)


class _ActivityMessageData(BaseModel):
    text: str = ""


class _ActivityTarget(BaseModel):
    recipient_id: str


class _ActivityMessageCreate(BaseModel):
    sender_id: str
    target: _ActivityTarget
    message_data: _ActivityMessageData = Field(default_factory=_ActivityMessageData)


class _ActivityDMEvent(BaseModel):
    type: str
    id: str
    created_timestamp: Optional[str] = None
    message_create: Optional[_ActivityMessageCreate] = None


class _ActivityUser(BaseModel):
    id: str
    name: Optional[str] = None
    screen_name: Optional[str] = None


class TwitterActivityEnvelope(BaseModel):
    for_user_id: str
    direct_message_events: List[_ActivityDMEvent] = Field(default_factory=list)
    users: Dict[str, _ActivityUser] = Field(default_factory=dict)


class TwitterConnector(PlatformConnector):
    platform = Platform.TWITTER
    AUTH_URL = "https://twitter.com/i/oauth2/authorize"
    TOKEN_URL = "https://api.twitter.com/2/oauth2/token"
    API_URL = "https://api.twitter.com/2"
    SIGNATURE_HEADER = "x-twitter-webhooks-signature"

    @property
    def supports_messaging(self) -> bool:
        return True

    def code_verifier(self, state: str) -> str:
        settings = self.require_config()
        return _b64url(hmac_digest(settings.client_secret, state.encode("utf-8")))

    def _extra_authorization_params(self, state: str) -> Dict[str, str]:
        challenge = _b64url(hashlib.sha256(self.code_verifier(state).encode("ascii")).digest())
        return {"code_challenge": challenge, "code_challenge_method": "S256"}

    async def exchange_code_for_token(self, code: str, state: str) -> TokenGrant:
        settings = self.require_config()
        payload = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.redirect_uri,
            "client_id": settings.client_id,
            "code_verifier": self.code_verifier(state),
        }
        response = await self._send(
            "POST",
            self.TOKEN_URL,
            failure=OAuthExchangeError,
            data=payload,
            auth=(settings.client_id, settings.client_secret),
        )
        return self._parse_token_response(response, failure=OAuthExchangeError)

    async def refresh_token(self, refresh_token: str) -> TokenGrant:
        settings = self.require_config()
        payload = {
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
            "client_id": settings.client_id,
        }
        response = await self._send(
            "POST",
            self.TOKEN_URL,
            failure=RefreshFailedError,
            data=payload,
            auth=(settings.client_id, settings.client_secret),
        )
        return self._parse_token_response(response, failure=RefreshFailedError)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        payload = await self._get_api(
            f"{self.API_URL}/users/me",
            access_token,
            params={"user.fields": "profile_image_url,public_metrics,description"},
        )
        user = self._decode(_TwitterUserResponse, payload).data
        return PlatformProfile(
            platform_id=user.id,
            username=user.username,
            display_name=user.name,
            avatar_url=user.profile_image_url,
            bio=user.description,
            followers_count=user.public_metrics.followers_count,
            following_count=user.public_metrics.following_count,
        )

    async def fetch_new_messages(self, account: Account) -> List[InboundMessage]:
        if not account.access_token:
            raise InvalidTokenError("Twitter account has no access token.")
        payload = await self._get_api(
            f"{self.API_URL}/dm_events",
            account.access_token,
            params={
                "dm_event.fields": "id,text,created_at,sender_id,dm_conversation_id",
                "event_types": "MessageCreate",
                "expansions": "sender_id",
                "user.fields": "username,name",
                "max_results": 100,
            },
        )
        response = self._decode(_DMEventsResponse, payload, "direct message")
        users = {user.id: user for user in response.includes.users}

        messages: List[InboundMessage] = []
        for event in response.data:
            if event.sender_id == account.platform_id:
                continue
            received_at = parse_iso_datetime(event.created_at)
            if not is_after_cursor(received_at, account.last_synced_at):
                continue
            sender = users.get(event.sender_id or "")
            messages.append(
                InboundMessage(
                    platform_message_id=event.id,
                    type=MessageType.DM,
                    content=event.text,
                    sender_id=event.sender_id or "unknown",
                    sender_username=sender.username if sender else (event.sender_id or "unknown"),
                    sender_display_name=sender.name if sender else None,
                    received_at=received_at,
                    thread_id=event.dm_conversation_id,
                )
            )
        return messages

    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self._webhook_secret()
        if not secret:
            return False
        expected = "sha256=" + base64.b64encode(hmac_digest(secret, raw_payload)).decode("ascii")
        return signatures_match(signature, expected)

    def respond_to_challenge(self, params: Mapping[str, str]) -> ChallengeResponse:
        crc_token = params.get("crc_token")
        secret = self._webhook_secret()
        if not crc_token:
            raise ChallengeRejectedError("Missing crc_token.")
        if not secret:
            raise ChallengeRejectedError("Twitter webhook secret is not configured.")
        digest = base64.b64encode(hmac_digest(secret, crc_token.encode("utf-8"))).decode("ascii")
        return ChallengeResponse(
            body=json.dumps({"response_token": f"sha256={digest}"}),
            media_type="application/json",
        )

    def parse_webhook(self, raw_payload: bytes) -> List[WebhookEvent]:
        try:
            envelope = TwitterActivityEnvelope.model_validate_json(raw_payload)
        except ValidationError as exc:
            raise MalformedPayloadError("Invalid Twitter activity payload.") from exc

        messages: List[InboundMessage] = []
        for event in envelope.direct_message_events:
            create = event.message_create
            if event.type != "message_create" or create is None:
                continue
            if create.sender_id == envelope.for_user_id:
                continue
            sender = envelope.users.get(create.sender_id)
            messages.append(
                InboundMessage(
                    platform_message_id=event.id,
                    type=MessageType.DM,
                    content=create.message_data.text,
                    sender_id=create.sender_id,
                    sender_username=(sender.screen_name if sender else None) or create.sender_id,
                    sender_display_name=sender.name if sender else None,
                    received_at=from_epoch_millis(event.created_timestamp),
                )
            )
        event_type = "direct_message" if envelope.direct_message_events else "activity"
        return [
            WebhookEvent(
                platform=self.platform,
                event_type=event_type,
                recipient_id=envelope.for_user_id,
                messages=messages,
            )
        ]


__all__ = ["TwitterActivityEnvelope", "TwitterConnector"]
