"""
LinkedIn connector.

Uses the OpenID Connect sign-in flow (``openid profile email`` scopes and the
``/v2/userinfo`` endpoint). The legacy ``r_liteprofile``/``r_emailaddress``
scopes were retired for new apps, so they are not supported. Messaging APIs
are partner-only; inbound messages arrive through webhooks.
"""

from __future__ import annotations

import hashlib
import json
from typing import List, Mapping, Optional

from pydantic import BaseModel, Field, ValidationError

from app.connectors.base import (
    ChallengeResponse,
    PlatformConnector,
    from_epoch_millis,
    hmac_digest,
    signatures_match,
)
from app.core.errors import ChallengeRejectedError, MalformedPayloadError
from app.models.account import Platform
from app.models.message import InboundMessage, MessageType, WebhookEvent
from app.models.oauth import PlatformProfile

_SIGNATURE_PREFIX = "hmacsha256="


class _LinkedInUserInfo(BaseModel):
    sub: str
    name: Optional[str] = None
    given_name: str = ""
    family_name: str = ""
    picture: Optional[str] = None
    email: Optional[str] = None


class _LinkedInSender(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None


class _LinkedInMessageData(BaseModel):
    message_id: str = Field(..., alias="messageId")
    recipient_id: Optional[str] = Field(None, alias="recipientId")
    account_id: Optional[str] = Field(None, alias="accountId")
    content: Optional[str] = None
    message: Optional[str] = None
    sender_id: Optional[str] = Field(None, alias="senderId")
    sender_name: Optional[str] = Field(None, alias="senderName")
    sender: Optional[_LinkedInSender] = Field(None, alias="from")
    timestamp: Optional[int] = None
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    message_type: Optional[str] = Field(None, alias="messageType")


class LinkedInWebhookEnvelope(BaseModel):
    type: str
    timestamp: Optional[int] = None
    data: dict = Field(default_factory=dict)


class LinkedInConnector(PlatformConnector):
    platform = Platform.LINKEDIN
    AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
    TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
    USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
    SIGNATURE_HEADER = "X-LI-Signature"
    default_token_lifetime = 60 * 24 * 3600

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        payload = await self._get_api(self.USERINFO_URL, access_token)
        info = self._decode(_LinkedInUserInfo, payload)
        full_name = info.name or f"{info.given_name} {info.family_name}".strip()
        username = "-".join(full_name.lower().split()) or info.sub
        return PlatformProfile(
            platform_id=info.sub,
            username=username,
            display_name=full_name or None,
            avatar_url=info.picture,
            extra={
                "email": info.email,
                "public_profile_url": f"https://linkedin.com/in/{info.sub}",
            },
        )

    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self._webhook_secret()
        if not secret or not signature:
            return False
        expected = hmac_digest(
            secret, _SIGNATURE_PREFIX.encode("utf-8") + raw_payload, hashlib.sha256
        ).hex()
        return signatures_match(signature.removeprefix(_SIGNATURE_PREFIX), expected)

    def respond_to_challenge(self, params: Mapping[str, str]) -> ChallengeResponse:
        challenge = params.get("challengeCode")
        secret = self._webhook_secret()
        if not challenge:
            raise ChallengeRejectedError("Missing challengeCode.")
        if not secret:
            raise ChallengeRejectedError("LinkedIn webhook secret is not configured.")
        response = hmac_digest(secret, challenge.encode("utf-8"), hashlib.sha256).hex()
        return ChallengeResponse(
            body=json.dumps({"challengeCode": challenge, "challengeResponse": response}),
            media_type="application/json",
        )

    def parse_webhook(self, raw_payload: bytes) -> List[WebhookEvent]:
        try:
            envelope = LinkedInWebhookEnvelope.model_validate_json(raw_payload)
        except ValidationError as exc:
            raise MalformedPayloadError("Invalid LinkedIn webhook payload.") from exc

        if envelope.type != "MESSAGE":
            return [
                WebhookEvent(
                    platform=self.platform,
                    event_type=envelope.type,
                    recipient_id=envelope.data.get("recipientId") or envelope.data.get("accountId"),
                )
            ]

        try:
            data = _LinkedInMessageData.model_validate(envelope.data)
        except ValidationError as exc:
            raise MalformedPayloadError("Invalid LinkedIn message payload.") from exc

        sender = data.sender or _LinkedInSender()
        sender_id = data.sender_id or sender.id or "unknown"
        message = InboundMessage(
            platform_message_id=data.message_id,
            type=MessageType.DM,
            content=data.content or data.message or "",
            sender_id=sender_id,
            sender_username=sender_id,
            sender_display_name=data.sender_name or sender.name or "Unknown",
            received_at=from_epoch_millis(data.timestamp),
            thread_id=data.conversation_id,
            parent_message_id=data.message_id if data.message_type == "INMAIL" else None,
        )
        return [
            WebhookEvent(
                platform=self.platform,
                event_type=envelope.type,
                recipient_id=data.recipient_id or data.account_id,
                messages=[message],
            )
        ]


__all__ = ["LinkedInConnector", "LinkedInWebhookEnvelope"]
