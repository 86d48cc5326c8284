"""
YouTube connector: Google OAuth, channel profile and comment-thread polling.

Comments on the channel's videos are the only inbound "messages" YouTube
exposes. Push notifications are WebSub Atom feeds announcing uploads, so the
webhook surface only handles the hub handshake and signature.
"""

from __future__ import annotations

import hashlib
from typing import Dict, List, Mapping, Optional

from pydantic import BaseModel, Field

from app.connectors.base import (
    ChallengeResponse,
    PlatformConnector,
    hmac_digest,
    is_after_cursor,
    parse_iso_datetime,
    signatures_match,
)
from app.core.errors import ChallengeRejectedError, FetchFailedError, InvalidTokenError
from app.models.account import Account, Platform
from app.models.message import InboundMessage, MessageType, WebhookEvent
from app.models.oauth import PlatformProfile


class _Thumbnail(BaseModel):
    url: Optional[str] = None


class _ChannelSnippet(BaseModel):
    title: str
    description: Optional[str] = None
    custom_url: Optional[str] = Field(None, alias="customUrl")
    thumbnails: Dict[str, _Thumbnail] = Field(default_factory=dict)


class _ChannelStatistics(BaseModel):
    subscriber_count: Optional[int] = Field(None, alias="subscriberCount")
    video_count: Optional[int] = Field(None, alias="videoCount")


class _Channel(BaseModel):
    id: str
    snippet: _ChannelSnippet
    statistics: _ChannelStatistics = Field(default_factory=_ChannelStatistics)


class _ChannelListResponse(BaseModel):
    items: List[_Channel] = Field(default_factory=list)


class _AuthorChannel(BaseModel):
    value: Optional[str] = None


class _CommentSnippet(BaseModel):
    text_display: str = Field("", alias="textDisplay")
    author_display_name: Optional[str] = Field(None, alias="authorDisplayName")
    author_channel_id: _AuthorChannel = Field(
        default_factory=_AuthorChannel, alias="authorChannelId"
    )
    published_at: Optional[str] = Field(None, alias="publishedAt")


class _Comment(BaseModel):
    id: str
    snippet: _CommentSnippet


class _ThreadSnippet(BaseModel):
    video_id: Optional[str] = Field(None, alias="videoId")
    top_level_comment: _Comment = Field(..., alias="topLevelComment")


class _CommentThread(BaseModel):
    id: str
    snippet: _ThreadSnippet


class _CommentThreadListResponse(BaseModel):
    items: List[_CommentThread] = Field(default_factory=list)


class YouTubeConnector(PlatformConnector):
    platform = Platform.YOUTUBE
    AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"
    API_URL = "https://www.googleapis.com/youtube/v3"
    SIGNATURE_HEADER = "X-Hub-Signature"

    @property
    def supports_messaging(self) -> bool:
        return True

    def _extra_authorization_params(self, state: str) -> Dict[str, str]:
        # Offline access plus forced consent guarantees a refresh token.
        return {
            "access_type": "offline",
            "include_granted_scopes": "true",
            "prompt": "consent",
        }

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        payload = await self._get_api(
            f"{self.API_URL}/channels",
            access_token,
            params={"part": "snippet,statistics", "mine": "true"},
        )
        channels = self._decode(_ChannelListResponse, payload).items
        if not channels:
            raise FetchFailedError("No YouTube channel found for this Google account.")
        channel = channels[0]
        snippet = channel.snippet
        thumbnail = snippet.thumbnails.get("default") or snippet.thumbnails.get("high")
        return PlatformProfile(
            platform_id=channel.id,
            username=(snippet.custom_url or snippet.title).lstrip("@"),
            display_name=snippet.title,
            avatar_url=thumbnail.url if thumbnail else None,
            bio=snippet.description,
            followers_count=channel.statistics.subscriber_count,
            extra={"video_count": channel.statistics.video_count},
        )

    async def fetch_new_messages(self, account: Account) -> List[InboundMessage]:
        if not account.access_token:
            raise InvalidTokenError("YouTube account has no access token.")
        payload = await self._get_api(
            f"{self.API_URL}/commentThreads",
            account.access_token,
            params={
                "part": "snippet",
                "allThreadsRelatedToChannelId": account.platform_id,
                "order": "time",
                "maxResults": 50,
                "textFormat": "plainText",
            },
        )
        threads = self._decode(_CommentThreadListResponse, payload, "comment").items

        messages: List[InboundMessage] = []
        for thread in threads:
            comment = thread.snippet.top_level_comment
            author_id = comment.snippet.author_channel_id.value
            if author_id == account.platform_id:
                continue
            received_at = parse_iso_datetime(comment.snippet.published_at)
            if not is_after_cursor(received_at, account.last_synced_at):
                continue
            video_id = thread.snippet.video_id
            messages.append(
                InboundMessage(
                    platform_message_id=comment.id,
                    type=MessageType.COMMENT,
                    content=comment.snippet.text_display,
                    sender_id=author_id or "unknown",
                    sender_username=comment.snippet.author_display_name or author_id or "unknown",
                    sender_display_name=comment.snippet.author_display_name,
                    received_at=received_at,
                    thread_id=thread.id,
                    post_url=f"https://www.youtube.com/watch?v={video_id}" if video_id else None,
                )
            )
        return messages

    def verify_webhook_signature(self, raw_payload: bytes, signature: Optional[str]) -> bool:
        secret = self._webhook_secret()
        if not secret:
            return False
        expected = "sha1=" + hmac_digest(secret, raw_payload, hashlib.sha1).hex()
        return signatures_match(signature, expected)

    def respond_to_challenge(self, params: Mapping[str, str]) -> ChallengeResponse:
        mode = params.get("hub.mode")
        challenge = params.get("hub.challenge")
        if mode not in ("subscribe", "unsubscribe") or not challenge:
            raise ChallengeRejectedError("Missing hub.mode or hub.challenge.")
        expected = self._settings.webhook_verify_token
        if expected and not signatures_match(params.get("hub.verify_token"), expected):
            raise ChallengeRejectedError("Invalid verify token.")
        return ChallengeResponse(body=challenge)

    def parse_webhook(self, raw_payload: bytes) -> List[WebhookEvent]:
        # Upload notifications carry no messages; comments arrive by polling.
        return []


__all__ = ["YouTubeConnector"]
