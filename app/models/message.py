"""
Inbound messages and webhook/sync value objects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel

from app.core.errors import ErrorCode
from app.models.account import Platform


class MessageType(str, Enum):
    DM = "dm"
    COMMENT = "comment"
    MENTION = "mention"
    REPLY = "reply"


class InboundMessage(BaseModel):
    """A message as decoded from a platform API or webhook."""

    platform_message_id: str
    type: MessageType = MessageType.DM
    content: str = ""
    sender_id: str = ""
    sender_username: str = "unknown"
    sender_display_name: Optional[str] = None
    received_at: datetime
    thread_id: Optional[str] = None
    parent_message_id: Optional[str] = None
    post_url: Optional[str] = None


@dataclass(slots=True)
class SyncResult:
    account_id: str
    platform: Platform
    success: bool
    new_messages: int = 0
    error: Optional[str] = None
    error_code: Optional[ErrorCode] = None


@dataclass(slots=True)
class WebhookEvent:
    """Decoded webhook envelope, produced only after signature verification."""

    platform: Platform
    event_type: str
    recipient_id: Optional[str]
    messages: List[InboundMessage] = field(default_factory=list)


class WebhookStatus(str, Enum):
    ACCEPTED = "accepted"
    REJECTED = "rejected"


class WebhookRejection(str, Enum):
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_ACCOUNT = "unknown_account"
    MALFORMED_PAYLOAD = "malformed_payload"


@dataclass(slots=True)
class WebhookResult:
    status: WebhookStatus
    reason: Optional[WebhookRejection] = None
    new_messages: int = 0

    @classmethod
    def accepted(cls, new_messages: int = 0) -> "WebhookResult":
        return cls(status=WebhookStatus.ACCEPTED, new_messages=new_messages)

    @classmethod
    def rejected(cls, reason: WebhookRejection) -> "WebhookResult":
        return cls(status=WebhookStatus.REJECTED, reason=reason)


__all__ = [
    "InboundMessage",
    "MessageType",
    "SyncResult",
    "WebhookEvent",
    "WebhookRejection",
    "WebhookResult",
    "WebhookStatus",
]
