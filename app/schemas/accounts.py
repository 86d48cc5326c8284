"""Schemas for account listing and the OAuth connection endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.models.account import Account, AccountStatus, Platform


class AccountResponse(BaseModel):
    """Public view of a connected account. Tokens are never included."""

    id: str
    platform: Platform
    platform_id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    followers_count: int = 0
    following_count: int = 0
    status: AccountStatus
    token_expires_at: Optional[datetime] = None
    last_synced_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_account(cls, account: Account) -> "AccountResponse":
        return cls(
            id=account.id,
            platform=account.platform,
            platform_id=account.platform_id,
            username=account.username,
            display_name=account.display_name,
            avatar_url=account.avatar_url,
            bio=account.bio,
            followers_count=account.followers_count,
            following_count=account.following_count,
            status=account.status,
            token_expires_at=account.token_expires_at,
            last_synced_at=account.last_synced_at,
            last_activity_at=account.last_activity_at,
            created_at=account.created_at,
        )


class AuthorizationResponse(BaseModel):
    authorization_url: str = Field(..., description="Provider consent screen URL.")
    state: str = Field(..., description="Signed state token carried through the flow.")


class TokenRefreshResponse(BaseModel):
    refreshed: int
    accounts: List[AccountResponse] = Field(default_factory=list)


__all__ = ["AccountResponse", "AuthorizationResponse", "TokenRefreshResponse"]
