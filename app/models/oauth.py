"""
Value objects exchanged with platform OAuth endpoints.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from app.models.account import Platform


class TokenGrant(BaseModel):
    """Tokens issued by a provider's token endpoint."""

    access_token: str = Field(..., repr=False)
    refresh_token: Optional[str] = Field(None, repr=False)
    expires_in: Optional[int] = Field(
        None, description="Lifetime of the access token in seconds."
    )

    def expires_at(self, now: datetime) -> Optional[datetime]:
        if self.expires_in is None:
            return None
        return now + timedelta(seconds=self.expires_in)


class PlatformProfile(BaseModel):
    """Normalized profile returned by every connector."""

    platform_id: str
    username: str
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    bio: Optional[str] = None
    followers_count: Optional[int] = None
    following_count: Optional[int] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


class OAuthStateClaims(BaseModel):
    """Identity recovered from a validated OAuth state token."""

    user_id: str = Field(..., min_length=1)
    platform: Platform
    nonce: str = Field(..., min_length=1)
    issued_at: int = Field(..., description="Epoch milliseconds.")


__all__ = ["OAuthStateClaims", "PlatformProfile", "TokenGrant"]
