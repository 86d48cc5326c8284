"""
Application configuration models and helpers.

Centralizes settings management so the FastAPI app, the sync scheduler and
every platform connector share one validated configuration surface.
"""

from functools import lru_cache
from pathlib import Path
from typing import Annotated, Optional

import os

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from app.models.account import Platform


def _load_env_file(path: str = ".env") -> None:
    """Best-effort load key=value pairs from a .env file without extra deps."""
    env_path = Path(path)
    if not env_path.exists():
        return
    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if not sep:
            continue
        key = key.strip()
        if not key or key in os.environ:
            continue
        cleaned = value.strip().strip('"').strip("'")
        os.environ[key] = cleaned


_load_env_file()


def _env(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class PlatformSettings(BaseSettings):
    """OAuth and webhook configuration for one platform.

    All values are optional; a platform is only usable when client id, client
    secret and redirect URI are present together.
    """

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    redirect_uri: Optional[str] = None
    scopes: Annotated[tuple[str, ...], NoDecode] = ()
    webhook_verify_token: Optional[str] = None
    webhook_secret: Optional[str] = Field(
        None,
        description="Shared secret for webhook signatures. Defaults to client_secret.",
    )

    @field_validator("scopes", mode="before")
    @classmethod
    def _split_scopes(
        cls, value: str | tuple[str, ...] | list[str] | None
    ) -> tuple[str, ...]:
        """Support providing scopes as a comma-separated string."""
        if value is None:
            return ()
        if isinstance(value, tuple):
            return value
        if isinstance(value, list):
            return tuple(value)
        return tuple(scope.strip() for scope in value.split(",") if scope.strip())

    @property
    def is_configured(self) -> bool:
        return bool(self.client_id and self.client_secret and self.redirect_uri)

    @property
    def signing_secret(self) -> Optional[str]:
        return self.webhook_secret or self.client_secret


class InstagramSettings(PlatformSettings):
    model_config = SettingsConfigDict(env_prefix="INSTAGRAM_")

    scopes: Annotated[tuple[str, ...], NoDecode] = ("user_profile", "user_media")


class FacebookSettings(PlatformSettings):
    model_config = SettingsConfigDict(env_prefix="FACEBOOK_")

    scopes: Annotated[tuple[str, ...], NoDecode] = (
        "public_profile",
        "pages_show_list",
        "pages_read_engagement",
        "pages_manage_metadata",
    )


class LinkedInSettings(PlatformSettings):
    model_config = SettingsConfigDict(env_prefix="LINKEDIN_")

    scopes: Annotated[tuple[str, ...], NoDecode] = ("openid", "profile", "email")


class TikTokSettings(PlatformSettings):
    model_config = SettingsConfigDict(env_prefix="TIKTOK_")

    scopes: Annotated[tuple[str, ...], NoDecode] = ("user.info.basic", "user.info.stats")


class TwitterSettings(PlatformSettings):
    model_config = SettingsConfigDict(env_prefix="TWITTER_")

    scopes: Annotated[tuple[str, ...], NoDecode] = (
        "tweet.read",
        "users.read",
        "dm.read",
        "offline.access",
    )


class YouTubeSettings(PlatformSettings):
    model_config = SettingsConfigDict(env_prefix="YOUTUBE_")

    scopes: Annotated[tuple[str, ...], NoDecode] = (
        "https://www.googleapis.com/auth/youtube.readonly",
        "https://www.googleapis.com/auth/youtube.force-ssl",
    )


class SecuritySettings(BaseSettings):
    """Security-related configuration."""

    token_encryption_secret: str = Field(
        ...,
        validation_alias=_env("TOKEN_ENCRYPTION_SECRET", "token_encryption_secret"),
        description=(
            "Secret used to derive the symmetric key for encrypting stored tokens."
        ),
    )


class OAuthSettings(BaseSettings):
    """OAuth flow configuration shared by every platform."""

    state_ttl_seconds: int = Field(
        900,
        validation_alias=_env("OAUTH_STATE_TTL", "state_ttl_seconds"),
        description="Freshness window for OAuth state tokens (15 minutes).",
    )
    state_secret: Optional[str] = Field(
        None,
        validation_alias=_env("OAUTH_STATE_SECRET", "state_secret"),
        description="HMAC key for state tokens. Falls back to the token secret.",
    )


class SyncSettings(BaseSettings):
    """Tuning for the background message synchronization loop."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    enabled: bool = True
    interval_minutes: float = 5
    batch_size: int = Field(5, ge=1)
    batch_delay_seconds: float = 2.0
    request_timeout_seconds: float = 15.0
    account_timeout_seconds: float = 60.0


class AppSettings(BaseSettings):
    """Root settings object for the FastAPI application."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    environment: str = Field("development", validation_alias=_env("APP_ENV", "environment"))
    log_level: str = Field("INFO", validation_alias=_env("APP_LOG_LEVEL", "log_level"))
    frontend_base_url: Optional[str] = Field(
        None,
        validation_alias=_env("FRONTEND_BASE_URL", "frontend_base_url"),
        description="Base URL of the front-end; OAuth callbacks redirect to /accounts there.",
    )
    database_path: str = Field(
        "data/social_sync.db",
        validation_alias=_env("DATABASE_PATH", "database_path"),
    )
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    oauth: OAuthSettings = Field(default_factory=OAuthSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    instagram: InstagramSettings = Field(default_factory=InstagramSettings)
    facebook: FacebookSettings = Field(default_factory=FacebookSettings)
    linkedin: LinkedInSettings = Field(default_factory=LinkedInSettings)
    tiktok: TikTokSettings = Field(default_factory=TikTokSettings)
    twitter: TwitterSettings = Field(default_factory=TwitterSettings)
    youtube: YouTubeSettings = Field(default_factory=YouTubeSettings)

    def platform(self, platform: Platform) -> PlatformSettings:
        return getattr(self, platform.value)

    @property
    def accounts_redirect_url(self) -> str:
        base = (self.frontend_base_url or "").rstrip("/")
        return f"{base}/accounts"


@lru_cache()
def get_settings() -> AppSettings:
    """Return a cached settings object."""
    return AppSettings()  # type: ignore[call-arg]


__all__ = [
    "AppSettings",
    "FacebookSettings",
    "InstagramSettings",
    "LinkedInSettings",
    "OAuthSettings",
    "PlatformSettings",
    "SecuritySettings",
    "SyncSettings",
    "TikTokSettings",
    "TwitterSettings",
    "YouTubeSettings",
    "get_settings",
]
