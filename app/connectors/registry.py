"""Lookup of platform connectors by platform."""

from __future__ import annotations

from typing import Dict, List, Optional

import httpx

from app.connectors.base import PlatformConnector
from app.connectors.linkedin import LinkedInConnector
from app.connectors.meta import FacebookConnector, InstagramConnector
from app.connectors.tiktok import TikTokConnector
from app.connectors.twitter import TwitterConnector
from app.connectors.youtube import YouTubeConnector
from app.core.config import AppSettings
from app.core.errors import InvalidPlatformError
from app.models.account import Platform

CONNECTOR_CLASSES = {
    Platform.INSTAGRAM: InstagramConnector,
    Platform.FACEBOOK: FacebookConnector,
    Platform.LINKEDIN: LinkedInConnector,
    Platform.TIKTOK: TikTokConnector,
    Platform.TWITTER: TwitterConnector,
    Platform.YOUTUBE: YouTubeConnector,
}


def parse_platform(name: str) -> Platform:
    """Resolve a path or query value to a ``Platform``."""
    try:
        return Platform((name or "").strip().lower())
    except ValueError as exc:
        raise InvalidPlatformError(f"Invalid platform: {name}") from exc


class ConnectorRegistry:
    """Holds one connector per supported platform."""

    def __init__(self, connectors: Dict[Platform, PlatformConnector]) -> None:
        self._connectors = dict(connectors)

    @classmethod
    def from_settings(
        cls,
        settings: AppSettings,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "ConnectorRegistry":
        timeout = settings.sync.request_timeout_seconds
        return cls(
            {
                platform: connector_cls(
                    settings.platform(platform), timeout=timeout, transport=transport
                )
                for platform, connector_cls in CONNECTOR_CLASSES.items()
            }
        )

    def get(self, platform: Platform) -> PlatformConnector:
        try:
            return self._connectors[platform]
        except KeyError as exc:
            raise InvalidPlatformError(f"Unsupported platform: {platform.value}") from exc

    def for_name(self, name: str) -> PlatformConnector:
        return self.get(parse_platform(name))

    def configured(self) -> List[Platform]:
        return [
            platform
            for platform, connector in self._connectors.items()
            if connector.is_configured
        ]


__all__ = ["CONNECTOR_CLASSES", "ConnectorRegistry", "parse_platform"]
