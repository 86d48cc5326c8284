"""Platform connectors and their registry."""

from .base import ChallengeResponse, PlatformConnector
from .linkedin import LinkedInConnector
from .meta import FacebookConnector, InstagramConnector
from .registry import ConnectorRegistry, parse_platform
from .tiktok import TikTokConnector
from .twitter import TwitterConnector
from .youtube import YouTubeConnector

__all__ = [
    "ChallengeResponse",
    "ConnectorRegistry",
    "FacebookConnector",
    "InstagramConnector",
    "LinkedInConnector",
    "PlatformConnector",
    "TikTokConnector",
    "TwitterConnector",
    "YouTubeConnector",
    "parse_platform",
]
