"""Expose constructed client wrappers."""

from .oauth_state import OAuthStateCodec

__all__ = ["OAuthStateCodec"]
