"""
Signed OAuth state tokens.

A state token binds the OAuth callback to the user and platform that started
the flow. It is never persisted; it round-trips through the provider redirect
and is rejected when tampered with, stale, or presented for another platform.
"""

from __future__ import annotations

import base64
import binascii
import hmac
import json
import secrets
import time
from hashlib import sha256
from typing import Callable, Optional

from pydantic import ValidationError

from app.core.errors import ExpiredStateError, InvalidStateError, PlatformMismatchError
from app.models.account import Platform
from app.models.oauth import OAuthStateClaims

_SIGNATURE_SIZE = 32


def _default_nonce() -> str:
    return secrets.token_hex(16)


def _now_millis() -> int:
    return int(time.time() * 1000)


class OAuthStateCodec:
    """Mint and validate HMAC-signed state tokens."""

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = 900,
        *,
        nonce_factory: Callable[[], str] = _default_nonce,
        clock: Callable[[], int] = _now_millis,
    ) -> None:
        if not secret_key:
            raise ValueError("OAuth state secret must be provided.")
        self._secret_key = secret_key.encode("utf-8")
        self._ttl_millis = ttl_seconds * 1000
        self._nonce_factory = nonce_factory
        self._clock = clock

    def mint(self, user_id: str, platform: Platform) -> str:
        payload = {
            "nonce": self._nonce_factory(),
            "user_id": user_id,
            "platform": platform.value,
            "issued_at": self._clock(),
        }
        serialized = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
        signature = hmac.new(self._secret_key, serialized, sha256).digest()
        return base64.urlsafe_b64encode(signature + serialized).decode("ascii")

    def validate(
        self, token: Optional[str], expected_platform: Platform
    ) -> OAuthStateClaims:
        """Return the claims carried by ``token`` or raise an ``OAuthStateError``."""
        claims = self._decode(token)

        age = self._clock() - claims.issued_at
        if age > self._ttl_millis:
            raise ExpiredStateError("OAuth session expired.")
        if claims.platform is not expected_platform:
            raise PlatformMismatchError(
                f"State was issued for {claims.platform.value}, "
                f"not {expected_platform.value}."
            )
        return claims

    def _decode(self, token: Optional[str]) -> OAuthStateClaims:
        if not token:
            raise InvalidStateError("Missing state parameter.")
        try:
            decoded = base64.urlsafe_b64decode(token.encode("ascii"))
        except (binascii.Error, ValueError, UnicodeEncodeError) as exc:
            raise InvalidStateError("Invalid state parameter.") from exc

        signature, serialized = decoded[:_SIGNATURE_SIZE], decoded[_SIGNATURE_SIZE:]
        expected_signature = hmac.new(self._secret_key, serialized, sha256).digest()
        if not serialized or not hmac.compare_digest(signature, expected_signature):
            raise InvalidStateError("Invalid OAuth state signature.")

        try:
            return OAuthStateClaims.model_validate_json(serialized)
        except ValidationError as exc:
            raise InvalidStateError("Invalid state data.") from exc


__all__ = ["OAuthStateCodec"]
