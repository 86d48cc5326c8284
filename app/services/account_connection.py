"""
OAuth connection flow for linking social accounts to a user.
"""

from __future__ import annotations

import logging
from typing import Tuple

from app.clients.oauth_state import OAuthStateCodec
from app.connectors.registry import ConnectorRegistry
from app.models.account import Account
from app.services.account_store import AccountStore
from app.services.message_store import MessageStore

logger = logging.getLogger(__name__)


class AccountConnectionService:
    """Starts and completes OAuth flows and removes linked accounts."""

    def __init__(
        self,
        connectors: ConnectorRegistry,
        state_codec: OAuthStateCodec,
        accounts: AccountStore,
        messages: MessageStore,
    ) -> None:
        self._connectors = connectors
        self._state_codec = state_codec
        self._accounts = accounts
        self._messages = messages

    def start(self, user_id: str, platform_name: str) -> Tuple[str, str]:
        """Return the provider consent URL and the state token it carries."""
        connector = self._connectors.for_name(platform_name)
        connector.require_config()
        state = self._state_codec.mint(user_id, connector.platform)
        authorization_url = connector.build_authorization_url(state)
        logger.info(
            "Starting %s OAuth flow",
            connector.platform.display_name,
            extra={"user_id": user_id},
        )
        return authorization_url, state

    async def complete(self, platform_name: str, code: str, state: str) -> Account:
        """Finish the OAuth flow and persist the account.

        Nothing is written until the state is valid, the code has been
        exchanged and the profile fetched; any failure propagates as an
        ``IntegrationError``.
        """
        connector = self._connectors.for_name(platform_name)
        claims = self._state_codec.validate(state, connector.platform)
        tokens = await connector.exchange_code_for_token(code, state)
        profile = await connector.fetch_profile(tokens.access_token)
        account = self._accounts.upsert_from_oauth(
            platform=connector.platform,
            platform_id=profile.platform_id,
            user_id=claims.user_id,
            profile=profile,
            tokens=tokens,
        )
        logger.info(
            "Connected %s account @%s",
            connector.platform.display_name,
            account.username,
            extra={"account_id": account.id, "user_id": claims.user_id},
        )
        return account

    def disconnect(self, account_id: str, user_id: str) -> bool:
        """Remove the account and its mirrored messages."""
        if not self._accounts.disconnect(account_id, user_id):
            return False
        removed = self._messages.delete_for_account(account_id)
        logger.info(
            "Disconnected account",
            extra={"account_id": account_id, "user_id": user_id, "messages_removed": removed},
        )
        return True


__all__ = ["AccountConnectionService"]
