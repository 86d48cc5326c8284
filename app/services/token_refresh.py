"""
Refresh expiring platform tokens for stored accounts.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from app.connectors.registry import ConnectorRegistry
from app.core.errors import IntegrationError, InvalidTokenError, RefreshFailedError
from app.models.account import Account, AccountStatus
from app.services.account_store import AccountStore

logger = logging.getLogger(__name__)


class TokenRefreshService:
    """Exchanges refresh tokens through the platform connector and persists the result."""

    def __init__(self, store: AccountStore, connectors: ConnectorRegistry) -> None:
        self._store = store
        self._connectors = connectors

    async def refresh_account(self, account: Account) -> Account:
        """Refresh ``account`` or raise ``RefreshFailedError``.

        A rejected refresh marks the account expired so it drops out of the
        sync rotation until the user reconnects.
        """
        connector = self._connectors.get(account.platform)
        # Instagram and Facebook extend the long-lived access token itself.
        token = account.refresh_token or account.access_token
        try:
            if not token:
                raise RefreshFailedError(
                    f"No refresh token stored for {account.platform.display_name} account."
                )
            grant = await connector.refresh_token(token)
        except (RefreshFailedError, InvalidTokenError) as exc:
            self._store.set_status(account.id, AccountStatus.EXPIRED)
            logger.warning(
                "Token refresh failed: %s",
                exc.message,
                extra={"account_id": account.id, "platform": account.platform.value},
            )
            if isinstance(exc, RefreshFailedError):
                raise
            raise RefreshFailedError(exc.message, detail=exc.detail) from exc

        refreshed = self._store.update_tokens(account.id, grant)
        logger.info(
            "Refreshed %s token",
            account.platform.display_name,
            extra={"account_id": account.id},
        )
        return refreshed or account

    async def refresh_expired(self, user_id: Optional[str] = None) -> List[Account]:
        """Refresh every connected account whose token has expired.

        Failures are logged and skipped; the returned list holds only the
        accounts that were refreshed.
        """
        refreshed: List[Account] = []
        for account in self._store.find_needing_refresh(user_id=user_id):
            try:
                refreshed.append(await self.refresh_account(account))
            except RefreshFailedError:
                continue
            except IntegrationError as exc:
                logger.warning(
                    "Skipping token refresh: %s",
                    exc.message,
                    extra={"account_id": account.id, "error_code": exc.code.value},
                )
        return refreshed


__all__ = ["TokenRefreshService"]
