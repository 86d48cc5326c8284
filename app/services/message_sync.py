"""
Periodic, batched synchronization of inbound messages for connected accounts.

A single asyncio task drives passes. Accounts inside a batch sync
concurrently; batches run one after another with a short delay to stay under
platform rate limits. A failing account yields a failed ``SyncResult`` and
never aborts the pass.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from app.connectors.registry import ConnectorRegistry
from app.core.errors import AccountNotFoundError, ErrorCode, IntegrationError
from app.models.account import Account, Platform, utcnow
from app.models.message import SyncResult
from app.services.account_store import AccountStore
from app.services.message_store import MessageStore
from app.services.token_refresh import TokenRefreshService

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


class MessageSyncService:
    """Owns the background sync loop and the on-demand sync entry points."""

    def __init__(
        self,
        accounts: AccountStore,
        messages: MessageStore,
        connectors: ConnectorRegistry,
        token_refresh: TokenRefreshService,
        *,
        batch_size: int = 5,
        batch_delay_seconds: float = 2.0,
        account_timeout_seconds: float = 60.0,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1.")
        self._accounts = accounts
        self._messages = messages
        self._connectors = connectors
        self._token_refresh = token_refresh
        self._batch_size = batch_size
        self._batch_delay = batch_delay_seconds
        self._account_timeout = account_timeout_seconds
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._interval_minutes: Optional[float] = None
        self._last_run_at: Optional[datetime] = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    # -- Lifecycle ---------------------------------------------------------

    def start(self, interval_minutes: float = 5) -> None:
        """Run a pass now and then every ``interval_minutes``. Idempotent."""
        if self.is_running:
            logger.info("Message sync already running")
            return
        if interval_minutes <= 0:
            raise ValueError("interval_minutes must be positive.")
        self._interval_minutes = interval_minutes
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(
            self._run(interval_minutes * 60, self._stop_event), name="message-sync"
        )
        logger.info("Starting message sync every %s minutes", interval_minutes)

    async def stop(self) -> None:
        """Stop the loop after the in-flight batch and wait for it to exit."""
        task, stop_event = self._task, self._stop_event
        if task is None or stop_event is None:
            return
        stop_event.set()
        try:
            await task
        finally:
            self._task = None
            self._stop_event = None
        logger.info("Message sync stopped")

    async def _run(self, interval_seconds: float, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            try:
                await self.sync_all(stop_event=stop_event)
            except Exception:
                logger.exception("Message sync pass failed")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
            except asyncio.TimeoutError:
                continue

    # -- Passes ------------------------------------------------------------

    async def sync_all(
        self, *, stop_event: Optional[asyncio.Event] = None
    ) -> List[SyncResult]:
        """Sync every connected account."""
        accounts = self._accounts.list_connected()
        if not accounts:
            logger.info("No connected accounts to sync")
            return []
        logger.info("Syncing messages for %d accounts", len(accounts))
        results = await self._sync_in_batches(accounts, stop_event)
        self._last_run_at = utcnow()
        self._log_summary(results)
        return results

    async def sync_by_platform(self, platform: Platform) -> List[SyncResult]:
        accounts = self._accounts.list_connected(platform=platform)
        logger.info(
            "Syncing %d %s accounts", len(accounts), platform.display_name
        )
        results = await self._sync_in_batches(accounts, None)
        self._log_summary(results)
        return results

    async def sync_account_by_id(self, account_id: str) -> SyncResult:
        account = self._accounts.get(account_id)
        if account is None:
            raise AccountNotFoundError(f"Account {account_id} not found.")
        return await self.sync_account(account)

    async def _sync_in_batches(
        self, accounts: Sequence[Account], stop_event: Optional[asyncio.Event]
    ) -> List[SyncResult]:
        results: List[SyncResult] = []
        batches = [
            accounts[index:index + self._batch_size]
            for index in range(0, len(accounts), self._batch_size)
        ]
        for number, batch in enumerate(batches, start=1):
            if stop_event is not None and stop_event.is_set():
                logger.info(
                    "Stop requested; skipping %d remaining batches",
                    len(batches) - number + 1,
                )
                break
            batch_results = await asyncio.gather(
                *(self.sync_account(account) for account in batch)
            )
            results.extend(batch_results)
            logger.debug(
                "Batch %d/%d done: %d/%d succeeded",
                number,
                len(batches),
                sum(1 for result in batch_results if result.success),
                len(batch_results),
            )
            if number < len(batches):
                await self._sleep(self._batch_delay)
        return results

    @staticmethod
    def _log_summary(results: Sequence[SyncResult]) -> None:
        succeeded = sum(1 for result in results if result.success)
        new_messages = sum(result.new_messages for result in results)
        logger.info(
            "Message sync complete: %d/%d accounts synced, %d new messages",
            succeeded,
            len(results),
            new_messages,
        )

    # -- Single account ----------------------------------------------------

    async def sync_account(self, account: Account) -> SyncResult:
        """Sync one account. Always returns a result and records it exactly once.

        The token refresh runs outside the per-account timeout: a provider may
        rotate the refresh token, and cancelling before the new one is stored
        would lose it.
        """
        try:
            if account.needs_refresh:
                account = await self._token_refresh.refresh_account(account)
            new_messages = await asyncio.wait_for(
                self._pull_messages(account), timeout=self._account_timeout
            )
            result = SyncResult(
                account_id=account.id,
                platform=account.platform,
                success=True,
                new_messages=new_messages,
            )
        except asyncio.TimeoutError:
            result = self._failed(
                account,
                f"Sync timed out after {self._account_timeout:g}s",
                ErrorCode.FETCH_FAILED,
            )
        except IntegrationError as exc:
            result = self._failed(account, exc.message, exc.code)
        except Exception as exc:
            logger.exception(
                "Unexpected error syncing account", extra={"account_id": account.id}
            )
            result = self._failed(account, str(exc), ErrorCode.FETCH_FAILED)

        self._accounts.mark_sync_outcome(account.id, result)
        if not result.success:
            logger.warning(
                "Failed to sync %s account: %s",
                account.platform.display_name,
                result.error,
                extra={"account_id": account.id, "error_code": result.error_code.value},
            )
        elif result.new_messages:
            logger.info(
                "Synced %d new messages",
                result.new_messages,
                extra={"account_id": account.id, "platform": account.platform.value},
            )
        return result

    async def _pull_messages(self, account: Account) -> int:
        connector = self._connectors.get(account.platform)
        if connector.supports_messaging:
            fetched = await connector.fetch_new_messages(account)
        else:
            # No inbox to read; the profile read keeps the cached profile
            # current and still surfaces a revoked token.
            profile = await connector.fetch_account_profile(account)
            self._accounts.update_profile(account.id, profile)
            fetched = []
        new_messages = 0
        for message in fetched:
            if self._messages.upsert(account.id, message):
                new_messages += 1
        return new_messages

    @staticmethod
    def _failed(account: Account, error: str, code: ErrorCode) -> SyncResult:
        return SyncResult(
            account_id=account.id,
            platform=account.platform,
            success=False,
            error=error,
            error_code=code,
        )

    # -- Introspection -----------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        stats = self._accounts.stats()
        stats.update(
            {
                "is_running": self.is_running,
                "interval_minutes": self._interval_minutes,
                "last_run_at": self._last_run_at,
                "total_messages": self._messages.count(),
            }
        )
        return stats


__all__ = ["MessageSyncService"]
