try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover - fallback for direct execution
    import _bootstrap  # type: ignore # noqa: F401

import asyncio
from datetime import timedelta
from typing import Iterable, List, Optional

import httpx
import pytest
from _factories import connect_account, make_message

from app.connectors import YouTubeConnector
from app.connectors.registry import ConnectorRegistry
from app.core.config import YouTubeSettings
from app.core.errors import (
    AccountNotFoundError,
    ErrorCode,
    FetchFailedError,
    InvalidTokenError,
    RefreshFailedError,
)
from app.models.account import Account, AccountStatus, Platform
from app.models.message import InboundMessage
from app.models.oauth import PlatformProfile, TokenGrant
from app.services.message_sync import MessageSyncService
from app.services.token_refresh import TokenRefreshService


class FakeConnector:
    """Connector double returning canned messages per platform account id."""

    supports_messaging = True

    def __init__(
        self,
        platform: Platform,
        messages: Iterable[InboundMessage] = (),
        *,
        failures: Optional[dict] = None,
        delay: float = 0.0,
        refresh_delay: float = 0.0,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.platform = platform
        self.messages = list(messages)
        self.failures = failures or {}
        self.delay = delay
        self.refresh_delay = refresh_delay
        self.gate = gate
        self.started = asyncio.Event()
        self.fetched: List[Account] = []
        self.refreshed: List[str] = []
        self.refresh_error: Optional[Exception] = None

    async def fetch_new_messages(self, account: Account) -> List[InboundMessage]:
        self.fetched.append(account)
        self.started.set()
        if self.gate is not None:
            await self.gate.wait()
        if self.delay:
            await asyncio.sleep(self.delay)
        error = self.failures.get(account.platform_id)
        if error is not None:
            raise error
        return list(self.messages)

    async def refresh_token(self, token: str) -> TokenGrant:
        self.refreshed.append(token)
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error is not None:
            raise self.refresh_error
        return TokenGrant(access_token="refreshed-access", expires_in=3600)


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _service(account_store, message_store, *connectors, sleep=None, **kwargs) -> MessageSyncService:
    registry = ConnectorRegistry({connector.platform: connector for connector in connectors})
    return MessageSyncService(
        accounts=account_store,
        messages=message_store,
        connectors=registry,
        token_refresh=TokenRefreshService(account_store, registry),
        sleep=sleep or RecordingSleep(),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_sync_all_isolates_failing_account(account_store, message_store) -> None:
    accounts = [
        connect_account(account_store, Platform.TWITTER, f"tw-{index}") for index in range(7)
    ]
    connector = FakeConnector(
        Platform.TWITTER,
        [make_message("dm-1")],
        failures={"tw-3": FetchFailedError("Twitter API error: 503")},
    )
    sleep = RecordingSleep()
    service = _service(account_store, message_store, connector, sleep=sleep, batch_size=3)

    recorded: List[str] = []
    original = account_store.mark_sync_outcome

    def spy(account_id, result):
        recorded.append(account_id)
        original(account_id, result)

    account_store.mark_sync_outcome = spy

    results = await service.sync_all()

    assert len(results) == 7
    failed = [result for result in results if not result.success]
    assert [result.account_id for result in failed] == [accounts[3].id]
    assert failed[0].error_code is ErrorCode.FETCH_FAILED
    assert sorted(recorded) == sorted(account.id for account in accounts)
    # Three batches (3 + 3 + 1) separated by two delays.
    assert sleep.calls == [2.0, 2.0]
    assert account_store.get(accounts[3].id).status is AccountStatus.ERROR
    assert account_store.get(accounts[0].id).last_synced_at is not None


@pytest.mark.asyncio
async def test_sync_all_with_no_accounts_is_noop(account_store, message_store) -> None:
    service = _service(account_store, message_store, FakeConnector(Platform.LINKEDIN))

    assert await service.sync_all() == []


@pytest.mark.asyncio
async def test_repeated_sync_does_not_duplicate_messages(account_store, message_store) -> None:
    connect_account(account_store, Platform.YOUTUBE, "yt-1")
    connector = FakeConnector(Platform.YOUTUBE, [make_message("c-1"), make_message("c-2")])
    service = _service(account_store, message_store, connector)

    first = await service.sync_all()
    second = await service.sync_all()

    assert first[0].new_messages == 2
    assert second[0].success and second[0].new_messages == 0
    assert message_store.count() == 2


@pytest.mark.asyncio
async def test_only_unseen_messages_count_as_new(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.LINKEDIN, "li-1")
    message_store.upsert(account.id, make_message("seen"))
    connector = FakeConnector(
        Platform.LINKEDIN,
        [make_message("seen"), make_message("n-1"), make_message("n-2"), make_message("n-3")],
    )
    service = _service(account_store, message_store, connector)

    result = await service.sync_account(account)

    assert result.success
    assert result.new_messages == 3
    assert message_store.count(account.id) == 4


@pytest.mark.asyncio
async def test_invalid_token_marks_account_expired(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.LINKEDIN, "li-1")
    connector = FakeConnector(
        Platform.LINKEDIN, failures={"li-1": InvalidTokenError("LinkedIn rejected the access token.")}
    )
    service = _service(account_store, message_store, connector)

    result = await service.sync_account(account)

    assert not result.success
    assert result.error_code is ErrorCode.INVALID_TOKEN
    assert account_store.get(account.id).status is AccountStatus.EXPIRED


@pytest.mark.asyncio
async def test_expired_token_is_refreshed_before_fetch(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.TWITTER, "tw-1", expires_in=-60)
    connector = FakeConnector(Platform.TWITTER)
    service = _service(account_store, message_store, connector)

    result = await service.sync_account(account)

    assert result.success
    assert connector.refreshed == ["refresh-token"]
    assert connector.fetched[0].access_token == "refreshed-access"
    assert not account_store.get(account.id).needs_refresh


@pytest.mark.asyncio
async def test_refresh_failure_fails_sync_as_refresh_failed(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.TWITTER, "tw-1", expires_in=-60)
    connector = FakeConnector(Platform.TWITTER)
    connector.refresh_error = RefreshFailedError("Twitter OAuth error: invalid_grant")
    service = _service(account_store, message_store, connector)

    result = await service.sync_account(account)

    assert result.error_code is ErrorCode.REFRESH_FAILED
    assert connector.fetched == []
    assert account_store.get(account.id).status is AccountStatus.EXPIRED


@pytest.mark.asyncio
async def test_slow_account_times_out(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.YOUTUBE, "yt-1")
    connector = FakeConnector(Platform.YOUTUBE, delay=1.0)
    service = _service(account_store, message_store, connector, account_timeout_seconds=0.05)

    result = await service.sync_account(account)

    assert not result.success
    assert result.error_code is ErrorCode.FETCH_FAILED
    assert "timed out" in result.error
    assert account_store.get(account.id).status is AccountStatus.ERROR


@pytest.mark.asyncio
async def test_unexpected_error_becomes_failed_result(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.LINKEDIN, "li-1")
    connector = FakeConnector(Platform.LINKEDIN, failures={"li-1": KeyError("data")})
    service = _service(account_store, message_store, connector)

    result = await service.sync_account(account)

    assert not result.success
    assert result.error_code is ErrorCode.FETCH_FAILED


@pytest.mark.asyncio
async def test_sync_by_platform_only_touches_that_platform(account_store, message_store) -> None:
    connect_account(account_store, Platform.LINKEDIN, "li-1")
    connect_account(account_store, Platform.TWITTER, "tw-1")
    linkedin = FakeConnector(Platform.LINKEDIN)
    twitter = FakeConnector(Platform.TWITTER)
    service = _service(account_store, message_store, linkedin, twitter)

    results = await service.sync_by_platform(Platform.LINKEDIN)

    assert [result.platform for result in results] == [Platform.LINKEDIN]
    assert twitter.fetched == []


@pytest.mark.asyncio
async def test_sync_account_by_id_unknown_raises(account_store, message_store) -> None:
    service = _service(account_store, message_store, FakeConnector(Platform.LINKEDIN))

    with pytest.raises(AccountNotFoundError):
        await service.sync_account_by_id("missing")


@pytest.mark.asyncio
async def test_start_twice_runs_a_single_loop(account_store, message_store) -> None:
    connect_account(account_store, Platform.LINKEDIN, "li-1")
    connector = FakeConnector(Platform.LINKEDIN)
    service = _service(account_store, message_store, connector)

    service.start(5)
    service.start(5)
    await asyncio.wait_for(connector.started.wait(), timeout=1)

    loops = [task for task in asyncio.all_tasks() if task.get_name() == "message-sync"]
    assert len(loops) == 1
    assert service.is_running

    await service.stop()
    await service.stop()

    assert not service.is_running
    assert len(connector.fetched) == 1


@pytest.mark.asyncio
async def test_stop_lets_in_flight_batch_finish(account_store, message_store) -> None:
    for index in range(3):
        connect_account(account_store, Platform.LINKEDIN, f"li-{index}")
    gate = asyncio.Event()
    connector = FakeConnector(Platform.LINKEDIN, [make_message("m-1")], gate=gate)
    service = _service(account_store, message_store, connector, batch_size=1)

    service.start(5)
    await asyncio.wait_for(connector.started.wait(), timeout=1)
    stopping = asyncio.create_task(service.stop())
    await asyncio.sleep(0)
    gate.set()
    await asyncio.wait_for(stopping, timeout=1)

    assert len(connector.fetched) == 1
    assert message_store.count() == 1
    assert not service.is_running


@pytest.mark.asyncio
async def test_stats_report_running_state_and_counts(account_store, message_store) -> None:
    connect_account(account_store, Platform.LINKEDIN, "li-1")
    connect_account(account_store, Platform.TWITTER, "tw-1")
    service = _service(
        account_store,
        message_store,
        FakeConnector(Platform.LINKEDIN, [make_message("m-1")]),
        FakeConnector(Platform.TWITTER),
    )

    await service.sync_all()
    stats = service.get_stats()

    assert stats["is_running"] is False
    assert stats["connected_accounts"] == 2
    assert stats["platform_breakdown"] == {"linkedin": 1, "twitter": 1}
    assert stats["total_messages"] == 1
    assert stats["last_run_at"] is not None
    assert all(value is not None for value in stats["last_sync_times"].values())


def test_batch_size_must_be_positive(account_store, message_store) -> None:
    with pytest.raises(ValueError):
        _service(account_store, message_store, FakeConnector(Platform.LINKEDIN), batch_size=0)


class ProfileOnlyConnector:
    """Connector double for a platform with no inbox API."""

    supports_messaging = False

    def __init__(self, platform: Platform, profile: PlatformProfile) -> None:
        self.platform = platform
        self.profile = profile
        self.profile_reads: List[str] = []

    async def fetch_account_profile(self, account: Account) -> PlatformProfile:
        self.profile_reads.append(account.id)
        return self.profile

    async def fetch_new_messages(self, account: Account) -> List[InboundMessage]:
        raise AssertionError("profile-only platforms are not polled for messages")


@pytest.mark.asyncio
async def test_profile_only_platform_refreshes_stored_profile(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.LINKEDIN, "li-1")
    connector = ProfileOnlyConnector(
        Platform.LINKEDIN,
        PlatformProfile(
            platform_id="li-1",
            username="ada-lovelace",
            display_name="Ada Lovelace",
            bio="Analyst",
            followers_count=42,
        ),
    )
    service = _service(account_store, message_store, connector)

    result = await service.sync_account(account)

    stored = account_store.get(account.id)
    assert result.success
    assert result.new_messages == 0
    assert connector.profile_reads == [account.id]
    assert stored.followers_count == 42
    assert stored.following_count == 0
    assert stored.username == "ada-lovelace"
    assert stored.bio == "Analyst"


@pytest.mark.asyncio
async def test_slow_refresh_is_not_cut_off_by_fetch_timeout(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.TWITTER, "tw-1", expires_in=-60)
    connector = FakeConnector(Platform.TWITTER, refresh_delay=0.1)
    service = _service(account_store, message_store, connector, account_timeout_seconds=0.05)

    result = await service.sync_account(account)

    assert result.success
    assert account_store.get(account.id).access_token == "refreshed-access"


@pytest.mark.asyncio
async def test_late_indexed_comment_is_stored_on_next_pass(account_store, message_store) -> None:
    account = connect_account(account_store, Platform.YOUTUBE, "channel-1")
    items: List[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": items})

    connector = YouTubeConnector(
        YouTubeSettings(
            client_id="client-id",
            client_secret="client-secret",
            redirect_uri="https://api.example.com/callback",
        ),
        transport=httpx.MockTransport(handler),
    )
    service = _service(account_store, message_store, connector)

    first = await service.sync_account(account)
    cursor = account_store.get(account.id).last_synced_at
    published = (cursor - timedelta(seconds=5)).isoformat().replace("+00:00", "Z")
    items.append(
        {
            "id": "thread-1",
            "snippet": {
                "videoId": "vid-1",
                "topLevelComment": {
                    "id": "comment-1",
                    "snippet": {
                        "textDisplay": "late but real",
                        "authorDisplayName": "viewer",
                        "authorChannelId": {"value": "viewer"},
                        "publishedAt": published,
                    },
                },
            },
        }
    )
    second = await service.sync_account(account_store.get(account.id))

    assert first.success and first.new_messages == 0
    assert second.new_messages == 1
    assert message_store.count(account.id) == 1
