try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from typing import List

import httpx
import pytest

from app.core.errors import AccountNotFoundError, ErrorCode
from app.main import app
from app.models.account import Platform
from app.models.message import SyncResult


class DummySyncService:
    def __init__(self) -> None:
        self.platforms: List[Platform] = []

    async def sync_all(self) -> List[SyncResult]:
        return [
            SyncResult(account_id="a-1", platform=Platform.LINKEDIN, success=True, new_messages=3),
            SyncResult(
                account_id="a-2",
                platform=Platform.TWITTER,
                success=False,
                error="Twitter rejected the access token.",
                error_code=ErrorCode.INVALID_TOKEN,
            ),
        ]

    async def sync_by_platform(self, platform: Platform) -> List[SyncResult]:
        self.platforms.append(platform)
        return []

    async def sync_account_by_id(self, account_id: str) -> SyncResult:
        if account_id != "a-1":
            raise AccountNotFoundError(f"Account {account_id} not found.")
        return SyncResult(account_id="a-1", platform=Platform.LINKEDIN, success=True, new_messages=1)

    def get_stats(self) -> dict:
        return {
            "is_running": True,
            "interval_minutes": 5,
            "last_run_at": None,
            "total_accounts": 2,
            "connected_accounts": 1,
            "total_messages": 4,
            "platform_breakdown": {"linkedin": 1},
            "last_sync_times": {"a-1": None},
        }


@pytest.fixture()
def sync_service():
    from app import dependencies

    service = DummySyncService()
    app.dependency_overrides[dependencies.get_message_sync_service] = lambda: service
    yield service
    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


@pytest.mark.anyio
async def test_health():
    async with _client() as client:
        response = await client.get("/api/health")

    assert response.json() == {"status": "ok"}


@pytest.mark.anyio
async def test_manual_sync_reports_summary(sync_service):
    async with _client() as client:
        response = await client.post("/api/sync")

    assert response.status_code == 200
    data = response.json()
    assert data["total"] == 2
    assert data["succeeded"] == 1
    assert data["new_messages"] == 3
    assert data["results"][1]["error_code"] == "invalid_token"


@pytest.mark.anyio
async def test_account_sync_unknown_account_is_404(sync_service):
    async with _client() as client:
        found = await client.post("/api/sync/accounts/a-1")
        missing = await client.post("/api/sync/accounts/nope")

    assert found.json()["new_messages"] == 1
    assert missing.status_code == 404


@pytest.mark.anyio
async def test_platform_sync_validates_platform(sync_service):
    async with _client() as client:
        ok = await client.post("/api/sync/platforms/YouTube")
        bad = await client.post("/api/sync/platforms/friendster")

    assert ok.status_code == 200
    assert sync_service.platforms == [Platform.YOUTUBE]
    assert bad.status_code == 400


@pytest.mark.anyio
async def test_sync_status(sync_service):
    async with _client() as client:
        response = await client.get("/api/sync/status")

    data = response.json()
    assert data["is_running"] is True
    assert data["platform_breakdown"] == {"linkedin": 1}
