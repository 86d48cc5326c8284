try:
    from . import _bootstrap  # noqa: F401
except Exception:  # pragma: no cover
    import _bootstrap  # type: ignore # noqa: F401

from typing import List, Optional
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from _factories import connect_account

from app.clients.oauth_state import OAuthStateCodec
from app.connectors.registry import ConnectorRegistry
from app.core.errors import NotConfiguredError, OAuthExchangeError
from app.main import app
from app.models.account import Platform
from app.models.oauth import PlatformProfile, TokenGrant
from app.services.account_connection import AccountConnectionService

_MINUTE_MS = 60 * 1000


class DummyConnector:
    def __init__(self, platform: Platform, *, configured: bool = True) -> None:
        self.platform = platform
        self.configured = configured
        self.codes: List[str] = []
        self.exchange_error: Optional[Exception] = None

    @property
    def is_configured(self) -> bool:
        return self.configured

    def require_config(self) -> None:
        if not self.configured:
            raise NotConfiguredError(f"OAuth not configured for {self.platform.display_name}.")

    def build_authorization_url(self, state: str) -> str:
        self.require_config()
        return f"https://provider.example.com/authorize?state={state}"

    async def exchange_code_for_token(self, code: str, state: str) -> TokenGrant:
        self.codes.append(code)
        if self.exchange_error is not None:
            raise self.exchange_error
        return TokenGrant(access_token="access-token", refresh_token="refresh-token", expires_in=3600)

    async def fetch_profile(self, access_token: str) -> PlatformProfile:
        return PlatformProfile(platform_id="li-123", username="ada", display_name="Ada")


class FakeClock:
    def __init__(self) -> None:
        self.now = 1_700_000_000_000

    def __call__(self) -> int:
        return self.now


@pytest.fixture()
def oauth_env(account_store, message_store):
    from app import dependencies

    clock = FakeClock()
    linkedin = DummyConnector(Platform.LINKEDIN)
    registry = ConnectorRegistry(
        {
            Platform.LINKEDIN: linkedin,
            Platform.TIKTOK: DummyConnector(Platform.TIKTOK, configured=False),
            Platform.TWITTER: DummyConnector(Platform.TWITTER),
        }
    )
    codec = OAuthStateCodec("state-secret", ttl_seconds=900, clock=clock)
    service = AccountConnectionService(registry, codec, account_store, message_store)

    app.dependency_overrides.update(
        {
            dependencies.get_account_connection_service: lambda: service,
            dependencies.get_account_store: lambda: account_store,
        }
    )

    yield {"clock": clock, "codec": codec, "linkedin": linkedin, "store": account_store}

    app.dependency_overrides.clear()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver")


def _redirect_params(response: httpx.Response) -> dict:
    location = urlparse(response.headers["location"])
    assert f"{location.scheme}://{location.netloc}{location.path}" == "https://app.example.com/accounts"
    return {key: values[0] for key, values in parse_qs(location.query).items()}


@pytest.mark.anyio
async def test_connect_returns_authorization_url_and_state(oauth_env):
    async with _client() as client:
        response = await client.get("/api/accounts/linkedin/connect", params={"user_id": "user-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["authorization_url"].startswith("https://provider.example.com/")
    claims = oauth_env["codec"].validate(data["state"], Platform.LINKEDIN)
    assert claims.user_id == "user-1"


@pytest.mark.anyio
async def test_connect_redirects_when_requested(oauth_env):
    async with _client() as client:
        response = await client.get(
            "/api/accounts/linkedin/connect", params={"user_id": "user-1", "redirect": "true"}
        )

    assert response.status_code == 307
    assert response.headers["location"].startswith("https://provider.example.com/authorize")


@pytest.mark.anyio
async def test_connect_unconfigured_platform_is_bad_request(oauth_env):
    async with _client() as client:
        response = await client.get("/api/accounts/tiktok/connect", params={"user_id": "user-1"})

    assert response.status_code == 400
    assert "not configured" in response.json()["detail"]


@pytest.mark.anyio
async def test_connect_unknown_platform_is_bad_request(oauth_env):
    async with _client() as client:
        response = await client.get("/api/accounts/myspace/connect", params={"user_id": "user-1"})

    assert response.status_code == 400


@pytest.mark.anyio
async def test_callback_stores_account_and_redirects_with_success(oauth_env):
    state = oauth_env["codec"].mint("user-1", Platform.LINKEDIN)

    async with _client() as client:
        response = await client.get(
            "/api/oauth/linkedin/callback", params={"code": "auth-code", "state": state}
        )

    assert response.status_code == 307
    params = _redirect_params(response)
    assert params["success"] == "Account connected successfully"
    assert params["platform"] == "linkedin"
    [account] = oauth_env["store"].list_for_user("user-1")
    assert account.platform_id == "li-123"
    assert account.access_token == "access-token"
    assert oauth_env["linkedin"].codes == ["auth-code"]


@pytest.mark.anyio
async def test_callback_with_stale_state_changes_nothing(oauth_env):
    state = oauth_env["codec"].mint("user-1", Platform.LINKEDIN)
    oauth_env["clock"].now += 20 * _MINUTE_MS

    async with _client() as client:
        response = await client.get(
            "/api/oauth/linkedin/callback", params={"code": "auth-code", "state": state}
        )

    assert response.status_code == 307
    assert _redirect_params(response)["error"] == "OAuth session expired."
    assert oauth_env["linkedin"].codes == []
    assert oauth_env["store"].list_for_user("user-1") == []


@pytest.mark.anyio
async def test_callback_rejects_state_from_other_platform(oauth_env):
    state = oauth_env["codec"].mint("user-1", Platform.TWITTER)

    async with _client() as client:
        response = await client.get(
            "/api/oauth/linkedin/callback", params={"code": "auth-code", "state": state}
        )

    assert "error" in _redirect_params(response)
    assert oauth_env["linkedin"].codes == []


@pytest.mark.anyio
async def test_callback_exchange_failure_redirects_with_error(oauth_env):
    oauth_env["linkedin"].exchange_error = OAuthExchangeError(
        "LinkedIn OAuth error: invalid_grant", detail='{"error":"invalid_grant"}'
    )
    state = oauth_env["codec"].mint("user-1", Platform.LINKEDIN)

    async with _client() as client:
        response = await client.get(
            "/api/oauth/linkedin/callback", params={"code": "used-code", "state": state}
        )

    assert _redirect_params(response)["error"] == "LinkedIn OAuth error: invalid_grant"
    assert oauth_env["store"].list_for_user("user-1") == []


@pytest.mark.anyio
async def test_callback_reports_provider_denial(oauth_env):
    async with _client() as client:
        response = await client.get(
            "/api/oauth/linkedin/callback",
            params={"error": "access_denied", "error_description": "The user cancelled"},
        )

    assert _redirect_params(response)["error"] == "The user cancelled"


@pytest.mark.anyio
async def test_callback_without_code_redirects_with_error(oauth_env):
    async with _client() as client:
        response = await client.get("/api/oauth/linkedin/callback", params={"state": "abc"})

    assert _redirect_params(response)["error"] == "Missing code or state parameter"


@pytest.mark.anyio
async def test_list_accounts_never_exposes_tokens(oauth_env):
    connect_account(oauth_env["store"], Platform.LINKEDIN, "li-1", access_token="very-secret")

    async with _client() as client:
        response = await client.get("/api/accounts", params={"user_id": "user-1"})

    assert response.status_code == 200
    [account] = response.json()
    assert account["platform"] == "linkedin"
    assert "very-secret" not in response.text
    assert "access_token" not in account


@pytest.mark.anyio
async def test_disconnect_removes_account(oauth_env):
    account = connect_account(oauth_env["store"], Platform.LINKEDIN, "li-1")

    async with _client() as client:
        first = await client.delete(f"/api/accounts/{account.id}", params={"user_id": "user-1"})
        second = await client.delete(f"/api/accounts/{account.id}", params={"user_id": "user-1"})

    assert first.status_code == 200
    assert second.status_code == 404
    assert oauth_env["store"].get(account.id) is None
