"""Tests for auth.py: token resolution, refresh and the login flow."""

import asyncio
import time
from urllib.parse import parse_qs, parse_qsl, urlparse

import httpx
import pytest

from inoreader_mcp import auth
from inoreader_mcp.auth import (
    REDIRECT_URI,
    AuthFlowError,
    CallbackListener,
    NotAuthenticatedError,
    TokenProvider,
    TokenRefreshError,
)
from inoreader_mcp.config import Config
from inoreader_mcp.keychain import MemorySecretStore
from inoreader_mcp.models import TokenPair

NOW = 1_700_000_000_000


@pytest.fixture(autouse=True)
def _frozen_clock(monkeypatch):
    monkeypatch.setattr(auth, "now_ms", lambda: NOW)


class TokenEndpoint:
    """Mock OAuth token endpoint recording the submitted forms."""

    def __init__(self, status: int = 200, payload: dict | None = None):
        self.status = status
        self.payload = payload if payload is not None else {}
        self.forms: list[dict[str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/oauth2/token"
        self.forms.append(dict(parse_qsl(request.content.decode())))
        return httpx.Response(self.status, json=self.payload)


def provider_for(config, store, endpoint) -> TokenProvider:
    return TokenProvider(config, store, transport=httpx.MockTransport(endpoint))


# --- Refresh ---


@pytest.mark.asyncio
async def test_refresh_carries_forward_refresh_token(config):
    store = MemorySecretStore(TokenPair("A", "R", NOW - 1000))
    endpoint = TokenEndpoint(payload={"access_token": "A2", "expires_in": 3600, "token_type": "Bearer"})
    provider = provider_for(config, store, endpoint)

    new_access = await provider.refresh_stored_tokens()

    stored = await store.load()
    assert new_access == "A2"
    assert stored.access_token == "A2"
    assert stored.refresh_token == "R"
    assert stored.expires_at == NOW + 3600 * 1000


@pytest.mark.asyncio
async def test_refresh_replaces_refresh_token_when_returned(config):
    store = MemorySecretStore(TokenPair("A", "R", NOW))
    endpoint = TokenEndpoint(
        payload={"access_token": "A2", "refresh_token": "R2", "expires_in": 60, "token_type": "Bearer"}
    )

    await provider_for(config, store, endpoint).refresh_stored_tokens()

    stored = await store.load()
    assert stored.refresh_token == "R2"


@pytest.mark.asyncio
async def test_refresh_sends_grant(config):
    store = MemorySecretStore(TokenPair("A", "R"))
    endpoint = TokenEndpoint(payload={"access_token": "A2", "expires_in": 60})

    await provider_for(config, store, endpoint).refresh_stored_tokens()

    assert endpoint.forms == [
        {
            "client_id": "app-id",
            "client_secret": "app-key",
            "grant_type": "refresh_token",
            "refresh_token": "R",
        }
    ]


@pytest.mark.asyncio
async def test_refresh_without_stored_tokens(config):
    endpoint = TokenEndpoint()
    with pytest.raises(TokenRefreshError, match="No stored refresh token"):
        await provider_for(config, MemorySecretStore(), endpoint).refresh_stored_tokens()
    assert endpoint.forms == []


@pytest.mark.asyncio
async def test_refresh_without_refresh_token(config):
    store = MemorySecretStore(TokenPair("A", ""))
    with pytest.raises(TokenRefreshError):
        await provider_for(config, store, TokenEndpoint()).refresh_stored_tokens()


@pytest.mark.asyncio
async def test_refresh_upstream_error(config):
    store = MemorySecretStore(TokenPair("A", "R"))
    endpoint = TokenEndpoint(status=400, payload={"error": "invalid_grant"})

    with pytest.raises(TokenRefreshError, match="400"):
        await provider_for(config, store, endpoint).refresh_stored_tokens()

    assert (await store.load()).access_token == "A"


@pytest.mark.asyncio
async def test_refresh_missing_fields(config):
    store = MemorySecretStore(TokenPair("A", "R"))
    endpoint = TokenEndpoint(payload={"token_type": "Bearer"})
    with pytest.raises(TokenRefreshError):
        await provider_for(config, store, endpoint).refresh_stored_tokens()


@pytest.mark.asyncio
async def test_refresh_network_error(config):
    def handler(request):
        raise httpx.ConnectError("unreachable", request=request)

    provider = TokenProvider(config, MemorySecretStore(TokenPair("A", "R")), httpx.MockTransport(handler))
    with pytest.raises(TokenRefreshError, match="unreachable"):
        await provider.refresh_stored_tokens()


@pytest.mark.asyncio
async def test_refresh_without_app_credentials():
    config = Config(INOREADER_OAUTH_BASE_URL="https://test.inoreader.com/oauth2")
    provider = provider_for(config, MemorySecretStore(TokenPair("A", "R")), TokenEndpoint())
    with pytest.raises(TokenRefreshError, match="INOREADER_APP_ID"):
        await provider.refresh_stored_tokens()


# --- Startup token resolution ---


@pytest.mark.asyncio
async def test_env_token_wins(monkeypatch):
    monkeypatch.setenv("INOREADER_ACCESS_TOKEN", "env-tok")
    config = Config()
    store = MemorySecretStore(TokenPair("stored", "R"))
    provider = provider_for(config, store, TokenEndpoint())
    assert await provider.get_valid_access_token() == "env-tok"


@pytest.mark.asyncio
async def test_no_tokens_is_startup_error(config):
    provider = provider_for(config, MemorySecretStore(), TokenEndpoint())
    with pytest.raises(NotAuthenticatedError, match="Not authenticated"):
        await provider.get_valid_access_token()


@pytest.mark.asyncio
async def test_fresh_stored_token_used_as_is(config):
    endpoint = TokenEndpoint()
    store = MemorySecretStore(TokenPair("stored", "R", NOW + 60 * 60 * 1000))

    token = await provider_for(config, store, endpoint).get_valid_access_token()

    assert token == "stored"
    assert endpoint.forms == []


@pytest.mark.asyncio
async def test_token_without_expiry_used_as_is(config):
    store = MemorySecretStore(TokenPair("stored", "R"))
    assert await provider_for(config, store, TokenEndpoint()).get_valid_access_token() == "stored"


@pytest.mark.asyncio
async def test_token_within_expiry_buffer_is_refreshed(config):
    store = MemorySecretStore(TokenPair("stored", "R", NOW + 4 * 60 * 1000))
    endpoint = TokenEndpoint(payload={"access_token": "A2", "expires_in": 3600})

    token = await provider_for(config, store, endpoint).get_valid_access_token()

    assert token == "A2"
    assert (await store.load()).refresh_token == "R"


@pytest.mark.asyncio
async def test_failed_startup_refresh(config):
    store = MemorySecretStore(TokenPair("stored", "R", NOW - 1))
    endpoint = TokenEndpoint(status=401, payload={"error": "invalid_grant"})

    with pytest.raises(NotAuthenticatedError, match="Failed to refresh token"):
        await provider_for(config, store, endpoint).get_valid_access_token()


# --- Authorization flow ---


def test_build_authorization_url(config):
    provider = TokenProvider(config, MemorySecretStore())

    url = urlparse(provider.build_authorization_url("state-1"))
    params = parse_qs(url.query)

    assert url.path == "/oauth2/auth"
    assert params["client_id"] == ["app-id"]
    assert params["redirect_uri"] == [REDIRECT_URI]
    assert params["response_type"] == ["code"]
    assert params["scope"] == ["read write"]
    assert params["state"] == ["state-1"]


class FakeListener:
    def __init__(self, code: str = "the-code"):
        self.code = code
        self.started = False
        self.stopped = False
        self.expected_state: str | None = None

    def start(self):
        self.started = True

    def stop(self):
        self.stopped = True

    async def wait_for_code(self, expected_state, timeout):
        self.expected_state = expected_state
        return self.code


@pytest.mark.asyncio
async def test_login_exchanges_code_and_saves(config):
    store = MemorySecretStore()
    endpoint = TokenEndpoint(
        payload={"access_token": "A", "refresh_token": "R", "expires_in": 3600, "token_type": "Bearer"}
    )
    opened: list[str] = []
    listener = FakeListener()

    tokens = await provider_for(config, store, endpoint).login(
        open_browser=opened.append, listener=listener
    )

    assert tokens == TokenPair("A", "R", NOW + 3600 * 1000)
    assert await store.load() == tokens
    assert listener.started and listener.stopped
    assert parse_qs(urlparse(opened[0]).query)["state"] == [listener.expected_state]
    assert endpoint.forms[0]["grant_type"] == "authorization_code"
    assert endpoint.forms[0]["code"] == "the-code"
    assert endpoint.forms[0]["redirect_uri"] == REDIRECT_URI


@pytest.mark.asyncio
async def test_login_requires_keychain(config):
    class Unavailable(MemorySecretStore):
        async def is_available(self):
            return False

    listener = FakeListener()
    with pytest.raises(NotAuthenticatedError, match="Keychain is not available"):
        await provider_for(config, Unavailable(), TokenEndpoint()).login(listener=listener)
    assert not listener.started


@pytest.mark.asyncio
async def test_login_exchange_failure(config):
    endpoint = TokenEndpoint(status=400, payload={"error": "invalid_code"})
    listener = FakeListener()

    with pytest.raises(AuthFlowError, match="Token exchange failed"):
        await provider_for(config, MemorySecretStore(), endpoint).login(
            open_browser=lambda url: None, listener=listener
        )

    assert listener.stopped


@pytest.mark.asyncio
async def test_logout_and_status(config):
    store = MemorySecretStore(TokenPair("A", "R", NOW + 30 * 60 * 1000))
    provider = provider_for(config, store, TokenEndpoint())

    status = await provider.status()
    assert status.source == "keychain"
    assert status.expires_in_minutes == 30

    await provider.logout()
    assert (await provider.status()).source is None


# --- Callback listener ---


async def _hit(listener: CallbackListener, query: str) -> httpx.Response:
    port = listener._server.server_address[1]
    return await asyncio.to_thread(
        httpx.get, f"http://127.0.0.1:{port}/callback?{query}", trust_env=False
    )


@pytest.mark.asyncio
async def test_listener_receives_code():
    listener = CallbackListener(host="127.0.0.1", port=0)
    listener.start()
    try:
        response = await _hit(listener, "code=abc&state=s1")
        code = await listener.wait_for_code("s1", timeout=5)
    finally:
        listener.stop()

    assert response.status_code == 200
    assert "Successful" in response.text
    assert code == "abc"


@pytest.mark.asyncio
async def test_listener_reports_error():
    listener = CallbackListener(host="127.0.0.1", port=0)
    listener.start()
    try:
        response = await _hit(listener, "error=access_denied")
        with pytest.raises(AuthFlowError, match="access_denied"):
            await listener.wait_for_code("s1", timeout=5)
    finally:
        listener.stop()

    assert response.status_code == 400


@pytest.mark.asyncio
async def test_listener_rejects_state_mismatch():
    listener = CallbackListener(host="127.0.0.1", port=0)
    listener.start()
    try:
        await _hit(listener, "code=abc&state=other")
        with pytest.raises(AuthFlowError, match="state mismatch"):
            await listener.wait_for_code("s1", timeout=5)
    finally:
        listener.stop()


@pytest.mark.asyncio
async def test_listener_times_out():
    listener = CallbackListener(host="127.0.0.1", port=0)
    listener.start()
    try:
        with pytest.raises(AuthFlowError, match="timed out"):
            await listener.wait_for_code("s1", timeout=0.05)
    finally:
        listener.stop()


@pytest.mark.asyncio
async def test_stop_releases_pending_wait():
    listener = CallbackListener(host="127.0.0.1", port=0)
    listener.start()
    waiter = asyncio.create_task(listener.wait_for_code("s1", timeout=30))
    await asyncio.sleep(0.05)
    listener.stop()

    with pytest.raises(AuthFlowError, match="stopped before a redirect"):
        await asyncio.wait_for(waiter, timeout=2)


def test_cancelled_wait_does_not_hold_up_event_loop_shutdown():
    """A cancelled login (Ctrl-C) must not leave a worker thread waiting out the timeout."""

    async def cancel_midway():
        listener = CallbackListener(host="127.0.0.1", port=0)
        listener.start()
        waiter = asyncio.create_task(listener.wait_for_code("s1", timeout=30))
        await asyncio.sleep(0.1)
        waiter.cancel()
        try:
            with pytest.raises(asyncio.CancelledError):
                await waiter
        finally:
            listener.stop()

    started = time.monotonic()
    asyncio.run(cancel_midway())
    assert time.monotonic() - started < 5
