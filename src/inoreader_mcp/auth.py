"""OAuth token lifecycle for Inoreader.

Resolves a usable access token at startup, refreshes expired tokens, and runs
the one-time authorization-code flow: a local callback listener receives the
code after the user approves access in the browser.
"""

import asyncio
import logging
import threading
import time
import uuid
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

import httpx
from pydantic import BaseModel

from .config import Config
from .keychain import KeyringSecretStore, SecretStore, SecretStoreError
from .models import TokenPair

logger = logging.getLogger(__name__)

REDIRECT_HOST = "localhost"
REDIRECT_PORT = 19812
REDIRECT_URI = f"http://{REDIRECT_HOST}:{REDIRECT_PORT}/callback"
LOGIN_TIMEOUT_SECONDS = 5 * 60
EXPIRY_BUFFER_MS = 5 * 60 * 1000

LOGIN_HINT = "Run 'inoreader-mcp auth login' to re-authenticate."


class AuthFlowError(Exception):
    """Raised when the authorization flow or a token request fails."""


class TokenRefreshError(AuthFlowError):
    """Raised when an access token could not be refreshed."""


class NotAuthenticatedError(Exception):
    """Raised at startup when no usable credentials are configured."""


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str | None = None
    expires_in: int
    token_type: str = "Bearer"


@dataclass
class AuthStatus:
    keychain_available: bool
    source: str | None
    expires_at: int | None = None

    @property
    def expires_in_minutes(self) -> int | None:
        if self.expires_at is None:
            return None
        return (self.expires_at - now_ms()) // 60_000


def now_ms() -> int:
    return int(time.time() * 1000)


class CallbackListener:
    """Temporary HTTP server that receives the OAuth redirect."""

    def __init__(self, host: str = REDIRECT_HOST, port: int = REDIRECT_PORT):
        self.host = host
        self.port = port
        self.params: dict[str, str] = {}
        self._done = threading.Event()
        self._server: HTTPServer | None = None
        self._thread: threading.Thread | None = None

    def _handler_class(self) -> type[BaseHTTPRequestHandler]:
        listener = self

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:  # noqa: N802
                parsed = urlparse(self.path)
                if parsed.path != "/callback":
                    self.send_response(404)
                    self.end_headers()
                    return

                params = {k: v[0] for k, v in parse_qs(parsed.query).items()}
                if "error" in params or "code" not in params:
                    heading = "Authentication Failed"
                    status = 400
                else:
                    heading = "Authentication Successful!"
                    status = 200

                self.send_response(status)
                self.send_header("Content-Type", "text/html")
                self.end_headers()
                self.wfile.write(
                    f"<html><body><h1>{heading}</h1>"
                    "<p>You can close this window.</p></body></html>".encode()
                )
                listener.params = params
                listener._done.set()

            def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
                pass

        return Handler

    def start(self) -> None:
        self._server = HTTPServer((self.host, self.port), self._handler_class())
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info("Callback server started on port %d", self.port)

    def stop(self) -> None:
        # Wakes any wait_for_code thread still blocked on the event.
        self._done.set()
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread:
            self._thread.join(timeout=1)
            self._thread = None

    async def wait_for_code(self, expected_state: str, timeout: float = LOGIN_TIMEOUT_SECONDS) -> str:
        received = await asyncio.to_thread(self._done.wait, timeout)
        if not received:
            raise AuthFlowError(f"Authentication timed out after {int(timeout // 60)} minutes")
        if not self.params:
            raise AuthFlowError("Callback listener stopped before a redirect arrived")
        if "error" in self.params:
            raise AuthFlowError(f"Authorization error: {self.params['error']}")
        code = self.params.get("code")
        if not code:
            raise AuthFlowError("No authorization code received")
        if self.params.get("state") != expected_state:
            raise AuthFlowError("Authorization state mismatch")
        return code


class TokenProvider:
    """Supplies access tokens, refreshing and persisting them as needed."""

    def __init__(
        self,
        config: Config,
        store: SecretStore | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._config = config
        self.store: SecretStore = store if store is not None else KeyringSecretStore()
        self._transport = transport
        self._token_url = f"{config.oauth_base_url.rstrip('/')}/token"

    def _app_credentials(self) -> tuple[str, str]:
        app_id = self._config.app_id
        app_key = self._config.app_key.get_secret_value() if self._config.app_key else ""
        if not app_id or not app_key:
            raise NotAuthenticatedError(
                "INOREADER_APP_ID and INOREADER_APP_KEY environment variables are required.\n"
                "Get your credentials at: https://www.inoreader.com/developers/"
            )
        return app_id, app_key

    async def _post_token(self, form: dict[str, str]) -> TokenResponse:
        async with httpx.AsyncClient(
            timeout=self._config.http_timeout, transport=self._transport
        ) as client:
            response = await client.post(self._token_url, data=form)
        if not response.is_success:
            raise AuthFlowError(f"{response.status_code} {response.text}")
        return TokenResponse.model_validate(response.json())

    async def refresh_access_token(self, refresh_token: str) -> TokenResponse:
        """Exchange a refresh token for a new access token."""
        try:
            app_id, app_key = self._app_credentials()
            return await self._post_token(
                {
                    "client_id": app_id,
                    "client_secret": app_key,
                    "grant_type": "refresh_token",
                    "refresh_token": refresh_token,
                }
            )
        except (NotAuthenticatedError, AuthFlowError, httpx.HTTPError, ValueError) as e:
            raise TokenRefreshError(f"Token refresh failed: {e}") from e

    async def exchange_code(self, code: str) -> TokenResponse:
        app_id, app_key = self._app_credentials()
        try:
            return await self._post_token(
                {
                    "client_id": app_id,
                    "client_secret": app_key,
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": REDIRECT_URI,
                }
            )
        except (AuthFlowError, httpx.HTTPError, ValueError) as e:
            raise AuthFlowError(f"Token exchange failed: {e}") from e

    async def _refresh_and_store(self, tokens: TokenPair) -> str:
        response = await self.refresh_access_token(tokens.refresh_token)
        refreshed = TokenPair(
            access_token=response.access_token,
            refresh_token=response.refresh_token or tokens.refresh_token,
            expires_at=now_ms() + response.expires_in * 1000,
        )
        try:
            await self.store.save(refreshed)
        except SecretStoreError as e:
            raise TokenRefreshError(str(e)) from e
        logger.info("Access token refreshed")
        return refreshed.access_token

    async def refresh_stored_tokens(self) -> str:
        """Refresh using the persisted refresh token and return the new access token.

        Raises:
            TokenRefreshError: If no refresh token is stored or the refresh fails
        """
        tokens = await self.store.load()
        if tokens is None or not tokens.refresh_token:
            raise TokenRefreshError("No stored refresh token")
        return await self._refresh_and_store(tokens)

    async def get_valid_access_token(self) -> str:
        """Resolve the access token to start with.

        The ``INOREADER_ACCESS_TOKEN`` override wins; otherwise the stored
        token is used, refreshed first if it expires within five minutes.
        """
        if self._config.access_token:
            return self._config.access_token.get_secret_value()

        tokens = await self.store.load()
        if tokens is None:
            raise NotAuthenticatedError(
                "Not authenticated. Run 'inoreader-mcp auth login' first, "
                "or set INOREADER_ACCESS_TOKEN environment variable."
            )

        expiring = tokens.expires_at is not None and tokens.expires_at < now_ms() + EXPIRY_BUFFER_MS
        if expiring and tokens.refresh_token:
            logger.warning("Access token expired, refreshing...")
            try:
                return await self._refresh_and_store(tokens)
            except TokenRefreshError as e:
                raise NotAuthenticatedError(f"Failed to refresh token: {e}. {LOGIN_HINT}") from e

        return tokens.access_token

    def build_authorization_url(self, state: str) -> str:
        app_id, _ = self._app_credentials()
        url = httpx.URL(
            f"{self._config.oauth_base_url.rstrip('/')}/auth",
            params={
                "client_id": app_id,
                "redirect_uri": REDIRECT_URI,
                "response_type": "code",
                "scope": "read write",
                "state": state,
            },
        )
        return str(url)

    async def login(
        self,
        open_browser: Callable[[str], Any] = webbrowser.open,
        listener: CallbackListener | None = None,
        timeout: float = LOGIN_TIMEOUT_SECONDS,
    ) -> TokenPair:
        """Run the browser authorization flow and persist the resulting tokens."""
        if not await self.store.is_available():
            raise NotAuthenticatedError(
                "Keychain is not available on this system.\n"
                "macOS: Keychain should be available by default.\n"
                "Linux: Install a Secret Service provider such as gnome-keyring."
            )

        state = str(uuid.uuid4())
        auth_url = self.build_authorization_url(state)

        # The listener must be up before the browser can redirect to it.
        listener = listener or CallbackListener()
        listener.start()
        try:
            await asyncio.to_thread(open_browser, auth_url)
            code = await listener.wait_for_code(state, timeout)
        finally:
            listener.stop()

        response = await self.exchange_code(code)
        tokens = TokenPair(
            access_token=response.access_token,
            refresh_token=response.refresh_token or "",
            expires_at=now_ms() + response.expires_in * 1000,
        )
        await self.store.save(tokens)
        logger.info("Authentication successful")
        return tokens

    async def logout(self) -> None:
        await self.store.delete()

    async def status(self) -> AuthStatus:
        available = await self.store.is_available()
        if self._config.access_token:
            return AuthStatus(keychain_available=available, source="env")
        tokens = await self.store.load()
        if tokens is None:
            return AuthStatus(keychain_available=available, source=None)
        return AuthStatus(keychain_available=available, source="keychain", expires_at=tokens.expires_at)
