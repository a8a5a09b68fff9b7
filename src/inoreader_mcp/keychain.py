"""Secure token storage using the OS keychain.

Uses the ``keyring`` library, which picks the platform's credential manager
(macOS Keychain, Secret Service on Linux, Windows Credential Locker). The
token pair is stored as a single JSON secret under a fixed service and
account name. ``keyring`` is blocking, so calls run in a worker thread.
"""

import asyncio
import logging
from typing import Protocol

import keyring
from keyring.backends import fail
from keyring.errors import KeyringError, PasswordDeleteError

from .models import TokenPair

logger = logging.getLogger(__name__)

SERVICE_NAME = "inoreader-mcp"
ACCOUNT_NAME = "tokens"


class SecretStoreError(Exception):
    """Raised when the secret store cannot persist tokens."""


class SecretStore(Protocol):
    async def save(self, tokens: TokenPair) -> None: ...

    async def load(self) -> TokenPair | None: ...

    async def delete(self) -> None: ...

    async def is_available(self) -> bool: ...


def _parse(raw: str | None) -> TokenPair | None:
    if not raw:
        return None
    try:
        return TokenPair.from_json(raw)
    except ValueError as e:
        logger.warning("Ignoring unreadable stored tokens: %s", e)
        return None


class KeyringSecretStore:
    """Token storage backed by the OS keychain."""

    def __init__(self, service: str = SERVICE_NAME, account: str = ACCOUNT_NAME):
        self._service = service
        self._account = account

    async def save(self, tokens: TokenPair) -> None:
        try:
            await asyncio.to_thread(
                keyring.set_password, self._service, self._account, tokens.to_json()
            )
        except KeyringError as e:
            raise SecretStoreError(f"Failed to save tokens to keychain: {e}") from e
        logger.debug("Saved tokens to keychain")

    async def load(self) -> TokenPair | None:
        try:
            raw = await asyncio.to_thread(keyring.get_password, self._service, self._account)
        except KeyringError as e:
            logger.warning("Failed to read tokens from keychain: %s", e)
            return None
        return _parse(raw)

    async def delete(self) -> None:
        try:
            await asyncio.to_thread(keyring.delete_password, self._service, self._account)
        except PasswordDeleteError:
            logger.debug("No stored tokens to delete")
        except KeyringError as e:
            logger.debug("Ignoring keychain delete failure: %s", e)

    async def is_available(self) -> bool:
        backend = await asyncio.to_thread(keyring.get_keyring)
        return not isinstance(backend, fail.Keyring)


class MemorySecretStore:
    """In-process token storage for headless runs and tests."""

    def __init__(self, tokens: TokenPair | None = None):
        self._raw = tokens.to_json() if tokens else None

    async def save(self, tokens: TokenPair) -> None:
        self._raw = tokens.to_json()

    async def load(self) -> TokenPair | None:
        return _parse(self._raw)

    async def delete(self) -> None:
        self._raw = None

    async def is_available(self) -> bool:
        return True
