"""Shared fixtures for Inoreader MCP tests."""

import os

import pytest

from inoreader_mcp.config import Config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Remove INOREADER/MCP settings and proxy variables before each test."""
    for key in list(os.environ):
        if key.startswith(("INOREADER_", "MCP_", "LOG_LEVEL")) or key.lower().endswith("_proxy"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def config():
    return Config(
        INOREADER_APP_ID="app-id",
        INOREADER_APP_KEY="app-key",
        INOREADER_API_BASE_URL="https://test.inoreader.com/reader/api/0",
        INOREADER_OAUTH_BASE_URL="https://test.inoreader.com/oauth2",
    )
