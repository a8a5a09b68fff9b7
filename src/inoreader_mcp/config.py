"""Configuration management for Inoreader MCP Server.

All configuration comes from environment variables. Uses pydantic-settings
so malformed values produce clear errors at startup rather than cryptic
failures during tool calls. App credentials are optional here because the
server can run on an ``INOREADER_ACCESS_TOKEN`` alone; the auth flow checks
for them when it actually needs them.
"""

from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_API_BASE_URL = "https://www.inoreader.com/reader/api/0"
DEFAULT_OAUTH_BASE_URL = "https://www.inoreader.com/oauth2"


class Config(BaseSettings):
    """Server configuration loaded from environment variables."""

    app_id: str | None = Field(default=None, alias="INOREADER_APP_ID")
    app_key: SecretStr | None = Field(default=None, alias="INOREADER_APP_KEY")
    access_token: SecretStr | None = Field(default=None, alias="INOREADER_ACCESS_TOKEN")
    refresh_token: SecretStr | None = Field(default=None, alias="INOREADER_REFRESH_TOKEN")
    api_base_url: str = Field(default=DEFAULT_API_BASE_URL, alias="INOREADER_API_BASE_URL")
    oauth_base_url: str = Field(default=DEFAULT_OAUTH_BASE_URL, alias="INOREADER_OAUTH_BASE_URL")
    http_timeout: float = Field(default=30.0, alias="INOREADER_HTTP_TIMEOUT")
    transport: Literal["stdio", "streamable-http"] = Field(default="stdio", alias="MCP_TRANSPORT")
    server_host: str = Field(default="127.0.0.1", alias="MCP_SERVER_HOST")
    server_port: int = Field(default=8000, alias="MCP_SERVER_PORT")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        populate_by_name=True,
        extra="ignore",
    )


def load_config() -> Config:
    """Load and validate config from environment."""
    return Config()
