"""MCP Server entry point for Inoreader.

Runs FastMCP over stdio by default so desktop MCP clients can spawn it
directly; ``MCP_TRANSPORT=streamable-http`` serves tools via HTTP POST to
/mcp instead. Logs go to stderr so they never mix with stdio protocol
traffic.
"""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from .client import create_client
from .config import Config, load_config
from .tools import ClientHolder, register_tools

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )


def build_server(config: Config, clients: ClientHolder | None = None) -> FastMCP:
    """Create the MCP server with all tools registered.

    The API client is created on the first tool call, so the server starts
    even when credentials still need to be set up.
    """
    if clients is None:
        clients = ClientHolder(lambda: create_client(config))

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[None]:
        try:
            yield
        finally:
            logger.info("Shutting down, closing connections...")
            await clients.aclose()

    mcp = FastMCP("inoreader-mcp", lifespan=lifespan)
    register_tools(mcp, clients)
    return mcp


def run_server(config: Config) -> None:
    """Run the Inoreader MCP server until the transport closes."""
    mcp = build_server(config)
    if config.transport == "streamable-http":
        logger.info(
            "Starting Inoreader MCP server on %s:%d (streamable-http)",
            config.server_host,
            config.server_port,
        )
        mcp.run(transport="streamable-http", host=config.server_host, port=config.server_port)
    else:
        logger.info("Starting Inoreader MCP server (stdio)")
        mcp.run(transport="stdio")


def main() -> None:
    config = load_config()
    configure_logging(config.log_level)
    run_server(config)


if __name__ == "__main__":
    main()
