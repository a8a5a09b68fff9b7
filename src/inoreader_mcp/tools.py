"""MCP tool definitions for Inoreader.

Each tool does exactly one thing. All exceptions are caught at the tool
boundary, logged, and re-raised as ``ToolError`` carrying a JSON
``{"error": ...}`` payload, so the client receives an error result rather
than an uncaught exception.
"""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Annotated, Any, NoReturn

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError
from pydantic import Field

from .client import InoreaderClient
from .models import LABEL_PREFIX, READ_STATE, READING_LIST_STREAM

logger = logging.getLogger(__name__)

Count = Annotated[int, Field(ge=1, le=100, description="Number of articles to return (1-100)")]


class ClientHolder:
    """Builds the API client on first use and hands out the same instance after."""

    def __init__(self, factory: Callable[[], Awaitable[InoreaderClient]]):
        self._factory = factory
        self._client: InoreaderClient | None = None
        self._lock = asyncio.Lock()

    async def get(self) -> InoreaderClient:
        async with self._lock:
            if self._client is None:
                self._client = await self._factory()
            return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()


def _dump(data: Any) -> str:
    return json.dumps(data, indent=2)


def _fail(name: str, e: Exception) -> NoReturn:
    logger.error("%s failed: %s", name, e, exc_info=True)
    raise ToolError(json.dumps({"error": str(e)})) from e


def register_tools(mcp: FastMCP, clients: ClientHolder) -> None:
    """Register all Inoreader tools on the given MCP server instance."""

    @mcp.tool()
    async def get_user_info() -> str:
        """Get authenticated Inoreader user information."""
        try:
            client = await clients.get()
            user = await client.get_user_info()
            return _dump(user.to_dict())
        except Exception as e:
            _fail("get_user_info", e)

    @mcp.tool()
    async def get_unread_counts() -> str:
        """Get unread article counts for all subscriptions and tags.

        Streams with no unread articles are omitted.
        """
        try:
            client = await clients.get()
            counts = await client.get_unread_counts()
            return _dump(
                {
                    "max": counts.max,
                    "counts": [{"id": c.id, "count": c.count} for c in counts.counts if c.count > 0],
                }
            )
        except Exception as e:
            _fail("get_unread_counts", e)

    @mcp.tool()
    async def get_subscriptions() -> str:
        """Get list of all RSS feed subscriptions with their folders."""
        try:
            client = await clients.get()
            subs = await client.get_subscriptions()
            return _dump({"count": len(subs), "subscriptions": [s.to_dict() for s in subs]})
        except Exception as e:
            _fail("get_subscriptions", e)

    @mcp.tool()
    async def get_folders_and_tags() -> str:
        """Get list of all folders and tags used for organizing feeds."""
        try:
            client = await clients.get()
            tags = await client.get_tags()
            folders = [t.name for t in tags if t.is_folder]
            user_tags = [t.id for t in tags if not t.is_folder and not t.is_state]
            return _dump({"folders": folders, "tags": user_tags})
        except Exception as e:
            _fail("get_folders_and_tags", e)

    @mcp.tool()
    async def get_articles(
        stream_id: Annotated[
            str | None,
            Field(description="Feed or folder ID. Leave empty for all subscriptions."),
        ] = None,
        count: Count = 20,
        unread_only: Annotated[bool, Field(description="Only return unread articles")] = True,
        continuation: Annotated[
            str | None,
            Field(description="Continuation token from a previous page"),
        ] = None,
    ) -> str:
        """Get articles from a feed, folder, or all subscriptions.

        Returns the articles plus a continuation token for the next page, if any.
        """
        try:
            client = await clients.get()
            if stream_id:
                page = await client.get_stream_contents(
                    stream_id,
                    count=count,
                    continuation=continuation,
                    exclude_target=READ_STATE if unread_only else None,
                )
            elif unread_only and not continuation:
                page = await client.get_unread_items(count)
            else:
                page = await client.get_stream_contents(
                    READING_LIST_STREAM,
                    count=count,
                    continuation=continuation,
                    exclude_target=READ_STATE if unread_only else None,
                )
            return _dump(
                {
                    "count": len(page.items),
                    "continuation": page.continuation,
                    "articles": [a.to_dict() for a in page.items],
                }
            )
        except Exception as e:
            _fail("get_articles", e)

    @mcp.tool()
    async def get_starred_articles(count: Count = 20) -> str:
        """Get starred (saved) articles."""
        try:
            client = await clients.get()
            page = await client.get_starred_items(count)
            return _dump({"count": len(page.items), "articles": [a.to_dict() for a in page.items]})
        except Exception as e:
            _fail("get_starred_articles", e)

    @mcp.tool()
    async def add_subscription(
        feed_url: Annotated[str, Field(description="URL of the RSS or Atom feed to subscribe to")],
        title: Annotated[str | None, Field(description="Optional custom title")] = None,
    ) -> str:
        """Subscribe to a new RSS/Atom feed."""
        try:
            client = await clients.get()
            result = await client.add_subscription(feed_url, title)
            return _dump({"success": True, "result": result})
        except Exception as e:
            _fail("add_subscription", e)

    @mcp.tool()
    async def remove_subscription(
        subscription_id: Annotated[str, Field(description="The subscription ID to remove")],
    ) -> str:
        """Unsubscribe from a feed."""
        try:
            client = await clients.get()
            await client.remove_subscription(subscription_id)
            return _dump({"success": True, "message": f"Unsubscribed from {subscription_id}"})
        except Exception as e:
            _fail("remove_subscription", e)

    @mcp.tool()
    async def edit_subscription(
        subscription_id: Annotated[str, Field(description="The subscription ID to edit")],
        title: Annotated[str | None, Field(description="New title")] = None,
        add_to_folder: Annotated[str | None, Field(description="Folder to add the feed to")] = None,
        remove_from_folder: Annotated[
            str | None, Field(description="Folder to remove the feed from")
        ] = None,
    ) -> str:
        """Rename a subscription or move it between folders."""
        try:
            client = await clients.get()
            await client.edit_subscription(
                subscription_id,
                title=title,
                add_to_folder=add_to_folder,
                remove_from_folder=remove_from_folder,
            )
            return _dump({"success": True, "message": f"Updated subscription {subscription_id}"})
        except Exception as e:
            _fail("edit_subscription", e)

    @mcp.tool()
    async def mark_as_read(
        item_ids: Annotated[
            list[str] | None, Field(description="List of article IDs to mark as read")
        ] = None,
        stream_id: Annotated[
            str | None, Field(description="Mark all articles in this feed/folder as read")
        ] = None,
        older_than: Annotated[
            int | None,
            Field(ge=0, description="With stream_id, only mark articles older than this Unix timestamp"),
        ] = None,
    ) -> str:
        """Mark articles as read, either by ID or for a whole feed/folder."""
        if not item_ids and not stream_id:
            raise ToolError(json.dumps({"error": "Provide either item_ids or stream_id"}))
        try:
            client = await clients.get()
            await client.mark_as_read(item_ids, stream_id, older_than)
            if item_ids:
                message = f"Marked {len(item_ids)} items as read"
            else:
                message = f"Marked all items in {stream_id} as read"
            return _dump({"success": True, "message": message})
        except Exception as e:
            _fail("mark_as_read", e)

    @mcp.tool()
    async def mark_as_unread(
        item_ids: Annotated[list[str], Field(description="List of article IDs to mark as unread")],
    ) -> str:
        """Mark articles as unread."""
        try:
            if not item_ids:
                affected = 0
            else:
                client = await clients.get()
                affected = await client.mark_as_unread(item_ids)
            return _dump({"success": True, "message": f"Marked {affected} items as unread"})
        except Exception as e:
            _fail("mark_as_unread", e)

    @mcp.tool()
    async def star_article(
        item_id: Annotated[str, Field(description="The article ID to star")],
    ) -> str:
        """Add star to an article (save for later)."""
        try:
            client = await clients.get()
            await client.add_star(item_id)
            return _dump({"success": True, "message": f"Starred article {item_id}"})
        except Exception as e:
            _fail("star_article", e)

    @mcp.tool()
    async def unstar_article(
        item_id: Annotated[str, Field(description="The article ID to unstar")],
    ) -> str:
        """Remove star from an article."""
        try:
            client = await clients.get()
            await client.remove_star(item_id)
            return _dump({"success": True, "message": f"Unstarred article {item_id}"})
        except Exception as e:
            _fail("unstar_article", e)

    @mcp.tool()
    async def add_tag_to_article(
        item_id: Annotated[str, Field(description="The article ID to tag")],
        tag_name: Annotated[str, Field(description="The tag name to add")],
    ) -> str:
        """Add a custom tag to an article."""
        try:
            client = await clients.get()
            await client.add_tag(item_id, f"{LABEL_PREFIX}{tag_name}")
            return _dump({"success": True, "message": f"Added tag '{tag_name}' to article"})
        except Exception as e:
            _fail("add_tag_to_article", e)

    @mcp.tool()
    async def remove_tag_from_article(
        item_id: Annotated[str, Field(description="The article ID")],
        tag_name: Annotated[str, Field(description="The tag name to remove")],
    ) -> str:
        """Remove a tag from an article."""
        try:
            client = await clients.get()
            await client.remove_tag(item_id, f"{LABEL_PREFIX}{tag_name}")
            return _dump({"success": True, "message": f"Removed tag '{tag_name}' from article"})
        except Exception as e:
            _fail("remove_tag_from_article", e)
