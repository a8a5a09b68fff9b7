"""Inoreader API client.

Every call goes through ``_request``, which attaches the bearer token,
classifies the response and, on a 401, refreshes the token once and replays
the request. The retry allowance travels with the call rather than living on
the instance, so concurrent tool calls each get their own.
"""

import logging
from collections.abc import Mapping, Sequence
from typing import Any
from urllib.parse import quote

import httpx

from .auth import TokenProvider, TokenRefreshError
from .config import Config
from .models import (
    LABEL_PREFIX,
    READ_STATE,
    READING_LIST_STREAM,
    STARRED_STATE,
    Article,
    EmptyBody,
    JsonBody,
    ResponseBody,
    StreamPage,
    Subscription,
    SubscriptionCategory,
    Tag,
    TextBody,
    UnreadCount,
    UnreadCounts,
    UserInfo,
)

logger = logging.getLogger(__name__)

Form = Mapping[str, str] | Sequence[tuple[str, str]]

MAX_STREAM_COUNT = 1000

EXPIRED_MESSAGE = (
    "Authentication failed. Token may be expired. "
    "Run 'inoreader-mcp auth login' to re-authenticate."
)
FORBIDDEN_MESSAGE = "Access forbidden. API access requires Inoreader Pro."


class InoreaderClientError(Exception):
    """Raised when an API call fails or its arguments are invalid."""


class AuthenticationError(InoreaderClientError):
    """Raised when the API rejects our credentials."""


class InoreaderClient:
    """Async client for the Inoreader REST API.

    Designed for single-instance lifecycle: create once on first use, then
    reuse for all tool calls.
    """

    def __init__(self, config: Config, access_token: str, tokens: TokenProvider | None = None):
        self._config = config
        self.api_url = config.api_base_url.rstrip("/")
        self._access_token = access_token
        self._tokens = tokens if tokens is not None else TokenProvider(config)
        self._client = httpx.AsyncClient(timeout=config.http_timeout)

    async def _try_refresh_token(self) -> bool:
        try:
            self._access_token = await self._tokens.refresh_stored_tokens()
        except TokenRefreshError as e:
            logger.warning("Could not refresh access token: %s", e)
            return False
        return True

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Mapping[str, str] | None = None,
        form: Form | None = None,
        *,
        retried: bool = False,
    ) -> ResponseBody:
        """Send an authenticated request and classify the response.

        Raises:
            AuthenticationError: On 403, or on 401 that survives one refresh
            InoreaderClientError: On any other failure
        """
        headers = {"Authorization": f"Bearer {self._access_token}"}
        content = None
        if form is not None and method == "POST":
            headers["Content-Type"] = "application/x-www-form-urlencoded"
            pairs = list(form.items()) if isinstance(form, Mapping) else list(form)
            content = str(httpx.QueryParams(pairs))

        url = f"{self.api_url}{endpoint}"
        logger.debug("%s %s", method, url)
        try:
            response = await self._client.request(
                method, url, params=params, headers=headers, content=content
            )
        except httpx.HTTPError as e:
            raise InoreaderClientError(f"API request failed: {e}") from e

        if response.status_code == 401:
            if not retried and await self._try_refresh_token():
                return await self._request(method, endpoint, params, form, retried=True)
            raise AuthenticationError(EXPIRED_MESSAGE)
        if response.status_code == 403:
            raise AuthenticationError(FORBIDDEN_MESSAGE)
        if not response.is_success:
            raise InoreaderClientError(
                f"API request failed: {response.status_code} {response.reason_phrase}"
            )

        if response.status_code in (204, 205) or not response.content:
            return EmptyBody()
        if "application/json" in response.headers.get("content-type", ""):
            return JsonBody(response.json())
        return TextBody(response.text)

    async def _get_json(self, endpoint: str, params: Mapping[str, str] | None = None) -> Any:
        body = await self._request("GET", endpoint, params)
        if not isinstance(body, JsonBody):
            raise InoreaderClientError(f"Expected JSON response from {endpoint}")
        return body.data

    # --- Read operations ---

    async def get_user_info(self) -> UserInfo:
        data = await self._get_json("/user-info")
        return UserInfo(
            user_id=str(data.get("userId", "")),
            user_name=data.get("userName", ""),
            user_profile_id=str(data.get("userProfileId", "")),
            user_email=data.get("userEmail", ""),
            is_blogger_user=bool(data.get("isBloggerUser", False)),
            signup_time_sec=int(data.get("signupTimeSec", 0)),
            is_multi_login_enabled=bool(data.get("isMultiLoginEnabled", False)),
        )

    async def get_unread_counts(self) -> UnreadCounts:
        data = await self._get_json("/unread-count", {"output": "json"})
        counts = [
            UnreadCount(
                id=item.get("id", ""),
                count=int(item.get("count", 0)),
                newest_item_timestamp_usec=str(item.get("newestItemTimestampUsec", "")),
            )
            for item in data.get("unreadcounts", [])
        ]
        return UnreadCounts(max=int(data.get("max", 0)), counts=counts)

    async def get_subscriptions(self) -> list[Subscription]:
        data = await self._get_json("/subscription/list", {"output": "json"})
        subscriptions = [self._parse_subscription(sub) for sub in data.get("subscriptions", [])]
        logger.info("Retrieved %d subscriptions", len(subscriptions))
        return subscriptions

    async def get_tags(self) -> list[Tag]:
        data = await self._get_json("/tag/list", {"output": "json"})
        return [
            Tag(id=tag.get("id", ""), sortid=tag.get("sortid"), type=tag.get("type"))
            for tag in data.get("tags", [])
        ]

    async def get_stream_contents(
        self,
        stream_id: str,
        count: int = 20,
        continuation: str | None = None,
        exclude_target: str | None = None,
        include_all_items: bool = False,
    ) -> StreamPage:
        """Fetch one page of a stream.

        Args:
            stream_id: Feed, folder or state stream ID
            count: Page size, clamped to [1, 1000]
            continuation: Cursor returned by the previous page
            exclude_target: Stream whose items are filtered out, e.g. the read state
            include_all_items: Include items in every state
        """
        params = {
            "output": "json",
            "n": str(max(1, min(count, MAX_STREAM_COUNT))),
        }
        if continuation:
            params["c"] = continuation
        if exclude_target:
            params["xt"] = exclude_target
        if include_all_items:
            params["it"] = READ_STATE

        data = await self._get_json(f"/stream/contents/{quote(stream_id, safe='')}", params)
        page = StreamPage(
            id=data.get("id", stream_id),
            title=data.get("title", ""),
            items=[self._parse_article(item) for item in data.get("items", [])],
            direction=data.get("direction", "ltr"),
            continuation=data.get("continuation") or None,
            updated=data.get("updated"),
        )
        logger.info("Retrieved %d articles from %s", len(page.items), stream_id)
        return page

    async def get_starred_items(self, count: int = 20) -> StreamPage:
        return await self.get_stream_contents(STARRED_STATE, count=count, include_all_items=True)

    async def get_unread_items(self, count: int = 20) -> StreamPage:
        return await self.get_stream_contents(
            READING_LIST_STREAM, count=count, exclude_target=READ_STATE
        )

    # --- Subscription management ---

    async def add_subscription(self, feed_url: str, title: str | None = None) -> dict[str, Any]:
        params = {"quickadd": feed_url}
        if title:
            params["t"] = title
        body = await self._request("POST", "/subscription/quickadd", params)
        if isinstance(body, JsonBody) and isinstance(body.data, dict):
            return body.data
        if isinstance(body, TextBody):
            return {"response": body.text}
        return {}

    async def remove_subscription(self, subscription_id: str) -> None:
        await self._request(
            "POST", "/subscription/edit", form={"ac": "unsubscribe", "s": subscription_id}
        )

    async def edit_subscription(
        self,
        subscription_id: str,
        title: str | None = None,
        add_to_folder: str | None = None,
        remove_from_folder: str | None = None,
    ) -> None:
        """Rename a subscription and/or move it between folders."""
        if not title and not add_to_folder and not remove_from_folder:
            raise InoreaderClientError(
                "At least one option (title, add_to_folder, or remove_from_folder) is required"
            )
        if add_to_folder and add_to_folder == remove_from_folder:
            raise InoreaderClientError("Cannot add and remove from the same folder")

        form = [("ac", "edit"), ("s", subscription_id)]
        if title:
            form.append(("t", title))
        if add_to_folder:
            form.append(("a", f"{LABEL_PREFIX}{quote(add_to_folder, safe='')}"))
        if remove_from_folder:
            form.append(("r", f"{LABEL_PREFIX}{quote(remove_from_folder, safe='')}"))

        await self._request("POST", "/subscription/edit", form=form)

    # --- Article state ---

    async def mark_as_read(
        self,
        item_ids: list[str] | None = None,
        stream_id: str | None = None,
        timestamp: int | None = None,
    ) -> None:
        """Mark items read by ID, or everything in a stream up to ``timestamp``.

        ``item_ids`` wins when both are given. With neither, nothing is sent
        and ``InoreaderClientError`` is raised instead of silently doing nothing.
        """
        if item_ids:
            form = [("a", READ_STATE)] + [("i", item_id) for item_id in item_ids]
            await self._request("POST", "/edit-tag", form=form)
            logger.info("Marked %d articles as read", len(item_ids))
        elif stream_id:
            body = {"s": stream_id}
            if timestamp:
                body["ts"] = str(timestamp)
            await self._request("POST", "/mark-all-as-read", form=body)
            logger.info("Marked stream %s as read", stream_id)
        else:
            raise InoreaderClientError("Provide either item_ids or stream_id")

    async def mark_as_unread(self, item_ids: list[str]) -> int:
        """Mark items unread. Returns the number of items sent."""
        if not item_ids:
            return 0
        form = [("r", READ_STATE)] + [("i", item_id) for item_id in item_ids]
        await self._request("POST", "/edit-tag", form=form)
        logger.info("Marked %d articles as unread", len(item_ids))
        return len(item_ids)

    async def add_star(self, item_id: str) -> None:
        await self.add_tag(item_id, STARRED_STATE)

    async def remove_star(self, item_id: str) -> None:
        await self.remove_tag(item_id, STARRED_STATE)

    async def add_tag(self, item_id: str, tag: str) -> None:
        await self._request("POST", "/edit-tag", form={"a": tag, "i": item_id})

    async def remove_tag(self, item_id: str, tag: str) -> None:
        await self._request("POST", "/edit-tag", form={"r": tag, "i": item_id})

    # --- Parsing ---

    @staticmethod
    def _parse_subscription(sub: dict) -> Subscription:
        return Subscription(
            id=sub.get("id", ""),
            title=sub.get("title", ""),
            url=sub.get("url", ""),
            html_url=sub.get("htmlUrl", ""),
            icon_url=sub.get("iconUrl", ""),
            categories=[
                SubscriptionCategory(id=c.get("id", ""), label=c.get("label", ""))
                for c in sub.get("categories", [])
            ],
            sortid=sub.get("sortid"),
        )

    @staticmethod
    def _parse_article(item: dict) -> Article:
        """Parse a stream item, tolerating missing optional fields."""
        origin = item.get("origin") or {}
        summary = item.get("summary") or {}
        return Article(
            id=item.get("id", ""),
            title=item.get("title", ""),
            published=item.get("published") or 0,
            updated=item.get("updated"),
            author=item.get("author") or "",
            feed_title=origin.get("title") if origin else None,
            feed_stream_id=origin.get("streamId") if origin else None,
            categories=list(item.get("categories", [])),
            summary=summary.get("content", ""),
            canonical=[link.get("href", "") for link in item.get("canonical") or []],
            alternate=[link.get("href", "") for link in item.get("alternate") or []],
        )

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()


async def create_client(config: Config, tokens: TokenProvider | None = None) -> InoreaderClient:
    """Resolve a starting access token and build a client around it."""
    tokens = tokens if tokens is not None else TokenProvider(config)
    access_token = await tokens.get_valid_access_token()
    return InoreaderClient(config, access_token, tokens)
