"""Data models for Inoreader MCP Server."""

import json
from dataclasses import dataclass, field
from typing import Any

READ_STATE = "user/-/state/com.google/read"
STARRED_STATE = "user/-/state/com.google/starred"
READING_LIST_STREAM = "user/-/state/com.google/reading-list"
STATE_PREFIX = "/state/com.google/"
LABEL_PREFIX = "user/-/label/"


@dataclass
class TokenPair:
    """OAuth credentials as persisted in the secret store.

    ``expires_at`` is an absolute epoch timestamp in milliseconds.
    """

    access_token: str
    refresh_token: str
    expires_at: int | None = None

    def to_json(self) -> str:
        data: dict[str, Any] = {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
        }
        if self.expires_at is not None:
            data["expiresAt"] = self.expires_at
        return json.dumps(data)

    @classmethod
    def from_json(cls, raw: str) -> "TokenPair":
        """Parse the stored secret. Raises ValueError on malformed input."""
        try:
            data = json.loads(raw)
            expires_at = data.get("expiresAt")
            return cls(
                access_token=data["accessToken"],
                refresh_token=data.get("refreshToken", ""),
                expires_at=int(expires_at) if expires_at is not None else None,
            )
        except (TypeError, KeyError, AttributeError, json.JSONDecodeError) as e:
            raise ValueError(f"Malformed token data: {e}") from e


# --- Response bodies ---


@dataclass
class JsonBody:
    data: Any


@dataclass
class TextBody:
    text: str


@dataclass
class EmptyBody:
    pass


ResponseBody = JsonBody | TextBody | EmptyBody


# --- Upstream resources ---


@dataclass
class UserInfo:
    """Authenticated user's account information."""

    user_id: str
    user_name: str
    user_profile_id: str
    user_email: str
    is_blogger_user: bool = False
    signup_time_sec: int = 0
    is_multi_login_enabled: bool = False

    def to_dict(self) -> dict:
        return {
            "userId": self.user_id,
            "userName": self.user_name,
            "userProfileId": self.user_profile_id,
            "userEmail": self.user_email,
            "isBloggerUser": self.is_blogger_user,
            "signupTimeSec": self.signup_time_sec,
            "isMultiLoginEnabled": self.is_multi_login_enabled,
        }


@dataclass
class UnreadCount:
    id: str
    count: int
    newest_item_timestamp_usec: str = ""


@dataclass
class UnreadCounts:
    max: int
    counts: list[UnreadCount] = field(default_factory=list)


@dataclass
class SubscriptionCategory:
    id: str
    label: str


@dataclass
class Subscription:
    """A feed the user is subscribed to, with its folder labels."""

    id: str
    title: str
    url: str
    html_url: str = ""
    icon_url: str = ""
    categories: list[SubscriptionCategory] = field(default_factory=list)
    sortid: str | None = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "categories": [c.label for c in self.categories],
        }


@dataclass
class Tag:
    """A folder, user tag or system state stream."""

    id: str
    sortid: str | None = None
    type: str | None = None

    @property
    def is_folder(self) -> bool:
        return "/label/" in self.id

    @property
    def is_state(self) -> bool:
        return STATE_PREFIX in self.id

    @property
    def name(self) -> str:
        if self.is_folder:
            return self.id.split("/label/")[-1]
        return self.id


@dataclass
class Article:
    """A single stream item as returned by the stream contents endpoint."""

    id: str
    title: str
    published: int = 0
    updated: int | None = None
    author: str = ""
    feed_title: str | None = None
    feed_stream_id: str | None = None
    categories: list[str] = field(default_factory=list)
    summary: str = ""
    canonical: list[str] = field(default_factory=list)
    alternate: list[str] = field(default_factory=list)

    @property
    def is_read(self) -> bool:
        return READ_STATE in self.categories

    @property
    def is_starred(self) -> bool:
        return STARRED_STATE in self.categories

    @property
    def url(self) -> str:
        """Canonical link, falling back to the first alternate link."""
        if self.canonical and self.canonical[0]:
            return self.canonical[0]
        if self.alternate and self.alternate[0]:
            return self.alternate[0]
        return ""

    def to_dict(self, max_summary_length: int = 500) -> dict:
        """Compact representation for tool output."""
        d: dict[str, Any] = {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "author": self.author,
            "published": self.published,
            "isRead": self.is_read,
            "isStarred": self.is_starred,
        }
        if self.feed_title is not None:
            d["feedTitle"] = self.feed_title
        if self.summary:
            d["summary"] = truncate_summary(self.summary, max_summary_length)
        return d


@dataclass
class StreamPage:
    """One page of a stream, with the cursor for the next page."""

    id: str
    title: str
    items: list[Article] = field(default_factory=list)
    direction: str = "ltr"
    continuation: str | None = None
    updated: int | None = None


def truncate_summary(summary: str, max_length: int) -> str:
    """Cut summary to max_length characters, marking the cut with an ellipsis."""
    if len(summary) <= max_length:
        return summary
    return summary[:max_length] + "..."
