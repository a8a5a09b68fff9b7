"""Inoreader MCP Server: reading, tagging and subscription tools over MCP."""

from .auth import NotAuthenticatedError, TokenProvider
from .client import AuthenticationError, InoreaderClient, InoreaderClientError, create_client
from .models import Article, StreamPage, Subscription, Tag
from .cli import main

__all__ = [
    "main",
    "InoreaderClient",
    "InoreaderClientError",
    "AuthenticationError",
    "NotAuthenticatedError",
    "TokenProvider",
    "create_client",
    "Article",
    "StreamPage",
    "Subscription",
    "Tag",
]

__version__ = "0.1.0"
