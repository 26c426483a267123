#!/usr/bin/env python3
"""Common error types shared across modules.

Provides shared lightweight exceptions to avoid circular imports. A feed that
was only recovered by the regex parser is not an error: the resulting
ParsedFeed carries ``recovered=True`` instead.
"""

from typing import List, Optional


class FeedError(Exception):
    """Base class for failures that abort processing of a single feed."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


class FetchExhaustedError(FeedError):
    """Raised when every fetch strategy failed to produce valid feed text.

    Attributes:
        url: The URL originally requested.
        attempts: Names of the strategies that were tried, in order.
    """

    def __init__(self, url: str, attempts: Optional[List[str]] = None):
        super().__init__(f"could not fetch a valid feed from {url}", url=url)
        self.attempts = list(attempts or [])


class UnsupportedFormatError(FeedError):
    """Raised when text matched no known feed dialect, even after recovery."""

    def __init__(self, message: str = "Unsupported feed format", url: Optional[str] = None):
        super().__init__(message, url=url)


class FeedParseError(ValueError):
    """A dialect parser could not find its root structure (channel/feed)."""


__all__ = ["FeedError", "FetchExhaustedError", "UnsupportedFormatError", "FeedParseError"]
