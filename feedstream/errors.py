"""Error types raised by feedstream.

Per-feed failures (``FetchError``, feed-body ``ParseError``) are caught by the
orchestrator and reported without aborting the run. ``InputError`` and a
``ParseError`` from the cache record file stop the command immediately.
"""

from typing import Optional


class FeedStreamError(Exception):
    """Base class for all feedstream errors."""


class InputError(FeedStreamError):
    """Invalid user input, detected before any I/O happens."""


class FetchError(FeedStreamError):
    """A feed could not be fetched (unexpected status or undecodable body)."""

    def __init__(self, message: str, url: str = "", status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ParseError(FeedStreamError):
    """A cache record or feed body could not be parsed."""


class StorageError(FeedStreamError):
    """A filesystem operation on the config or cache directory failed."""


class BodyNotFoundError(StorageError):
    """No cached body exists for the requested feed URL."""
