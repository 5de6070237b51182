"""
Feed Parser

Turns a cached feed body (RSS, Atom or JSON Feed bytes) into an immutable
FeedSnapshot using feedparser.
"""

import calendar
import io
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import BinaryIO, Optional, Union

import feedparser

from feedstream.errors import ParseError


@dataclass(frozen=True)
class FeedEntry:
    """A single item of a feed."""

    title: str
    link: str
    published: Optional[datetime] = None
    categories: tuple[str, ...] = ()


@dataclass(frozen=True)
class FeedSnapshot:
    """Parsed view of a feed's cached body."""

    title: str
    description: str = ""
    items: tuple[FeedEntry, ...] = ()


def _to_datetime(parsed: Optional[time.struct_time]) -> Optional[datetime]:
    # feedparser normalizes *_parsed values to UTC
    if not parsed:
        return None
    try:
        return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _entry_published(entry) -> Optional[datetime]:
    published = _to_datetime(entry.get("published_parsed"))
    if published is None:
        published = _to_datetime(entry.get("updated_parsed"))
    return published


def _entry_categories(entry) -> tuple[str, ...]:
    categories = []
    for tag in entry.get("tags") or []:
        term = tag.get("term") or tag.get("label")
        if term:
            categories.append(term)
    return tuple(categories)


def parse_feed(source: Union[bytes, BinaryIO]) -> FeedSnapshot:
    """Parse a feed body.

    Raises:
        ParseError: If feedparser could not make sense of the document.
    """
    # feedparser treats a bytes argument as a possible file name or URL first,
    # so the body is always handed over as a stream.
    if isinstance(source, (bytes, bytearray)):
        source = io.BytesIO(source)
    parsed = feedparser.parse(source)
    feed = parsed.get("feed", {})
    if parsed.get("bozo") and not parsed.entries and not feed.get("title"):
        reason = parsed.get("bozo_exception")
        raise ParseError(f"malformed feed: {reason}")

    items = tuple(
        FeedEntry(
            title=entry.get("title", ""),
            link=entry.get("link", ""),
            published=_entry_published(entry),
            categories=_entry_categories(entry),
        )
        for entry in parsed.entries
    )
    return FeedSnapshot(
        title=feed.get("title", ""),
        description=feed.get("subtitle", feed.get("description", "")),
        items=items,
    )
