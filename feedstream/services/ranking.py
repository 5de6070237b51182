"""
Relevance & Ranking

Tokenizes text, scores items against a search query, filters by time and
orders the display list either by recency or by relevance.
"""

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from feedstream.schemas.config import EPOCH, PALETTE_SIZE, ColorMap
from feedstream.services.parser import FeedEntry, FeedSnapshot

NO_MATCH = -1

_TOKEN_RE = re.compile(r"[^\W_]+", re.UNICODE)


@dataclass
class FeedItem:
    """One display record for the current run."""

    feed: FeedSnapshot
    entry: FeedEntry
    score: int = 0
    is_new: bool = False
    feed_color: int = 0

    @property
    def published(self) -> datetime:
        return self.entry.published or EPOCH


def tokenize(text: str, tokens: Optional[list[str]] = None) -> list[str]:
    """Lower-case *text* and split it into word tokens, appending to *tokens*."""
    if tokens is None:
        tokens = []
    if text:
        tokens.extend(_TOKEN_RE.findall(text.lower()))
    return tokens


def tokenize_entry(entry: FeedEntry) -> list[str]:
    tokens = tokenize(entry.title)
    for category in entry.categories:
        tokenize(category, tokens)
    return tokens


def score(query: list[str], tokens: list[str]) -> int:
    """Match cost of *tokens* against *query*; lower is better.

    Every query token must occur inside some item token, otherwise the result
    is NO_MATCH. Each query token costs the number of extra characters in its
    tightest match, plus one when that match is not a prefix.
    """
    total = 0
    for q in query:
        best = None
        for token in tokens:
            if q not in token:
                continue
            cost = len(token) - len(q)
            if not token.startswith(q):
                cost += 1
            if best is None or cost < best:
                best = cost
                if best == 0:
                    break
        if best is None:
            return NO_MATCH
        total += best
    return total


def color_for_feed(title: str, assigned: dict[str, int], palette: ColorMap) -> int:
    """Return the color of feed *title*, assigning the next palette slot on first sight."""
    color = assigned.get(title)
    if color is None:
        color = palette(len(assigned) % PALETTE_SIZE)
        assigned[title] = color
    return color


def expand_items(
    feed: FeedSnapshot,
    last_fetch: datetime,
    now: datetime,
    *,
    color: int = 0,
    query: Optional[list[str]] = None,
    since: Optional[datetime] = None,
    hide_future_items: bool = False,
) -> list[FeedItem]:
    """Filter and score the items of one feed.

    ``last_fetch`` is the feed's previous cache timestamp; items published
    after it are flagged new.
    """
    items: list[FeedItem] = []
    for entry in feed.items:
        published = entry.published or EPOCH
        if since is not None and published < since:
            continue
        if hide_future_items and published > now:
            continue
        item_score = 0
        if query:
            item_score = score(query, tokenize_entry(entry))
            if item_score == NO_MATCH:
                continue
        items.append(
            FeedItem(
                feed=feed,
                entry=entry,
                score=item_score,
                is_new=published > last_fetch,
                feed_color=color,
            )
        )
    return items


def sort_by_recency(items: list[FeedItem]) -> list[FeedItem]:
    """Newest first. Undated items keep their order after the dated ones."""
    dated = [item for item in items if item.entry.published is not None]
    undated = [item for item in items if item.entry.published is None]
    dated.sort(key=lambda item: item.entry.published, reverse=True)
    return dated + undated


def sort_by_score(items: list[FeedItem]) -> list[FeedItem]:
    """Best (lowest) score first, ties broken by title."""
    return sorted(items, key=lambda item: (item.score, item.entry.title))


def apply_limit(items: Iterable[FeedItem], limit: int) -> list[FeedItem]:
    items = list(items)
    if limit > 0:
        return items[:limit]
    return items
