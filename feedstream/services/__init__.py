"""Feed fetching, parsing, ranking and orchestration."""

from feedstream.services.feed_service import FeedOptions, FeedService, RunSummary
from feedstream.services.fetcher import ConditionalFetcher, FetchResult
from feedstream.services.parser import FeedEntry, FeedSnapshot, parse_feed
from feedstream.services.ranking import FeedItem

__all__ = [
    "ConditionalFetcher",
    "FeedEntry",
    "FeedItem",
    "FeedOptions",
    "FeedService",
    "FeedSnapshot",
    "FetchResult",
    "RunSummary",
    "parse_feed",
]
