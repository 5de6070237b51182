"""Feed Service: fetch orchestration, cached parsing and output.

Runs the conditional fetcher over every subscribed feed with bounded
parallelism, expands the cached bodies into display items and persists the
cache metadata once per run.

Each feed is handled end to end by one worker thread. The shared item list,
feed colors and run counters are guarded by a single lock that is only held
while merging a parsed feed, never across network or disk I/O.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Optional

import requests
from pydantic import ValidationError

from feedstream.config.settings import FetchOverrides
from feedstream.errors import (
    FetchError,
    InputError,
    ParseError,
    StorageError,
)
from feedstream.schemas.config import PALETTE_SIZE, ColorMap, UserConfig
from feedstream.services.fetcher import ConditionalFetcher, FetchResult, utc_now
from feedstream.services.parser import FeedSnapshot, parse_feed
from feedstream.services.ranking import (
    FeedItem,
    apply_limit,
    color_for_feed,
    expand_items,
    sort_by_recency,
    sort_by_score,
    tokenize,
)
from feedstream.storage.cache_store import CacheEntry, CacheStore
from feedstream.storage.config_store import ConfigStore
from feedstream.storage.list_store import ListStore, normalize_address
from feedstream.utils.display import Printer
from feedstream.utils.logging_config import get_logger
from feedstream.utils.text import display_width, fill_right, pluralize, relative, truncate

logger = get_logger(__name__)

MAX_TITLE_WIDTH = 30
SECONDARY_TEXT_COLOR = 7
HIGHLIGHT_COLOR = 10
NEW_MARK = "• "
TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class FeedOptions:
    list_name: Optional[str] = None
    query: list[str] = field(default_factory=list)
    limit: int = 0  # 0 shows everything
    since: Optional[datetime] = None
    proxy: Optional[str] = None
    cached_only: bool = False


@dataclass
class RunSummary:
    start: datetime
    feeds_count: int = 0
    feeds_cached: int = 0
    feeds_fetched: int = 0
    items_count: int = 0
    items_shown: int = 0


@dataclass
class _RunState:
    """Mutable state shared by the workers of one run; guarded by ``lock``."""

    summary: RunSummary
    palette: ColorMap
    items: list[FeedItem] = field(default_factory=list)
    colors: dict[str, int] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)


class FeedService:
    """Aggregates subscribed feeds into one freshness-aware stream."""

    def __init__(
        self,
        cache_store: CacheStore,
        list_store: ListStore,
        config_store: ConfigStore,
        printer: Optional[Printer] = None,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = utc_now,
        overrides: Optional[FetchOverrides] = None,
    ):
        self.cache_store = cache_store
        self.list_store = list_store
        self.config_store = config_store
        self.printer = printer or Printer()
        self.clock = clock
        self.overrides = overrides or FetchOverrides(batch_size=None, timeout=None)
        self.fetcher = ConditionalFetcher(cache_store, session=session, clock=clock)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def feed(self, options: FeedOptions) -> tuple[list[FeedItem], RunSummary]:
        """Fetch every subscribed feed and print the items newest first."""
        summary = RunSummary(start=self.clock())
        config = self._load_config()
        items = sort_by_recency(self.process_feeds(options, config, summary))
        try:
            # Updates the stored config, not the per-run copy from _load_config.
            self.config_store.mark_run(self.clock())
        except StorageError as exc:
            logger.warning("Failed to save config", error=str(exc))
        self.output_items(items, config, summary, options)
        return items, summary

    def search(self, query: str, options: FeedOptions) -> tuple[list[FeedItem], RunSummary]:
        """Print the items matching *query*, best match last."""
        summary = RunSummary(start=self.clock())
        options.query = tokenize(query)
        if not options.query:
            raise InputError("query is empty")
        config = self._load_config()
        items = sort_by_score(self.process_feeds(options, config, summary))
        self.output_items(items, config, summary, options)
        return items, summary

    def show_config(self) -> None:
        config = self._load_config()
        styling = {0: "default", 1: "enabled", 2: "disabled"}[config.styling]
        self.printer.println("User-Agent:", config.user_agent)
        self.printer.println("Timeout:", str(config.effective_timeout))
        self.printer.println("Batch size:", str(config.effective_batch_size))
        self.printer.println("Styling:", styling)
        mappings = "".join(f" {k}:{v}" for k, v in sorted(config.color_map.items()))
        self.printer.println("Color map:" + mappings)
        self.printer.println("Summary:", "enabled" if config.summary == 1 else "disabled")
        self.printer.println("Future items:", "hide" if config.hide_future_items else "show")

    def show_config_path(self) -> None:
        self.printer.println(str(self.config_store.config_dir))

    def show_cache_path(self) -> None:
        self.printer.println(str(self.cache_store.cache_dir))

    def show_cache_info(self) -> None:
        entries = sorted(self.cache_store.load_all().values(), key=lambda e: e.url)
        width = max([len("URL")] + [len(e.url) for e in entries])
        self.printer.println(fill_right("URL", width) + "  Last fetch           Fetch after")
        for entry in entries:
            self.printer.println(
                fill_right(entry.url, width)
                + "  "
                + entry.last_fetch.strftime(TIME_FORMAT)
                + "  "
                + entry.fetch_after.strftime(TIME_FORMAT)
            )

    # ------------------------------------------------------------------
    # Config updates
    # ------------------------------------------------------------------

    def set_timeout(self, timeout: int) -> None:
        self._update_config("timeout", timeout, "timeout was updated")

    def set_batch_size(self, batch_size: int) -> None:
        self._update_config("batch_size", batch_size, "batch size was updated")

    def set_user_agent(self, user_agent: str) -> None:
        """Set the User-Agent header; ``"-"`` stops sending one."""
        self._update_config("user_agent", user_agent, "User-Agent was updated")

    def set_styling(self, styling: int) -> None:
        self._update_config("styling", styling, "styling was updated")

    def set_summary(self, summary: int) -> None:
        self._update_config("summary", summary, "summary was updated")

    def update_future_items(self, value: int) -> None:
        """0 hides items published in the future, 1 shows them."""
        if value not in (0, 1):
            raise InputError("invalid value for future items")
        self._update_config("hide_future_items", value == 0, "future items was updated")

    def update_color_map(self, mappings: str) -> None:
        """Apply ``"0:230,1:213"`` style mappings.

        ``"0:"`` removes the mapping for 0 and an empty string clears them all.
        """
        color_map = {}
        if mappings:
            color_map = dict(self.config_store.load().color_map)
            for mapping in mappings.split(","):
                left, _, right = mapping.partition(":")
                try:
                    key = int(left)
                    if right.strip():
                        color_map[key] = int(right)
                    else:
                        color_map.pop(key, None)
                except ValueError:
                    raise InputError(f"failed to parse color mapping: {mapping}") from None
        self._update_config("color_map", color_map, "color map updated")

    def display_color_range(self) -> None:
        styling = self.printer.styling
        self.printer.styling = True
        try:
            self.printer.println("".join(self.printer.color(f"{n} ", n) for n in range(PALETTE_SIZE)))
        finally:
            self.printer.styling = styling

    def _update_config(self, name: str, value, message: str) -> None:
        config = self.config_store.load()
        try:
            setattr(config, name, value)
        except ValidationError as exc:
            label = name.replace("_", " ")
            raise InputError(f"invalid value for {label}: {exc.errors()[0]['msg']}") from exc
        self.config_store.save()
        self.printer.println(message)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def process_feeds(self, options: FeedOptions, config: UserConfig, summary: RunSummary) -> list[FeedItem]:
        """Resolve the subscribed URLs and run them through :meth:`run`."""
        if not options.list_name and not self.list_store.list_names():
            raise InputError("no feeds to display")
        # A URL followed in several lists is fetched once.
        feeds = self.list_store.list_urls(options.list_name)
        items, _ = self.run(feeds.keys(), config, options, summary)
        return items

    def run(
        self,
        urls: Iterable[str],
        config: UserConfig,
        options: FeedOptions,
        summary: Optional[RunSummary] = None,
    ) -> tuple[list[FeedItem], RunSummary]:
        """Fetch (or skip) and parse every URL, returning the unsorted items."""
        urls = list(dict.fromkeys(normalize_address(url) for url in urls))
        if not urls:
            raise InputError("no feeds to display")
        if summary is None:
            summary = RunSummary(start=self.clock())
        summary.feeds_count = len(urls)

        self._configure_proxy(options.proxy)
        entries = self.cache_store.load_all()
        state = _RunState(summary=summary, palette=config.palette)

        batch_size = self.overrides.batch_size or config.effective_batch_size
        slots = threading.BoundedSemaphore(batch_size)
        futures: dict[Future, str] = {}
        logger.debug("Processing feeds", feeds=len(urls), batch_size=batch_size, cached_only=options.cached_only)

        with ThreadPoolExecutor(max_workers=batch_size, thread_name_prefix="feed") as executor:
            for url in urls:
                entry = entries.get(url)
                if entry is None:
                    entry = CacheEntry(url=url)
                    entries[url] = entry
                # Blocks the dispatcher until a worker frees a slot.
                slots.acquire()
                try:
                    future = executor.submit(self._process_feed, entry, config, options, state, slots)
                except BaseException:
                    slots.release()
                    raise
                futures[future] = url

        for future, url in futures.items():
            exc = future.exception()
            if exc is not None:
                logger.error("Feed worker crashed", url=url, exc_info=exc)
                self.printer.err_println(f"failed to process feed: {url}: {exc}")

        try:
            self.cache_store.save_all(entries)
        except StorageError as exc:
            self.printer.err_println(f"failed to save cache information: {exc}")

        return state.items, summary

    def _process_feed(
        self,
        entry: CacheEntry,
        config: UserConfig,
        options: FeedOptions,
        state: _RunState,
        slots: threading.BoundedSemaphore,
    ) -> None:
        try:
            if options.cached_only:
                self._process_cached(entry, config, options, state)
            else:
                self._process_fetched(entry, config, options, state)
        finally:
            slots.release()

    def _process_cached(self, entry: CacheEntry, config: UserConfig, options: FeedOptions, state: _RunState) -> None:
        if not self.cache_store.has_body(entry.url):
            logger.debug("No cached body, skipping", url=entry.url)
            return
        try:
            feed = self._parse_cached(entry.url)
        except (ParseError, StorageError) as exc:
            self.printer.err_println(f"failed to parse feed: {entry.url}: {exc}")
            return
        with state.lock:
            self._merge(feed, entry.last_fetch, config, options, state)
            state.summary.feeds_cached += 1

    def _process_fetched(self, entry: CacheEntry, config: UserConfig, options: FeedOptions, state: _RunState) -> None:
        previous_fetch = entry.last_fetch
        try:
            result = self.fetcher.fetch(entry, config)
        except (FetchError, StorageError, requests.RequestException) as exc:
            logger.debug("Fetch failed", url=entry.url, error=str(exc))
            self.printer.err_println(f"failed to fetch feed: {entry.url}: {exc}")
            return
        self._apply_result(entry, result)

        try:
            feed = self._parse_cached(entry.url)
        except (ParseError, StorageError) as exc:
            self.printer.err_println(f"failed to parse feed: {entry.url}: {exc}")
            return
        with state.lock:
            self._merge(feed, previous_fetch, config, options, state)
            if result.changed:
                state.summary.feeds_fetched += 1
            else:
                state.summary.feeds_cached += 1

    def _apply_result(self, entry: CacheEntry, result: FetchResult) -> None:
        # Each entry belongs to exactly one worker; the join publishes it.
        if result.changed:
            entry.etag = result.etag
            entry.last_fetch = self.clock()
        if result.fetch_after is not None and result.fetch_after > entry.fetch_after:
            entry.fetch_after = result.fetch_after

    def _parse_cached(self, url: str) -> FeedSnapshot:
        with self.cache_store.open_body(url) as body:
            try:
                return parse_feed(body)
            except OSError as exc:
                raise StorageError(f"failed to read feed cache for {url}: {exc}") from exc

    def _merge(
        self,
        feed: FeedSnapshot,
        last_fetch: datetime,
        config: UserConfig,
        options: FeedOptions,
        state: _RunState,
    ) -> None:
        """Append the feed's items to the run. Caller holds ``state.lock``."""
        state.summary.items_count += len(feed.items)
        color = color_for_feed(feed.title, state.colors, state.palette)
        state.items.extend(
            expand_items(
                feed,
                last_fetch,
                self.clock(),
                color=color,
                query=options.query,
                since=options.since,
                hide_future_items=config.hide_future_items,
            )
        )

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def output_items(
        self,
        items: list[FeedItem],
        config: UserConfig,
        summary: RunSummary,
        options: FeedOptions,
    ) -> None:
        """Print the items bottom-up so the first one ends next to the prompt."""
        if not items:
            self.printer.err_println("no items to display")
            return
        shown = apply_limit(items, options.limit)
        now = self.clock()
        ages = [
            relative(int((now - item.entry.published).total_seconds())) if item.entry.published else ""
            for item in shown
        ]
        width = min(
            max(max(display_width(item.feed.title) for item in shown), max(len(age) for age in ages)),
            MAX_TITLE_WIDTH,
        )
        palette = config.palette
        secondary = palette(SECONDARY_TEXT_COLOR)
        highlight = palette(HIGHLIGHT_COLOR)
        p = self.printer
        for item, age in reversed(list(zip(shown, ages))):
            new_mark = p.color(NEW_MARK, highlight) if item.is_new else ""
            p.print(
                p.color(fill_right(truncate(item.feed.title, width), width), item.feed_color),
                "  ",
                new_mark + item.entry.title,
                "\n",
                p.color(fill_right(age, width), secondary),
                "  ",
                p.color(item.entry.link, secondary),
                "\n\n",
            )
        summary.items_shown = len(shown)
        if config.summary == 1:
            self.print_summary(summary)

    def print_summary(self, summary: RunSummary) -> None:
        elapsed = (self.clock() - summary.start).total_seconds()
        self.printer.println(
            "Displayed %s from %s (%d cached, %d fetched) with %s in %.2fs"
            % (
                pluralize(summary.items_shown, "item"),
                pluralize(summary.feeds_count, "feed"),
                summary.feeds_cached,
                summary.feeds_fetched,
                pluralize(summary.items_count, "item"),
                elapsed,
            )
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load_config(self) -> UserConfig:
        config = self.config_store.load()
        self.printer.apply_styling(config.styling)
        if self.overrides.timeout is not None:
            # Applied to the in-memory copy used for fetching only.
            return config.model_copy(update={"timeout": self.overrides.timeout})
        return config

    def _configure_proxy(self, proxy: Optional[str]) -> None:
        if not proxy:
            return
        # socks5:// proxies are handled by requests[socks]
        self.fetcher.session.proxies.update({"http": proxy, "https": proxy})
