"""
Conditional Fetcher

Performs at most one HTTP exchange per feed, revalidating with the stored
ETag / last fetch time and honoring the server's max-age and Retry-After
windows. Fresh bodies are decompressed and written to the cache store.
"""

import gzip
import zlib
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime, parsedate_to_datetime
from typing import Callable, Optional

import brotli
import requests

from feedstream.errors import FetchError
from feedstream.schemas.config import DISABLED_USER_AGENT, EPOCH, UserConfig
from feedstream.storage.cache_store import CacheEntry, CacheStore
from feedstream.utils.logging_config import get_logger

logger = get_logger(__name__)

ACCEPT = "application/rss+xml, application/atom+xml, application/xml, application/json, text/xml"
ACCEPT_ENCODING = "br, gzip"

MIN_MAX_AGE = 60  # seconds
DEFAULT_RETRY_AFTER = 300  # seconds
MAX_DELAY = 10 * 365 * 24 * 3600  # seconds, keeps now + delay representable

HTTP_OK = 200
HTTP_NOT_MODIFIED = 304
HTTP_TOO_MANY_REQUESTS = 429
HTTP_SERVICE_UNAVAILABLE = 503


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one fetch attempt.

    ``fetch_after`` is None when the backoff window skipped the network call.
    """

    changed: bool
    etag: str = ""
    fetch_after: Optional[datetime] = None


def parse_max_age(cache_control: Optional[str]) -> timedelta:
    """Return the ``max-age`` of a Cache-Control header, never below 60s."""
    if not cache_control:
        return timedelta(seconds=MIN_MAX_AGE)
    for part in cache_control.split(","):
        part = part.strip().lower()
        if part.startswith("max-age="):
            try:
                seconds = int(part[len("max-age="):])
            except ValueError:
                break
            return timedelta(seconds=min(max(seconds, MIN_MAX_AGE), MAX_DELAY))
    return timedelta(seconds=MIN_MAX_AGE)


def parse_retry_after(retry_after: Optional[str], now: datetime) -> datetime:
    """Resolve a Retry-After header (delta seconds or HTTP-date) to an instant."""
    if not retry_after:
        return now + timedelta(seconds=DEFAULT_RETRY_AFTER)
    try:
        return now + timedelta(seconds=max(0, min(int(retry_after), MAX_DELAY)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(retry_after)
    except (TypeError, ValueError):
        return now + timedelta(seconds=DEFAULT_RETRY_AFTER)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when


def decode_body(raw: bytes, content_encoding: Optional[str], url: str = "") -> bytes:
    """Undo ``br`` or ``gzip`` content coding; other codings pass through."""
    coding = (content_encoding or "").strip().lower()
    try:
        if coding == "br":
            return brotli.decompress(raw)
        if coding == "gzip":
            return gzip.decompress(raw)
    except (brotli.error, OSError, EOFError, zlib.error) as exc:
        raise FetchError(f"failed to decode {coding} body: {exc}", url=url) from exc
    return raw


def build_headers(entry: CacheEntry, config: UserConfig) -> dict[str, Optional[str]]:
    headers: dict[str, Optional[str]] = {
        "Accept": ACCEPT,
        "Accept-Encoding": ACCEPT_ENCODING,
    }
    # A None value makes requests drop the session's default header.
    if config.user_agent == DISABLED_USER_AGENT:
        headers["User-Agent"] = None
    else:
        headers["User-Agent"] = config.user_agent
    if entry.etag:
        headers["If-None-Match"] = entry.etag
    if entry.last_fetch != EPOCH:
        headers["If-Modified-Since"] = format_datetime(entry.last_fetch.astimezone(timezone.utc), usegmt=True)
    return headers


class ConditionalFetcher:
    """Fetches feeds over a shared requests session."""

    def __init__(
        self,
        store: CacheStore,
        session: Optional[requests.Session] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.session = session if session is not None else requests.Session()
        self.clock = clock

    def fetch(self, entry: CacheEntry, config: UserConfig) -> FetchResult:
        """Fetch *entry* unless its backoff window is still open.

        Raises:
            FetchError: Unexpected status code or undecodable body.
            requests.RequestException: Transport failures, unchanged.
            StorageError: The fresh body could not be written.
        """
        now = self.clock()
        if entry.fetch_after > now:
            logger.debug("Fetch skipped, backoff window open", url=entry.url, fetch_after=entry.fetch_after.isoformat())
            return FetchResult(changed=False)

        response = self.session.get(
            entry.url,
            headers=build_headers(entry, config),
            timeout=config.effective_timeout,
            stream=True,
        )
        try:
            status = response.status_code
            logger.debug("Feed response", url=entry.url, status=status)

            if status == HTTP_NOT_MODIFIED:
                return FetchResult(
                    changed=False,
                    fetch_after=now + parse_max_age(response.headers.get("Cache-Control")),
                )

            if status in (HTTP_TOO_MANY_REQUESTS, HTTP_SERVICE_UNAVAILABLE):
                fetch_after = parse_retry_after(response.headers.get("Retry-After"), now)
                logger.info("Feed asked to back off", url=entry.url, status=status, fetch_after=fetch_after.isoformat())
                return FetchResult(changed=False, fetch_after=fetch_after)

            if status != HTTP_OK:
                raise FetchError(f"unexpected status code: {status}", url=entry.url, status_code=status)

            raw = response.raw.read(decode_content=False)
            body = decode_body(raw, response.headers.get("Content-Encoding"), entry.url)
            self.store.save_body(entry.url, body)
            return FetchResult(
                changed=True,
                etag=response.headers.get("ETag") or "",
                fetch_after=now + parse_max_age(response.headers.get("Cache-Control")),
            )
        finally:
            response.close()
