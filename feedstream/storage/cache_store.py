"""
Cache Store

Durable per-feed revalidation metadata plus the raw body of each feed's last
successful fetch.

Layout inside the cache directory:
    cache_info          one line per feed:
                        "<url> <lastFetchUnix> <percent-encoded etag> <fetchAfterUnix>"
    feed_<escaped url>  last fetched (already decompressed) body
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Iterable, Union
from urllib.parse import quote_plus, unquote_plus

from feedstream.errors import BodyNotFoundError, ParseError, StorageError
from feedstream.schemas.config import EPOCH
from feedstream.storage.files import write_atomic
from feedstream.utils.logging_config import get_logger

logger = get_logger(__name__)

CACHE_INFO_FILE = "cache_info"
BODY_PREFIX = "feed_"

# A "%" not followed by two hex digits cannot be decoded unambiguously.
_BAD_ESCAPE_RE = re.compile(r"%(?![0-9A-Fa-f]{2})")
_WHITESPACE_RE = re.compile(r"\s")


@dataclass
class CacheEntry:
    """Revalidation state of one feed URL."""

    url: str
    etag: str = ""
    last_fetch: datetime = field(default=EPOCH)
    fetch_after: datetime = field(default=EPOCH)


def _from_unix(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _to_unix(value: datetime) -> int:
    return int(value.timestamp())


def format_entry_line(entry: CacheEntry) -> str:
    """Format one record line; raises StorageError for a URL with whitespace."""
    if not entry.url or _WHITESPACE_RE.search(entry.url):
        raise StorageError(f"cannot store cache info for url {entry.url!r}")
    return "%s %d %s %d\n" % (
        entry.url,
        _to_unix(entry.last_fetch),
        quote_plus(entry.etag, safe=""),
        _to_unix(entry.fetch_after),
    )


def parse_entry_line(line: str) -> CacheEntry:
    """Parse one record line; raises ParseError on malformed input."""
    parts = line.split(" ")
    if len(parts) < 2:
        raise ParseError(f"invalid cache info line: {line}")
    try:
        last_fetch = _from_unix(int(parts[1]))
    except (ValueError, OverflowError, OSError) as exc:
        raise ParseError(f"invalid last fetch time in cache info line: {line}") from exc

    etag = ""
    if len(parts) > 2:
        if _BAD_ESCAPE_RE.search(parts[2]):
            raise ParseError(f"invalid etag in cache info line: {line}")
        etag = unquote_plus(parts[2])

    # The fourth field was added later; older files omit it.
    fetch_after = EPOCH
    if len(parts) > 3:
        try:
            fetch_after = _from_unix(int(parts[3]))
        except (ValueError, OverflowError, OSError):
            fetch_after = EPOCH

    return CacheEntry(
        url=parts[0],
        etag=etag,
        last_fetch=last_fetch,
        fetch_after=fetch_after,
    )


class CacheStore:
    """Filesystem-backed store for cache metadata and raw feed bodies."""

    def __init__(self, cache_dir: Union[str, Path]):
        self.cache_dir = Path(cache_dir)

    @property
    def info_path(self) -> Path:
        return self.cache_dir / CACHE_INFO_FILE

    def body_path(self, url: str) -> Path:
        return self.cache_dir / (BODY_PREFIX + quote_plus(url, safe=""))

    def load_all(self) -> dict[str, CacheEntry]:
        """Load every cache entry. A missing file yields an empty map."""
        try:
            text = self.info_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except UnicodeDecodeError as exc:
            raise ParseError(f"cache info is not valid UTF-8: {exc}") from exc
        except OSError as exc:
            raise StorageError(f"failed to read cache info: {exc}") from exc

        entries: dict[str, CacheEntry] = {}
        for line in text.splitlines():
            if not line:
                continue
            entry = parse_entry_line(line)
            entries[entry.url] = entry
        return entries

    def save_all(self, entries: dict[str, CacheEntry]) -> None:
        """Replace the record file with one line per entry."""
        payload = "".join(format_entry_line(entries[url]) for url in sorted(entries))
        try:
            write_atomic(self.info_path, payload.encode("utf-8"))
        except OSError as exc:
            raise StorageError(f"failed to write cache info: {exc}") from exc
        logger.debug("Cache info saved", entries=len(entries), path=str(self.info_path))

    def save_body(self, url: str, data: Union[bytes, BinaryIO]) -> None:
        try:
            write_atomic(self.body_path(url), data)
        except OSError as exc:
            raise StorageError(f"failed to save feed cache for {url}: {exc}") from exc

    def open_body(self, url: str) -> BinaryIO:
        """Open the cached body for reading. The caller closes it."""
        try:
            return open(self.body_path(url), "rb")
        except FileNotFoundError as exc:
            raise BodyNotFoundError(f"no cached body for {url}") from exc
        except OSError as exc:
            raise StorageError(f"failed to open feed cache for {url}: {exc}") from exc

    def has_body(self, url: str) -> bool:
        return self.body_path(url).is_file()

    def remove_entries(self, urls: Iterable[str]) -> None:
        """Drop metadata and cached bodies for *urls*; unknown URLs are ignored."""
        urls = list(urls)
        entries = self.load_all()
        removed = [url for url in urls if entries.pop(url, None) is not None]
        if removed:
            self.save_all(entries)
        for url in urls:
            try:
                self.body_path(url).unlink(missing_ok=True)
            except OSError as exc:
                raise StorageError(f"failed to remove feed cache for {url}: {exc}") from exc
