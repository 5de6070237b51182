"""Read-only access to subscription lists.

Each list is a file ``<config_dir>/lists/<name>`` holding one subscription
per line: ``"<addedAtUnix> <url>"``. Managing the lists (follow, unfollow,
rename, merge) is done by other tooling; this module only reads them.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from requests.utils import requote_uri

from feedstream.errors import StorageError
from feedstream.utils.logging_config import get_logger

logger = get_logger(__name__)

LISTS_DIR = "lists"
DEFAULT_LIST = "default"


def normalize_address(address: str) -> str:
    """Percent-encode characters a feed URL may not carry, such as spaces."""
    return requote_uri(address.strip())


@dataclass(frozen=True)
class ListItem:
    """A subscribed feed address and when it was added."""

    address: str
    added_at: datetime


def _parse_list_line(line: str) -> Optional[ListItem]:
    line = line.strip()
    if not line:
        return None
    added, sep, address = line.partition(" ")
    if not sep:
        # Plain URL without a timestamp.
        return ListItem(address=normalize_address(added), added_at=datetime.fromtimestamp(0, tz=timezone.utc))
    try:
        added_at = datetime.fromtimestamp(int(added), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return ListItem(address=normalize_address(line), added_at=datetime.fromtimestamp(0, tz=timezone.utc))
    return ListItem(address=normalize_address(address), added_at=added_at)


class ListStore:
    """File-backed subscription store."""

    def __init__(self, config_dir: Union[str, Path]):
        self.lists_dir = Path(config_dir) / LISTS_DIR

    def list_names(self) -> list[str]:
        if not self.lists_dir.is_dir():
            return []
        try:
            return sorted(p.name for p in self.lists_dir.iterdir() if p.is_file() and not p.name.startswith("."))
        except OSError as exc:
            raise StorageError(f"failed to load lists: {exc}") from exc

    def load_feeds_from_list(self, dest: dict[str, ListItem], name: str) -> dict[str, ListItem]:
        """Merge the feeds of list *name* into *dest* keyed by URL.

        A URL present in several lists keeps its first-seen entry.
        """
        path = self.lists_dir / name
        try:
            text = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.debug("List not found", list=name)
            return dest
        except OSError as exc:
            raise StorageError(f"failed to load list {name}: {exc}") from exc
        for line in text.splitlines():
            item = _parse_list_line(line)
            if item is not None and item.address not in dest:
                dest[item.address] = item
        return dest

    def list_urls(self, name: Optional[str] = None) -> dict[str, ListItem]:
        """Return the feeds of one list, or of every list merged by URL."""
        feeds: dict[str, ListItem] = {}
        names = [name] if name else self.list_names()
        for list_name in names:
            self.load_feeds_from_list(feeds, list_name)
        return feeds
