"""Shared test fixtures and fakes."""

from __future__ import annotations

import io
import threading
import time
import types
from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Any, Callable
from unittest.mock import MagicMock

import pytest

from feedstream.storage import CacheStore, ConfigStore, ListStore
from feedstream.utils.display import Printer

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def build_rss(title: str, items: list[tuple[str, datetime | None]], description: str = "") -> bytes:
    """Return an RSS 2.0 document with one <item> per (title, published) pair."""
    parts = [
        '<?xml version="1.0" encoding="UTF-8"?>',
        '<rss version="2.0"><channel>',
        f"<title>{title}</title>",
        "<link>https://example.com/</link>",
        f"<description>{description}</description>",
    ]
    for index, (item_title, published) in enumerate(items):
        parts.append("<item>")
        parts.append(f"<title>{item_title}</title>")
        parts.append(f"<link>https://example.com/{index}</link>")
        if published is not None:
            parts.append(f"<pubDate>{format_datetime(published, usegmt=True)}</pubDate>")
        parts.append("</item>")
    parts.append("</channel></rss>")
    return "".join(parts).encode("utf-8")


def make_response(status: int = 200, body: bytes = b"", headers: dict[str, str] | None = None) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.headers = headers or {}
    response.raw.read.return_value = body
    return response


class FakeSession:
    """Stands in for requests.Session; serves canned responses per URL.

    A value may be a response, an exception to raise, or a function building
    a fresh response per call.
    """

    def __init__(
        self,
        responses: dict[str, Any] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.responses = responses or {}
        self.delay = delay
        self.proxies: dict[str, str] = {}
        self.calls: list[tuple[str, dict]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def get(self, url: str, headers: dict | None = None, timeout: Any = None, stream: bool = False):
        with self._lock:
            self.calls.append((url, dict(headers or {})))
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            response = self.responses[url]
            if isinstance(response, Exception):
                raise response
            if isinstance(response, types.FunctionType):
                return response()
            return response
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def cache_store(tmp_path) -> CacheStore:
    return CacheStore(tmp_path / "cache")


@pytest.fixture
def config_dir(tmp_path):
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def list_store(config_dir) -> ListStore:
    return ListStore(config_dir)


@pytest.fixture
def config_store(config_dir) -> ConfigStore:
    return ConfigStore(config_dir)


@pytest.fixture
def printer() -> Printer:
    return Printer(out=io.StringIO(), err=io.StringIO(), styling=False)


@pytest.fixture
def write_list(config_dir):
    def _write(name: str, urls: list[str]) -> None:
        lists_dir = config_dir / "lists"
        lists_dir.mkdir(exist_ok=True)
        lines = [f"1700000000 {url}" for url in urls]
        (lists_dir / name).write_text("\n".join(lines) + "\n", encoding="utf-8")

    return _write
