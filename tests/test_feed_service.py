"""Tests for fetch orchestration, de-duplication and output."""

import math
import time
from datetime import timedelta
from unittest.mock import patch

import pytest
import requests

from conftest import NOW, FakeSession, build_rss, make_response
from feedstream.config.settings import FetchOverrides
from feedstream.errors import InputError, ParseError, StorageError
from feedstream.schemas.config import EPOCH, UserConfig
from feedstream.services.feed_service import FeedOptions, FeedService, RunSummary
from feedstream.services.fetcher import FetchResult
from feedstream.storage.cache_store import CacheEntry

FEED_A = "https://a.example.com/rss"
FEED_B = "https://b.example.com/rss"

T1 = NOW - timedelta(hours=1)
T2 = NOW - timedelta(hours=5)
T3 = NOW + timedelta(days=1)


def _service(cache_store, list_store, config_store, printer, clock, session, overrides=None) -> FeedService:
    return FeedService(
        cache_store=cache_store,
        list_store=list_store,
        config_store=config_store,
        printer=printer,
        session=session,
        clock=clock,
        overrides=overrides,
    )


@pytest.fixture
def session() -> FakeSession:
    return FakeSession({
        FEED_A: lambda: make_response(200, build_rss("Alpha", [("a-recent", T1), ("a-future", T3)]), {"ETag": '"a1"'}),
        FEED_B: lambda: make_response(200, build_rss("Bravo", [("b-older", T2)])),
    })


@pytest.fixture
def service(cache_store, list_store, config_store, printer, clock, session) -> FeedService:
    return _service(cache_store, list_store, config_store, printer, clock, session)


class TestFeedEndToEnd:
    def test_two_feeds_sorted_and_future_hidden(self, service, config_store, write_list, printer):
        config_store.load().hide_future_items = True
        config_store.load().summary = 1
        write_list("default", [FEED_A, FEED_B])

        items, summary = service.feed(FeedOptions())

        assert [i.entry.title for i in items] == ["a-recent", "b-older"]
        assert summary.feeds_count == 2
        assert summary.feeds_fetched == 2
        assert summary.feeds_cached == 0
        assert summary.items_count == 3
        assert summary.items_shown == 2
        out = printer.out.getvalue()
        assert "a-future" not in out
        # Oldest is printed first so the newest ends up at the bottom.
        assert out.index("b-older") < out.index("a-recent")
        assert "Displayed 2 items from 2 feeds (0 cached, 2 fetched) with 3 items" in out

    def test_cache_entries_are_updated_and_persisted(self, service, cache_store, write_list):
        write_list("default", [FEED_A, FEED_B])

        service.feed(FeedOptions())

        entries = cache_store.load_all()
        assert entries[FEED_A].etag == '"a1"'
        assert entries[FEED_A].last_fetch == NOW
        assert entries[FEED_A].fetch_after == NOW + timedelta(seconds=60)
        assert entries[FEED_B].etag == ""

    def test_last_run_is_saved(self, service, config_store, write_list):
        write_list("default", [FEED_A])
        service.feed(FeedOptions())
        saved = UserConfig.model_validate_json(config_store.path.read_bytes())
        assert saved.last_run == NOW

    def test_new_flag_uses_previous_last_fetch(self, service, cache_store, write_list):
        cache_store.save_all({
            FEED_A: CacheEntry(FEED_A, last_fetch=T1 - timedelta(minutes=1)),
            FEED_B: CacheEntry(FEED_B, last_fetch=T2),
        })
        write_list("default", [FEED_A, FEED_B])

        items, _ = service.feed(FeedOptions())

        flags = {i.entry.title: i.is_new for i in items}
        assert flags["a-recent"] is True
        assert flags["b-older"] is False

    def test_limit_caps_output(self, service, write_list, printer):
        write_list("default", [FEED_A, FEED_B])
        service.feed(FeedOptions(limit=1))
        out = printer.out.getvalue()
        assert "a-future" in out
        assert "a-recent" not in out


class TestSubscriptions:
    def test_no_lists_is_input_error(self, service, session):
        with pytest.raises(InputError):
            service.feed(FeedOptions())
        assert session.calls == []

    def test_url_in_two_lists_is_fetched_once(self, service, session, write_list):
        write_list("news", [FEED_A, FEED_B])
        write_list("tech", [FEED_A])

        _, summary = service.feed(FeedOptions())

        fetched = [url for url, _ in session.calls]
        assert sorted(fetched) == [FEED_A, FEED_B]
        assert summary.feeds_count == 2

    def test_single_list_option(self, service, session, write_list):
        write_list("news", [FEED_A])
        write_list("tech", [FEED_B])
        service.feed(FeedOptions(list_name="tech"))
        assert [url for url, _ in session.calls] == [FEED_B]


class TestFailures:
    def test_failed_feed_does_not_abort_batch(self, cache_store, list_store, config_store, printer, clock, write_list):
        session = FakeSession({
            FEED_A: requests.ConnectionError("connection refused"),
            FEED_B: lambda: make_response(200, build_rss("Bravo", [("b-older", T2)])),
        })
        service = _service(cache_store, list_store, config_store, printer, clock, session)
        write_list("default", [FEED_A, FEED_B])

        items, summary = service.feed(FeedOptions())

        assert [i.entry.title for i in items] == ["b-older"]
        assert summary.feeds_fetched == 1
        assert f"failed to fetch feed: {FEED_A}" in printer.err.getvalue()
        # Transport errors leave the entry untouched.
        assert cache_store.load_all()[FEED_A].fetch_after == EPOCH

    def test_unexpected_status_is_reported(self, cache_store, list_store, config_store, printer, clock, write_list):
        session = FakeSession({FEED_A: make_response(500)})
        service = _service(cache_store, list_store, config_store, printer, clock, session)
        write_list("default", [FEED_A])

        items, _ = service.feed(FeedOptions())

        assert items == []
        err = printer.err.getvalue()
        assert "unexpected status code: 500" in err
        assert "no items to display" in err

    def test_unparsable_body_is_reported(self, cache_store, list_store, config_store, printer, clock, write_list):
        session = FakeSession({FEED_A: make_response(200, b"\x00 not a feed <<<")})
        service = _service(cache_store, list_store, config_store, printer, clock, session)
        write_list("default", [FEED_A])

        service.feed(FeedOptions())

        assert f"failed to parse feed: {FEED_A}" in printer.err.getvalue()

    def test_corrupt_cache_info_fails_fast(self, service, cache_store, session, write_list):
        cache_store.cache_dir.mkdir(parents=True)
        cache_store.info_path.write_text("broken\n")
        write_list("default", [FEED_A])

        with pytest.raises(ParseError):
            service.feed(FeedOptions())
        assert session.calls == []

    def test_cache_save_failure_keeps_items(self, service, cache_store, printer, write_list):
        write_list("default", [FEED_A])
        with patch.object(cache_store, "save_all", side_effect=StorageError("disk full")):
            items, _ = service.feed(FeedOptions())
        assert [i.entry.title for i in items] == ["a-future", "a-recent"]
        assert "failed to save cache information: disk full" in printer.err.getvalue()


class TestBackoff:
    def test_backoff_feed_is_served_from_cache(self, service, cache_store, session, write_list):
        cache_store.save_body(FEED_A, build_rss("Alpha", [("cached", T2)]))
        cache_store.save_all({FEED_A: CacheEntry(FEED_A, etag='"old"', last_fetch=T2, fetch_after=NOW + timedelta(minutes=5))})
        write_list("default", [FEED_A])

        items, summary = service.feed(FeedOptions())

        assert session.calls == []
        assert [i.entry.title for i in items] == ["cached"]
        assert summary.feeds_cached == 1
        entry = cache_store.load_all()[FEED_A]
        assert entry.etag == '"old"'
        assert entry.fetch_after == NOW + timedelta(minutes=5)

    def test_not_modified_extends_fetch_after(self, cache_store, list_store, config_store, printer, clock, write_list):
        cache_store.save_body(FEED_A, build_rss("Alpha", [("cached", T2)]))
        cache_store.save_all({FEED_A: CacheEntry(FEED_A, etag='"v1"', fetch_after=NOW - timedelta(seconds=1))})
        session = FakeSession({FEED_A: make_response(304, headers={"Cache-Control": "max-age=90"})})
        service = _service(cache_store, list_store, config_store, printer, clock, session)
        write_list("default", [FEED_A])

        items, summary = service.feed(FeedOptions())

        entry = cache_store.load_all()[FEED_A]
        assert entry.fetch_after == NOW + timedelta(seconds=90)
        assert entry.etag == '"v1"'
        assert entry.last_fetch == EPOCH
        assert [i.entry.title for i in items] == ["cached"]
        assert summary.feeds_cached == 1

    def test_huge_max_age_keeps_cached_items(self, cache_store, list_store, config_store, printer, clock, write_list):
        cache_store.save_body(FEED_A, build_rss("Alpha", [("cached", T2)]))
        session = FakeSession({FEED_A: make_response(304, headers={"Cache-Control": "max-age=999999999999"})})
        service = _service(cache_store, list_store, config_store, printer, clock, session)
        write_list("default", [FEED_A])

        items, _ = service.feed(FeedOptions())

        assert [i.entry.title for i in items] == ["cached"]
        assert printer.err.getvalue() == ""
        assert cache_store.load_all()[FEED_A].fetch_after == NOW + timedelta(days=10 * 365)

    def test_fetch_after_never_moves_backwards(self, service):
        later = NOW + timedelta(hours=2)
        entry = CacheEntry(FEED_A, fetch_after=later)

        service._apply_result(entry, FetchResult(changed=False, fetch_after=NOW + timedelta(seconds=60)))
        assert entry.fetch_after == later

        service._apply_result(entry, FetchResult(changed=True, etag="e", fetch_after=later + timedelta(seconds=1)))
        assert entry.fetch_after == later + timedelta(seconds=1)
        assert entry.etag == "e"
        assert entry.last_fetch == NOW


class TestCachedOnly:
    def test_search_never_touches_network(self, service, cache_store, session, write_list, printer):
        cache_store.save_body(FEED_A, build_rss("Alpha", [("Python tips", T1), ("Cooking", T2)]))
        write_list("default", [FEED_A, FEED_B])

        items, summary = service.search("python", FeedOptions(cached_only=True))

        assert session.calls == []
        assert [i.entry.title for i in items] == ["Python tips"]
        assert summary.feeds_cached == 1
        assert printer.err.getvalue() == ""

    def test_search_orders_by_score(self, service, cache_store, write_list):
        cache_store.save_body(FEED_A, build_rss("Alpha", [("Pythonic idioms", T1), ("python", T2), ("Python news", T2)]))
        write_list("default", [FEED_A])

        items, _ = service.search("python", FeedOptions(cached_only=True))

        assert [i.entry.title for i in items] == ["Python news", "python", "Pythonic idioms"]

    def test_empty_query_is_input_error(self, service, session, write_list):
        write_list("default", [FEED_A])
        with pytest.raises(InputError):
            service.search("  !! ", FeedOptions(cached_only=True))
        assert session.calls == []


class TestConcurrency:
    def test_batch_size_bounds_parallel_fetches(self, cache_store, list_store, config_store, printer, clock):
        delay = 0.1
        urls = [f"https://feed{n}.example.com/rss" for n in range(5)]
        session = FakeSession(
            {url: (lambda n=n: make_response(200, build_rss(f"Feed {n}", [(f"item {n}", T2)]))) for n, url in enumerate(urls)},
            delay=delay,
        )
        service = _service(cache_store, list_store, config_store, printer, clock, session)
        config = UserConfig(batchSize=2)

        started = time.monotonic()
        items, summary = service.run(urls, config, FeedOptions(), RunSummary(start=NOW))
        elapsed = time.monotonic() - started

        assert session.max_active <= 2
        assert elapsed >= math.ceil(len(urls) / 2) * delay - 0.01
        assert len(items) == 5
        assert summary.feeds_fetched == 5

    def test_batch_size_override(self, cache_store, list_store, config_store, printer, clock):
        urls = [f"https://feed{n}.example.com/rss" for n in range(4)]
        session = FakeSession({url: make_response(304) for url in urls}, delay=0.02)
        service = _service(
            cache_store, list_store, config_store, printer, clock, session,
            overrides=FetchOverrides(batch_size=1, timeout=None),
        )
        service.run(urls, UserConfig(batchSize=50), FeedOptions())
        assert session.max_active == 1

    def test_feed_colors_are_stable_per_title(self, service, write_list):
        write_list("default", [FEED_A, FEED_B])
        items, _ = service.feed(FeedOptions())
        colors = {}
        for item in items:
            colors.setdefault(item.feed.title, set()).add(item.feed_color)
        assert all(len(c) == 1 for c in colors.values())
        assert colors["Alpha"] != colors["Bravo"]


class TestProxy:
    def test_proxy_is_applied_to_session(self, service, session, write_list):
        write_list("default", [FEED_A])
        service.feed(FeedOptions(proxy="socks5://127.0.0.1:9050"))
        assert session.proxies == {"http": "socks5://127.0.0.1:9050", "https": "socks5://127.0.0.1:9050"}


class TestInfoCommands:
    def test_show_cache_info(self, service, cache_store, printer):
        cache_store.save_all({
            FEED_B: CacheEntry(FEED_B, last_fetch=NOW),
            FEED_A: CacheEntry(FEED_A),
        })
        service.show_cache_info()
        lines = printer.out.getvalue().splitlines()
        assert lines[0].startswith("URL")
        assert lines[1].startswith(FEED_A)
        assert lines[2].startswith(FEED_B)
        assert "2025-06-15 12:00:00" in lines[2]

    def test_show_config(self, service, printer):
        service.show_config()
        out = printer.out.getvalue()
        assert "Timeout: 30" in out
        assert "Batch size: 100" in out
        assert "Future items: show" in out

    def test_paths(self, service, cache_store, config_store, printer):
        service.show_cache_path()
        service.show_config_path()
        assert printer.out.getvalue().splitlines() == [str(cache_store.cache_dir), str(config_store.config_dir)]


class TestConfigUpdates:
    def _saved(self, config_store) -> UserConfig:
        return UserConfig.model_validate_json(config_store.path.read_bytes())

    @pytest.mark.parametrize(
        "method, value, field_name, expected",
        [
            ("set_timeout", 10, "timeout", 10),
            ("set_batch_size", 8, "batch_size", 8),
            ("set_user_agent", "-", "user_agent", "-"),
            ("set_styling", 2, "styling", 2),
            ("set_summary", 1, "summary", 1),
        ],
    )
    def test_setters_persist(self, service, config_store, printer, method, value, field_name, expected):
        getattr(service, method)(value)
        assert getattr(self._saved(config_store), field_name) == expected
        assert printer.out.getvalue().endswith("updated\n")

    @pytest.mark.parametrize(
        "method, value",
        [("set_styling", 3), ("set_summary", 2), ("set_timeout", -1), ("set_batch_size", -5)],
    )
    def test_invalid_values_are_rejected(self, service, config_store, method, value):
        with pytest.raises(InputError):
            getattr(service, method)(value)
        assert not config_store.path.exists()
        assert config_store.load() == UserConfig()

    def test_future_items(self, service, config_store):
        service.update_future_items(0)
        assert self._saved(config_store).hide_future_items is True
        service.update_future_items(1)
        assert self._saved(config_store).hide_future_items is False
        with pytest.raises(InputError):
            service.update_future_items(2)

    def test_color_map_updates(self, service, config_store):
        service.update_color_map("0:230,1:213")
        assert self._saved(config_store).color_map == {0: 230, 1: 213}

        service.update_color_map("0:")
        assert self._saved(config_store).color_map == {1: 213}

        service.update_color_map("")
        assert self._saved(config_store).color_map == {}

    @pytest.mark.parametrize("mappings", ["x:1", "1:y", "1:300"])
    def test_bad_color_map_is_rejected(self, service, config_store, mappings):
        service.update_color_map("2:100")
        with pytest.raises(InputError):
            service.update_color_map(mappings)
        assert config_store.load().color_map == {2: 100}

    def test_color_range_forces_styling_once(self, service, printer):
        service.display_color_range()
        out = printer.out.getvalue()
        assert "\033[38;5;0m0 \033[0m" in out
        assert "\033[38;5;255m255 \033[0m" in out
        assert printer.styling is False

    def test_feed_records_last_run_through_store(self, service, config_store, write_list):
        write_list("default", [FEED_A])
        with patch.object(config_store, "mark_run", wraps=config_store.mark_run) as mark_run:
            service.feed(FeedOptions())
        mark_run.assert_called_once_with(NOW)


class TestUrlHandling:
    def test_lists_are_resolved_through_list_store(self, service, list_store, write_list):
        write_list("news", [FEED_A])
        with patch.object(list_store, "list_urls", wraps=list_store.list_urls) as list_urls:
            service.feed(FeedOptions(list_name="news"))
        list_urls.assert_called_once_with("news")

    def test_urls_with_spaces_are_requoted(self, cache_store, list_store, config_store, printer, clock):
        quoted = "https://a.example.com/search?q=a%20b"
        session = FakeSession({quoted: lambda: make_response(200, build_rss("Alpha", [("found", T1)]))})
        service = _service(cache_store, list_store, config_store, printer, clock, session)

        items, _ = service.run(["https://a.example.com/search?q=a b"], UserConfig(), FeedOptions())

        assert [i.entry.title for i in items] == ["found"]
        assert list(cache_store.load_all()) == [quoted]
        assert printer.err.getvalue() == ""
