"""
feedstream Main Entry Point

Thin command-line wrapper around FeedService: prints the merged feed, runs
a search over cached feeds, or shows configuration and cache details.
"""

import argparse
import sys
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv

from feedstream import __version__
from feedstream.config.settings import get_app_settings
from feedstream.errors import FeedStreamError
from feedstream.services.feed_service import FeedOptions, FeedService
from feedstream.storage import CacheStore, ConfigStore, ListStore
from feedstream.utils.display import Printer
from feedstream.utils.logging_config import bind_context, clear_context, configure_logging, get_logger

logger = get_logger(__name__)


def _parse_since(value: str) -> datetime:
    try:
        since = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date '{value}', expected YYYY-MM-DD[THH:MM:SS]")
    if since.tzinfo is None:
        since = since.replace(tzinfo=timezone.utc)
    return since


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="feedstream",
        description="Display the merged, cached stream of your subscribed feeds",
    )
    parser.add_argument("-L", "--list", dest="list_name", help="Only show feeds from this list")
    parser.add_argument("-l", "--limit", type=int, default=0, help="Maximum number of items to display")
    parser.add_argument("-s", "--since", type=_parse_since, help="Only show items published after this date")
    parser.add_argument("-x", "--proxy", help="HTTP or SOCKS5 proxy URL used for fetching")
    parser.add_argument("-q", "--search", metavar="QUERY", help="Search the cached feeds (no network access)")
    parser.add_argument("--cached-only", action="store_true", help="Do not fetch, only display cached feeds")
    parser.add_argument("--config", action="store_true", help="Show the current configuration")
    parser.add_argument("--config-path", action="store_true", help="Show the configuration directory")
    parser.add_argument("--cache-path", action="store_true", help="Show the cache directory")
    parser.add_argument("--cache-info", action="store_true", help="Show per-feed cache state")

    settings = parser.add_argument_group("configuration", "Change a persisted setting and exit")
    settings.add_argument("--styling", type=int, metavar="N", help="0: default, 1: enable, 2: disable")
    settings.add_argument("--summary", type=int, metavar="N", help="0: disable, 1: enable the run summary")
    settings.add_argument(
        "--map-colors", metavar="MAP", help="Map colors, e.g. 0:230,1:213; \"0:\" removes one, \"\" clears all"
    )
    settings.add_argument("--color-range", action="store_true", help="Display the 256 colors available for mapping")
    settings.add_argument("--user-agent", metavar="UA", help="Set the User-Agent; \"-\" sends none")
    settings.add_argument("--batch-size", type=int, metavar="N", help="Number of feeds fetched in parallel")
    settings.add_argument("--timeout", type=int, metavar="SECONDS", help="HTTP timeout per feed")
    settings.add_argument("--future-items", type=int, metavar="N", help="0: hide, 1: show items dated in the future")

    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging on stderr")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


# Checked in order; the first option given is applied.
CONFIG_SETTERS = (
    ("styling", "set_styling"),
    ("summary", "set_summary"),
    ("map_colors", "update_color_map"),
    ("user_agent", "set_user_agent"),
    ("batch_size", "set_batch_size"),
    ("timeout", "set_timeout"),
    ("future_items", "update_future_items"),
)


def _command_name(args: argparse.Namespace) -> str:
    for option, _ in CONFIG_SETTERS:
        if getattr(args, option) is not None:
            return f"set_{option}"
    for flag in ("config", "config_path", "cache_path", "cache_info"):
        if getattr(args, flag):
            return flag
    return "search" if args.search is not None else "feed"


def create_service(printer: Optional[Printer] = None) -> FeedService:
    settings = get_app_settings()
    return FeedService(
        cache_store=CacheStore(settings.storage.cache_dir),
        list_store=ListStore(settings.storage.config_dir),
        config_store=ConfigStore(settings.storage.config_dir),
        printer=printer,
        overrides=settings.fetch,
    )


def main(argv: Optional[list[str]] = None, service: Optional[FeedService] = None) -> int:
    args = build_parser().parse_args(argv)
    service = service or create_service()
    bind_context(command=_command_name(args))

    try:
        for option, method in CONFIG_SETTERS:
            value = getattr(args, option)
            if value is not None:
                getattr(service, method)(value)
                return 0
        if args.color_range:
            service.display_color_range()
            return 0
        if args.config:
            service.show_config()
        elif args.config_path:
            service.show_config_path()
        elif args.cache_path:
            service.show_cache_path()
        elif args.cache_info:
            service.show_cache_info()
        else:
            options = FeedOptions(
                list_name=args.list_name,
                limit=args.limit,
                since=args.since,
                proxy=args.proxy,
                cached_only=args.cached_only,
            )
            if args.search is not None:
                options.cached_only = True
                service.search(args.search, options)
            else:
                service.feed(options)
    except FeedStreamError as exc:
        logger.debug("Command failed", error=str(exc))
        service.printer.err_println(f"Error: {exc}")
        return 1
    finally:
        clear_context()
    return 0


def run_cli() -> None:
    """CLI entry point for feedstream."""
    load_dotenv()
    configure_logging(verbose="-v" in sys.argv[1:] or "--verbose" in sys.argv[1:])
    sys.exit(main())


if __name__ == "__main__":
    run_cli()
