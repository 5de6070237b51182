"""
Diagnostic logging for the feedstream CLI.

Item output owns stdout, so structlog events are rendered on stderr only.
They are quiet by default (WARNING); ``--verbose`` or ``LOG_LEVEL=DEBUG``
shows per-feed fetch decisions. Set ``LOG_FORMAT=json`` to get one JSON
object per line, e.g. when piping a cron run into a log collector.

Modules log key/value events through a module-level logger:

    logger = get_logger(__name__)
    logger.debug("Fetch skipped, backoff window open", url=url)
"""

import logging
import os
import sys
from typing import Mapping, Optional, TextIO

import structlog
from structlog.types import Processor

DEFAULT_LEVEL = logging.WARNING
NOISY_LOGGERS = ("urllib3", "charset_normalizer", "feedparser")


def resolve_level(verbose: bool = False, env: Optional[Mapping[str, str]] = None) -> int:
    """``--verbose`` wins; otherwise ``LOG_LEVEL`` by name, falling back to WARNING."""
    if verbose:
        return logging.DEBUG
    env = os.environ if env is None else env
    level = logging.getLevelName((env.get("LOG_LEVEL") or "").upper())
    return level if isinstance(level, int) else DEFAULT_LEVEL


def configure_logging(
    verbose: bool = False,
    stream: Optional[TextIO] = None,
    json_format: Optional[bool] = None,
) -> int:
    """Route structlog and stdlib logging to *stream* (stderr by default).

    Returns the effective level.
    """
    stream = stream if stream is not None else sys.stderr
    level = resolve_level(verbose)
    if json_format is None:
        json_format = os.getenv("LOG_FORMAT", "").lower() == "json"

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="%H:%M:%S" if not json_format else "iso"),
        structlog.processors.format_exc_info,
    ]
    if json_format:
        renderer: Processor = structlog.processors.JSONRenderer(ensure_ascii=False)
    else:
        renderer = structlog.dev.ConsoleRenderer(
            colors=hasattr(stream, "isatty") and stream.isatty(),
            exception_formatter=structlog.dev.plain_traceback,
        )

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(processor=renderer, foreign_pre_chain=shared_processors)
    )
    logging.basicConfig(format="%(message)s", handlers=[handler], level=level, force=True)

    # Library chatter stays at WARNING even with --verbose.
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return level


def get_logger(name: Optional[str] = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_context(**kwargs) -> None:
    """Attach key/value pairs (e.g. the running command) to every later event."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
