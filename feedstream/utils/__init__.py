"""Utility modules for feedstream."""

from feedstream.utils.display import Printer
from feedstream.utils.logging_config import (
    bind_context,
    clear_context,
    configure_logging,
    get_logger,
)

__all__ = [
    "Printer",
    "configure_logging",
    "get_logger",
    "bind_context",
    "clear_context",
]
