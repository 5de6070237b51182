"""
Display Module

Line-oriented presentation sink. Item output goes to ``out`` (stdout by
default); warnings and per-feed failures go to ``err`` (stderr by default).
"""

from __future__ import annotations

import sys
import threading
from typing import TextIO


class Printer:
    """
    Writes text to an output and an error stream.

    Writes are serialized with a lock because feed workers report failures
    from several threads at once.
    """

    def __init__(
        self,
        out: TextIO | None = None,
        err: TextIO | None = None,
        styling: bool | None = None,
    ):
        self.out = out if out is not None else sys.stdout
        self.err = err if err is not None else sys.stderr
        if styling is None:
            styling = hasattr(self.out, "isatty") and self.out.isatty()
        self.styling = styling
        self._lock = threading.Lock()

    def print(self, *parts: str) -> None:
        self._write(self.out, "".join(parts))

    def println(self, *parts: str) -> None:
        self._write(self.out, " ".join(parts) + "\n")

    def err_println(self, *parts: str) -> None:
        self._write(self.err, " ".join(parts) + "\n")

    def color(self, text: str, color: int) -> str:
        """Wrap *text* in a 256-color foreground escape when styling is on."""
        if not self.styling:
            return text
        return f"\033[38;5;{color}m{text}\033[0m"

    def apply_styling(self, styling: int) -> None:
        """Apply the persisted styling mode (0 default, 1 enabled, 2 disabled)."""
        if styling == 1:
            self.styling = True
        elif styling == 2:
            self.styling = False

    def _write(self, stream: TextIO, text: str) -> None:
        with self._lock:
            stream.write(text)
            stream.flush()
