"""Small text helpers used when rendering output."""

import unicodedata

_UNITS = (
    (365 * 24 * 3600, "year"),
    (30 * 24 * 3600, "month"),
    (7 * 24 * 3600, "week"),
    (24 * 3600, "day"),
    (3600, "hour"),
    (60, "minute"),
)


def pluralize(count: int, noun: str) -> str:
    """Return ``"1 item"`` / ``"3 items"``."""
    if count == 1:
        return f"{count} {noun}"
    return f"{count} {noun}s"


def relative(seconds: int) -> str:
    """Format an age in seconds as a short human string ("3 hours ago")."""
    future = seconds < 0
    seconds = abs(seconds)
    if seconds < 60:
        return "just now"
    for size, unit in _UNITS:
        if seconds >= size:
            text = pluralize(seconds // size, unit)
            return f"in {text}" if future else f"{text} ago"
    return "just now"


def display_width(text: str) -> int:
    """Terminal column width of *text*, counting East Asian wide chars as 2."""
    width = 0
    for ch in text:
        if unicodedata.combining(ch):
            continue
        width += 2 if unicodedata.east_asian_width(ch) in ("W", "F") else 1
    return width


def truncate(text: str, width: int, tail: str = "...") -> str:
    if display_width(text) <= width:
        return text
    limit = max(width - display_width(tail), 0)
    out = []
    used = 0
    for ch in text:
        w = display_width(ch)
        if used + w > limit:
            break
        out.append(ch)
        used += w
    return "".join(out) + tail


def fill_right(text: str, width: int) -> str:
    return text + " " * max(width - display_width(text), 0)
