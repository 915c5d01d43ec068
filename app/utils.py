"""Utility helpers for the VODHub service."""

from __future__ import annotations

import html
import re
from typing import Any, Iterable


UNKNOWN_YEAR = "unknown"

HTML_TAG_RE = re.compile(r"<[^>]+>")
YEAR_RE = re.compile(r"\d{4}")
WHITESPACE_RE = re.compile(r"\s+")
BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def clean_html_tags(value: str | None) -> str:
    """Return ``value`` with HTML tags removed and whitespace tidied."""

    if not value:
        return ""
    text = HTML_TAG_RE.sub("\n", value)
    text = html.unescape(text).replace("\xa0", " ")
    text = BLANK_LINES_RE.sub("\n", text)
    return "\n".join(line.strip() for line in text.split("\n")).strip()


def extract_year(value: Any) -> str:
    """Return the first four-digit run in ``value`` or ``"unknown"``."""

    if value is None:
        return UNKNOWN_YEAR
    match = YEAR_RE.search(str(value))
    if not match:
        return UNKNOWN_YEAR
    return match.group(0)


def collapse_whitespace(value: str | None) -> str:
    """Trim ``value`` and collapse inner whitespace runs to one space."""

    if not value:
        return ""
    return WHITESPACE_RE.sub(" ", value.strip())


def strip_spaces(value: str | None) -> str:
    """Remove every space character, keeping case and other characters."""

    if not value:
        return ""
    return value.replace(" ", "")


def unique_in_order(values: Iterable[str]) -> list[str]:
    """De-duplicate ``values`` while keeping first-seen order."""

    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def coerce_str(value: Any) -> str:
    """Return a stripped string for scalar upstream values, else ``""``."""

    if value is None or isinstance(value, (dict, list, tuple, set)):
        return ""
    if isinstance(value, bool):
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def coerce_positive_int(value: Any) -> int | None:
    """Return ``value`` as a positive integer, or ``None``."""

    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(str(value).strip())
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def coerce_int(value: Any, *, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return default
