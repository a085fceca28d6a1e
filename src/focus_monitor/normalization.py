"""Utilities to derive a stable app identity from window titles."""

from __future__ import annotations

import re
from typing import Optional

# The app name is whatever precedes the first separator: " - " (or an en/em
# dash), " | ", a colon, or a run of digits.
_APP_NAME_PATTERN = re.compile(r"^(.*?)(?:\s[-–—]\s|\s\|\s|:|\s\d|$)")

_EXTRA_TAB_COUNT_PATTERN = re.compile(r"\s+and\s+\d+\s+more\s+pages?", re.IGNORECASE)


def derive_app_identity(title: Optional[str]) -> str:
    """Return the app identity for a window title.

    Depends on the title alone. Titles that do not yield a usable prefix
    fall back to the raw trimmed title; ``None`` becomes an empty string.
    """
    if not title:
        return ""
    raw = title.strip()
    cleaned = normalize_window_title(raw)
    if not cleaned:
        return raw
    match = _APP_NAME_PATTERN.match(cleaned)
    candidate = match.group(1).strip() if match else ""
    return candidate or raw


def normalize_window_title(window_title: Optional[str]) -> Optional[str]:
    """Drop tab-count suffixes and collapse whitespace."""
    if not window_title:
        return None
    normalized = _strip_tab_count(window_title.strip())
    normalized = re.sub(r"\s{2,}", " ", normalized).strip()
    return normalized or None


def _strip_tab_count(value: str) -> str:
    cleaned = _EXTRA_TAB_COUNT_PATTERN.sub("", value)
    return cleaned.strip(" -|")
