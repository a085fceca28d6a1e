"""Allow-list matching for app identities."""

from __future__ import annotations

from typing import Iterable

# Names of the monitor's own windows; merged into every whitelist snapshot.
ALWAYS_ALLOWED: tuple[str, ...] = ("Focus Monitor",)


def tokens_match(app: str, token: str) -> bool:
    """Symmetric, case-insensitive substring containment."""
    left = app.casefold()
    right = token.strip().casefold()
    if not right:
        return False
    return left in right or right in left


def is_whitelisted(app: str, whitelist: Iterable[str]) -> bool:
    """Return True if ``app`` is covered by any whitelist entry.

    Short tokens match broadly: a single-letter entry covers every app
    containing that letter.
    """
    if not app or not app.strip():
        return False
    app = app.strip()
    return any(tokens_match(app, token) for token in whitelist)


def is_distraction(app: str, distraction_apps: Iterable[str]) -> bool:
    return is_whitelisted(app, distraction_apps)


def merge_whitelist(entries: Iterable[str]) -> list[str]:
    """User entries plus :data:`ALWAYS_ALLOWED`, de-duplicated, order kept."""
    merged: list[str] = []
    seen: set[str] = set()
    for entry in [*entries, *ALWAYS_ALLOWED]:
        cleaned = entry.strip()
        key = cleaned.casefold()
        if not cleaned or key in seen:
            continue
        seen.add(key)
        merged.append(cleaned)
    return merged
