"""JSON file store for whitelist, enforcement policy and rules."""

from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from .events import Event, RuleFired
from .models import FocusSettings, Rule

logger = logging.getLogger(__name__)


class SettingsUnavailable(Exception):
    """Raised when the settings file cannot be read or validated."""


class SettingsStore:
    """Reads and writes :class:`FocusSettings` as camelCase JSON."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> FocusSettings:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise SettingsUnavailable(f"No settings file at {self.path}") from exc
        except OSError as exc:
            raise SettingsUnavailable(f"Cannot read {self.path}: {exc}") from exc
        try:
            return FocusSettings.model_validate_json(raw)
        except ValidationError as exc:
            raise SettingsUnavailable(f"Invalid settings in {self.path}: {exc}") from exc

    def load_or_default(self) -> FocusSettings:
        try:
            return self.load()
        except SettingsUnavailable:
            return FocusSettings()

    def save(self, settings: FocusSettings) -> None:
        payload = settings.model_dump_json(by_alias=True, indent=2)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(self.path)
        logger.debug("Saved settings to %s", self.path)

    def update(self, mutate: Callable[[FocusSettings], None]) -> FocusSettings:
        settings = self.load_or_default()
        mutate(settings)
        self.save(settings)
        return settings

    def add_whitelist_entry(self, entry: str) -> FocusSettings:
        cleaned = entry.strip()
        if not cleaned:
            raise ValueError("whitelist entry must not be blank")

        def _add(settings: FocusSettings) -> None:
            if cleaned.casefold() not in {item.casefold() for item in settings.whitelist}:
                settings.whitelist.append(cleaned)

        return self.update(_add)

    def remove_whitelist_entry(self, entry: str) -> FocusSettings:
        target = entry.strip().casefold()

        def _remove(settings: FocusSettings) -> None:
            settings.whitelist = [
                item for item in settings.whitelist if item.casefold() != target
            ]

        return self.update(_remove)

    def upsert_rule(self, rule: Rule) -> FocusSettings:
        def _upsert(settings: FocusSettings) -> None:
            for index, existing in enumerate(settings.rules):
                if existing.id == rule.id:
                    settings.rules[index] = rule
                    return
            settings.rules.append(rule)

        return self.update(_upsert)

    def delete_rule(self, rule_id: str) -> bool:
        removed = False

        def _delete(settings: FocusSettings) -> None:
            nonlocal removed
            before = len(settings.rules)
            settings.rules = [rule for rule in settings.rules if rule.id != rule_id]
            removed = len(settings.rules) != before

        self.update(_delete)
        return removed

    def toggle_rule(self, rule_id: str) -> Rule:
        settings = self.load_or_default()
        rule = settings.rule(rule_id)
        if rule is None:
            raise KeyError(rule_id)
        rule.enabled = not rule.enabled
        self.save(settings)
        return rule

    def record_trigger(self, rule_id: str, fired_at: datetime) -> Optional[Rule]:
        try:
            settings = self.load()
        except SettingsUnavailable:
            return None
        rule = settings.rule(rule_id)
        if rule is None:
            return None
        rule.last_triggered_at = fired_at
        self.save(settings)
        return rule

    def handle_event(self, event: Event) -> None:
        """Subscriber that writes rule firing times back to the file."""
        if isinstance(event, RuleFired):
            self.record_trigger(event.rule_id, event.fired_at)
