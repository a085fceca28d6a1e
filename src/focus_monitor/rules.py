"""Evaluation of user-defined rules against activity counters."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

from .config import EngineSettings
from .models import Rule
from .tracker import ActivityTracker
from .whitelist import is_distraction

logger = logging.getLogger(__name__)


class RuleEvaluator:
    """Decides which enabled rules fire on a tick.

    A rule fires when it is inside its schedule (if it has one), its
    trigger condition holds, and at least ``rule_cooldown`` has passed
    since it last fired. Firing times are remembered here as well as on
    the rule, so re-read settings snapshots cannot reset a cooldown.
    """

    def __init__(
        self, tracker: ActivityTracker, settings: Optional[EngineSettings] = None
    ) -> None:
        self.tracker = tracker
        self.settings = settings or EngineSettings()
        self._last_triggered: dict[str, datetime] = {}

    def last_triggered(self, rule: Rule) -> Optional[datetime]:
        known = self._last_triggered.get(rule.id)
        stored = rule.last_triggered_at
        if known is None:
            return stored
        if stored is None:
            return known
        return max(known, stored)

    def in_cooldown(self, rule: Rule, now: datetime) -> bool:
        last = self.last_triggered(rule)
        return last is not None and now - last < self.settings.rule_cooldown

    def is_triggered(
        self, rule: Rule, now: datetime, distraction_apps: Iterable[str] = ()
    ) -> bool:
        condition = rule.trigger_condition
        if condition.type == "tabSwitches":
            window = timedelta(minutes=condition.timeframe_minutes)
            return self.tracker.recent_switch_count(window, now) >= condition.threshold
        threshold = timedelta(minutes=condition.threshold)
        if condition.type == "timeSpent":
            return self.tracker.cumulative_screen_time() >= threshold
        if condition.type == "appUsage":
            tokens = list(distraction_apps)
            return any(
                spent >= threshold
                for app, spent in self.tracker.app_usage().items()
                if is_distraction(app, tokens)
            )
        logger.warning("Rule %s has unknown trigger type %r.", rule.id, condition.type)
        return False

    def evaluate(
        self,
        rules: Iterable[Rule],
        now: datetime,
        distraction_apps: Iterable[str] = (),
    ) -> list[Rule]:
        """Return the rules that fire at ``now`` and record their firing."""
        tokens = list(distraction_apps)
        fired: list[Rule] = []
        for rule in rules:
            if not rule.enabled:
                continue
            if rule.schedule is not None and not rule.schedule.is_active(now):
                logger.debug("Rule %s outside its schedule.", rule.id)
                continue
            if not self.is_triggered(rule, now, tokens):
                continue
            if self.in_cooldown(rule, now):
                logger.debug("Rule %s triggered but cooling down.", rule.id)
                continue
            self._last_triggered[rule.id] = now
            rule.last_triggered_at = now
            logger.info("Rule %s (%s) fired.", rule.id, rule.name)
            fired.append(rule)
        return fired

    def forget(self, rule_id: str) -> None:
        self._last_triggered.pop(rule_id, None)
