"""The focus engine: one instance per session, wiring tracker, rules and alerts."""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Any, Optional

from .clock import Clock, ScheduledTask, Scheduler, SystemClock
from .config import EngineSettings
from .enforcement import select_enforcement
from .events import (
    DegradedMode,
    EventChannel,
    PersistCounterUpdate,
    RuleFired,
    Subscriber,
    Subscription,
)
from .focus import ClearActiveAlert, FocusDecision, FocusStateMachine, RaiseAlert
from .models import AlertRecord, FocusSettings, Rule, WindowSample, to_local_naive
from .notifications import NotificationDeduplicator
from .rules import RuleEvaluator
from .store import SettingsStore, SettingsUnavailable
from .tracker import ActivityTracker

logger = logging.getLogger(__name__)


class FocusEngine:
    """Session object owning every piece of decision state.

    All inbound calls and scheduled callbacks run under one lock, so
    window samples, dismissals and ticks are handled one at a time in
    arrival order. Outbound events go through :attr:`channel`; a failing
    subscriber never rolls back a decision that was already made.
    """

    def __init__(
        self,
        settings: Optional[EngineSettings] = None,
        *,
        clock: Optional[Clock] = None,
        scheduler: Optional[Scheduler] = None,
        channel: Optional[EventChannel] = None,
        settings_source: Optional[SettingsStore] = None,
        initial_settings: Optional[FocusSettings] = None,
    ) -> None:
        self.settings = settings or EngineSettings()
        if scheduler is not None:
            self.clock = scheduler.clock
            self.scheduler = scheduler
        else:
            self.clock = clock or SystemClock()
            self.scheduler = Scheduler(self.clock)
        self.channel = channel or EventChannel()
        self.tracker = ActivityTracker(self.settings)
        self.focus = FocusStateMachine()
        self.notifications = NotificationDeduplicator(
            self.scheduler, self.channel, self.settings
        )
        self.rule_evaluator = RuleEvaluator(self.tracker, self.settings)
        self._settings_source = settings_source
        self._snapshot = FocusSettings()
        self._degraded: dict[str, str] = {}
        self._lock = threading.RLock()
        self._rule_task: Optional[ScheduledTask] = None
        self._persist_task: Optional[ScheduledTask] = None
        if initial_settings is not None:
            self._apply_settings(initial_settings)

    # -- subscriptions -------------------------------------------------

    def subscribe(self, callback: Subscriber, *kinds: type) -> Subscription:
        return self.channel.subscribe(callback, *kinds)

    def unsubscribe(self, subscription: Subscription) -> bool:
        return self.channel.unsubscribe(subscription)

    # -- lifecycle -----------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self.focus.monitoring

    def start(self) -> None:
        """Load settings and begin periodic counter persistence."""
        with self._lock:
            self.reload_settings()
            if self._persist_task is None:
                self._persist_task = self.scheduler.call_every(
                    self.settings.persist_interval, self.persist_counters, name="persist"
                )

    def close(self) -> None:
        with self._lock:
            self.set_enabled(False)
            if self._persist_task is not None:
                self._persist_task.cancel()
                self._persist_task = None
            self.persist_counters()

    def set_enabled(self, enabled: bool) -> None:
        with self._lock:
            if enabled:
                self._enable()
            else:
                self._disable()

    def enable(self) -> None:
        self.set_enabled(True)

    def disable(self) -> None:
        self.set_enabled(False)

    def _enable(self) -> None:
        if self.focus.monitoring:
            return
        self.reload_settings()
        self.focus.enable(self.tracker.current_app())
        self._rule_task = self.scheduler.call_every(
            self.settings.rule_interval, self.evaluate_rules, name="rules"
        )

    def _disable(self) -> None:
        if self._rule_task is not None:
            self._rule_task.cancel()
            self._rule_task = None
        self.focus.disable()
        self.notifications.clear("disabled")

    # -- driving -------------------------------------------------------

    def run_pending(self) -> int:
        with self._lock:
            return self.scheduler.run_pending()

    def advance(self, delta: timedelta | float) -> int:
        """Advance a virtual clock, running everything that falls due."""
        with self._lock:
            return self.scheduler.advance(delta)

    def seconds_until_next(self) -> Optional[float]:
        with self._lock:
            return self.scheduler.seconds_until_next()

    # -- inbound -------------------------------------------------------

    def window_sample(
        self,
        title: str,
        owner_name: Optional[str] = None,
        owner_path: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> Optional[FocusDecision]:
        sample = WindowSample(
            title=title or "",
            owner_name=owner_name,
            owner_path=owner_path,
            timestamp=to_local_naive(timestamp) or self.clock.now(),
        )
        return self.on_sample(sample)

    def on_sample(self, sample: WindowSample) -> Optional[FocusDecision]:
        with self._lock:
            self.channel.retry_failed()
            switch = self.tracker.on_sample(sample)
            if switch is None or not self.focus.monitoring:
                return None
            decision = self.focus.on_app_changed(
                switch.current_app, self.notifications.active_app()
            )
            if decision is not None:
                self._apply_decision(decision)
            return decision

    def dismiss(self, alert_id: str) -> bool:
        with self._lock:
            return self.notifications.dismiss(alert_id)

    def is_known_alert(self, alert_id: str) -> bool:
        with self._lock:
            return self.notifications.is_known(alert_id)

    def forget_rule(self, rule_id: str) -> None:
        with self._lock:
            self.rule_evaluator.forget(rule_id)

    def settings_changed(self, settings: FocusSettings) -> None:
        with self._lock:
            self._apply_settings(settings)

    def test_alert(self) -> AlertRecord:
        """Show the focus alert for the current app without changing state."""
        with self._lock:
            app = self.tracker.current_app() or "Test App"
            return self._raise_focus_alert(app)

    # -- ticks ---------------------------------------------------------

    def reload_settings(self) -> FocusSettings:
        with self._lock:
            if self._settings_source is None:
                return self._snapshot
            try:
                loaded = self._settings_source.load()
            except SettingsUnavailable as exc:
                self._enter_degraded("settings", str(exc))
                self._apply_settings(FocusSettings())
            else:
                self._leave_degraded("settings")
                self._apply_settings(loaded)
            return self._snapshot

    def evaluate_rules(self) -> list[Rule]:
        with self._lock:
            if not self.focus.monitoring:
                return []
            self.channel.retry_failed()
            self.reload_settings()
            now = self.clock.now()
            fired = self.rule_evaluator.evaluate(
                self._snapshot.rules, now, self._snapshot.distraction_apps
            )
            delivered: list[Rule] = []
            for rule in fired:
                # A subscriber may have disabled the engine mid-loop.
                if not self.focus.monitoring:
                    break
                self._raise_rule_alert(rule)
                self.channel.publish(RuleFired(rule_id=rule.id, fired_at=now))
                delivered.append(rule)
            return delivered

    def persist_counters(self) -> PersistCounterUpdate:
        with self._lock:
            self.channel.retry_failed()
            now = self.clock.now()
            snapshot = self.tracker.snapshot()
            update = PersistCounterUpdate(
                recorded_at=now,
                day=snapshot["day"] or now.date().isoformat(),
                screen_time_seconds=snapshot["screen_time_seconds"],
                switch_count=self.tracker.recent_switch_count(self.settings.switch_history, now),
                per_app_seconds=snapshot["per_app_seconds"],
            )
            self.channel.publish(update)
            return update

    # -- queries -------------------------------------------------------

    @property
    def current_settings(self) -> FocusSettings:
        return self._snapshot

    @property
    def degraded(self) -> dict[str, str]:
        return dict(self._degraded)

    def current_app(self) -> Optional[str]:
        with self._lock:
            return self.tracker.current_app()

    def active_alert(self) -> Optional[AlertRecord]:
        with self._lock:
            return self.notifications.active

    def counters(self) -> dict[str, Any]:
        with self._lock:
            return self.tracker.snapshot()

    def status(self) -> dict[str, Any]:
        with self._lock:
            current = self.tracker.current_app()
            active = self.notifications.active
            return {
                "enabled": self.focus.monitoring,
                "current_app": current,
                "previous_app": self.tracker.previous_app(),
                "current_app_whitelisted": self.focus.is_whitelisted(current),
                "was_in_whitelisted_app": self.focus.was_in_whitelisted_app,
                "dwell_seconds": self.tracker.dwell_time().total_seconds(),
                "active_alert": _alert_payload(active) if active else None,
                "counters": self.tracker.snapshot(),
                "degraded": dict(self._degraded),
                "dropped_deliveries": self.channel.dropped,
            }

    # -- internals -----------------------------------------------------

    def _apply_settings(self, settings: FocusSettings) -> None:
        self._snapshot = settings
        self.focus.update_whitelist(settings.whitelist)
        self.tracker.retain_switches(_longest_switch_timeframe(settings.rules))

    def _apply_decision(self, decision: FocusDecision) -> None:
        if isinstance(decision, RaiseAlert):
            self._raise_focus_alert(decision.app_name)
        elif isinstance(decision, ClearActiveAlert):
            self.notifications.clear("returned-to-whitelist")

    def _raise_focus_alert(self, app_name: str) -> AlertRecord:
        snapshot = self._snapshot
        record = self.notifications.raise_alert(
            app_name,
            snapshot.custom_text.replace("{app}", app_name),
            media_ref=snapshot.custom_image,
        )
        self.channel.publish(
            select_enforcement(
                app_name, snapshot.dim_instead_of_block, self.settings.dim_duration
            )
        )
        return record

    def _raise_rule_alert(self, rule: Rule) -> AlertRecord:
        action = rule.action
        current = self.tracker.current_app() or ""
        return self.notifications.raise_alert(
            rule.name,
            action.text.replace("{app}", current),
            media_ref=action.media.content if action.media else None,
            auto_dismiss=(
                timedelta(seconds=action.dismiss_time_seconds) if action.auto_dismiss else None
            ),
            source=f"rule:{rule.id}",
        )

    def _enter_degraded(self, reason: str, detail: str) -> None:
        if reason in self._degraded:
            return
        self._degraded[reason] = detail
        logger.warning("Degraded mode (%s): %s", reason, detail)
        self.channel.publish(DegradedMode(reason=reason, detail=detail))

    def _leave_degraded(self, reason: str) -> None:
        if self._degraded.pop(reason, None) is not None:
            logger.info("Recovered from degraded mode (%s).", reason)


def _longest_switch_timeframe(rules: list[Rule]) -> timedelta:
    minutes = [
        rule.trigger_condition.timeframe_minutes
        for rule in rules
        if rule.trigger_condition.type == "tabSwitches"
    ]
    return timedelta(minutes=max(minutes, default=0))


def _alert_payload(record: AlertRecord) -> dict[str, Any]:
    return {
        "id": record.id,
        "app_name": record.app_name,
        "message": record.message,
        "media_ref": record.media_ref,
        "source": record.source,
        "created_at": record.created_at.isoformat(),
        "auto_dismiss_ms": (
            int(record.auto_dismiss.total_seconds() * 1000) if record.auto_dismiss else None
        ),
    }
