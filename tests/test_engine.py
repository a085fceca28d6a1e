from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from conftest import kinds

from focus_monitor.engine import FocusEngine
from focus_monitor.events import (
    ApplyDimEffect,
    ClearAlert,
    DegradedMode,
    PersistCounterUpdate,
    RequestBlockIndication,
    RuleFired,
    ShowAlert,
)
from focus_monitor.focus import ClearActiveAlert, RaiseAlert
from focus_monitor.models import FocusSettings, Rule
from focus_monitor.store import SettingsStore


def feed(engine: FocusEngine, *titles: str, spacing: float = 1.5) -> list:
    decisions = []
    for title in titles:
        decisions.append(engine.window_sample(title))
        engine.advance(spacing)
    return decisions


def switch_rule(threshold: int = 3, **extra) -> Rule:
    payload = {
        "id": "rule-switches",
        "name": "Switching too much",
        "triggerCondition": {"type": "tabSwitches", "threshold": threshold, "timeframeMinutes": 1},
        "action": {"text": "Pick one thing", "autoDismiss": True, "dismissTimeSeconds": 5},
    }
    payload.update(extra)
    return Rule.model_validate(payload)


def test_whitelist_round_trip_scenario(engine, engine_events):
    engine.enable()
    decisions = feed(engine, "VSCode", "Twitter", "Twitter", "VSCode")

    assert decisions == [None, RaiseAlert("Twitter"), None, ClearActiveAlert()]
    assert kinds(engine_events) == ["show-alert", "apply-dim-effect", "clear-alert"]
    shown = engine_events[0]
    assert shown.app_name == "Twitter"
    assert shown.message == "You're outside your focus zone. Twitter is not in your whitelist."
    assert engine_events[1] == ApplyDimEffect(duration_ms=3000)
    assert engine_events[2] == ClearAlert(id=shown.id, reason="returned-to-whitelist")


def test_staying_in_a_non_whitelisted_app_does_not_re_alert(engine, engine_events):
    engine.enable()
    feed(engine, "VSCode", "Twitter - Home", "Twitter - Notifications", "Twitter", spacing=1.0)
    assert kinds(engine_events).count("show-alert") == 1


def test_hopping_between_distractions_replaces_the_alert(engine, engine_events):
    engine.enable()
    feed(engine, "VSCode", "Twitter", "Reddit")
    assert kinds(engine_events) == [
        "show-alert",
        "apply-dim-effect",
        "clear-alert",
        "show-alert",
        "apply-dim-effect",
    ]
    assert engine_events[2].reason == "replaced"
    assert engine.notifications.active_app() == "Reddit"


def test_block_policy_requests_block_indication(engine, engine_events):
    engine.settings_changed(FocusSettings(whitelist=["VSCode"], dim_instead_of_block=False))
    engine.enable()
    feed(engine, "VSCode", "Twitter")
    assert engine_events[1] == RequestBlockIndication(app_name="Twitter")


def test_alert_auto_dismisses_after_eight_seconds(engine, engine_events):
    engine.enable()
    feed(engine, "VSCode", "Twitter", spacing=0)
    engine.advance(8)
    assert isinstance(engine_events[-1], ClearAlert)
    assert engine_events[-1].reason == "expired"
    assert engine.notifications.active is None


def test_explicit_dismiss_then_duplicate(engine, engine_events):
    engine.enable()
    feed(engine, "VSCode", "Twitter")
    alert_id = engine_events[0].id
    assert engine.dismiss(alert_id) is True
    assert engine.dismiss(alert_id) is False
    engine.advance(20)
    assert kinds(engine_events) == ["show-alert", "apply-dim-effect", "clear-alert"]


def test_disable_clears_alert_and_cancels_timers(engine, engine_events):
    engine.enable()
    feed(engine, "VSCode", "Twitter")
    engine.disable()
    assert engine.notifications.active is None
    assert engine_events[-1].reason == "disabled"
    assert engine.scheduler.pending() == []
    feed(engine, "VSCode", "Reddit")
    assert kinds(engine_events).count("show-alert") == 1


def test_samples_update_counters_while_disabled(engine):
    feed(engine, "VSCode", "Twitter", "VSCode")
    assert engine.enabled is False
    assert engine.tracker.recent_switch_count(timedelta(minutes=1)) == 2


def test_custom_text_and_image_are_used(engine, engine_events):
    engine.settings_changed(
        FocusSettings(
            whitelist=["VSCode"],
            custom_text="Close {app} now",
            custom_image="https://example.com/focus.png",
        )
    )
    engine.enable()
    feed(engine, "VSCode", "Twitter")
    assert engine_events[0].message == "Close Twitter now"
    assert engine_events[0].media_ref == "https://example.com/focus.png"


def test_rule_fires_through_the_alert_path(engine, engine_events):
    engine.settings_changed(FocusSettings(whitelist=["VSCode", "Terminal"], rules=[switch_rule()]))
    engine.enable()
    feed(engine, "VSCode", "Terminal", "VSCode", "Terminal", spacing=1.0)
    engine.advance(10)

    shown = [event for event in engine_events if isinstance(event, ShowAlert)]
    assert len(shown) == 1
    assert shown[0].source == "rule:rule-switches"
    assert shown[0].message == "Pick one thing"
    assert shown[0].auto_dismiss_ms == 5000
    fired = [event for event in engine_events if isinstance(event, RuleFired)]
    assert [event.rule_id for event in fired] == ["rule-switches"]

    # The next tick is inside the cooldown.
    engine.advance(10)
    assert len([event for event in engine_events if isinstance(event, RuleFired)]) == 1


def test_rules_do_not_fire_while_disabled(engine, engine_events):
    engine.settings_changed(FocusSettings(whitelist=["VSCode", "Terminal"], rules=[switch_rule()]))
    feed(engine, "VSCode", "Terminal", "VSCode", "Terminal", spacing=1.0)
    assert engine.evaluate_rules() == []
    engine.enable()
    engine.disable()
    engine.advance(30)
    assert not any(isinstance(event, RuleFired) for event in engine_events)


def test_disabling_from_a_subscriber_suppresses_remaining_rules(engine, engine_events):
    second = switch_rule(id="rule-two", name="Second")
    engine.settings_changed(
        FocusSettings(whitelist=["VSCode", "Terminal"], rules=[switch_rule(), second])
    )
    engine.subscribe(lambda event: engine.disable(), RuleFired)
    engine.enable()
    feed(engine, "VSCode", "Terminal", "VSCode", "Terminal", spacing=1.0)
    fired = engine.evaluate_rules()
    assert [rule.id for rule in fired] == ["rule-switches"]


def test_failing_subscriber_does_not_corrupt_state(engine, engine_events):
    calls = {"count": 0}

    def flaky(event):
        calls["count"] += 1
        if calls["count"] == 1:
            raise RuntimeError("display unavailable")

    engine.subscribe(flaky, ShowAlert)
    engine.enable()
    feed(engine, "VSCode", "Twitter")
    assert engine.notifications.active_app() == "Twitter"
    assert engine.channel.pending_retries == 1
    engine.window_sample("Twitter")
    assert calls["count"] == 2
    assert engine.channel.pending_retries == 0


def test_persistently_failing_subscriber_is_dropped_with_degraded_signal(engine, engine_events):
    def broken(event):
        raise RuntimeError("disk full")

    engine.subscribe(broken, PersistCounterUpdate)
    engine.persist_counters()
    engine.persist_counters()
    assert engine.channel.dropped == 1
    degraded = [event for event in engine_events if isinstance(event, DegradedMode)]
    assert degraded and degraded[0].reason == "delivery-dropped"


def test_missing_settings_enter_degraded_mode(scheduler, tmp_path):
    store = SettingsStore(tmp_path / "missing.json")
    engine = FocusEngine(scheduler=scheduler, settings_source=store)
    events: list = []
    engine.subscribe(events.append)
    engine.start()
    assert "settings" in engine.degraded
    assert engine.current_settings.whitelist == []
    assert [event.reason for event in events if isinstance(event, DegradedMode)] == ["settings"]

    store.save(FocusSettings(whitelist=["VSCode"]))
    engine.reload_settings()
    assert engine.degraded == {}
    assert engine.current_settings.whitelist == ["VSCode"]


def test_settings_are_re_read_every_rule_tick(scheduler, tmp_path):
    store = SettingsStore(tmp_path / "settings.json")
    store.save(FocusSettings(whitelist=["VSCode"]))
    engine = FocusEngine(scheduler=scheduler, settings_source=store)
    engine.enable()
    store.add_whitelist_entry("Twitter")
    engine.advance(10)
    assert engine.focus.is_whitelisted("Twitter")


def test_counters_are_persisted_periodically(engine, engine_events):
    engine.start()
    feed(engine, "VSCode", "Twitter")
    engine.advance(60)
    updates = [event for event in engine_events if isinstance(event, PersistCounterUpdate)]
    assert len(updates) == 1
    assert updates[0].switch_count == 1
    assert updates[0].day == "2024-01-03"
    assert updates[0].screen_time_seconds == pytest.approx(1.5)


def test_test_alert_uses_current_app(engine, engine_events):
    assert engine.test_alert().app_name == "Test App"
    engine.window_sample("Slack | general")
    assert engine.test_alert().app_name == "Slack"


def test_status_reports_live_match(engine):
    engine.enable()
    engine.window_sample("VSCode - main.py")
    status = engine.status()
    assert status["enabled"] is True
    assert status["current_app"] == "VSCode"
    assert status["current_app_whitelisted"] is True
    assert status["active_alert"] is None


def test_unsubscribe_stops_delivery(engine):
    events: list = []
    subscription = engine.subscribe(events.append)
    assert engine.unsubscribe(subscription) is True
    engine.enable()
    feed(engine, "VSCode", "Twitter")
    assert events == []


def test_long_switch_rules_extend_switch_retention(engine):
    long_rule = switch_rule(
        threshold=10,
        triggerCondition={"type": "tabSwitches", "threshold": 10, "timeframeMinutes": 120},
    )
    engine.settings_changed(FocusSettings(whitelist=["VSCode"], rules=[long_rule]))
    feed(engine, *["Docs", "Mail"] * 5, "Docs", spacing=600)
    assert engine.tracker.recent_switch_count(timedelta(minutes=120)) == 10


def test_aware_sample_timestamps_are_accepted(engine):
    engine.window_sample("VSCode")
    aware = datetime(2024, 1, 3, 10, 0, 5, tzinfo=timezone.utc)
    engine.window_sample("Twitter", timestamp=aware)
    assert engine.current_app() == "Twitter"
    assert engine.counters()["current_app"] == "Twitter"
