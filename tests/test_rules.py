from __future__ import annotations

from datetime import datetime, timedelta

from focus_monitor.models import Rule, WindowSample
from focus_monitor.rules import RuleEvaluator
from focus_monitor.tracker import ActivityTracker

T0 = datetime(2024, 1, 3, 10, 0, 0)  # Wednesday


def make_rule(type_="tabSwitches", threshold=5, timeframe=1.0, **extra) -> Rule:
    payload = {
        "id": "rule-1",
        "name": "Rule one",
        "triggerCondition": {"type": type_, "threshold": threshold, "timeframeMinutes": timeframe},
        "action": {"text": "Take a breath"},
    }
    payload.update(extra)
    return Rule.model_validate(payload)


def switch(tracker: ActivityTracker, title: str, seconds: float) -> None:
    tracker.on_sample(WindowSample(title, None, None, T0 + timedelta(seconds=seconds)))


def switches(tracker: ActivityTracker, count: int, spacing: float = 8.0) -> float:
    switch(tracker, "App0", 0)
    at = 0.0
    for index in range(1, count + 1):
        at = index * spacing
        switch(tracker, f"App{index % 2}", at)
    return at


def at(seconds: float) -> datetime:
    return T0 + timedelta(seconds=seconds)


def test_switch_rule_fires_once_then_cools_down():
    tracker = ActivityTracker()
    evaluator = RuleEvaluator(tracker)
    rule = make_rule(threshold=5, timeframe=1)

    last = switches(tracker, 5)  # five switches within 40 seconds
    assert last == 40
    assert evaluator.evaluate([rule], at(40)) == [rule]
    assert rule.last_triggered_at == at(40)

    switch(tracker, "App9", 45)
    assert evaluator.evaluate([rule], at(50)) == []


def test_cooldown_boundaries():
    tracker = ActivityTracker()
    switches(tracker, 5)
    now = at(40)

    recent = make_rule(lastTriggeredAt=(now - timedelta(seconds=30)).isoformat())
    assert RuleEvaluator(tracker).evaluate([recent], now) == []

    stale = make_rule(lastTriggeredAt=(now - timedelta(seconds=61)).isoformat())
    assert RuleEvaluator(tracker).evaluate([stale], now) == [stale]


def test_below_threshold_does_not_fire():
    tracker = ActivityTracker()
    switches(tracker, 4)
    assert RuleEvaluator(tracker).evaluate([make_rule(threshold=5)], at(32)) == []


def test_switches_outside_timeframe_do_not_count():
    tracker = ActivityTracker()
    switches(tracker, 5, spacing=30)  # 150 seconds
    assert RuleEvaluator(tracker).evaluate([make_rule(threshold=5, timeframe=1)], at(150)) == []


def test_disabled_rules_are_skipped():
    tracker = ActivityTracker()
    switches(tracker, 5)
    rule = make_rule(enabled=False)
    assert RuleEvaluator(tracker).evaluate([rule], at(40)) == []


def test_schedule_blocks_firing_outside_window():
    tracker = ActivityTracker()
    switches(tracker, 5)
    rule = make_rule(schedule={"days": [1, 2, 3, 4, 5], "startTime": "09:00", "endTime": "17:00"})
    evening = datetime(2024, 1, 3, 18, 0)
    assert RuleEvaluator(tracker).evaluate([rule], evening) == []
    assert RuleEvaluator(tracker).evaluate([rule], at(40)) == [rule]


def test_time_spent_rule():
    tracker = ActivityTracker()
    for step in range(0, 7):
        switch(tracker, "VSCode", step * 60)
    rule = make_rule(type_="timeSpent", threshold=5)
    assert RuleEvaluator(tracker).evaluate([rule], at(360)) == [rule]
    assert RuleEvaluator(tracker).evaluate([make_rule(type_="timeSpent", threshold=10)], at(360)) == []


def test_app_usage_rule_only_counts_distraction_apps():
    tracker = ActivityTracker()
    for step in range(0, 7):
        switch(tracker, "YouTube - Cats", step * 60)
    rule = make_rule(type_="appUsage", threshold=5)
    assert RuleEvaluator(tracker).evaluate([rule], at(360), ["youtube"]) == [rule]
    assert RuleEvaluator(tracker).evaluate([rule], at(360), ["reddit"]) == []


def test_cooldown_survives_settings_reload():
    tracker = ActivityTracker()
    switches(tracker, 5)
    evaluator = RuleEvaluator(tracker)
    assert evaluator.evaluate([make_rule()], at(40))
    # A freshly loaded copy has no lastTriggeredAt.
    assert evaluator.evaluate([make_rule()], at(45)) == []
    evaluator.forget("rule-1")
    assert evaluator.evaluate([make_rule()], at(45))


def test_aware_last_triggered_does_not_break_evaluation():
    tracker = ActivityTracker()
    switches(tracker, 5)
    rule = make_rule(lastTriggeredAt="2024-01-01T08:00:00Z")
    assert RuleEvaluator(tracker).evaluate([rule], at(40)) == [rule]
    assert rule.last_triggered_at == at(40)


def test_long_switch_timeframe_counts_beyond_the_default_history():
    tracker = ActivityTracker()
    tracker.retain_switches(timedelta(minutes=120))
    switches(tracker, 10, spacing=600)
    rule = make_rule(threshold=10, timeframe=120)
    assert RuleEvaluator(tracker).evaluate([rule], at(6000)) == [rule]
