from datetime import datetime, timedelta

from focus_monitor.enforcement import select_enforcement
from focus_monitor.events import (
    ApplyDimEffect,
    ClearAlert,
    DegradedMode,
    EventChannel,
    RequestBlockIndication,
    RuleFired,
    ShowAlert,
    event_payload,
)


def test_subscribers_can_filter_by_event_type():
    channel = EventChannel()
    everything: list = []
    clears: list = []
    channel.subscribe(everything.append)
    channel.subscribe(clears.append, ClearAlert)
    channel.publish(ShowAlert(id="a", app_name="Twitter", message="m"))
    channel.publish(ClearAlert(id="a"))
    assert len(everything) == 2
    assert clears == [ClearAlert(id="a")]


def test_unsubscribe_is_idempotent():
    channel = EventChannel()
    received: list = []
    subscription = channel.subscribe(received.append)
    assert channel.unsubscribe(subscription) is True
    assert channel.unsubscribe(subscription) is False
    channel.publish(ClearAlert(id="a"))
    assert received == []


def test_failed_delivery_is_retried_once_then_dropped():
    channel = EventChannel()
    attempts: list = []
    degraded: list = []

    def failing(event):
        attempts.append(event)
        raise OSError("unreachable")

    channel.subscribe(failing, ClearAlert)
    channel.subscribe(degraded.append, DegradedMode)
    channel.publish(ClearAlert(id="a"))
    assert channel.pending_retries == 1
    assert channel.retry_failed() == 1
    assert len(attempts) == 2
    assert channel.pending_retries == 0
    assert channel.retry_failed() == 0
    assert [event.reason for event in degraded] == ["delivery-dropped"]


def test_other_subscribers_still_receive_events_when_one_fails():
    channel = EventChannel()
    received: list = []

    def failing(event):
        raise RuntimeError("boom")

    channel.subscribe(failing)
    channel.subscribe(received.append)
    channel.publish(ApplyDimEffect(duration_ms=3000))
    assert received == [ApplyDimEffect(duration_ms=3000)]


def test_retry_skips_unsubscribed_receivers():
    channel = EventChannel()

    def failing(event):
        raise RuntimeError("boom")

    subscription = channel.subscribe(failing)
    channel.publish(ClearAlert(id="a"))
    channel.unsubscribe(subscription)
    assert channel.retry_failed() == 0
    assert channel.dropped == 0


def test_event_payload_includes_kind_and_iso_times():
    fired_at = datetime(2024, 1, 3, 10, 0)
    payload = event_payload(RuleFired(rule_id="rule-1", fired_at=fired_at))
    assert payload == {"kind": "rule-fired", "rule_id": "rule-1", "fired_at": "2024-01-03T10:00:00"}


def test_enforcement_selection():
    assert select_enforcement("Twitter", True) == ApplyDimEffect(duration_ms=3000)
    assert select_enforcement("Twitter", True, timedelta(seconds=5)).duration_ms == 5000
    assert select_enforcement("Twitter", False) == RequestBlockIndication(app_name="Twitter")
