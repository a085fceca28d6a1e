from __future__ import annotations

from datetime import datetime

import pytest

from focus_monitor.clock import Scheduler, VirtualClock
from focus_monitor.engine import FocusEngine
from focus_monitor.events import EventChannel
from focus_monitor.models import FocusSettings

# A Wednesday morning.
START = datetime(2024, 1, 3, 10, 0, 0)


@pytest.fixture
def clock() -> VirtualClock:
    return VirtualClock(START)


@pytest.fixture
def scheduler(clock: VirtualClock) -> Scheduler:
    return Scheduler(clock)


@pytest.fixture
def channel() -> EventChannel:
    return EventChannel()


@pytest.fixture
def published(channel: EventChannel) -> list:
    events: list = []
    channel.subscribe(events.append)
    return events


@pytest.fixture
def engine(scheduler: Scheduler) -> FocusEngine:
    return FocusEngine(
        scheduler=scheduler,
        initial_settings=FocusSettings(whitelist=["VSCode"]),
    )


@pytest.fixture
def engine_events(engine: FocusEngine) -> list:
    events: list = []
    engine.subscribe(events.append)
    return events


def kinds(events: list) -> list[str]:
    return [event.kind for event in events]
