"""Activity tracking: current app, dwell time and usage counters."""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Optional

from .config import EngineSettings
from .models import WindowSample
from .normalization import derive_app_identity

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class AppSwitch:
    previous_app: Optional[str]
    current_app: str
    at: datetime


@dataclass(slots=True)
class TrackerState:
    current_app: Optional[str] = None
    previous_app: Optional[str] = None
    dwell_key: Optional[str] = None
    last_change_at: Optional[datetime] = None
    last_sample_at: Optional[datetime] = None
    dwell: timedelta = timedelta(0)
    day: Optional[date] = None


class ActivityTracker:
    """Consumes window samples and keeps the counters rules are evaluated on.

    Screen time is attributed to the app that held focus during the
    interval between two samples. Gaps longer than ``sleep_gap`` are not
    counted. Counters reset when a sample arrives on a new calendar day.
    """

    def __init__(self, settings: Optional[EngineSettings] = None) -> None:
        self.settings = settings or EngineSettings()
        self._state = TrackerState()
        self._switches: deque[datetime] = deque()
        self._screen_time = timedelta(0)
        self._per_app: defaultdict[str, timedelta] = defaultdict(timedelta)
        self._switch_retention = self.settings.switch_history

    def on_sample(self, sample: WindowSample) -> Optional[AppSwitch]:
        """Ingest a sample; return an :class:`AppSwitch` if the app changed."""
        state = self._state
        now = sample.timestamp
        self._roll_day_if_needed(now)

        if state.last_sample_at is not None and state.current_app:
            elapsed = now - state.last_sample_at
            if timedelta(0) < elapsed <= self.settings.sleep_gap:
                self._screen_time += elapsed
                self._per_app[state.current_app] += elapsed
            elif elapsed > self.settings.sleep_gap:
                logger.debug("Ignoring %.0fs sample gap.", elapsed.total_seconds())
        if state.last_sample_at is None or now > state.last_sample_at:
            state.last_sample_at = now

        app = derive_app_identity(sample.title)
        dwell_key = sample.owner_path or app
        if dwell_key != state.dwell_key or state.last_change_at is None:
            state.dwell_key = dwell_key
            state.last_change_at = now
            state.dwell = timedelta(0)
        else:
            state.dwell = max(now - state.last_change_at, timedelta(0))

        if app == state.current_app:
            return None

        previous = state.current_app
        state.previous_app = previous
        state.current_app = app
        if previous is not None:
            self._switches.append(now)
            self._prune_switches(now)
        logger.debug("App changed: %r -> %r", previous, app)
        return AppSwitch(previous_app=previous, current_app=app, at=now)

    def retain_switches(self, window: timedelta) -> None:
        """Keep switch timestamps for at least ``window`` (never less than ``switch_history``)."""
        self._switch_retention = max(self.settings.switch_history, window)

    def current_app(self) -> Optional[str]:
        return self._state.current_app

    def previous_app(self) -> Optional[str]:
        return self._state.previous_app

    def dwell_time(self) -> timedelta:
        return self._state.dwell

    def recent_switch_count(self, window: timedelta, now: Optional[datetime] = None) -> int:
        reference = now or self._state.last_sample_at
        if reference is None:
            return 0
        cutoff = reference - window
        return sum(1 for at in self._switches if cutoff <= at <= reference)

    def cumulative_screen_time(self) -> timedelta:
        return self._screen_time

    def per_app_time(self, app: str) -> timedelta:
        return self._per_app.get(app, timedelta(0))

    def app_usage(self) -> dict[str, timedelta]:
        return dict(sorted(self._per_app.items(), key=lambda item: item[1], reverse=True))

    def snapshot(self) -> dict[str, Any]:
        state = self._state
        return {
            "day": state.day.isoformat() if state.day else None,
            "current_app": state.current_app,
            "previous_app": state.previous_app,
            "dwell_seconds": state.dwell.total_seconds(),
            "screen_time_seconds": self._screen_time.total_seconds(),
            "switches_tracked": len(self._switches),
            "per_app_seconds": {
                app: spent.total_seconds() for app, spent in self.app_usage().items()
            },
        }

    def restore(
        self, day: date, screen_time: timedelta, per_app: Mapping[str, timedelta]
    ) -> None:
        """Seed counters from a persisted snapshot taken earlier on ``day``."""
        if self._state.day is not None and self._state.day != day:
            return
        self._state.day = day
        self._screen_time = screen_time
        self._per_app = defaultdict(timedelta, per_app)
        logger.info(
            "Restored counters for %s: %.0fs screen time across %d apps.",
            day.isoformat(),
            screen_time.total_seconds(),
            len(per_app),
        )

    def reset_counters(self) -> None:
        self._switches.clear()
        self._screen_time = timedelta(0)
        self._per_app.clear()

    def _roll_day_if_needed(self, now: datetime) -> None:
        today = now.date()
        if self._state.day is None:
            self._state.day = today
        elif today > self._state.day:
            logger.info("New day %s; resetting activity counters.", today.isoformat())
            self._state.day = today
            self.reset_counters()
            # Time straddling midnight belongs to neither day.
            self._state.last_sample_at = None

    def _prune_switches(self, now: datetime) -> None:
        cutoff = now - self._switch_retention
        while self._switches and self._switches[0] < cutoff:
            self._switches.popleft()
