"""Configuration models and helpers for the focus monitor."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(slots=True)
class EngineSettings:
    """Runtime configuration for the focus engine and its collector."""

    sample_interval: timedelta = timedelta(seconds=1.5)
    rule_interval: timedelta = timedelta(seconds=10)
    auto_dismiss: timedelta = timedelta(seconds=8)
    dim_duration: timedelta = timedelta(seconds=3)
    rule_cooldown: timedelta = timedelta(seconds=60)
    persist_interval: timedelta = timedelta(seconds=60)
    sleep_gap: timedelta = timedelta(minutes=2)
    switch_history: timedelta = timedelta(hours=1)
    dismissed_history: int = 32

    @classmethod
    def from_intervals(
        cls,
        sample_seconds: float = 1.5,
        rule_seconds: float = 10.0,
        persist_seconds: float | None = None,
        sleep_gap_minutes: float | None = None,
    ) -> "EngineSettings":
        if not 10.0 <= rule_seconds <= 30.0:
            raise ValueError("rule_seconds must be between 10 and 30")
        persist = persist_seconds if persist_seconds is not None else max(rule_seconds * 6, 60.0)
        sleep_gap = sleep_gap_minutes if sleep_gap_minutes is not None else 2.0
        return cls(
            sample_interval=timedelta(seconds=sample_seconds),
            rule_interval=timedelta(seconds=rule_seconds),
            persist_interval=timedelta(seconds=persist),
            sleep_gap=timedelta(minutes=sleep_gap),
        )
