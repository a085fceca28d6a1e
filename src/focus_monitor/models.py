"""Domain models for window samples, alerts, rules and persisted settings."""

from __future__ import annotations

import time as _time
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

DEFAULT_ALERT_TEXT = "You're outside your focus zone. {app} is not in your whitelist."

TriggerType = Literal["tabSwitches", "timeSpent", "appUsage"]


@dataclass(slots=True, frozen=True)
class WindowSample:
    """One reading of the foreground window from the OS bridge."""

    title: str
    owner_name: Optional[str]
    owner_path: Optional[str]
    timestamp: datetime


@dataclass(slots=True)
class AlertRecord:
    """An alert raised through the notification deduplicator."""

    id: str
    app_name: str
    created_at: datetime
    message: str
    source: str = "focus"
    media_ref: Optional[str] = None
    auto_dismiss: Optional[timedelta] = None
    dismissed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.dismissed_at is None


def _new_rule_id() -> str:
    return f"rule-{int(_time.time() * 1000)}"


def to_local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive local time; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TriggerCondition(_CamelModel):
    type: TriggerType
    threshold: float = Field(ge=0)
    timeframe_minutes: float = Field(default=5.0, gt=0)


class RuleMedia(_CamelModel):
    type: Literal["image", "video"]
    content: str


class RuleAction(_CamelModel):
    text: str
    media: Optional[RuleMedia] = None
    auto_dismiss: bool = True
    dismiss_time_seconds: float = Field(default=10.0, gt=0)


class Schedule(_CamelModel):
    """Weekly activation window.

    ``days`` uses 0 for Sunday through 6 for Saturday. Bounds are
    inclusive and compared at minute granularity. A window whose start
    is after its end wraps past midnight.
    """

    days: set[int]
    start_time: time
    end_time: time

    @field_validator("days")
    @classmethod
    def _check_days(cls, value: set[int]) -> set[int]:
        invalid = sorted(day for day in value if not 0 <= day <= 6)
        if invalid:
            raise ValueError(f"days must be within 0..6, got {invalid}")
        return value

    def is_active(self, moment: datetime) -> bool:
        day = (moment.weekday() + 1) % 7
        if day not in self.days:
            return False
        current = moment.time().replace(second=0, microsecond=0)
        start = self.start_time.replace(second=0, microsecond=0)
        end = self.end_time.replace(second=0, microsecond=0)
        if start <= end:
            return start <= current <= end
        return current >= start or current <= end


class Rule(_CamelModel):
    id: str = Field(default_factory=_new_rule_id)
    name: str
    trigger_condition: TriggerCondition
    action: RuleAction
    schedule: Optional[Schedule] = None
    enabled: bool = True
    last_triggered_at: Optional[datetime] = None

    @field_validator("last_triggered_at")
    @classmethod
    def _local_last_triggered(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class FocusSettings(_CamelModel):
    """Persisted settings shape shared with the settings surface."""

    whitelist: list[str] = Field(default_factory=list)
    dim_instead_of_block: bool = True
    rules: list[Rule] = Field(default_factory=list)
    distraction_apps: list[str] = Field(default_factory=list)
    custom_text: str = DEFAULT_ALERT_TEXT
    custom_image: Optional[str] = None

    def rule(self, rule_id: str) -> Optional[Rule]:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None
