"""Outbound events and the channel the engine publishes them on."""

from __future__ import annotations

import itertools
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable, ClassVar, Optional, Union

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ShowAlert:
    kind: ClassVar[str] = "show-alert"

    id: str
    app_name: str
    message: str
    media_ref: Optional[str] = None
    auto_dismiss_ms: Optional[int] = None
    source: str = "focus"


@dataclass(slots=True, frozen=True)
class ClearAlert:
    kind: ClassVar[str] = "clear-alert"

    id: str
    reason: str = "cleared"


@dataclass(slots=True, frozen=True)
class ApplyDimEffect:
    kind: ClassVar[str] = "apply-dim-effect"

    duration_ms: int


@dataclass(slots=True, frozen=True)
class RequestBlockIndication:
    kind: ClassVar[str] = "request-block-indication"

    app_name: str


@dataclass(slots=True, frozen=True)
class PersistCounterUpdate:
    kind: ClassVar[str] = "persist-counter-update"

    recorded_at: datetime
    day: str
    screen_time_seconds: float
    switch_count: int
    per_app_seconds: dict[str, float] = field(default_factory=dict)


@dataclass(slots=True, frozen=True)
class RuleFired:
    kind: ClassVar[str] = "rule-fired"

    rule_id: str
    fired_at: datetime


@dataclass(slots=True, frozen=True)
class DegradedMode:
    kind: ClassVar[str] = "degraded-mode"

    reason: str
    detail: str = ""


Event = Union[
    ShowAlert,
    ClearAlert,
    ApplyDimEffect,
    RequestBlockIndication,
    PersistCounterUpdate,
    RuleFired,
    DegradedMode,
]
Subscriber = Callable[[Event], None]


def event_payload(event: Event) -> dict[str, Any]:
    payload = asdict(event)
    for key, value in payload.items():
        if isinstance(value, datetime):
            payload[key] = value.isoformat()
    payload["kind"] = event.kind
    return payload


@dataclass(slots=True, eq=False)
class Subscription:
    id: int
    callback: Subscriber
    kinds: frozenset[type]
    active: bool = True

    def wants(self, event: Event) -> bool:
        return self.active and (not self.kinds or type(event) in self.kinds)


@dataclass(slots=True)
class _FailedDelivery:
    subscription: Subscription
    event: Event


class EventChannel:
    """Typed publish/subscribe channel owned by a single engine.

    A subscriber that raises does not affect other subscribers or the
    publisher. The failed delivery is retried once by
    :meth:`retry_failed`; a second failure drops it and publishes
    :class:`DegradedMode`.
    """

    def __init__(self) -> None:
        self._subscriptions: list[Subscription] = []
        self._ids = itertools.count(1)
        self._failed: deque[_FailedDelivery] = deque()
        self.dropped = 0

    def subscribe(self, callback: Subscriber, *kinds: type) -> Subscription:
        subscription = Subscription(
            id=next(self._ids), callback=callback, kinds=frozenset(kinds)
        )
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        if subscription not in self._subscriptions:
            return False
        subscription.active = False
        self._subscriptions.remove(subscription)
        return True

    def publish(self, event: Event) -> None:
        for subscription in list(self._subscriptions):
            if not subscription.wants(event):
                continue
            if not self._deliver(subscription, event):
                if isinstance(event, DegradedMode):
                    continue
                self._failed.append(_FailedDelivery(subscription, event))

    def retry_failed(self) -> int:
        """Retry deliveries that failed since the last call. Returns drops."""
        pending = list(self._failed)
        self._failed.clear()
        dropped = 0
        for failure in pending:
            if not failure.subscription.active:
                continue
            if self._deliver(failure.subscription, failure.event):
                continue
            dropped += 1
            self.dropped += 1
            logger.warning(
                "Dropping %s for subscriber %d after retry.",
                failure.event.kind,
                failure.subscription.id,
            )
            self.publish(
                DegradedMode(
                    reason="delivery-dropped",
                    detail=f"{failure.event.kind} to subscriber {failure.subscription.id}",
                )
            )
        return dropped

    @property
    def pending_retries(self) -> int:
        return len(self._failed)

    @staticmethod
    def _deliver(subscription: Subscription, event: Event) -> bool:
        try:
            subscription.callback(event)
        except Exception:
            logger.warning(
                "Subscriber %d failed to handle %s.",
                subscription.id,
                event.kind,
                exc_info=True,
            )
            return False
        return True
