"""Single-active-alert bookkeeping with idempotent dismissal."""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from datetime import datetime, timedelta
from typing import Optional

from .clock import ScheduledTask, Scheduler
from .config import EngineSettings
from .events import ClearAlert, EventChannel, ShowAlert
from .models import AlertRecord

logger = logging.getLogger(__name__)

_UNSET = object()


def alert_id(app_name: str, created_at: datetime) -> str:
    digest = hashlib.sha1(f"{app_name}\x1f{created_at.isoformat()}".encode("utf-8"))
    return digest.hexdigest()[:16]


class NotificationDeduplicator:
    """Keeps at most one active alert and closes it exactly once.

    An alert closes on whichever comes first: explicit dismissal, a clear
    request, replacement by a newer alert, or its auto-dismiss timer.
    Later close attempts for the same id are no-ops. Recently closed ids
    are kept in a bounded history so duplicate deliveries from several
    notification channels are recognised rather than misapplied.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        channel: EventChannel,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self._scheduler = scheduler
        self._channel = channel
        self.settings = settings or EngineSettings()
        self._active: Optional[AlertRecord] = None
        self._auto_dismiss_task: Optional[ScheduledTask] = None
        self._closed: deque[AlertRecord] = deque(maxlen=self.settings.dismissed_history)

    @property
    def active(self) -> Optional[AlertRecord]:
        return self._active

    def active_app(self) -> Optional[str]:
        return self._active.app_name if self._active else None

    def raise_alert(
        self,
        app_name: str,
        message: str,
        *,
        media_ref: Optional[str] = None,
        auto_dismiss: object = _UNSET,
        source: str = "focus",
    ) -> AlertRecord:
        """Create and show a new alert, replacing any active one.

        ``auto_dismiss`` defaults to the configured delay; pass ``None`` for
        an alert that stays until dismissed.
        """
        if self._active is not None:
            self._close("replaced")

        now = self._scheduler.clock.now()
        delay: Optional[timedelta] = (
            self.settings.auto_dismiss if auto_dismiss is _UNSET else auto_dismiss  # type: ignore[assignment]
        )
        record = AlertRecord(
            id=self._unique_id(app_name, now),
            app_name=app_name,
            created_at=now,
            message=message,
            source=source,
            media_ref=media_ref,
            auto_dismiss=delay,
        )
        self._active = record
        if delay is not None:
            self._auto_dismiss_task = self._scheduler.call_later(
                delay, self._expire, record.id, name="auto-dismiss"
            )
        logger.info("Alert %s raised for %r (%s).", record.id, app_name, source)
        self._channel.publish(
            ShowAlert(
                id=record.id,
                app_name=app_name,
                message=message,
                media_ref=media_ref,
                auto_dismiss_ms=int(delay.total_seconds() * 1000) if delay else None,
                source=source,
            )
        )
        return record

    def clear(self, reason: str = "cleared") -> bool:
        """Close the active alert, if any."""
        if self._active is None:
            return False
        self._close(reason)
        return True

    def dismiss(self, alert_id: str) -> bool:
        """Dismiss by id. Returns False for anything but the active alert."""
        if self._active is not None and self._active.id == alert_id:
            self._close("dismissed")
            return True
        if any(record.id == alert_id for record in self._closed):
            logger.debug("Duplicate dismiss for closed alert %s ignored.", alert_id)
        else:
            logger.debug("Dismiss for unknown alert %s ignored.", alert_id)
        return False

    def is_known(self, alert_id: str) -> bool:
        """True for the active alert or one still in the closed history."""
        if self._active is not None and self._active.id == alert_id:
            return True
        return any(record.id == alert_id for record in self._closed)

    def recent(self) -> list[AlertRecord]:
        """Recently closed alerts, newest first."""
        return list(reversed(self._closed))

    def _expire(self, alert_id: str) -> None:
        if self._active is None or self._active.id != alert_id:
            return
        self._close("expired")

    def _close(self, reason: str) -> None:
        record = self._active
        if record is None:
            return
        record.dismissed_at = self._scheduler.clock.now()
        if self._auto_dismiss_task is not None:
            self._auto_dismiss_task.cancel()
            self._auto_dismiss_task = None
        self._active = None
        self._closed.append(record)
        logger.info("Alert %s closed (%s).", record.id, reason)
        self._channel.publish(ClearAlert(id=record.id, reason=reason))

    def _unique_id(self, app_name: str, created_at: datetime) -> str:
        candidate = alert_id(app_name, created_at)
        salt = 0
        while any(record.id == candidate for record in self._closed):
            salt += 1
            candidate = alert_id(f"{app_name}#{salt}", created_at)
        return candidate
