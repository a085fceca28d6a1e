"""Focus-mode state machine deciding when to raise or clear alerts."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .whitelist import is_whitelisted, merge_whitelist

logger = logging.getLogger(__name__)


class FocusState(enum.Enum):
    DISABLED = "disabled"
    MONITORING = "monitoring"


@dataclass(slots=True, frozen=True)
class RaiseAlert:
    app_name: str


@dataclass(slots=True, frozen=True)
class ClearActiveAlert:
    pass


FocusDecision = Union[RaiseAlert, ClearActiveAlert]


class FocusStateMachine:
    """Alerts once per move from a whitelisted app into a non-whitelisted one.

    Staying in the same non-whitelisted app never re-alerts. Hopping to a
    different non-whitelisted app while an alert is showing replaces it.
    Returning to a whitelisted app clears whatever alert is showing.

    The machine does not own alerts; callers pass the app of the alert
    currently showing (``None`` if there is none).
    """

    def __init__(self, whitelist: Iterable[str] = ()) -> None:
        self.state = FocusState.DISABLED
        self.was_in_whitelisted_app = False
        self._whitelist: list[str] = merge_whitelist(whitelist)

    @property
    def whitelist(self) -> list[str]:
        return list(self._whitelist)

    def update_whitelist(self, entries: Iterable[str]) -> None:
        self._whitelist = merge_whitelist(entries)

    def is_whitelisted(self, app: Optional[str]) -> bool:
        return is_whitelisted(app or "", self._whitelist)

    @property
    def monitoring(self) -> bool:
        return self.state is FocusState.MONITORING

    def enable(self, current_app: Optional[str]) -> None:
        self.state = FocusState.MONITORING
        self.was_in_whitelisted_app = self.is_whitelisted(current_app)
        logger.info(
            "Focus monitoring enabled (current app %r whitelisted=%s).",
            current_app,
            self.was_in_whitelisted_app,
        )

    def disable(self, active_alert_app: Optional[str] = None) -> Optional[FocusDecision]:
        self.state = FocusState.DISABLED
        self.was_in_whitelisted_app = False
        logger.info("Focus monitoring disabled.")
        if active_alert_app is not None:
            return ClearActiveAlert()
        return None

    def on_app_changed(
        self, new_app: Optional[str], active_alert_app: Optional[str] = None
    ) -> Optional[FocusDecision]:
        if self.state is not FocusState.MONITORING:
            return None

        new_app = (new_app or "").strip()
        is_wl = self.is_whitelisted(new_app)
        decision: Optional[FocusDecision] = None

        if self.was_in_whitelisted_app and not is_wl and new_app:
            decision = RaiseAlert(new_app)
        elif is_wl:
            if active_alert_app is not None:
                decision = ClearActiveAlert()
        elif (
            new_app
            and active_alert_app is not None
            and active_alert_app.casefold() != new_app.casefold()
        ):
            decision = RaiseAlert(new_app)

        self.was_in_whitelisted_app = is_wl
        if decision is not None:
            logger.debug("App %r (whitelisted=%s) -> %s", new_app, is_wl, decision)
        return decision
