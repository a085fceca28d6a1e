"""Foreground-window sampling and the loop that drives the focus engine."""

from __future__ import annotations

import ctypes
import logging
import sys
import threading
import time
from datetime import datetime
from typing import Optional, Protocol

import psutil

from .engine import FocusEngine
from .models import WindowSample

logger = logging.getLogger(__name__)


class WindowProbe(Protocol):
    def get_sample(self, now: datetime) -> Optional[WindowSample]: ...


class WindowsActiveWindowProbe:
    """Retrieves the foreground window title and owning process."""

    def __init__(self) -> None:
        from ctypes import wintypes

        self._wintypes = wintypes
        self._user32 = ctypes.windll.user32  # type: ignore[attr-defined]

    def get_sample(self, now: datetime) -> Optional[WindowSample]:
        hwnd = self._user32.GetForegroundWindow()
        if not hwnd:
            return None

        length = self._user32.GetWindowTextLengthW(hwnd)
        buffer = ctypes.create_unicode_buffer(length + 1)
        self._user32.GetWindowTextW(hwnd, buffer, length + 1)
        window_title = buffer.value.strip()

        pid = self._wintypes.DWORD()
        self._user32.GetWindowThreadProcessId(hwnd, ctypes.byref(pid))
        owner_name, owner_path = describe_process(pid.value)
        return WindowSample(
            title=window_title or owner_name or "",
            owner_name=owner_name,
            owner_path=owner_path,
            timestamp=now,
        )


def describe_process(pid: int) -> tuple[Optional[str], Optional[str]]:
    """Return ``(name, executable path)`` for a pid, or Nones if unavailable."""
    if not pid:
        return None, None
    try:
        process = psutil.Process(pid)
        name = process.name()
    except (psutil.Error, ProcessLookupError):
        return None, None
    try:
        path: Optional[str] = process.exe() or None
    except (psutil.Error, OSError):
        path = None
    return name, path


def default_probe() -> Optional[WindowProbe]:
    """The platform probe, or None where samples must be pushed in."""
    if sys.platform == "win32":
        return WindowsActiveWindowProbe()
    logger.info("No built-in window probe for %s; expecting pushed samples.", sys.platform)
    return None


class EngineLoop:
    """Samples the foreground window on a fixed cadence and runs engine timers."""

    def __init__(self, engine: FocusEngine, probe: Optional[WindowProbe] = None) -> None:
        self.engine = engine
        self._probe = probe
        self._next_sample_at = 0.0

    def run_forever(self) -> None:
        stop_event = threading.Event()
        try:
            self._run_loop(stop_event)
        except KeyboardInterrupt:
            logger.info("Loop interrupted; persisting counters.")
        finally:
            self._shutdown()

    def run_until_stopped(self, stop_event: threading.Event) -> None:
        """Run until the provided event is set."""
        try:
            self._run_loop(stop_event)
        finally:
            self._shutdown()

    def sample_once(self) -> None:
        if self._probe is None:
            return
        try:
            sample = self._probe.get_sample(self.engine.clock.now())
        except Exception:  # pragma: no cover - platform probe failures
            logger.exception("Failed to query the foreground window.")
            return
        if sample is not None:
            self.engine.on_sample(sample)

    def _run_loop(self, stop_event: threading.Event) -> None:
        logger.info("Starting focus engine loop.")
        self.engine.start()
        interval = self.engine.settings.sample_interval.total_seconds()
        while not stop_event.is_set():
            monotonic_now = time.monotonic()
            if monotonic_now >= self._next_sample_at:
                self.sample_once()
                self._next_sample_at = monotonic_now + interval
            self.engine.run_pending()
            wait = self._next_sample_at - time.monotonic()
            until_task = self.engine.seconds_until_next()
            if until_task is not None:
                wait = min(wait, until_task)
            # Sleep in an interruptible manner.
            stop_event.wait(max(wait, 0.05))

    def _shutdown(self) -> None:
        self.engine.close()
        logger.info("Focus engine loop stopped.")
