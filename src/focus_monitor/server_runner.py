"""Helpers to launch the local HTTP surface."""

from __future__ import annotations

import logging
import threading
import time
import webbrowser
from pathlib import Path
from typing import Optional

import uvicorn

from .collector import default_probe
from .config import EngineSettings
from .paths import get_db_path, get_settings_path
from .store import SettingsStore
from .webapp import create_app


def run_server(
    *,
    host: str = "127.0.0.1",
    port: int = 8766,
    settings_path: Optional[Path] = None,
    db_path: Optional[Path] = None,
    settings: Optional[EngineSettings] = None,
    open_browser: bool = False,
    log_level: str = "info",
) -> None:
    """Start the FastAPI app with the engine loop and optional browser tab."""
    app = create_app(
        store=SettingsStore(settings_path or get_settings_path()),
        db_path=db_path or get_db_path(),
        settings=settings or EngineSettings(),
        probe=default_probe(),
    )

    if open_browser:
        url = f"http://{host}:{port}/docs"
        threading.Thread(
            target=_launch_browser_after_delay, args=(url,), daemon=True
        ).start()

    logging.getLogger("uvicorn.error").setLevel(log_level.upper())
    uvicorn.run(app, host=host, port=port, log_level=log_level)


def _launch_browser_after_delay(url: str) -> None:
    time.sleep(1.0)
    try:
        webbrowser.open(url)
    except Exception:
        logging.getLogger(__name__).exception("Failed to launch browser for %s", url)
