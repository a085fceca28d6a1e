"""FastAPI application exposing the focus engine to display and settings surfaces."""

from __future__ import annotations

import itertools
import logging
import threading
from collections import deque
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from .collector import EngineLoop, WindowProbe
from .config import EngineSettings
from .db import EventRecorder
from .engine import FocusEngine
from .events import Event, event_payload
from .models import FocusSettings, Rule, to_local_naive
from .paths import get_db_path, get_settings_path
from .store import SettingsStore

logger = logging.getLogger(__name__)


class EngineRunner:
    """Manage the engine loop in a background thread."""

    def __init__(self, engine: FocusEngine, probe: Optional[WindowProbe]) -> None:
        self._engine = engine
        self._probe = probe
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None
        self._stop_event: Optional[threading.Event] = None

    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            stop_event = threading.Event()
            loop = EngineLoop(self._engine, self._probe)
            thread = threading.Thread(
                target=loop.run_until_stopped,
                args=(stop_event,),
                daemon=True,
            )
            self._thread = thread
            self._stop_event = stop_event
            thread.start()
            logger.info("Engine background thread started.")

    def stop(self) -> None:
        thread: Optional[threading.Thread] = None
        with self._lock:
            if not self._thread or not self._thread.is_alive() or not self._stop_event:
                return
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._stop_event = None
        if thread:
            thread.join(timeout=10)
            logger.info("Engine background thread stopped.")

    def is_running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())


class EventLog:
    """Bounded, sequence-numbered log of outbound events for polling clients."""

    def __init__(self, maxlen: int = 200) -> None:
        self._entries: deque[dict[str, Any]] = deque(maxlen=maxlen)
        self._seq = itertools.count(1)
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        payload = event_payload(event)
        with self._lock:
            payload["seq"] = next(self._seq)
            self._entries.append(payload)

    def since(self, after: int = 0) -> list[dict[str, Any]]:
        with self._lock:
            return [entry for entry in self._entries if entry["seq"] > after]


class _CamelPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class SamplePayload(_CamelPayload):
    title: str
    owner_name: Optional[str] = None
    owner_path: Optional[str] = None
    timestamp: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def _local_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        return to_local_naive(value)


class FocusTogglePayload(_CamelPayload):
    enabled: bool


class WhitelistPayload(_CamelPayload):
    entry: str


def create_app(
    *,
    engine: Optional[FocusEngine] = None,
    store: Optional[SettingsStore] = None,
    db_path: Optional[Path] = None,
    settings: Optional[EngineSettings] = None,
    probe: Optional[WindowProbe] = None,
    run_loop: bool = True,
) -> FastAPI:
    """Instantiate the FastAPI application around a single engine."""
    resolved_store = store or SettingsStore(get_settings_path())
    resolved_engine = engine or FocusEngine(
        settings or EngineSettings(), settings_source=resolved_store
    )
    event_log = EventLog()
    resolved_engine.subscribe(event_log)
    resolved_engine.subscribe(resolved_store.handle_event)
    recorder: Optional[EventRecorder] = None
    if db_path is not None or engine is None:
        recorder = EventRecorder(db_path or get_db_path(), clock=resolved_engine.clock)
        resolved_engine.subscribe(recorder)
    runner = EngineRunner(resolved_engine, probe) if run_loop else None

    app = FastAPI(title="Focus Monitor", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.engine = resolved_engine
    app.state.store = resolved_store
    app.state.event_log = event_log
    app.state.runner = runner

    @app.on_event("startup")
    async def _startup() -> None:
        if runner is not None:
            runner.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        if runner is not None:
            runner.stop()
        if recorder is not None:
            recorder.close()

    def _engine(request: Request) -> FocusEngine:
        return request.app.state.engine

    def _store(request: Request) -> SettingsStore:
        return request.app.state.store

    def _push_settings(request: Request, updated: FocusSettings) -> Dict[str, Any]:
        _engine(request).settings_changed(updated)
        return updated.model_dump(by_alias=True, mode="json")

    @app.get("/api/status")
    def status(request: Request) -> Dict[str, Any]:
        payload = _engine(request).status()
        runner_state = request.app.state.runner
        payload["loop_running"] = bool(runner_state and runner_state.is_running())
        return payload

    @app.post("/api/focus")
    def set_focus(payload: FocusTogglePayload, request: Request) -> Dict[str, Any]:
        _engine(request).set_enabled(payload.enabled)
        return {"enabled": _engine(request).enabled}

    @app.post("/api/samples")
    def push_sample(payload: SamplePayload, request: Request) -> Dict[str, Any]:
        engine_ = _engine(request)
        engine_.window_sample(
            payload.title,
            payload.owner_name,
            payload.owner_path,
            payload.timestamp,
        )
        active = engine_.active_alert()
        return {
            "current_app": engine_.current_app(),
            "active_alert_id": active.id if active else None,
        }

    @app.post("/api/alerts/{alert_id}/dismiss")
    def dismiss_alert(alert_id: str, request: Request) -> Dict[str, Any]:
        engine_ = _engine(request)
        if engine_.dismiss(alert_id):
            return {"id": alert_id, "dismissed": True}
        if not engine_.is_known_alert(alert_id):
            raise HTTPException(status_code=404, detail="Alert not found")
        return {"id": alert_id, "dismissed": False}

    @app.post("/api/alerts/test")
    def test_alert(request: Request) -> Dict[str, Any]:
        record = _engine(request).test_alert()
        return {"id": record.id, "app_name": record.app_name, "message": record.message}

    @app.get("/api/settings")
    def get_settings(request: Request) -> Dict[str, Any]:
        return _store(request).load_or_default().model_dump(by_alias=True, mode="json")

    @app.put("/api/settings")
    def put_settings(payload: FocusSettings, request: Request) -> Dict[str, Any]:
        _store(request).save(payload)
        return _push_settings(request, payload)

    @app.post("/api/whitelist")
    def add_whitelist_entry(payload: WhitelistPayload, request: Request) -> Dict[str, Any]:
        try:
            updated = _store(request).add_whitelist_entry(payload.entry)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return _push_settings(request, updated)

    @app.delete("/api/whitelist/{entry}")
    def remove_whitelist_entry(entry: str, request: Request) -> Dict[str, Any]:
        return _push_settings(request, _store(request).remove_whitelist_entry(entry))

    @app.get("/api/rules")
    def list_rules(request: Request) -> Dict[str, Any]:
        rules = _store(request).load_or_default().rules
        return {"rules": [rule.model_dump(by_alias=True, mode="json") for rule in rules]}

    @app.post("/api/rules")
    def create_rule(payload: Rule, request: Request) -> Dict[str, Any]:
        updated = _store(request).upsert_rule(payload)
        _engine(request).settings_changed(updated)
        return payload.model_dump(by_alias=True, mode="json")

    @app.put("/api/rules/{rule_id}")
    def update_rule(rule_id: str, payload: Rule, request: Request) -> Dict[str, Any]:
        if _store(request).load_or_default().rule(rule_id) is None:
            raise HTTPException(status_code=404, detail="Rule not found")
        rule = payload.model_copy(update={"id": rule_id})
        updated = _store(request).upsert_rule(rule)
        _engine(request).settings_changed(updated)
        return rule.model_dump(by_alias=True, mode="json")

    @app.delete("/api/rules/{rule_id}")
    def delete_rule(rule_id: str, request: Request) -> Dict[str, Any]:
        if not _store(request).delete_rule(rule_id):
            raise HTTPException(status_code=404, detail="Rule not found")
        _engine(request).forget_rule(rule_id)
        _engine(request).settings_changed(_store(request).load_or_default())
        return {"id": rule_id, "deleted": True}

    @app.post("/api/rules/{rule_id}/toggle")
    def toggle_rule(rule_id: str, request: Request) -> Dict[str, Any]:
        try:
            rule = _store(request).toggle_rule(rule_id)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="Rule not found") from exc
        _engine(request).settings_changed(_store(request).load_or_default())
        return rule.model_dump(by_alias=True, mode="json")

    @app.get("/api/events")
    def events(
        request: Request,
        after: int = Query(default=0, ge=0, description="Return events after this sequence number."),
    ) -> Dict[str, Any]:
        entries = request.app.state.event_log.since(after)
        last = entries[-1]["seq"] if entries else after
        return {"events": entries, "last": last}

    @app.get("/api/counters")
    def counters(request: Request) -> Dict[str, Any]:
        return _engine(request).counters()

    return app
