"""SQLite database layer for counter snapshots and the alert log."""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Iterator, Optional

from .events import ClearAlert, Event, PersistCounterUpdate, ShowAlert

logger = logging.getLogger(__name__)

DATETIME_FMT = "%Y-%m-%d %H:%M:%S.%f"


def open_database(path: Path, *, check_same_thread: bool = True) -> sqlite3.Connection:
    """Open (and initialize) the SQLite database."""
    conn = sqlite3.connect(
        path,
        isolation_level=None,
        check_same_thread=check_same_thread,
    )
    conn.row_factory = sqlite3.Row
    initialize_schema(conn)
    return conn


@contextmanager
def database_connection(
    path: Path, *, check_same_thread: bool = True
) -> Iterator[sqlite3.Connection]:
    conn = open_database(path, check_same_thread=check_same_thread)
    try:
        yield conn
    finally:
        conn.close()


def initialize_schema(conn: sqlite3.Connection) -> None:
    conn.executescript(
        """
        CREATE TABLE IF NOT EXISTS counter_snapshots (
            id INTEGER PRIMARY KEY,
            recorded_at TEXT NOT NULL,
            day TEXT NOT NULL,
            screen_time_seconds REAL NOT NULL,
            switch_count INTEGER NOT NULL,
            per_app_json TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_snapshots_day
            ON counter_snapshots(day, recorded_at);

        CREATE TABLE IF NOT EXISTS alert_log (
            id INTEGER PRIMARY KEY,
            alert_id TEXT NOT NULL,
            event TEXT NOT NULL,
            app_name TEXT,
            source TEXT,
            detail TEXT,
            logged_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_alert_log_logged_at
            ON alert_log(logged_at);
        """
    )


def insert_counter_snapshot(conn: sqlite3.Connection, update: PersistCounterUpdate) -> None:
    conn.execute(
        """
        INSERT INTO counter_snapshots (
            recorded_at,
            day,
            screen_time_seconds,
            switch_count,
            per_app_json
        ) VALUES (?, ?, ?, ?, ?)
        """,
        (
            update.recorded_at.strftime(DATETIME_FMT),
            update.day,
            update.screen_time_seconds,
            update.switch_count,
            json.dumps(update.per_app_seconds, sort_keys=True),
        ),
    )


def fetch_latest_counters(conn: sqlite3.Connection, day: date) -> Optional[sqlite3.Row]:
    """Return the most recent snapshot recorded for ``day``."""
    return conn.execute(
        """
        SELECT recorded_at, day, screen_time_seconds, switch_count, per_app_json
        FROM counter_snapshots
        WHERE day = ?
        ORDER BY recorded_at DESC, id DESC
        LIMIT 1;
        """,
        (day.isoformat(),),
    ).fetchone()


def per_app_from_row(row: sqlite3.Row) -> dict[str, timedelta]:
    raw = json.loads(row["per_app_json"] or "{}")
    return {app: timedelta(seconds=float(seconds)) for app, seconds in raw.items()}


def insert_alert_event(
    conn: sqlite3.Connection,
    alert_id: str,
    event: str,
    *,
    logged_at: datetime,
    app_name: Optional[str] = None,
    source: Optional[str] = None,
    detail: Optional[str] = None,
) -> None:
    conn.execute(
        """
        INSERT INTO alert_log (alert_id, event, app_name, source, detail, logged_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (alert_id, event, app_name, source, detail, logged_at.strftime(DATETIME_FMT)),
    )


def fetch_alert_log(conn: sqlite3.Connection, day: datetime) -> list[sqlite3.Row]:
    """Fetch alert lifecycle rows for the provided day."""
    start = day.replace(hour=0, minute=0, second=0, microsecond=0)
    end = start + timedelta(days=1)
    return list(
        conn.execute(
            """
            SELECT alert_id, event, app_name, source, detail, logged_at
            FROM alert_log
            WHERE logged_at >= ? AND logged_at < ?
            ORDER BY logged_at, id;
            """,
            (start.strftime(DATETIME_FMT), end.strftime(DATETIME_FMT)),
        )
    )


class EventRecorder:
    """Engine subscriber writing counter snapshots and alert lifecycle rows.

    Exceptions propagate to the event channel, which retries once and then
    drops the write.
    """

    def __init__(self, db_path: Path, clock=None) -> None:
        self.db_path = Path(db_path)
        self._clock = clock
        self._conn = open_database(self.db_path, check_same_thread=False)
        self._lock = threading.Lock()

    def __call__(self, event: Event) -> None:
        with self._lock:
            if isinstance(event, PersistCounterUpdate):
                insert_counter_snapshot(self._conn, event)
                logger.debug("Persisted counters for %s.", event.day)
            elif isinstance(event, ShowAlert):
                insert_alert_event(
                    self._conn,
                    event.id,
                    "shown",
                    logged_at=self._now(),
                    app_name=event.app_name,
                    source=event.source,
                    detail=event.message,
                )
            elif isinstance(event, ClearAlert):
                insert_alert_event(
                    self._conn, event.id, "closed", logged_at=self._now(), detail=event.reason
                )

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _now(self) -> datetime:
        return self._clock.now() if self._clock is not None else datetime.now()
