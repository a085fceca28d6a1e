"""Command-line interface for the focus monitor."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

import typer

from .config import EngineSettings
from .paths import get_db_path, get_log_path, get_settings_path
from .store import SettingsStore
from .whitelist import is_whitelisted, merge_whitelist

app = typer.Typer(help="Keeps you inside your allow-listed apps.")

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


@app.callback(no_args_is_help=True)
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logs."),
    log_to_file: bool = typer.Option(
        False, "--log-file", help="Also write logs to the data directory."
    ),
) -> None:
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_to_file:
        handlers.append(logging.FileHandler(get_log_path(), encoding="utf-8"))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=_LOG_FORMAT,
        handlers=handlers,
    )


@app.command()
def run(
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", path_type=Path, help="Location of the settings JSON file."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the SQLite database."
    ),
    sample_seconds: float = typer.Option(
        1.5, "--interval", min=0.5, help="Window sampling interval in seconds."
    ),
    rule_seconds: float = typer.Option(
        10.0, "--rule-interval", min=10.0, max=30.0, help="Rule evaluation interval in seconds."
    ),
    focus: bool = typer.Option(
        True, "--focus/--no-focus", help="Start with focus monitoring enabled."
    ),
) -> None:
    """Sample the foreground window and run the engine until interrupted."""
    from .collector import EngineLoop, default_probe
    from .db import EventRecorder
    from .engine import FocusEngine

    store = SettingsStore(settings_path or get_settings_path())
    settings = EngineSettings.from_intervals(
        sample_seconds=sample_seconds, rule_seconds=rule_seconds
    )
    engine = FocusEngine(settings, settings_source=store)
    recorder = EventRecorder(db_path or get_db_path(), clock=engine.clock)
    engine.subscribe(recorder)
    engine.subscribe(store.handle_event)
    _restore_counters(engine, db_path or get_db_path())
    if focus:
        engine.enable()
    try:
        EngineLoop(engine, default_probe()).run_forever()
    finally:
        recorder.close()


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", "--host", help="Interface to bind the API."),
    port: int = typer.Option(8766, "--port", min=1, max=65535, help="TCP port for the API."),
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", path_type=Path, help="Location of the settings JSON file."
    ),
    db_path: Optional[Path] = typer.Option(
        None, "--db", path_type=Path, help="Location of the SQLite database."
    ),
    sample_seconds: float = typer.Option(
        1.5, "--interval", min=0.5, help="Window sampling interval in seconds."
    ),
    rule_seconds: float = typer.Option(
        10.0, "--rule-interval", min=10.0, max=30.0, help="Rule evaluation interval in seconds."
    ),
    open_browser: bool = typer.Option(
        False,
        "--open-browser/--no-open-browser",
        help="Open the API docs in your default browser.",
    ),
) -> None:
    """Serve the HTTP API with the engine loop in the background."""
    from .server_runner import run_server

    run_server(
        host=host,
        port=port,
        settings_path=settings_path,
        db_path=db_path,
        settings=EngineSettings.from_intervals(
            sample_seconds=sample_seconds, rule_seconds=rule_seconds
        ),
        open_browser=open_browser,
    )


@app.command()
def check(
    title: str = typer.Argument(..., help="Window title or app name to test."),
    whitelist: Optional[List[str]] = typer.Option(
        None, "--whitelist", "-w", help="Whitelist entries (defaults to saved settings)."
    ),
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", path_type=Path, help="Location of the settings JSON file."
    ),
) -> None:
    """Show the app identity derived from TITLE and whether it is allowed."""
    from .normalization import derive_app_identity

    entries = whitelist
    if not entries:
        entries = SettingsStore(settings_path or get_settings_path()).load_or_default().whitelist
    app_name = derive_app_identity(title)
    allowed = is_whitelisted(app_name, merge_whitelist(entries))
    typer.echo(f"App:         {app_name or '(empty)'}")
    typer.echo(f"Whitelisted: {'yes' if allowed else 'no'}")
    if not allowed:
        raise typer.Exit(code=1)


@app.command()
def allow(
    entry: str = typer.Argument(..., help="App name token to whitelist."),
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", path_type=Path, help="Location of the settings JSON file."
    ),
) -> None:
    """Add ENTRY to the whitelist."""
    store = SettingsStore(settings_path or get_settings_path())
    try:
        settings = store.add_whitelist_entry(entry)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc
    typer.echo(", ".join(settings.whitelist))


@app.command()
def disallow(
    entry: str = typer.Argument(..., help="App name token to remove."),
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", path_type=Path, help="Location of the settings JSON file."
    ),
) -> None:
    """Remove ENTRY from the whitelist."""
    store = SettingsStore(settings_path or get_settings_path())
    settings = store.remove_whitelist_entry(entry)
    typer.echo(", ".join(settings.whitelist) or "(whitelist is empty)")


@app.command()
def rules(
    settings_path: Optional[Path] = typer.Option(
        None, "--settings", path_type=Path, help="Location of the settings JSON file."
    ),
) -> None:
    """List configured rules."""
    store = SettingsStore(settings_path or get_settings_path())
    configured = store.load_or_default().rules
    if not configured:
        typer.echo("No rules configured.")
        return
    for rule in configured:
        condition = rule.trigger_condition
        state = "on " if rule.enabled else "off"
        typer.echo(
            f"[{state}] {rule.id:<20} {rule.name[:30]:<30} "
            f"{condition.type} >= {condition.threshold:g} "
            f"({condition.timeframe_minutes:g} min)"
        )


@app.command()
def summary(
    date: Optional[str] = typer.Option(
        None,
        "--date",
        help="Date (YYYY-MM-DD) to summarize. Defaults to today.",
    ),
    db_path: Optional[Path] = typer.Option(
        None,
        "--db",
        path_type=Path,
        help="Location of the SQLite database.",
    ),
) -> None:
    """Print screen time and alerts for a specific day."""
    from .reporting import SummaryPrinter

    target = datetime.strptime(date, "%Y-%m-%d") if date else datetime.now()
    summary_printer = SummaryPrinter(db_path=db_path or get_db_path())
    summary_printer.print_daily_summary(target)


def _restore_counters(engine, db_path: Path) -> None:
    from .db import database_connection, fetch_latest_counters, per_app_from_row

    today = engine.clock.now().date()
    with database_connection(db_path) as conn:
        row = fetch_latest_counters(conn, today)
    if row is None:
        return
    engine.tracker.restore(
        today, timedelta(seconds=row["screen_time_seconds"]), per_app_from_row(row)
    )
