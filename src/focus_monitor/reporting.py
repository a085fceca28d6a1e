"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from collections import Counter
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

from .db import database_connection, fetch_alert_log, fetch_latest_counters, per_app_from_row


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)

    def print_daily_summary(self, day: datetime) -> None:
        with database_connection(self.db_path) as conn:
            row = fetch_latest_counters(conn, day.date())
            alert_rows = fetch_alert_log(conn, day)
        if row is None:
            print("No activity recorded for the selected day.")
            return

        print(f"Summary for {day.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Screen time:  {format_screen_time(timedelta(seconds=row['screen_time_seconds']))}")
        print(f"Switches in the hour before {row['recorded_at'][11:16]}: {row['switch_count']}")
        print()

        top_apps = sorted(per_app_from_row(row).items(), key=lambda item: item[1], reverse=True)
        if top_apps:
            print("Top apps:")
            for app, spent in top_apps[:5]:
                print(f"  {app[:30]:<30} {format_duration(spent.total_seconds())}")

        alerts = count_alerts_by_app(alert_rows)
        if alerts:
            print()
            print("Focus alerts:")
            for app, count in alerts.most_common(5):
                print(f"  {app[:30]:<30} {count}")


def count_alerts_by_app(rows: Iterable[dict]) -> Counter[str]:
    counts: Counter[str] = Counter()
    for row in rows:
        if row["event"] != "shown":
            continue
        counts[row["app_name"] or "Unknown"] += 1
    return counts


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"


def format_screen_time(spent: timedelta) -> str:
    total_minutes = int(spent.total_seconds() // 60)
    hours, minutes = divmod(total_minutes, 60)
    return f"{hours}h {minutes}m"
