"""JSONL event log for Letterbox daemon (LLM calls, ingestion, feed fetches)."""

import fcntl
import json
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any


def default_events_dir() -> Path:
    xdg_data_home = os.environ.get(
        "XDG_DATA_HOME", str(Path.home() / ".local" / "share")
    )
    return Path(xdg_data_home) / "letterbox" / "observability"


class EventLog:
    """Append-only daily JSONL files, safe across threads and processes."""

    def __init__(self, base_dir: Path | None = None):
        self.base_dir = base_dir or default_events_dir()

    def path_for(self, day: datetime) -> Path:
        return self.base_dir / f"{day.strftime('%Y-%m-%d')}_events.jsonl"

    def log(self, event: str, **fields: Any) -> None:
        """Append one event. Never raises; problems go to stderr.

        Args:
            event: Dotted event name (e.g. "llm.call", "ingest.duplicate")
            **fields: JSON-serializable event details
        """
        now = datetime.now(timezone.utc)
        entry = {"ts": now.isoformat(), "event": event, **fields}

        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            line = json.dumps(entry, default=str) + "\n"
            with open(self.path_for(now), "a") as f:
                fcntl.flock(f.fileno(), fcntl.LOCK_EX)
                try:
                    f.write(line)
                    f.flush()
                finally:
                    fcntl.flock(f.fileno(), fcntl.LOCK_UN)
        except Exception as e:
            print(f"[Observability] Error logging event '{event}': {e}", file=sys.stderr)

    def cleanup_old_files(self, retention_days: int = 30) -> int:
        """Delete event files older than retention_days. Returns count removed."""
        if not self.base_dir.exists():
            return 0

        cutoff = (datetime.now(timezone.utc) - timedelta(days=retention_days)).date()
        removed = 0
        for path in self.base_dir.glob("*_events.jsonl"):
            try:
                day = datetime.strptime(path.name.split("_")[0], "%Y-%m-%d").date()
            except ValueError:
                continue
            if day < cutoff:
                path.unlink(missing_ok=True)
                removed += 1
        return removed


_event_log: EventLog | None = None


def get_event_log() -> EventLog:
    """Process-wide EventLog, created on first use."""
    global _event_log
    if _event_log is None:
        _event_log = EventLog()
    return _event_log


def log(event: str, **fields: Any) -> None:
    """Log an event on the process-wide EventLog.

    Usage:
        from letterbox_daemon.observability import log
        log("ingest.record", record_id=record.id, source="rss")
    """
    get_event_log().log(event, **fields)
