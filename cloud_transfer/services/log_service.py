"""Event log for transfers, polling and settings changes.

Each event is one JSON line in a daily file under the configured log
directory, e.g. ``json/year=2026/month=10/day=17/events.jsonl``. The
Python ``logging`` output stays the place for diagnostics; this log is
what the UI shows.
"""

import json
import re
import threading
from collections import Counter
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from cloud_transfer.config import get_settings

Metadata = dict[str, Any] | None

EVENTS_FILE = "events.jsonl"
_HIVE_DATE = re.compile(r"year=(\d{4})/month=(\d{2})/day=(\d{2})")


def _day_dir(root: Path, day: datetime) -> Path:
    return root / f"year={day.year:04d}" / f"month={day.month:02d}" / f"day={day.day:02d}"


def _date_of(path: Path) -> str | None:
    match = _HIVE_DATE.search(str(path))
    return "-".join(match.groups()) if match else None


def _matches(
    entry: dict[str, Any],
    level: str | None,
    category: str | None,
    search: str | None,
) -> bool:
    if level and str(entry.get("level", "")).upper() != level.upper():
        return False
    if category and entry.get("category") != category:
        return False
    if search:
        needle = search.lower()
        haystack = f"{entry.get('message', '')}\n{entry.get('event', '')}".lower()
        return needle in haystack
    return True


class LogService:
    """Appends events to today's file and queries them back."""

    def __init__(self) -> None:
        self._write_lock = threading.Lock()

    @property
    def root(self) -> Path:
        log_dir = get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    @property
    def json_root(self) -> Path:
        return self.root / "json"

    def _event_files(self) -> list[Path]:
        if not self.json_root.exists():
            return []
        return sorted(self.json_root.rglob(EVENTS_FILE))

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: Metadata = None,
    ) -> None:
        """Append one event.

        ``category`` groups events for filtering (transfer, poll, gateway,
        settings, app); ``event`` is a snake_case name the UI can key on.
        Empty metadata is left out of the record.
        """
        now = datetime.now(UTC)
        entry: dict[str, Any] = {
            "timestamp": now.isoformat(),
            "level": level.upper(),
            "category": category,
            "event": event,
            "message": message,
        }
        if metadata:
            entry["metadata"] = metadata

        day_dir = _day_dir(self.json_root, now)
        with self._write_lock:
            day_dir.mkdir(parents=True, exist_ok=True)
            with open(day_dir / EVENTS_FILE, "a", encoding="utf-8") as f:
                f.write(json.dumps(entry, default=str) + "\n")

    def info(self, category: str, event: str, message: str, metadata: Metadata = None) -> None:
        self.log("INFO", category, event, message, metadata)

    def warning(self, category: str, event: str, message: str, metadata: Metadata = None) -> None:
        self.log("WARNING", category, event, message, metadata)

    def error(self, category: str, event: str, message: str, metadata: Metadata = None) -> None:
        self.log("ERROR", category, event, message, metadata)

    def list_log_files(self) -> list[dict[str, Any]]:
        """Describe every daily file, newest first."""
        if not self.json_root.exists():
            return []
        root = self.root
        return [
            {
                "date": _date_of(path),
                "filename": path.name,
                "relative_path": str(path.relative_to(root)),
                "size_bytes": path.stat().st_size,
            }
            for path in sorted(self.json_root.rglob("*.jsonl"), reverse=True)
        ]

    @staticmethod
    def _load(files: list[Path]) -> list[dict[str, Any]]:
        # Unreadable files and corrupt lines are skipped
        entries: list[dict[str, Any]] = []
        for path in files:
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except OSError:
                continue
            for line in lines:
                if not line.strip():
                    continue
                try:
                    entries.append(json.loads(line))
                except json.JSONDecodeError:
                    continue
        return entries

    def read_log_entries(
        self,
        date: str | None = None,
        level: str | None = None,
        category: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 100,
    ) -> dict[str, Any]:
        """Return one page of matching events, newest first.

        ``date`` (YYYY-MM-DD) restricts the search to that day's file; an
        unparseable date matches nothing. ``search`` is a case-insensitive
        substring of the message or event name.
        """
        if date:
            try:
                day = datetime.strptime(date, "%Y-%m-%d")
            except ValueError:
                return {"entries": [], "total": 0, "offset": offset, "limit": limit}
            path = _day_dir(self.json_root, day) / EVENTS_FILE
            files = [path] if path.exists() else []
        else:
            files = self._event_files()

        matched = [e for e in self._load(files) if _matches(e, level, category, search)]
        matched.sort(key=lambda e: e.get("timestamp", ""), reverse=True)
        return {
            "entries": matched[offset : offset + limit],
            "total": len(matched),
            "offset": offset,
            "limit": limit,
        }

    def get_log_stats(self) -> dict[str, Any]:
        files = self._event_files()
        entries = self._load(files)
        dates = sorted({d for path in files if (d := _date_of(path)) is not None})
        return {
            "total_entries": len(entries),
            "total_size_bytes": sum(path.stat().st_size for path in files),
            "level_counts": dict(Counter(e.get("level", "UNKNOWN") for e in entries)),
            "category_counts": dict(Counter(e.get("category", "unknown") for e in entries)),
            "date_range": {
                "earliest": dates[0] if dates else None,
                "latest": dates[-1] if dates else None,
            },
            "file_count": len(files),
        }


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
