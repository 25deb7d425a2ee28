"""JSONL event log for the photo pipeline.

Writes one JSON object per line to hive-partitioned daily .jsonl files, plus a
per-batch JSONL summary and CSV outcome table.
DuckDB-compatible: SELECT * FROM read_json_auto('logs/json/**/events.jsonl', hive_partitioning=true)
"""

import csv
import json
import re
import threading
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from job_photos.config import get_settings

BATCH_CSV_COLUMNS = [
    "batch_id",
    "booking_id",
    "category",
    "filename",
    "status",
    "file_path",
    "error_message",
]


class LogService:
    """JSONL log service with thread-safe file writes."""

    def __init__(self) -> None:
        self._write_lock = threading.Lock()

    def _get_log_dir(self) -> Path:
        """Get the configured log directory, creating it if needed."""
        log_dir = get_settings().log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir

    def _get_hive_dir(self, subdir: str, dt: datetime) -> Path:
        """Build a hive-partitioned directory path and create it.

        Returns:
            Path like logs/json/year=2026/month=02/day=08/
        """
        hive_dir = (
            self._get_log_dir()
            / subdir
            / f"year={dt.year:04d}"
            / f"month={dt.month:02d}"
            / f"day={dt.day:02d}"
        )
        hive_dir.mkdir(parents=True, exist_ok=True)
        return hive_dir

    @staticmethod
    def _extract_date_from_hive_path(path: Path) -> str | None:
        """Extract a YYYY-MM-DD date string from a hive-partitioned path."""
        match = re.search(r"year=(\d{4})/month=(\d{2})/day=(\d{2})", path.as_posix())
        if match:
            return f"{match.group(1)}-{match.group(2)}-{match.group(3)}"
        return None

    def log(
        self,
        level: str,
        category: str,
        event: str,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Append a log entry to the current day's JSONL file.

        Args:
            level: Log level (INFO, WARNING, ERROR)
            category: Event category (upload, photos, settings, app)
            event: Machine-readable event name (snake_case)
            message: Human-readable message
            metadata: Optional additional data
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

        line = json.dumps(entry, default=str)

        with self._write_lock:
            log_file = self._get_hive_dir("json", now) / "events.jsonl"
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def info(
        self, category: str, event: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.log("INFO", category, event, message, metadata)

    def warning(
        self, category: str, event: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.log("WARNING", category, event, message, metadata)

    def error(
        self, category: str, event: str, message: str, metadata: dict[str, Any] | None = None
    ) -> None:
        self.log("ERROR", category, event, message, metadata)

    def save_batch_jsonl(
        self, batch_id: str, summary: dict[str, Any], completed_at: datetime
    ) -> Path:
        """Write a per-batch JSONL summary file next to the day's events."""
        out_path = self._get_hive_dir("json", completed_at) / f"{batch_id}.jsonl"
        line = json.dumps(summary, default=str)
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8") as f:
                f.write(line + "\n")
        return out_path

    def save_batch_csv(
        self, batch_id: str, rows: list[dict[str, Any]], completed_at: datetime
    ) -> Path:
        """Write one CSV row per file of a batch with its outcome.

        Args:
            batch_id: The upload batch ID
            rows: Dicts keyed by BATCH_CSV_COLUMNS (missing keys left blank)
            completed_at: When the batch settled

        Returns:
            Path to the written CSV file
        """
        time_str = completed_at.strftime("%H%M%S")
        out_path = (
            self._get_hive_dir("csv", completed_at)
            / f"photo-batch-{time_str}-{batch_id[:8]}.csv"
        )
        with self._write_lock:
            with open(out_path, "w", encoding="utf-8", newline="") as f:
                writer = csv.DictWriter(f, fieldnames=BATCH_CSV_COLUMNS, extrasaction="ignore")
                writer.writeheader()
                for row in rows:
                    writer.writerow({"batch_id": batch_id, **row})
        return out_path

    def list_log_files(self) -> list[dict[str, Any]]:
        """List all log files (JSONL + CSV) with metadata, newest first."""
        log_dir = self._get_log_dir()
        result: list[dict[str, Any]] = []

        for subdir, pattern, file_type in (("json", "*.jsonl", "jsonl"), ("csv", "*.csv", "csv")):
            root = log_dir / subdir
            if not root.exists():
                continue
            for f in sorted(root.rglob(pattern), reverse=True):
                result.append(
                    {
                        "date": self._extract_date_from_hive_path(f),
                        "filename": f.name,
                        "relative_path": f.relative_to(log_dir).as_posix(),
                        "size_bytes": f.stat().st_size,
                        "type": file_type,
                    }
                )

        return result

    def _iter_entries(self, files: list[Path]) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        for log_file in files:
            try:
                with open(log_file, encoding="utf-8") as f:
                    for line in f:
                        line = line.strip()
                        if not line:
                            continue
                        try:
                            entries.append(json.loads(line))
                        except json.JSONDecodeError:
                            continue
            except OSError:
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
        """Read and filter log entries with pagination.

        Args:
            date: Filter by date (YYYY-MM-DD). None = all dates.
            level: Filter by level (INFO/WARNING/ERROR)
            category: Filter by category
            search: Case-insensitive search in message and event fields
            offset: Number of entries to skip
            limit: Maximum entries to return

        Returns:
            Dict with entries (newest first), total count, offset, limit
        """
        json_dir = self._get_log_dir() / "json"

        if date:
            try:
                dt = datetime.strptime(date, "%Y-%m-%d")
            except ValueError:
                return {"entries": [], "total": 0, "offset": offset, "limit": limit}
            hive_path = (
                json_dir
                / f"year={dt.year:04d}"
                / f"month={dt.month:02d}"
                / f"day={dt.day:02d}"
                / "events.jsonl"
            )
            files = [hive_path] if hive_path.exists() else []
        else:
            files = sorted(json_dir.rglob("events.jsonl"), reverse=True) if json_dir.exists() else []

        matched: list[dict[str, Any]] = []
        for entry in self._iter_entries(files):
            if level and entry.get("level", "").upper() != level.upper():
                continue
            if category and entry.get("category") != category:
                continue
            if search:
                needle = search.lower()
                if (
                    needle not in entry.get("message", "").lower()
                    and needle not in entry.get("event", "").lower()
                ):
                    continue
            matched.append(entry)

        matched.sort(key=lambda e: e.get("timestamp", ""), reverse=True)

        return {
            "entries": matched[offset : offset + limit],
            "total": len(matched),
            "offset": offset,
            "limit": limit,
        }

    def get_log_stats(self) -> dict[str, Any]:
        """Get counts by level and category plus the covered date range."""
        json_dir = self._get_log_dir() / "json"
        event_files = sorted(json_dir.rglob("events.jsonl")) if json_dir.exists() else []

        level_counts: dict[str, int] = {}
        category_counts: dict[str, int] = {}
        dates = sorted(
            {d for f in event_files if (d := self._extract_date_from_hive_path(f)) is not None}
        )

        entries = self._iter_entries(event_files)
        for entry in entries:
            lvl = entry.get("level", "UNKNOWN")
            level_counts[lvl] = level_counts.get(lvl, 0) + 1
            cat = entry.get("category", "unknown")
            category_counts[cat] = category_counts.get(cat, 0) + 1

        return {
            "total_entries": len(entries),
            "level_counts": level_counts,
            "category_counts": category_counts,
            "date_range": {
                "earliest": dates[0] if dates else None,
                "latest": dates[-1] if dates else None,
            },
            "file_count": len(event_files),
        }


# Module-level singleton accessor
_log_service: LogService | None = None


def get_log_service() -> LogService:
    """Get the singleton LogService instance."""
    global _log_service
    if _log_service is None:
        _log_service = LogService()
    return _log_service
