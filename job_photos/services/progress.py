"""Thread-safe progress counters for an upload batch."""

import threading
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class ProgressSnapshot:
    """Point-in-time view of a tracker."""

    completed: int
    total: int
    succeeded: int
    failed: int

    @property
    def progress_percent(self) -> float:
        if self.total == 0:
            return 0.0
        return round(self.completed / self.total * 100, 1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "uploaded_count": self.succeeded,
            "completed": self.completed,
            "total_count": self.total,
            "failed_count": self.failed,
            "progress_percent": self.progress_percent,
        }


class ProgressTracker:
    """Completed/total counters mutated only through ``increment``."""

    def __init__(self, total: int = 0) -> None:
        self._lock = threading.Lock()
        self._total = total
        self._completed = 0
        self._succeeded = 0
        self._failed = 0

    def add_total(self, count: int) -> None:
        """Grow the expected total, e.g. when a second category's batch is queued."""
        with self._lock:
            self._total += count

    def increment(self, succeeded: bool) -> ProgressSnapshot:
        """Record one settled task and return the state right after it."""
        with self._lock:
            self._completed += 1
            if succeeded:
                self._succeeded += 1
            else:
                self._failed += 1
            return self._snapshot()

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return self._snapshot()

    def _snapshot(self) -> ProgressSnapshot:
        return ProgressSnapshot(
            completed=self._completed,
            total=self._total,
            succeeded=self._succeeded,
            failed=self._failed,
        )

    @property
    def completed(self) -> int:
        return self.snapshot().completed

    @property
    def total(self) -> int:
        return self.snapshot().total
