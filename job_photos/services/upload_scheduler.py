"""Bounded concurrent upload of one category's tasks.

A fixed number of workers share a cursor over the task list. Each worker
claims the next index under a lock, runs normalize -> key -> put -> record for
that task, and loops until the list is exhausted. A failing task is recorded
and never stops its siblings.
"""

import logging
import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from typing import Protocol

from job_photos.services import storage_keys
from job_photos.services.errors import MetadataInsertError
from job_photos.services.image_service import ImageNormalizer
from job_photos.services.log_service import LogService, get_log_service
from job_photos.services.models import BatchResult, BookingContext, SelectedFile, UploadTask
from job_photos.services.progress import ProgressSnapshot, ProgressTracker

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressSnapshot], None]


class ObjectStore(Protocol):
    def put(self, key: str, data: bytes, content_type: str, upsert: bool = True) -> None: ...


class Recorder(Protocol):
    def record(
        self,
        context: BookingContext,
        key: str,
        category: object,
        annotation: str | None = None,
    ) -> int: ...


class _BatchRun:
    """Shared state for one ``run`` call."""

    def __init__(self, tasks: Sequence[UploadTask], tracker: ProgressTracker) -> None:
        self.tasks = tasks
        self.tracker = tracker
        self.result = BatchResult(total_count=len(tasks))
        self._cursor = 0
        self._cursor_lock = threading.Lock()
        self._result_lock = threading.Lock()
        self._in_flight = 0
        self.max_in_flight = 0

    def claim(self) -> int | None:
        """Claim the next unprocessed index, or None when all are taken."""
        with self._cursor_lock:
            if self._cursor >= len(self.tasks):
                return None
            index = self._cursor
            self._cursor += 1
            return index

    def started(self) -> None:
        with self._result_lock:
            self._in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self._in_flight)

    def succeeded(self, task: UploadTask, key: str) -> ProgressSnapshot:
        with self._result_lock:
            self._in_flight -= 1
            self.result.add_success(task, key)
        return self.tracker.increment(succeeded=True)

    def failed(self, task: UploadTask, reason: str) -> ProgressSnapshot:
        with self._result_lock:
            self._in_flight -= 1
            self.result.add_failure(task, reason)
        return self.tracker.increment(succeeded=False)


class ConcurrentUploadScheduler:
    """Uploads a list of tasks for one booking under a fixed worker budget."""

    def __init__(
        self,
        store: ObjectStore,
        recorder: Recorder,
        normalizer: ImageNormalizer,
        context: BookingContext,
        submitted_at_ms: int | None = None,
        log: LogService | None = None,
    ) -> None:
        self.store = store
        self.recorder = recorder
        self.normalizer = normalizer
        self.context = context
        self.submitted_at_ms = (
            submitted_at_ms
            if submitted_at_ms is not None
            else storage_keys.submission_timestamp_ms()
        )
        self.log = log or get_log_service()
        self.max_in_flight = 0

    def run(
        self,
        tasks: Sequence[UploadTask],
        concurrency_limit: int,
        on_progress: ProgressCallback | None = None,
        tracker: ProgressTracker | None = None,
    ) -> BatchResult:
        """Upload every task and return the success/failure partition.

        Args:
            tasks: Tasks of a single batch
            concurrency_limit: Maximum number of tasks in flight
            on_progress: Called with a progress snapshot after every outcome
            tracker: Shared tracker when several batches report together

        Returns:
            BatchResult covering every task; never raises for per-file failures
        """
        if tracker is None:
            tracker = ProgressTracker(total=len(tasks))
        if not tasks:
            return BatchResult()

        batch = _BatchRun(tasks, tracker)
        worker_count = max(1, min(concurrency_limit, len(tasks)))

        with ThreadPoolExecutor(
            max_workers=worker_count, thread_name_prefix="photo-upload"
        ) as executor:
            futures = [
                executor.submit(self._worker, batch, on_progress) for _ in range(worker_count)
            ]
            for future in futures:
                future.result()

        self.max_in_flight = batch.max_in_flight
        return batch.result

    def _worker(self, batch: _BatchRun, on_progress: ProgressCallback | None) -> None:
        while (index := batch.claim()) is not None:
            task = batch.tasks[index]
            batch.started()
            try:
                key = self._process(task)
            except Exception as e:
                snapshot = batch.failed(task, str(e) or e.__class__.__name__)
                # Stored without a row: the reconciler will list it as an orphan
                event = (
                    "metadata_insert_failed"
                    if isinstance(e, MetadataInsertError)
                    else "file_upload_failed"
                )
                self.log.error(
                    "upload",
                    event,
                    f"Failed to upload {task.filename}: {e}",
                    {
                        "booking_id": self.context.booking_id,
                        "filename": task.filename,
                        "category": task.category.value,
                        "ordinal_index": task.ordinal_index,
                        "error": str(e),
                    },
                )
            else:
                snapshot = batch.succeeded(task, key)
                self.log.info(
                    "upload",
                    "file_upload_completed",
                    f"Uploaded {task.filename}",
                    {
                        "booking_id": self.context.booking_id,
                        "filename": task.filename,
                        "category": task.category.value,
                        "file_path": key,
                    },
                )

            if on_progress:
                try:
                    on_progress(snapshot)
                except Exception:
                    logger.warning("Progress callback failed", exc_info=True)

    def _normalize(self, task: UploadTask) -> SelectedFile:
        try:
            return self.normalizer.compress(task.source_file, task.category)
        except Exception as e:
            self.log.warning(
                "upload",
                "file_normalization_failed",
                f"Using original bytes for {task.filename}: {e}",
                {"booking_id": self.context.booking_id, "filename": task.filename},
            )
            return task.source_file

    def _process(self, task: UploadTask) -> str:
        """Normalize, store and record one task, returning its storage key."""
        upload_file = self._normalize(task)
        key = storage_keys.build_key(self.context, task.category, task, self.submitted_at_ms)
        self.store.put(key, upload_file.content, upload_file.content_type, upsert=True)
        self.recorder.record(self.context, key, task.category, task.extra_annotation)
        return key
