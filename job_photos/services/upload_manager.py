"""Upload manager for orchestrating job photo batches."""

import logging
import threading
import uuid
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from job_photos.config import PipelineConfig, get_settings
from job_photos.services import s3_service, storage_keys
from job_photos.services.image_service import ImageNormalizer
from job_photos.services.log_service import get_log_service
from job_photos.services.metadata_service import MetadataRecorder, MetadataStore
from job_photos.services.models import (
    BatchResult,
    BookingContext,
    MetadataRecord,
    OrphanRecord,
    PhotoCategory,
    SelectedFile,
)
from job_photos.services.progress import ProgressSnapshot, ProgressTracker
from job_photos.services.reconciler import OrphanReconciler
from job_photos.services.upload_scheduler import ConcurrentUploadScheduler
from job_photos.services.validator import FileSelectionValidator, ValidationResult

logger = logging.getLogger(__name__)

# Categories are uploaded in this order, one scheduler run each
CATEGORY_ORDER = (PhotoCategory.BEFORE, PhotoCategory.AFTER, PhotoCategory.ADDITIONAL)


class UploadStatus(Enum):
    """Status of a photo upload job."""

    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PhotoUploadJob:
    """One upload request: validated selections, live progress and the final result."""

    job_id: str
    context: BookingContext
    validations: dict[PhotoCategory, ValidationResult] = field(default_factory=dict)
    status: UploadStatus = UploadStatus.PENDING
    tracker: ProgressTracker = field(default_factory=ProgressTracker)
    result: BatchResult | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def total_accepted(self) -> int:
        return sum(len(v.accepted) for v in self.validations.values())

    @property
    def skipped(self) -> list[tuple[str, str]]:
        return [item for v in self.validations.values() for item in v.skipped]

    @property
    def advisories(self) -> list[str]:
        return [a for v in self.validations.values() for a in v.advisories]

    @property
    def no_compatible_files(self) -> bool:
        """Files were selected but none of them can be uploaded."""
        selected = sum(v.selected_count for v in self.validations.values())
        return selected > 0 and self.total_accepted == 0

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_progress_dict(self) -> dict[str, Any]:
        """Lightweight dict for SSE progress events."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            **self.tracker.snapshot().to_dict(),
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "job_id": self.job_id,
            "status": self.status.value,
            "booking": self.context.to_dict(),
            "validation": {c.value: v.to_dict() for c, v in self.validations.items()},
            "skipped": [{"filename": n, "reason": r} for n, r in self.skipped],
            "advisories": self.advisories,
            "progress": self.tracker.snapshot().to_dict(),
            "result": self.result.to_dict() if self.result else None,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": self.duration_seconds,
        }


ProgressCallback = Callable[[PhotoUploadJob, ProgressSnapshot], None]


class PhotoUploadManager:
    """Validates, uploads, lists and reconciles job photos."""

    def __init__(
        self,
        store: s3_service.S3ObjectStore | None = None,
        metadata: MetadataStore | None = None,
    ) -> None:
        self.jobs: dict[str, PhotoUploadJob] = {}
        self._store = store
        self._metadata = metadata
        self._lock = threading.Lock()

    @property
    def store(self) -> s3_service.S3ObjectStore:
        """Object store, created from settings on first use."""
        if self._store is None:
            self._store = s3_service.create_object_store(get_settings())
        return self._store

    @property
    def metadata(self) -> MetadataStore:
        """Metadata store, opened from settings on first use."""
        if self._metadata is None:
            self._metadata = MetadataStore(get_settings().metadata_db_path)
        return self._metadata

    def create_job(
        self,
        context: BookingContext,
        files_by_category: Mapping[PhotoCategory, Sequence[SelectedFile]],
        config: PipelineConfig,
        annotation: str | None = None,
    ) -> PhotoUploadJob:
        """Validate a selection and register a pending job for it.

        Args:
            context: Booking the photos belong to
            files_by_category: Selected files per category, in selection order
            config: Device-dependent pipeline settings
            annotation: Damage details applied to additional files

        Returns:
            The created PhotoUploadJob. Its status is FAILED when nothing
            in a non-empty selection was accepted.
        """
        validator = FileSelectionValidator(max_additional_bytes=config.max_additional_bytes)
        job = PhotoUploadJob(job_id=str(uuid.uuid4()), context=context)

        for category in CATEGORY_ORDER:
            files = files_by_category.get(category) or []
            if files:
                job.validations[category] = validator.validate(files, category, annotation)

        job.tracker.add_total(job.total_accepted)

        log = get_log_service()
        for name, reason in job.skipped:
            log.warning(
                "upload",
                "file_selection_skipped",
                f"Skipped {name}: {reason}",
                {"job_id": job.job_id, "booking_id": context.booking_id, "filename": name,
                 "reason": reason},
            )

        if job.no_compatible_files:
            job.status = UploadStatus.FAILED
            job.error = "No compatible files were selected"

        with self._lock:
            self.jobs[job.job_id] = job

        log.info(
            "upload",
            "upload_batch_created",
            f"Created photo batch with {job.total_accepted} file(s) for booking "
            f"{context.booking_id}",
            {
                "job_id": job.job_id,
                "booking_id": context.booking_id,
                "accepted": job.total_accepted,
                "skipped": len(job.skipped),
                "device_class": config.device_class,
            },
        )

        return job

    def get_job(self, job_id: str) -> PhotoUploadJob | None:
        return self.jobs.get(job_id)

    def start_upload(
        self,
        job_id: str,
        config: PipelineConfig,
        progress_callback: ProgressCallback | None = None,
    ) -> BatchResult | None:
        """Run every accepted category of a job to completion.

        Each category is one scheduler run; all runs share a submission
        timestamp and a progress tracker. Per-file failures are collected in
        the result and never raised.

        Returns:
            The merged BatchResult, or None if the job does not exist
        """
        job = self.get_job(job_id)
        if not job:
            return None

        if job.status is UploadStatus.FAILED:
            job.result = BatchResult()
            return job.result

        job.status = UploadStatus.UPLOADING
        job.started_at = datetime.now(UTC)

        def on_progress(snapshot: ProgressSnapshot) -> None:
            if progress_callback:
                progress_callback(job, snapshot)

        try:
            scheduler = ConcurrentUploadScheduler(
                store=self.store,
                recorder=MetadataRecorder(self.metadata),
                normalizer=ImageNormalizer(config),
                context=job.context,
                submitted_at_ms=storage_keys.submission_timestamp_ms(),
            )
        except Exception as e:
            logger.exception("Failed to prepare upload for job %s", job_id)
            result = BatchResult(total_count=job.total_accepted)
            for category in CATEGORY_ORDER:
                validation = job.validations.get(category)
                for task in validation.accepted if validation else []:
                    result.add_failure(task, f"Storage unavailable: {e}")
                    job.tracker.increment(succeeded=False)
            self._settle(job, result, progress_callback)
            return result

        result = BatchResult()
        for category in CATEGORY_ORDER:
            validation = job.validations.get(category)
            if not validation or not validation.accepted:
                continue
            category_result = scheduler.run(
                validation.accepted,
                config.concurrency_limit,
                on_progress=on_progress,
                tracker=job.tracker,
            )
            result = result.merge(category_result)

        self._settle(job, result, progress_callback)
        return result

    def _settle(
        self,
        job: PhotoUploadJob,
        result: BatchResult,
        progress_callback: ProgressCallback | None,
    ) -> None:
        with job.lock:
            job.result = result
            job.completed_at = datetime.now(UTC)
            job.status = UploadStatus.COMPLETED if result.uploaded_count else UploadStatus.FAILED
            summary = result.summary_error()
            job.error = str(summary) if summary else None

        # Terminal event first so the caller unblocks before the summary I/O
        if progress_callback:
            progress_callback(job, job.tracker.snapshot())

        self._log_job_summary(job, result)

    def upload_photos(
        self,
        context: BookingContext,
        files_by_category: Mapping[PhotoCategory, Sequence[SelectedFile]],
        config: PipelineConfig,
        annotation: str | None = None,
        progress_callback: ProgressCallback | None = None,
    ) -> PhotoUploadJob:
        """Validate and upload a selection synchronously."""
        job = self.create_job(context, files_by_category, config, annotation)
        self.start_upload(job.job_id, config, progress_callback)
        return job

    def _log_job_summary(self, job: PhotoUploadJob, result: BatchResult) -> None:
        log = get_log_service()
        completed_at = job.completed_at or datetime.now(UTC)
        summary = {
            "timestamp": completed_at.isoformat(),
            "event": "upload_batch_completed",
            "job_id": job.job_id,
            "booking_id": job.context.booking_id,
            "status": job.status.value,
            "uploaded": result.uploaded_count,
            "failed": result.failed_count,
            "skipped": len(job.skipped),
            "total": result.total_count,
            "duration_seconds": job.duration_seconds,
            "failures": result.failures,
        }

        log_fn = log.info if result.all_succeeded else log.warning
        log_fn(
            "upload",
            "upload_batch_completed",
            f"Photo batch completed: {result.uploaded_count} uploaded, "
            f"{result.failed_count} failed, {len(job.skipped)} skipped",
            summary,
        )

        rows: list[dict[str, Any]] = []
        for category, validation in job.validations.items():
            for task in validation.accepted:
                outcome = result.outcome_for(category, task.ordinal_index)
                if outcome is None:
                    status, file_path, error = "failed", "", "not attempted"
                elif outcome.succeeded:
                    status, file_path, error = "uploaded", outcome.file_path, ""
                else:
                    status, file_path, error = "failed", "", outcome.error or ""
                rows.append(
                    {
                        "booking_id": job.context.booking_id,
                        "category": category.value,
                        "filename": task.filename,
                        "status": status,
                        "file_path": file_path,
                        "error_message": error,
                    }
                )
            for name, reason in validation.skipped:
                rows.append(
                    {
                        "booking_id": job.context.booking_id,
                        "category": category.value,
                        "filename": name,
                        "status": "skipped",
                        "error_message": reason,
                    }
                )

        try:
            log.save_batch_jsonl(job.job_id, summary, completed_at)
        except OSError:
            logger.warning("Failed to save batch JSONL summary", exc_info=True)

        try:
            log.save_batch_csv(job.job_id, rows, completed_at)
        except OSError:
            logger.warning("Failed to save batch CSV summary", exc_info=True)

    def list_photos(self, booking_id: int) -> dict[str, list[MetadataRecord]]:
        """Metadata records for a booking grouped by category, newest first."""
        grouped: dict[str, list[MetadataRecord]] = {c.value: [] for c in CATEGORY_ORDER}
        for record in self.metadata.select_by_booking(booking_id):
            grouped[record.category.value].append(record)
        return grouped

    def get_signed_url(self, record_id: int, ttl: int | None = None) -> str | None:
        """Signed read URL for a recorded photo, or None if the record is unknown."""
        record = self.metadata.get(record_id)
        if record is None:
            return None
        return self.store.get_signed_read_url(
            record.file_path, ttl or get_settings().signed_url_ttl_seconds
        )

    def delete_photo(
        self,
        record_id: int,
        on_deleted: Callable[[MetadataRecord], None] | None = None,
    ) -> bool:
        """Delete a photo's object and then its metadata row.

        Args:
            record_id: Metadata record to delete
            on_deleted: Called with the removed record so its owner can refresh

        Returns:
            True if the record existed and was deleted
        """
        record = self.metadata.get(record_id)
        if record is None:
            return False

        self.store.delete(record.file_path)
        self.metadata.delete(record_id)

        get_log_service().info(
            "photos",
            "photo_deleted",
            f"Deleted {record.file_path}",
            {"record_id": record_id, "booking_id": record.booking_id, "file_path": record.file_path},
        )

        if on_deleted:
            on_deleted(record)
        return True

    def delete_photos(
        self,
        record_ids: Sequence[int],
        on_deleted: Callable[[MetadataRecord], None] | None = None,
    ) -> dict[int, str]:
        """Delete several photos with one storage call and one row delete.

        A row is only removed once its object is gone, so a storage error
        leaves that photo listed and retryable.

        Args:
            record_ids: Metadata records to delete; duplicates are ignored
            on_deleted: Called with each removed record

        Returns:
            Outcome per record id in request order: "deleted", "not_found",
            or the storage error message
        """
        outcomes: dict[int, str] = {}
        records: dict[int, MetadataRecord] = {}
        for record_id in dict.fromkeys(record_ids):
            record = self.metadata.get(record_id)
            if record is None:
                outcomes[record_id] = "not_found"
            else:
                outcomes[record_id] = ""
                records[record_id] = record

        removed: list[MetadataRecord] = []
        if records:
            errors = self.store.delete_many([r.file_path for r in records.values()])
            for record_id, record in records.items():
                error = errors.get(record.file_path)
                if error is not None:
                    outcomes[record_id] = error or "delete failed"
                else:
                    outcomes[record_id] = "deleted"
                    removed.append(record)
            self.metadata.delete_many([r.id for r in removed if r.id is not None])

        log = get_log_service()
        log_fn = log.info if len(removed) == len(outcomes) else log.warning
        log_fn(
            "photos",
            "photos_deleted",
            f"Deleted {len(removed)} of {len(outcomes)} photo(s)",
            {
                "record_ids": [r.id for r in removed],
                "file_paths": [r.file_path for r in removed],
                "failed": {rid: o for rid, o in outcomes.items() if o != "deleted"},
            },
        )

        if on_deleted:
            for record in removed:
                on_deleted(record)
        return outcomes

    def find_orphans(self, context: BookingContext) -> list[OrphanRecord]:
        """List stored additional files for a booking that have no metadata row."""
        orphans = OrphanReconciler(self.store, self.metadata).reconcile(context)
        if orphans:
            get_log_service().warning(
                "photos",
                "orphans_reconciled",
                f"Found {len(orphans)} storage-only file(s) for booking {context.booking_id}",
                {"booking_id": context.booking_id, "file_paths": [o.file_path for o in orphans]},
            )
        return orphans

    def delete_orphan(self, context: BookingContext, file_path: str) -> bool:
        """Delete a storage-only leftover.

        Only keys the reconciler would report for this booking may be deleted.

        Returns:
            True if the object was deleted
        """
        if file_path not in {o.file_path for o in self.find_orphans(context)}:
            return False

        self.store.delete(file_path)
        get_log_service().info(
            "photos",
            "photo_deleted",
            f"Deleted storage-only file {file_path}",
            {"booking_id": context.booking_id, "file_path": file_path, "orphan": True},
        )
        return True

    def get_active_jobs(self) -> list[PhotoUploadJob]:
        """Get all jobs still pending or uploading."""
        with self._lock:
            return [
                job
                for job in self.jobs.values()
                if job.status in (UploadStatus.PENDING, UploadStatus.UPLOADING)
            ]

    def cleanup_old_jobs(self, max_age_seconds: int = 3600) -> int:
        """Forget finished jobs older than ``max_age_seconds``.

        Returns:
            Number of jobs removed
        """
        now = datetime.now(UTC)
        removed = 0
        with self._lock:
            for job_id, job in list(self.jobs.items()):
                if job.status not in (UploadStatus.COMPLETED, UploadStatus.FAILED):
                    continue
                finished = job.completed_at or job.created_at
                if (now - finished).total_seconds() > max_age_seconds:
                    del self.jobs[job_id]
                    removed += 1
        return removed


# Global upload manager instance
_upload_manager: PhotoUploadManager | None = None


def get_upload_manager() -> PhotoUploadManager:
    """Get the global upload manager instance."""
    global _upload_manager
    if _upload_manager is None:
        _upload_manager = PhotoUploadManager()
    return _upload_manager
