"""Photo upload API routes for job_photos"""

import json
import threading
import time
from collections import deque
from collections.abc import Generator
from typing import Any

from flask import Blueprint, Response, jsonify, request

from job_photos.config import DEVICE_CLASSES, PipelineConfig, get_settings
from job_photos.services.models import BookingContext, PhotoCategory, SelectedFile
from job_photos.services.progress import ProgressSnapshot
from job_photos.services.upload_manager import (
    PhotoUploadJob,
    UploadStatus,
    get_upload_manager,
)

upload_bp = Blueprint("upload", __name__)

# Store for SSE clients per job
_sse_queues: dict[str, list[deque[dict[str, Any]]]] = {}
_sse_lock = threading.Lock()

TERMINAL_STATUSES = (UploadStatus.COMPLETED.value, UploadStatus.FAILED.value)


def send_sse_event(job_id: str, data: dict[str, Any]) -> None:
    """Send an SSE event to all clients listening for a job."""
    with _sse_lock:
        for q in _sse_queues.get(job_id, []):
            q.append(data)


def _progress_callback(job: PhotoUploadJob, snapshot: ProgressSnapshot) -> None:
    """Forward scheduler progress to SSE listeners."""
    event = {"job_id": job.job_id, "status": job.status.value, **snapshot.to_dict()}
    if job.status.value in TERMINAL_STATUSES:
        event["result"] = job.result.to_dict() if job.result else None
        event["error"] = job.error
    send_sse_event(job.job_id, event)


def _selected_files(field_name: str) -> list[SelectedFile]:
    """Read one multipart field's files into memory."""
    files: list[SelectedFile] = []
    for storage in request.files.getlist(field_name):
        if not storage.filename:
            continue
        files.append(
            SelectedFile(
                filename=storage.filename,
                content=storage.read(),
                content_type=storage.mimetype or "application/octet-stream",
            )
        )
    return files


@upload_bp.route("/<int:booking_id>", methods=["POST"])
def start_upload(booking_id: int) -> tuple[Response, int]:
    """Validate selected photos and upload them in the background.

    Accepts multipart/form-data with:
        before, after, additional: file fields (repeatable)
        customer_id, cleaner_id, postcode, booking_date: booking context
        annotation: damage details for additional files (optional)
        device_class: "desktop" or "mobile" (optional, defaults to settings)

    Returns:
        202 with job_id and validation summary. Progress is streamed on
        /api/photos/upload/progress/<job_id>.
    """
    settings = get_settings()
    manager = get_upload_manager()

    form = request.form.to_dict()
    form["booking_id"] = str(booking_id)
    try:
        context = BookingContext.from_mapping(form)
    except KeyError as e:
        return jsonify({"error": f"Missing booking field: {e.args[0]}"}), 400
    except ValueError as e:
        return jsonify({"error": f"Invalid booking field: {e}"}), 400

    device_class = form.get("device_class") or None
    if device_class and device_class not in DEVICE_CLASSES:
        return jsonify({"error": f"Unknown device_class '{device_class}'"}), 400
    config = PipelineConfig.from_settings(settings, device_class)

    files_by_category = {category: _selected_files(category.value) for category in PhotoCategory}
    if not any(files_by_category.values()):
        return jsonify({"error": "No files provided"}), 400

    job = manager.create_job(context, files_by_category, config, form.get("annotation") or None)
    if job.no_compatible_files:
        return jsonify({"error": "No compatible files", "job": job.to_dict()}), 400

    def run_upload() -> None:
        manager.start_upload(job.job_id, config, progress_callback=_progress_callback)

    thread = threading.Thread(target=run_upload, daemon=True)
    thread.start()

    return jsonify(
        {
            "job_id": job.job_id,
            "status": "uploading",
            "total_count": job.total_accepted,
            "concurrency_limit": config.concurrency_limit,
            "skipped": [{"filename": n, "reason": r} for n, r in job.skipped],
            "advisories": job.advisories,
        }
    ), 202


@upload_bp.route("/progress/<job_id>", methods=["GET"])
def get_progress(job_id: str) -> Response:
    """Stream progress updates for a job via Server-Sent Events."""
    manager = get_upload_manager()

    def generate() -> Generator[str, None, None]:
        queue: deque[dict[str, Any]] = deque()
        with _sse_lock:
            _sse_queues.setdefault(job_id, []).append(queue)

        try:
            job = manager.get_job(job_id)
            if not job:
                yield 'data: {"error": "Job not found"}\n\n'
                return
            yield f"data: {json.dumps(job.to_progress_dict())}\n\n"
            if job.status.value in TERMINAL_STATUSES:
                return

            while True:
                while queue:
                    data = queue.popleft()
                    yield f"data: {json.dumps(data)}\n\n"
                    if data.get("status") in TERMINAL_STATUSES:
                        return

                # Small delay to prevent busy waiting
                time.sleep(0.1)

                if not manager.get_job(job_id):
                    yield 'data: {"error": "Job not found"}\n\n'
                    return
        finally:
            with _sse_lock:
                if job_id in _sse_queues and queue in _sse_queues[job_id]:
                    _sse_queues[job_id].remove(queue)
                    if not _sse_queues[job_id]:
                        del _sse_queues[job_id]

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@upload_bp.route("/status/<job_id>", methods=["GET"])
def get_status(job_id: str) -> tuple[Response, int]:
    """Get current status of a job (non-streaming)."""
    job = get_upload_manager().get_job(job_id)
    if not job:
        return jsonify({"error": "Job not found"}), 404
    return jsonify(job.to_dict()), 200


@upload_bp.route("/active", methods=["GET"])
def get_active_jobs() -> tuple[Response, int]:
    """List jobs still running (for state restoration on page refresh)."""
    jobs = get_upload_manager().get_active_jobs()
    return jsonify({"jobs": [job.to_progress_dict() for job in jobs]}), 200
