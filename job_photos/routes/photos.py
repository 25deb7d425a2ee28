"""Photo browsing, deletion and reconciliation API routes for job_photos"""

from botocore.exceptions import BotoCoreError, ClientError
from flask import Blueprint, Response, jsonify, request

from job_photos.config import get_settings
from job_photos.services.models import BookingContext
from job_photos.services.upload_manager import get_upload_manager

photos_bp = Blueprint("photos", __name__)


def _context_from(data: dict[str, str], booking_id: int) -> BookingContext:
    return BookingContext.from_mapping({**data, "booking_id": str(booking_id)})


@photos_bp.route("/<int:booking_id>", methods=["GET"])
def list_photos(booking_id: int) -> tuple[Response, int]:
    """List a booking's recorded photos grouped by category, newest first."""
    grouped = get_upload_manager().list_photos(booking_id)
    return jsonify(
        {
            "booking_id": booking_id,
            "photos": {
                category: [record.to_dict() for record in records]
                for category, records in grouped.items()
            },
            "total": sum(len(records) for records in grouped.values()),
        }
    ), 200


@photos_bp.route("/record/<int:record_id>/url", methods=["GET"])
def get_signed_url(record_id: int) -> tuple[Response, int]:
    """Get a time-limited read URL for a recorded photo.

    Query params:
        ttl: Lifetime in seconds (default from settings)
    """
    ttl = request.args.get("ttl", type=int) or get_settings().signed_url_ttl_seconds
    try:
        url = get_upload_manager().get_signed_url(record_id, ttl)
    except (ClientError, BotoCoreError) as e:
        return jsonify({"error": str(e)}), 502
    if url is None:
        return jsonify({"error": "Photo not found"}), 404
    return jsonify({"record_id": record_id, "url": url, "expires_in": ttl}), 200


@photos_bp.route("/record/<int:record_id>", methods=["DELETE"])
def delete_photo(record_id: int) -> tuple[Response, int]:
    """Delete a photo's stored object and metadata row."""
    deleted: list[dict[str, object]] = []
    try:
        found = get_upload_manager().delete_photo(
            record_id, on_deleted=lambda record: deleted.append(record.to_dict())
        )
    except (ClientError, BotoCoreError) as e:
        return jsonify({"error": str(e)}), 502
    if not found:
        return jsonify({"error": "Photo not found"}), 404
    return jsonify({"success": True, "deleted": deleted[0]}), 200


@photos_bp.route("/records", methods=["DELETE"])
def delete_photos() -> tuple[Response, int]:
    """Delete several photos at once.

    Request body:
        record_ids: Metadata record ids to delete
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    record_ids = (request.get_json() or {}).get("record_ids")
    if (
        not isinstance(record_ids, list)
        or not record_ids
        or not all(isinstance(i, int) and not isinstance(i, bool) for i in record_ids)
    ):
        return jsonify({"error": "record_ids must be a non-empty list of integers"}), 400

    deleted: list[dict[str, object]] = []
    try:
        outcomes = get_upload_manager().delete_photos(
            record_ids, on_deleted=lambda record: deleted.append(record.to_dict())
        )
    except (ClientError, BotoCoreError) as e:
        return jsonify({"error": str(e)}), 502

    return jsonify(
        {
            "success": len(deleted) == len(outcomes),
            "results": [
                {"record_id": record_id, "outcome": outcome}
                for record_id, outcome in outcomes.items()
            ],
            "deleted": deleted,
            "deleted_count": len(deleted),
            "failed_count": len(outcomes) - len(deleted),
        }
    ), 200


@photos_bp.route("/<int:booking_id>/orphans", methods=["GET"])
def list_orphans(booking_id: int) -> tuple[Response, int]:
    """List stored additional files with no metadata row.

    Query params:
        customer_id, postcode, booking_date: needed to locate the booking folder
    """
    try:
        context = _context_from(request.args.to_dict(), booking_id)
    except (KeyError, ValueError) as e:
        return jsonify({"error": f"Invalid booking context: {e}"}), 400

    try:
        orphans = get_upload_manager().find_orphans(context)
    except (ClientError, BotoCoreError) as e:
        return jsonify({"error": str(e)}), 502

    return jsonify(
        {
            "booking_id": booking_id,
            "orphans": [orphan.to_dict() for orphan in orphans],
            "total": len(orphans),
        }
    ), 200


@photos_bp.route("/<int:booking_id>/orphans", methods=["DELETE"])
def delete_orphan(booking_id: int) -> tuple[Response, int]:
    """Delete one storage-only leftover.

    Request body:
        customer_id, postcode, booking_date: booking context
        file_path: Key reported by the orphan listing
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json() or {}
    file_path = data.get("file_path")
    if not file_path:
        return jsonify({"error": "file_path is required"}), 400

    try:
        context = _context_from(data, booking_id)
    except (KeyError, ValueError) as e:
        return jsonify({"error": f"Invalid booking context: {e}"}), 400

    try:
        deleted = get_upload_manager().delete_orphan(context, file_path)
    except (ClientError, BotoCoreError) as e:
        return jsonify({"error": str(e)}), 502

    if not deleted:
        return jsonify({"error": "Not a storage-only file for this booking"}), 404
    return jsonify({"success": True, "file_path": file_path}), 200
