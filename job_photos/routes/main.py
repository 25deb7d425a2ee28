"""Service info routes for job_photos."""

from flask import Blueprint, Response, jsonify

from job_photos.config import get_package_version, get_settings

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
@main_bp.route("/health")
def health() -> tuple[Response, int]:
    """Report that the service is up, with its version and storage target."""
    settings = get_settings()
    return jsonify(
        {
            "status": "ok",
            "name": settings.display_name,
            "version": get_package_version(),
            "bucket_configured": bool(settings.s3_bucket),
        }
    ), 200
