"""Settings API routes for job_photos"""

from flask import Blueprint, Response, jsonify, request

from job_photos.config import DEVICE_CLASSES, INT_KEYS, get_settings
from job_photos.services import s3_service
from job_photos.services.log_service import get_log_service

settings_bp = Blueprint("settings", __name__)

ALLOWED_KEYS = {
    "aws_profile",
    "aws_region",
    "s3_bucket",
    "s3_endpoint_url",
    "display_name",
    "log_directory",
    "device_class",
    *INT_KEYS,
}


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings."""
    return jsonify(get_settings().all()), 200


@settings_bp.route("", methods=["PUT"])
def update_settings() -> tuple[Response, int]:
    """Update settings.

    Request body:
        JSON object with settings to update; unknown keys are ignored

    Returns:
        JSON response with updated settings
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    if not data:
        return jsonify({"error": "Empty body"}), 400

    filtered_data = {k: v for k, v in data.items() if k in ALLOWED_KEYS}
    if not filtered_data:
        return jsonify({"error": "No valid settings provided"}), 400

    if "device_class" in filtered_data and filtered_data["device_class"] not in DEVICE_CLASSES:
        return jsonify({"error": f"device_class must be one of {list(DEVICE_CLASSES)}"}), 400

    for key in INT_KEYS & filtered_data.keys():
        try:
            filtered_data[key] = int(filtered_data[key])
        except (TypeError, ValueError):
            return jsonify({"error": f"{key} must be an integer"}), 400
        if filtered_data[key] < 1:
            return jsonify({"error": f"{key} must be positive"}), 400

    settings = get_settings()
    settings.update(filtered_data)

    get_log_service().info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200


@settings_bp.route("/profiles", methods=["GET"])
def get_profiles() -> tuple[Response, int]:
    """Get list of available AWS profiles."""
    return jsonify({"profiles": s3_service.get_available_profiles()}), 200


@settings_bp.route("/validate", methods=["POST"])
def validate_connection() -> tuple[Response, int]:
    """Validate S3 connection with current or provided settings.

    Request body (optional):
        aws_profile, aws_region, s3_bucket, s3_endpoint_url

    Returns:
        JSON response with validation result
    """
    settings = get_settings()
    data = (request.get_json(silent=True) or {}) if request.is_json else {}
    profile = data.get("aws_profile", settings.aws_profile)
    region = data.get("aws_region", settings.aws_region)
    bucket = data.get("s3_bucket", settings.s3_bucket)
    endpoint_url = data.get("s3_endpoint_url", settings.s3_endpoint_url) or None

    if not bucket:
        return jsonify({"error": "S3 bucket not specified"}), 400

    log = get_log_service()
    try:
        client = s3_service.create_s3_client(profile, region, endpoint_url)
        result = s3_service.validate_bucket_access(client, bucket)
    except Exception as e:
        log.error(
            "settings",
            "connection_test",
            f"Connection test failed: {e}",
            {"bucket": bucket, "profile": profile, "region": region, "success": False},
        )
        return jsonify({"success": False, "bucket": bucket, "error": str(e)}), 200

    log_fn = log.info if result["success"] else log.warning
    log_fn(
        "settings",
        "connection_test",
        f"Connection test {'succeeded' if result['success'] else 'failed'} for bucket '{bucket}'",
        {"bucket": bucket, "profile": profile, "region": region, "success": result["success"]},
    )
    return jsonify(result), 200
