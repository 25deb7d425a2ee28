"""Flask application factory for the job photos uploader."""

import os

from flask import Flask

from job_photos.config import get_package_version, get_settings


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")
    # Photo categories have no per-file ceiling, so allow large batches
    app.config["MAX_CONTENT_LENGTH"] = 2 * 1024 * 1024 * 1024

    app.config["SETTINGS"] = settings

    from job_photos.routes.logs import logs_bp
    from job_photos.routes.main import main_bp
    from job_photos.routes.photos import photos_bp
    from job_photos.routes.settings import settings_bp
    from job_photos.routes.upload import upload_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(upload_bp, url_prefix="/api/photos/upload")
    app.register_blueprint(photos_bp, url_prefix="/api/photos")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")

    from job_photos.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {"version": get_package_version()},
    )

    return app
