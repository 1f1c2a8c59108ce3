"""Flask application factory for the cloud transfer service."""

import os

from flask import Flask

from cloud_transfer.config import get_package_version, get_settings


def create_app() -> Flask:
    """Create and configure the Flask application."""
    app = Flask(__name__)

    # Load configuration
    settings = get_settings()
    app.config["SECRET_KEY"] = os.environ.get("SECRET_KEY", "dev-secret-key-change-in-production")

    # Store settings in app config for easy access
    app.config["SETTINGS"] = settings

    # Register blueprints
    from cloud_transfer.routes.cloud import cloud_bp
    from cloud_transfer.routes.logs import logs_bp
    from cloud_transfer.routes.settings import settings_bp
    from cloud_transfer.routes.transfers import transfers_bp

    app.register_blueprint(transfers_bp, url_prefix="/api/transfers")
    app.register_blueprint(cloud_bp, url_prefix="/api/cloud")
    app.register_blueprint(settings_bp, url_prefix="/api/settings")
    app.register_blueprint(logs_bp, url_prefix="/api/logs")

    # Log application startup
    from cloud_transfer.services.log_service import get_log_service

    log = get_log_service()
    log.info(
        "app",
        "app_started",
        f"Application started (v{get_package_version()})",
        {"version": get_package_version(), "bucket": settings.bucket},
    )

    return app
