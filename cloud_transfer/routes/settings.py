"""Settings API routes for cloud_transfer"""

from flask import Blueprint, Response, jsonify, request

from cloud_transfer.config import GATEWAY_BACKENDS, get_package_version, get_settings
from cloud_transfer.routes.cloud import error_response
from cloud_transfer.services.cloud_client import get_cloud_client, reset_cloud_client
from cloud_transfer.services.log_service import get_log_service
from cloud_transfer.services.s3_gateway import get_available_profiles

settings_bp = Blueprint("settings", __name__)

ALLOWED_KEYS = {
    "api_endpoint",
    "cloud_user",
    "cloud_password",
    "bucket",
    "gateway_backend",
    "aws_profile",
    "aws_region",
    "s3_endpoint_url",
    "max_storage_gb",
    "poll_interval_seconds",
    "request_timeout_seconds",
    "download_directory",
    "log_directory",
}

# Keys that change how the cloud client is built
CLIENT_KEYS = ALLOWED_KEYS - {"download_directory", "log_directory", "poll_interval_seconds"}


@settings_bp.route("", methods=["GET"])
def get_all_settings() -> tuple[Response, int]:
    """Get all current settings, password masked."""
    settings = get_settings()
    return jsonify(settings.all()), 200


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

    backend = filtered_data.get("gateway_backend")
    if backend is not None and backend not in GATEWAY_BACKENDS:
        return jsonify({"error": f"gateway_backend must be one of {list(GATEWAY_BACKENDS)}"}), 400

    settings = get_settings()
    settings.update(filtered_data)

    # Rebuild the client on next use so it picks up new credentials
    if CLIENT_KEYS & filtered_data.keys():
        reset_cloud_client()

    log = get_log_service()
    log.info(
        "settings",
        "settings_updated",
        f"Updated settings: {', '.join(filtered_data.keys())}",
        {"changed_keys": list(filtered_data.keys())},
    )

    return jsonify(settings.all()), 200


@settings_bp.route("/profiles", methods=["GET"])
def get_profiles() -> tuple[Response, int]:
    """Get list of available AWS profiles for the S3 gateway backend."""
    profiles = get_available_profiles()
    return jsonify({"profiles": profiles}), 200


@settings_bp.route("/validate", methods=["POST"])
def validate_connection() -> tuple[Response, int]:
    """Check the configured credentials against the gateway.

    Returns:
        JSON response with the validation result, or an error status
    """
    settings = get_settings()
    log = get_log_service()
    try:
        get_cloud_client().auth()
    except Exception as e:
        log.warning(
            "settings",
            "connection_test",
            f"Connection test failed for bucket '{settings.bucket}': {e}",
            {"bucket": settings.bucket, "success": False, "error": str(e)},
        )
        return error_response(e)

    log.info(
        "settings",
        "connection_test",
        f"Connection test succeeded for bucket '{settings.bucket}'",
        {"bucket": settings.bucket, "success": True},
    )
    return jsonify(
        {"success": True, "message": f"Successfully connected to bucket '{settings.bucket}'"}
    ), 200


@settings_bp.route("/version", methods=["GET"])
def get_version() -> tuple[Response, int]:
    return jsonify({"version": get_package_version()}), 200
