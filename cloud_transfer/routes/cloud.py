"""Cloud bucket API routes: change polling, clock, usage and object writes"""

import json
import time
from collections import deque
from collections.abc import Generator
from typing import Any

from flask import Blueprint, Response, jsonify, request

from cloud_transfer.config import get_settings
from cloud_transfer.services.cloud_client import get_cloud_client
from cloud_transfer.services.errors import (
    AuthorizationError,
    InitializationError,
    TransferError,
    UnsupportedTypeError,
)
from cloud_transfer.services.log_service import get_log_service

cloud_bp = Blueprint("cloud", __name__)

# Checked in order, first match wins
ERROR_STATUS: list[tuple[type[Exception], int]] = [
    (AuthorizationError, 401),
    (UnsupportedTypeError, 400),
    (InitializationError, 503),
    (TransferError, 502),
    (ValueError, 400),
]


def error_response(e: Exception) -> tuple[Response, int]:
    """Turn a cloud failure into a JSON error response.

    Exceptions with no mapped status are re-raised.
    """
    for error_cls, status in ERROR_STATUS:
        if isinstance(e, error_cls):
            body: dict[str, Any] = {"error": str(e)}
            if isinstance(e, TransferError) and e.status is not None:
                body["upstream_status"] = e.status
            return jsonify(body), status
    raise e


@cloud_bp.route("/poll/init", methods=["POST"])
def poll_init() -> tuple[Response, int]:
    """Read (or create) the bucket clock so change polling has a baseline.

    Returns:
        JSON response with the cached clock value
    """
    try:
        client = get_cloud_client()
        client.poll_init()
    except Exception as e:
        return error_response(e)

    return jsonify({"initialized": True, "last_mod": client.last_mod}), 200


@cloud_bp.route("/poll/start", methods=["POST"])
def start_polling() -> tuple[Response, int]:
    """Start background polling for changes.

    Request body (optional):
        interval: Seconds between polls (default: poll_interval_seconds setting)
    """
    settings = get_settings()
    interval: Any = settings.poll_interval_seconds
    if request.is_json:
        data = request.get_json() or {}
        interval = data.get("interval", interval)

    try:
        interval = float(interval)
    except (TypeError, ValueError):
        return jsonify({"error": "interval must be a number"}), 400
    if interval <= 0:
        return jsonify({"error": "interval must be positive"}), 400

    try:
        client = get_cloud_client()
    except Exception as e:
        return error_response(e)

    client.poll_for_updates(interval)
    get_log_service().info(
        "poll",
        "polling_started",
        f"Polling for cloud changes every {interval:g}s",
        {"interval": interval},
    )
    return jsonify({"polling": True, "interval": interval}), 200


@cloud_bp.route("/poll/stop", methods=["POST"])
def stop_polling() -> tuple[Response, int]:
    try:
        client = get_cloud_client()
    except Exception as e:
        return error_response(e)

    client.stop_poll_for_updates()
    get_log_service().info("poll", "polling_stopped", "Stopped polling for cloud changes")
    return jsonify({"polling": False}), 200


@cloud_bp.route("/clock", methods=["GET"])
def get_clock() -> tuple[Response, int]:
    """Get the locally cached clock and polling state."""
    try:
        client = get_cloud_client()
    except Exception as e:
        return error_response(e)

    detector = client.detector
    return jsonify(
        {
            "last_mod": detector.last_mod,
            "initialized": detector.initialized,
            "polling": detector.polling,
        }
    ), 200


@cloud_bp.route("/changes", methods=["GET"])
def stream_changes() -> Response | tuple[Response, int]:
    """Stream change notifications via Server-Sent Events.

    Each poll that sees the remote clock move produces one ``cloud_changed``
    event carrying the new clock value. Our own writes don't produce one.
    """
    try:
        client = get_cloud_client()
    except Exception as e:
        return error_response(e)

    def generate() -> Generator[str, None, None]:
        # Create a queue for this client
        queue: deque[dict[str, Any]] = deque()

        def on_change() -> None:
            queue.append({"type": "cloud_changed", "last_mod": client.last_mod})

        client.add_change_listener(on_change)
        try:
            yield f"data: {json.dumps({'type': 'connected', 'last_mod': client.last_mod})}\n\n"

            while True:
                while queue:
                    yield f"data: {json.dumps(queue.popleft())}\n\n"

                # Small delay to prevent busy waiting
                time.sleep(0.1)
        finally:
            client.remove_change_listener(on_change)

    return Response(
        generate(),
        mimetype="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@cloud_bp.route("/objects/<path:key>", methods=["DELETE"])
def delete_object(key: str) -> tuple[Response, int]:
    """Delete an object from the bucket and bump the clock."""
    try:
        get_cloud_client().delete(key)
    except Exception as e:
        return error_response(e)

    return jsonify({"success": True, "key": key}), 200


@cloud_bp.route("/usage", methods=["GET"])
def get_usage() -> tuple[Response, int]:
    """Get bucket usage in bytes and its capacity in GB."""
    try:
        client = get_cloud_client()
        usage = client.get_usage()
        max_gb = client.get_max_storage()
    except Exception as e:
        return error_response(e)

    return jsonify({"usage_bytes": usage, "max_storage_gb": max_gb}), 200


@cloud_bp.route("/json/<path:key>", methods=["POST"])
def put_json(key: str) -> tuple[Response, int]:
    """Store the request's JSON body under ``key``.

    Request body:
        Any JSON document
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    try:
        get_cloud_client().put_json_string(json.dumps(data), key)
    except Exception as e:
        return error_response(e)

    return jsonify({"success": True, "key": key}), 200
