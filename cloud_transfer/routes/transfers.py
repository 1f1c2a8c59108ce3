"""Transfer API routes: uploads, downloads and their progress"""

import json
import threading
import time
from collections import deque
from collections.abc import Generator
from pathlib import PurePosixPath
from typing import Any

from flask import Blueprint, Response, jsonify, request

from cloud_transfer.config import get_settings
from cloud_transfer.routes.cloud import error_response
from cloud_transfer.services.cloud_client import CloudClient, get_cloud_client
from cloud_transfer.services.transfer_manager import TransferJob, get_transfer_manager

transfers_bp = Blueprint("transfers", __name__)

# Store for SSE clients per job
_sse_queues: dict[str, list[deque[dict[str, Any]]]] = {}
_sse_lock = threading.Lock()


def send_sse_event(job_id: str, data: dict[str, Any]) -> None:
    """Send an SSE event to all clients listening for a job."""
    with _sse_lock:
        queues = _sse_queues.get(job_id, [])
        for q in queues:
            q.append(data)


def _progress_callback(job: TransferJob) -> None:
    """Send progress updates via SSE."""
    send_sse_event(job.job_id, job.to_dict())


def _start_job(job: TransferJob, client: CloudClient) -> None:
    manager = get_transfer_manager()

    def run_transfer() -> None:
        manager.run_job(job.job_id, client, _progress_callback)

    thread = threading.Thread(target=run_transfer, name=f"transfer-{job.job_id[:8]}", daemon=True)
    thread.start()


@transfers_bp.route("/upload", methods=["POST"])
def start_upload() -> tuple[Response, int]:
    """Upload local files to the bucket in the background.

    Request body:
        file_paths: List of local file paths

    Returns:
        JSON response with job_id and initial status (202 Accepted).
        Progress is streamed on /api/transfers/progress/<job_id>.
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json()
    if not data or not data.get("file_paths"):
        return jsonify({"error": "No files provided"}), 400

    try:
        client = get_cloud_client()
    except Exception as e:
        return error_response(e)

    job = get_transfer_manager().create_upload_job(data["file_paths"])
    if not job.files:
        return jsonify({"error": "None of the provided files exist"}), 400

    _start_job(job, client)
    return jsonify(job.to_dict()), 202


@transfers_bp.route("/download", methods=["POST"])
def start_download() -> tuple[Response, int]:
    """Download an object into the download directory in the background.

    Request body:
        key: Object key, used as the local filename
        url: URL to fetch the object from
    """
    if not request.is_json:
        return jsonify({"error": "JSON body required"}), 400

    data = request.get_json() or {}
    key = data.get("key", "")
    url = data.get("url", "")
    if not key or not url:
        return jsonify({"error": "key and url are required"}), 400

    # The key becomes a filename inside the download directory
    if PurePosixPath(key).name != key or key in (".", ".."):
        return jsonify({"error": f"Invalid key: {key}"}), 400

    try:
        client = get_cloud_client()
    except Exception as e:
        return error_response(e)

    job = get_transfer_manager().create_download_job(
        key, url, get_settings().download_directory
    )
    _start_job(job, client)
    return jsonify(job.to_dict()), 202


@transfers_bp.route("/progress/<job_id>", methods=["GET"])
def get_progress(job_id: str) -> Response:
    """Stream progress updates for a job via Server-Sent Events.

    Args:
        job_id: The job ID to monitor

    Returns:
        SSE stream of progress updates, closed once the job finishes
    """
    manager = get_transfer_manager()

    def generate() -> Generator[str, None, None]:
        # Create a queue for this client
        queue: deque[dict[str, Any]] = deque()
        with _sse_lock:
            _sse_queues.setdefault(job_id, []).append(queue)

        try:
            # Send initial state
            job = manager.get_job(job_id)
            if not job:
                yield 'data: {"error": "Job not found"}\n\n'
                return
            yield f"data: {json.dumps(job.to_dict())}\n\n"
            if job.is_finished:
                return

            while True:
                while queue:
                    data = queue.popleft()
                    yield f"data: {json.dumps(data)}\n\n"
                    if data.get("status") in ("completed", "failed"):
                        return

                # Small delay to prevent busy waiting
                time.sleep(0.1)

                # Catch a finish that happened before the queue was registered
                job = manager.get_job(job_id)
                if not job:
                    yield 'data: {"error": "Job not found"}\n\n'
                    return
                if job.is_finished and not queue:
                    yield f"data: {json.dumps(job.to_dict())}\n\n"
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


@transfers_bp.route("/status/<job_id>", methods=["GET"])
def get_status(job_id: str) -> tuple[Response, int]:
    """Get current status of a job (non-streaming)."""
    job = get_transfer_manager().get_job(job_id)
    if not job:
        return jsonify({"error": "Job not found"}), 404

    return jsonify(job.to_dict()), 200


@transfers_bp.route("/active", methods=["GET"])
def get_active_jobs() -> tuple[Response, int]:
    """Get all jobs that haven't finished, oldest first."""
    jobs = sorted(get_transfer_manager().get_active_jobs(), key=lambda j: j.created_at)
    return jsonify({"jobs": [job.to_dict() for job in jobs]}), 200
