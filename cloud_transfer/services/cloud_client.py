"""Client for moving recordings in and out of the cloud bucket.

``CloudClient.put_file`` chooses between a single signed PUT and a
multi-part upload by file size. Every successful write also bumps the
bucket's logical clock so that other clients polling it refresh.
"""

import logging
import os
import threading
from pathlib import Path
from typing import Any, Protocol

import requests

from cloud_transfer.config import build_cloud_client
from cloud_transfer.services.change_detector import ChangeDetector, ChangeListener
from cloud_transfer.services.downloader import Downloader
from cloud_transfer.services.errors import TransferError
from cloud_transfer.services.log_service import get_log_service
from cloud_transfer.services.transfer_types import (
    JSON_CONTENT_TYPE,
    MULTIPART_THRESHOLD_BYTES,
    MultipartSession,
    ProgressCallback,
)
from cloud_transfer.services.uploader import (
    MultiPartUploader,
    SinglePartUploader,
    is_success,
    put_signed,
)
from cloud_transfer.services.utils import format_file_size

logger = logging.getLogger(__name__)


class Gateway(Protocol):
    """Everything the client needs from a signing gateway."""

    def sign_put(self, key: str, length: int) -> str: ...

    def create_multipart_session(self, key: str, length: int) -> MultipartSession: ...

    def complete_multipart_session(self, key: str, tokens: list[str]) -> None: ...

    def get_clock(self) -> str: ...

    def set_clock(self, value: str) -> None: ...

    def get_object_size(self, key: str) -> int: ...

    def delete_object(self, key: str) -> None: ...

    def auth(self) -> None: ...

    def get_usage(self) -> int: ...

    def get_max_storage(self) -> int: ...

    def run_housekeeping(self) -> dict[str, Any]: ...

    def get_state(self) -> list[dict[str, Any]]: ...

    def post_video(self, metadata: dict[str, Any]) -> None: ...

    def delete_video(self, name: str) -> None: ...

    def protect_video(self, name: str, protected: bool) -> None: ...

    def tag_video(self, name: str, tag: str) -> None: ...


class CloudClient:
    """Uploads, downloads and change detection for one bucket."""

    def __init__(
        self,
        gateway: Gateway,
        detector: ChangeDetector | None = None,
        session: requests.Session | None = None,
        timeout: float | None = None,
        threshold: int = MULTIPART_THRESHOLD_BYTES,
    ) -> None:
        self.gateway = gateway
        self.detector = detector or ChangeDetector(gateway)
        # Signed URLs carry their own authorization, so this session has none.
        self.session = session or requests.Session()
        self.timeout = timeout
        self.threshold = threshold
        self.single_part = SinglePartUploader(gateway, self.session, timeout)
        self.multi_part = MultiPartUploader(gateway, self.session, timeout)
        self.downloader = Downloader(gateway, self.session, timeout)

    # -- Uploads --

    def uses_multipart(self, size: int) -> bool:
        """Whether a file of ``size`` bytes goes up in parts (sizes at the threshold do)."""
        return size >= self.threshold

    def put_file(
        self,
        file_path: str | Path,
        progress_callback: ProgressCallback | None = None,
    ) -> None:
        """Upload a file under its basename and bump the bucket clock.

        Errors from either upload path propagate unchanged.
        """
        path = Path(file_path)
        size = os.stat(path).st_size
        multipart = self.uses_multipart(size)
        logger.info("Uploading %s to %s (multipart=%s)", path, path.name, multipart)

        log = get_log_service()
        try:
            if multipart:
                self.multi_part.upload(path, progress_callback)
            else:
                self.single_part.upload(path, progress_callback)
        except Exception as e:
            log.error(
                "transfer",
                "upload_failed",
                f"Failed to upload {path.name}: {e}",
                {"key": path.name, "size": size, "multipart": multipart, "error": str(e)},
            )
            raise

        log.info(
            "transfer",
            "upload_completed",
            f"Uploaded {path.name} ({format_file_size(size)})",
            {"key": path.name, "size": size, "multipart": multipart},
        )
        self.detector.advance_clock()

    upload = put_file

    def put_json_string(self, text: str, key: str) -> None:
        """Write a JSON document to ``key`` and bump the bucket clock."""
        logger.info("PUT JSON string with key %s", key)
        body = text.encode("utf-8")
        signed_url = self.gateway.sign_put(key, len(body))
        response = put_signed(self.session, signed_url, body, JSON_CONTENT_TYPE, self.timeout)

        if not is_success(response):
            logger.error("JSON upload failed: %s %s %s", key, response.status_code, response.text)
            raise TransferError(
                "Uploading a JSON string to the cloud failed",
                status=response.status_code,
                body=response.text,
            )
        self.detector.advance_clock()

    # -- Downloads --

    def get_as_file(
        self,
        key: str,
        url: str,
        directory: str | Path,
        progress_callback: ProgressCallback | None = None,
    ) -> Path:
        """Download ``url`` into ``directory/key``."""
        logger.info("Downloading %s from cloud store", key)
        path = self.downloader.download(key, url, directory, progress_callback)
        get_log_service().info(
            "transfer",
            "download_completed",
            f"Downloaded {key}",
            {"key": key, "path": str(path)},
        )
        return path

    download = get_as_file

    # -- Mutations --

    def delete(self, key: str) -> None:
        logger.info("Deleting %s", key)
        self.gateway.delete_object(key)
        get_log_service().info("transfer", "object_deleted", f"Deleted {key}", {"key": key})
        self.detector.advance_clock()

    def get_state(self) -> list[dict[str, Any]]:
        """Video metadata records for the bucket."""
        return self.gateway.get_state()

    def post_video(self, metadata: dict[str, Any]) -> None:
        self.gateway.post_video(metadata)
        self.detector.advance_clock()

    def delete_video(self, name: str) -> None:
        self.gateway.delete_video(name)
        self.detector.advance_clock()

    def protect_video(self, name: str, protected: bool) -> None:
        self.gateway.protect_video(name, protected)
        self.detector.advance_clock()

    def tag_video(self, name: str, tag: str) -> None:
        self.gateway.tag_video(name, tag)
        self.detector.advance_clock()

    # -- Account --

    def auth(self) -> None:
        self.gateway.auth()

    def get_usage(self) -> int:
        return self.gateway.get_usage()

    def get_max_storage(self) -> int:
        return self.gateway.get_max_storage()

    def run_housekeeping(self) -> dict[str, Any]:
        return self.gateway.run_housekeeping()

    # -- Change detection --

    @property
    def last_mod(self) -> str:
        return self.detector.last_mod

    def poll_init(self) -> None:
        self.detector.poll_init()

    def poll_for_updates(self, seconds: float) -> None:
        self.detector.start_polling(seconds)

    def stop_poll_for_updates(self) -> None:
        self.detector.stop_polling()

    def add_change_listener(self, listener: ChangeListener) -> None:
        self.detector.add_listener(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        self.detector.remove_listener(listener)


# Module-level singleton accessor
_cloud_client: CloudClient | None = None
_client_lock = threading.Lock()


def get_cloud_client() -> CloudClient:
    """Get the shared CloudClient, built from settings on first use.

    Raises:
        ValueError: If the settings don't describe a usable gateway
    """
    global _cloud_client
    with _client_lock:
        if _cloud_client is None:
            _cloud_client = build_cloud_client()
        return _cloud_client


def reset_cloud_client() -> None:
    """Stop polling and drop the shared client so settings changes take effect."""
    global _cloud_client
    with _client_lock:
        if _cloud_client is not None:
            _cloud_client.stop_poll_for_updates()
        _cloud_client = None
