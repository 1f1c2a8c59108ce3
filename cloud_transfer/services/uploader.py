"""Single-part and multi-part uploads to pre-signed URLs.

Both uploaders stream the file from disk through a ``RangeReader`` so a
multi-gigabyte recording is never held in memory. ``requests`` sends any
body with ``read`` and ``__len__`` using a fixed Content-Length and reads
it in small blocks.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol

import requests

from cloud_transfer.services.errors import TransferError
from cloud_transfer.services.transfer_types import (
    PART_SIZE_BYTES,
    STREAM_CHUNK_BYTES,
    MonotonicProgress,
    MultipartSession,
    PartRange,
    ProgressCallback,
    TransferTarget,
    compute_part_ranges,
    content_type_for,
    percent,
)

logger = logging.getLogger(__name__)


class UploadGateway(Protocol):
    """The part of the signing gateway the uploaders need."""

    def sign_put(self, key: str, length: int) -> str: ...

    def create_multipart_session(self, key: str, length: int) -> MultipartSession: ...

    def complete_multipart_session(self, key: str, tokens: list[str]) -> None: ...


class RangeReader:
    """Read-only file view over ``[offset, offset + length)``.

    Calls ``on_read`` with the running byte count after every read.
    """

    def __init__(
        self,
        path: str | Path,
        offset: int,
        length: int,
        on_read: Callable[[int], None] | None = None,
        chunk_size: int = STREAM_CHUNK_BYTES,
    ) -> None:
        self.length = length
        self.sent = 0
        self._remaining = length
        self._on_read = on_read
        self._chunk_size = chunk_size
        self._file = open(path, "rb")
        self._file.seek(offset)

    def __len__(self) -> int:
        return self.length

    def read(self, size: int | None = -1) -> bytes:
        if self._remaining <= 0:
            return b""
        if size is None or size < 0 or size > self._remaining:
            size = self._remaining
        data = self._file.read(size)
        self._remaining -= len(data)
        self.sent += len(data)
        if data and self._on_read:
            self._on_read(self.sent)
        return data

    def __iter__(self) -> Any:
        while True:
            chunk = self.read(self._chunk_size)
            if not chunk:
                return
            yield chunk

    def close(self) -> None:
        self._file.close()

    def __enter__(self) -> "RangeReader":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def put_signed(
    session: requests.Session,
    url: str,
    body: RangeReader | bytes,
    content_type: str,
    timeout: float | None = None,
) -> requests.Response:
    """PUT ``body`` to a signed URL.

    Redirects are not followed; the object store answers signed PUTs
    directly and following one would need the body a second time.
    """
    headers = {"Content-Length": str(len(body)), "Content-Type": content_type}
    try:
        return session.put(
            url,
            data=body if len(body) else b"",
            headers=headers,
            timeout=timeout,
            allow_redirects=False,
        )
    except requests.RequestException as e:
        raise TransferError(f"Upload request failed: {e}") from e


def is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


class SinglePartUploader:
    """Upload a whole file with one signed PUT."""

    def __init__(
        self,
        gateway: UploadGateway,
        session: requests.Session | None = None,
        timeout: float | None = None,
    ) -> None:
        self.gateway = gateway
        self.session = session or requests.Session()
        self.timeout = timeout

    def upload(
        self,
        file_path: str | Path,
        progress_callback: ProgressCallback | None = None,
    ) -> TransferTarget:
        """Upload ``file_path`` under its basename.

        Raises:
            UnsupportedTypeError: Before any network call, for a disallowed suffix
            TransferError: If signing or the PUT fails
        """
        path = Path(file_path)
        key = path.name
        content_type = content_type_for(key)
        target = TransferTarget(key=key, size=path.stat().st_size)
        progress = MonotonicProgress(progress_callback)

        signed_url = self.gateway.sign_put(key, target.size)
        start = time.monotonic()

        def on_read(sent: int) -> None:
            progress(percent(sent, target.size))

        with RangeReader(path, 0, target.size, on_read=on_read) as body:
            response = put_signed(self.session, signed_url, body, content_type, self.timeout)

        if not is_success(response):
            logger.error("File upload failed: %s %s %s", key, response.status_code, response.text)
            raise TransferError(
                "Uploading a file to the cloud failed",
                status=response.status_code,
                body=response.text,
            )

        progress.finish()
        logger.info(
            "Single part upload of %s (%d bytes) took %.1f seconds",
            path,
            target.size,
            time.monotonic() - start,
        )
        return target


class MultiPartUploader:
    """Upload a file as a sequence of signed part PUTs, then finalize.

    Parts go up strictly one after another in ascending order; the ETag of
    each is kept in that order for the completion call. Nothing is cleaned
    up on failure, the remote side expires abandoned sessions.
    """

    def __init__(
        self,
        gateway: UploadGateway,
        session: requests.Session | None = None,
        timeout: float | None = None,
        part_size: int = PART_SIZE_BYTES,
    ) -> None:
        self.gateway = gateway
        self.session = session or requests.Session()
        self.timeout = timeout
        self.part_size = part_size

    def upload(
        self,
        file_path: str | Path,
        progress_callback: ProgressCallback | None = None,
    ) -> TransferTarget:
        """Upload ``file_path`` under its basename in parts.

        Raises:
            UnsupportedTypeError: Before any network call, for a disallowed suffix
            PartCountMismatchError: If the gateway's part count disagrees with ours
            TransferError: If any part or the completion call fails
        """
        path = Path(file_path)
        key = path.name
        content_type = content_type_for(key)
        target = TransferTarget(key=key, size=path.stat().st_size)
        progress = MonotonicProgress(progress_callback)

        session = self.gateway.create_multipart_session(key, target.size)
        ranges = compute_part_ranges(target.size, session.num_parts, self.part_size)
        logger.debug("Multipart upload of %s has %d parts", key, session.num_parts)

        start = time.monotonic()
        tokens: list[str] = []

        for part in ranges:
            logger.debug("Starting part %d of %s", part.index + 1, key)
            token = self._upload_part(
                path, session.part_urls[part.index], part, len(ranges), content_type, progress
            )
            tokens.append(token)
            logger.debug("Finished part %d of %s, etag %s", part.index + 1, key, token)
            progress(percent(part.end, target.size))

        self.gateway.complete_multipart_session(key, tokens)
        progress.finish()

        logger.info(
            "Multipart upload of %s (%d bytes) took %.1f seconds",
            path,
            target.size,
            time.monotonic() - start,
        )
        return target

    def _upload_part(
        self,
        path: Path,
        url: str,
        part: PartRange,
        num_parts: int,
        content_type: str,
        progress: MonotonicProgress,
    ) -> str:
        """PUT one part and return its ETag with quotes removed."""

        def on_read(sent: int) -> None:
            previous = 100 * part.index / num_parts
            current = 100 * sent / part.length if part.length else 100
            progress(round(previous + current / num_parts))

        try:
            with RangeReader(path, part.offset, part.length, on_read=on_read) as body:
                response = put_signed(self.session, url, body, content_type, self.timeout)
        except TransferError as e:
            raise TransferError(
                f"Multipart upload failed on part {part.index + 1} of {num_parts}: {e}"
            ) from e

        if not is_success(response):
            logger.error(
                "Multipart upload failed on part %d: %s %s",
                part.index + 1,
                response.status_code,
                response.text,
            )
            raise TransferError(
                f"Multipart upload failed on part {part.index + 1} of {num_parts}",
                status=response.status_code,
                body=response.text,
            )

        etag = response.headers.get("ETag", "").replace('"', "")
        if not etag:
            logger.error("No etag in response headers for part %d", part.index + 1)
            raise TransferError(
                f"Multipart upload failed: no ETag for part {part.index + 1} of {num_parts}",
                status=response.status_code,
                body=response.text,
            )
        return etag
