"""Streamed download of a cloud object to a local file."""

import logging
from pathlib import Path
from typing import Protocol

import requests

from cloud_transfer.services.errors import TransferError
from cloud_transfer.services.transfer_types import (
    STREAM_CHUNK_BYTES,
    MonotonicProgress,
    ProgressCallback,
    percent,
)

logger = logging.getLogger(__name__)


class SizeLookup(Protocol):
    def get_object_size(self, key: str) -> int: ...


class Downloader:
    """Download objects from (signed or public) URLs with progress."""

    def __init__(
        self,
        gateway: SizeLookup,
        session: requests.Session | None = None,
        timeout: float | None = None,
        chunk_size: int = STREAM_CHUNK_BYTES,
    ) -> None:
        self.gateway = gateway
        self.session = session or requests.Session()
        self.timeout = timeout
        self.chunk_size = chunk_size

    def download(
        self,
        key: str,
        source_url: str,
        dest_dir: str | Path,
        progress_callback: ProgressCallback | None = None,
    ) -> Path:
        """Stream ``source_url`` into ``dest_dir/key``.

        The object size comes from the gateway and is only used for
        progress; failures of that lookup propagate as-is.

        Returns:
            Path of the written file

        Raises:
            TransferError: On a non-2xx response or a failed write
        """
        size = self.gateway.get_object_size(key)
        logger.info("Bytes to download %d for key %s", size, key)

        progress = MonotonicProgress(progress_callback)
        destination = Path(dest_dir) / key

        try:
            response = self.session.get(source_url, stream=True, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransferError(f"Download of {key} failed: {e}") from e

        with response:
            if not 200 <= response.status_code < 300:
                logger.error("Download failed: %s %s", key, response.status_code)
                raise TransferError(
                    f"Download of {key} failed",
                    status=response.status_code,
                    body=response.text,
                )

            received = 0
            try:
                with open(destination, "wb") as f:
                    for chunk in response.iter_content(chunk_size=self.chunk_size):
                        if not chunk:
                            continue
                        f.write(chunk)
                        received += len(chunk)
                        progress(percent(received, size))
            except OSError as e:
                destination.unlink(missing_ok=True)
                raise TransferError(f"Writing {destination} failed: {e}") from e
            except requests.RequestException as e:
                destination.unlink(missing_ok=True)
                raise TransferError(f"Download of {key} failed: {e}") from e

        progress.finish()
        logger.info("Downloaded %s (%d bytes) to %s", key, received, destination)
        return destination
