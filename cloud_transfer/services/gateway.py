"""Client for the signing/metadata API that fronts the cloud bucket.

The API authorizes every upload: we ask it for a pre-signed URL for an
exact byte length and it checks the bucket's usage against its quota
before signing. It also owns the bucket's logical clock (the ``mtime``
object) and the video metadata records.
"""

import logging
from typing import Any
from urllib.parse import quote

import requests

from cloud_transfer.services.errors import (
    AuthorizationError,
    ClockMissingError,
    QuotaError,
    TransferError,
)
from cloud_transfer.services.transfer_types import MultipartSession

logger = logging.getLogger(__name__)

DEFAULT_API_ENDPOINT = "https://warcraft-recorder-api-v2.alex-kershaw4.workers.dev"


class SigningGateway:
    """Thin ``requests`` wrapper around the signing API for one bucket."""

    def __init__(
        self,
        bucket: str,
        user: str,
        password: str,
        endpoint: str = DEFAULT_API_ENDPOINT,
        timeout: float = 60,
        session: requests.Session | None = None,
    ) -> None:
        self.bucket = bucket
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        self._session.auth = (user, password)

    def _url(self, *parts: str) -> str:
        encoded = [quote(self.bucket, safe="")]
        encoded.extend(quote(str(p), safe="") for p in parts)
        return f"{self.endpoint}/{'/'.join(encoded)}"

    def _send(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        """Issue a request; raise on network failure or credential rejection."""
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.debug("%s %s failed: %s", method, url, e)
            raise TransferError(f"Could not reach cloud API: {e}") from e

        if response.status_code in (401, 403):
            logger.error("Auth failed: %s %s", response.status_code, response.text)
            raise AuthorizationError()
        return response

    @staticmethod
    def _check(
        response: requests.Response,
        message: str,
        error_cls: type[TransferError] = TransferError,
    ) -> requests.Response:
        if not 200 <= response.status_code < 300:
            logger.error("%s: %s %s", message, response.status_code, response.text)
            raise error_cls(message, status=response.status_code, body=response.text)
        return response

    def _call(
        self,
        method: str,
        *parts: str,
        message: str,
        error_cls: type[TransferError] = TransferError,
        **kwargs: Any,
    ) -> requests.Response:
        response = self._send(method, self._url(*parts), **kwargs)
        return self._check(response, message, error_cls)

    # -- Signed uploads --

    def sign_put(self, key: str, length: int) -> str:
        """Get a signed URL for a single PUT of exactly ``length`` bytes."""
        logger.info("Getting signed PUT URL for %s (%d bytes)", key, length)
        response = self._call(
            "GET",
            "upload",
            key,
            str(length),
            message="Failed to get signed upload request",
            error_cls=QuotaError,
        )
        return str(response.json()["signed"])

    def create_multipart_session(self, key: str, length: int) -> MultipartSession:
        """Create a multi-part upload; the gateway decides the number of parts."""
        logger.info("Creating signed multipart upload for %s (%d bytes)", key, length)
        response = self._call(
            "GET",
            "create-multipart-upload",
            key,
            str(length),
            message="Failed to get signed multipart upload request",
            error_cls=QuotaError,
        )
        urls = response.json().get("urls", [])
        return MultipartSession(key=key, part_urls=list(urls))

    def complete_multipart_session(self, key: str, tokens: list[str]) -> None:
        """Finalize a multi-part upload with the part ETags in part order."""
        logger.info("Completing multipart upload for %s (%d parts)", key, len(tokens))
        self._call(
            "POST",
            "complete-multipart-upload",
            key,
            message="Failed to complete multipart upload",
            json={"etags": tokens},
        )

    # -- Logical clock --

    def get_clock(self) -> str:
        """Read the bucket's last-modified clock.

        Raises:
            ClockMissingError: If the bucket has no clock yet
        """
        response = self._send("GET", self._url("mtime"))
        if response.status_code == 404 or "NoSuchKey" in response.text:
            raise ClockMissingError(
                "Bucket has no mtime yet", status=response.status_code, body=response.text
            )
        self._check(response, "Failed to get mtime")
        return response.text.strip()

    def set_clock(self, value: str) -> None:
        """Overwrite the bucket's last-modified clock."""
        self._call("POST", "mtime", value, message="Failed to update mtime")

    # -- Objects --

    def get_object_size(self, key: str) -> int:
        response = self._call("GET", "size", key, message="Failed to get object size")
        return int(response.json()["size"])

    def delete_object(self, key: str) -> None:
        self._call("DELETE", key, message=f"Failed to delete {key}")

    # -- Account --

    def auth(self) -> None:
        """Check we're authenticated and authorized for the bucket."""
        self._call("GET", "auth", message="Error logging into cloud store")
        logger.info("Auth success for bucket %s", self.bucket)

    def get_usage(self) -> int:
        """Total bytes in use by the bucket."""
        response = self._call("GET", "usage", message="Failed to get bucket usage")
        return int(response.json()["usage"])

    def get_max_storage(self) -> int:
        """Bucket capacity in GB."""
        response = self._call("GET", "storage", message="Error logging into cloud store")
        return int(response.json()["maxGB"])

    def run_housekeeping(self) -> dict[str, Any]:
        response = self._call("POST", "housekeeping", message="Housekeeping failed")
        result: dict[str, Any] = response.json() if response.content else {}
        logger.info("Housekeeping results: %s", result)
        return result

    # -- Video metadata --

    def get_state(self) -> list[dict[str, Any]]:
        response = self._call("GET", "videos", message="Failed to get video state")
        return list(response.json())

    def post_video(self, metadata: dict[str, Any]) -> None:
        self._call("POST", "videos", message="Failed to add a video to database", json=metadata)

    def delete_video(self, name: str) -> None:
        self._call("DELETE", "videos", name, message="Failed to delete a video from database")

    def protect_video(self, name: str, protected: bool) -> None:
        self._call(
            "POST",
            "videos",
            name,
            "protected",
            message="Failed to protect a video",
            data="true" if protected else "false",
        )

    def tag_video(self, name: str, tag: str) -> None:
        self._call(
            "POST",
            "videos",
            name,
            "tag",
            message="Failed to tag a video",
            data=tag.encode("utf-8"),
        )
