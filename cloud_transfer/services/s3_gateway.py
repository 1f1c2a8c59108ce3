"""Signing gateway backed directly by an S3-compatible bucket.

Does on the client what the signing API does server-side: checks bucket
usage against a quota, presigns PUT and UploadPart URLs, and keeps the
logical clock in an ``mtime`` object. Video metadata lives as one JSON
record per video under ``videos/``. Useful against a self-hosted R2/S3
bucket where we hold the credentials ourselves.
"""

import configparser
import json
import logging
from pathlib import Path
from typing import Any, NoReturn

import boto3
from botocore.exceptions import ClientError
from mypy_boto3_s3 import S3Client

from cloud_transfer.services.errors import (
    AuthorizationError,
    ClockMissingError,
    QuotaError,
    TransferError,
)
from cloud_transfer.services.transfer_types import (
    PART_SIZE_BYTES,
    MultipartSession,
    expected_part_count,
)

logger = logging.getLogger(__name__)

CLOCK_KEY = "mtime"
VIDEO_PREFIX = "videos/"
AUTH_ERROR_CODES = {"AccessDenied", "403", "InvalidAccessKeyId", "SignatureDoesNotMatch"}
MISSING_KEY_CODES = {"NoSuchKey", "404"}


def get_available_profiles() -> list[str]:
    """Get list of available AWS profiles from ~/.aws/config and ~/.aws/credentials."""
    profiles: set[str] = set()

    credentials_path = Path.home() / ".aws" / "credentials"
    if credentials_path.exists():
        config = configparser.ConfigParser()
        config.read(credentials_path)
        profiles.update(config.sections())

    config_path = Path.home() / ".aws" / "config"
    if config_path.exists():
        config = configparser.ConfigParser()
        config.read(config_path)
        for section in config.sections():
            # Config file uses "profile name" format
            profiles.add(section.removeprefix("profile "))

    profiles.add("default")
    return sorted(profiles)


def create_s3_client(
    profile: str,
    region: str = "auto",
    endpoint_url: str | None = None,
) -> S3Client:
    """Create an S3 client using the specified AWS profile.

    Args:
        profile: AWS profile name from ~/.aws/credentials or ~/.aws/config
        region: Region name ("auto" for R2)
        endpoint_url: Endpoint of an S3-compatible store, None for AWS

    Returns:
        Configured S3 client
    """
    session = boto3.Session(profile_name=profile, region_name=region)
    client: S3Client = session.client("s3", endpoint_url=endpoint_url)
    return client


class S3SigningGateway:
    """Presigns uploads and stores the logical clock in one S3 bucket.

    Multi-part upload IDs are kept in memory between create and complete;
    a session doesn't survive the process.
    """

    def __init__(
        self,
        client: S3Client,
        bucket: str,
        max_storage_bytes: int | None = None,
        part_size: int = PART_SIZE_BYTES,
        expires_in: int = 3600,
    ) -> None:
        self._client = client
        self.bucket = bucket
        self.max_storage_bytes = max_storage_bytes
        self.part_size = part_size
        self.expires_in = expires_in
        self._upload_ids: dict[str, str] = {}

    @classmethod
    def from_profile(
        cls,
        bucket: str,
        profile: str,
        region: str = "auto",
        endpoint_url: str | None = None,
        max_storage_bytes: int | None = None,
    ) -> "S3SigningGateway":
        client = create_s3_client(profile, region, endpoint_url)
        return cls(client, bucket, max_storage_bytes=max_storage_bytes)

    def _wrap_client_error(self, e: ClientError, operation: str, key: str) -> NoReturn:
        """Map a ClientError onto our error types, logging the original at DEBUG."""
        logger.debug("S3 %s failed for key=%s: %s", operation, key, e)
        error = e.response.get("Error", {})
        code = str(error.get("Code", "Unknown"))
        status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if code in AUTH_ERROR_CODES:
            raise AuthorizationError() from e
        raise TransferError(
            f"S3 {operation} failed for key={key}: {code}",
            status=status,
            body=str(error.get("Message", "")),
        ) from e

    def _check_quota(self, key: str, length: int) -> None:
        if self.max_storage_bytes is None:
            return
        usage = self.get_usage()
        if usage + length > self.max_storage_bytes:
            logger.error(
                "Refusing to sign %s: %d + %d bytes exceeds %d",
                key,
                usage,
                length,
                self.max_storage_bytes,
            )
            raise QuotaError(
                "Failed to get signed upload request: bucket storage limit reached",
                status=403,
            )

    # -- Signed uploads --

    def sign_put(self, key: str, length: int) -> str:
        self._check_quota(key, length)
        try:
            url: str = self._client.generate_presigned_url(
                "put_object",
                Params={"Bucket": self.bucket, "Key": key, "ContentLength": length},
                ExpiresIn=self.expires_in,
            )
        except ClientError as e:
            self._wrap_client_error(e, "sign", key)
        return url

    def create_multipart_session(self, key: str, length: int) -> MultipartSession:
        self._check_quota(key, length)
        try:
            response = self._client.create_multipart_upload(Bucket=self.bucket, Key=key)
            upload_id = response["UploadId"]
            urls = [
                self._client.generate_presigned_url(
                    "upload_part",
                    Params={
                        "Bucket": self.bucket,
                        "Key": key,
                        "UploadId": upload_id,
                        "PartNumber": part_number,
                    },
                    ExpiresIn=self.expires_in,
                )
                for part_number in range(1, expected_part_count(length, self.part_size) + 1)
            ]
        except ClientError as e:
            self._wrap_client_error(e, "create multipart", key)

        self._upload_ids[key] = upload_id
        return MultipartSession(key=key, part_urls=urls)

    def complete_multipart_session(self, key: str, tokens: list[str]) -> None:
        upload_id = self._upload_ids.pop(key, None)
        if upload_id is None:
            raise TransferError(f"No multipart upload in progress for {key}")
        parts = [{"ETag": f'"{etag}"', "PartNumber": i} for i, etag in enumerate(tokens, start=1)]
        try:
            self._client.complete_multipart_upload(
                Bucket=self.bucket,
                Key=key,
                UploadId=upload_id,
                MultipartUpload={"Parts": parts},  # type: ignore[typeddict-item]
            )
        except ClientError as e:
            self._wrap_client_error(e, "complete multipart", key)

    # -- Logical clock --

    def get_clock(self) -> str:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=CLOCK_KEY)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in MISSING_KEY_CODES:
                raise ClockMissingError("Bucket has no mtime yet", status=404) from e
            self._wrap_client_error(e, "get", CLOCK_KEY)
        return response["Body"].read().decode("utf-8").strip()

    def set_clock(self, value: str) -> None:
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=CLOCK_KEY,
                Body=value.encode("utf-8"),
                ContentType="text/plain",
            )
        except ClientError as e:
            self._wrap_client_error(e, "put", CLOCK_KEY)

    # -- Objects --

    def get_object_size(self, key: str) -> int:
        try:
            response = self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            self._wrap_client_error(e, "head", key)
        return int(response.get("ContentLength", 0))

    def delete_object(self, key: str) -> None:
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            self._wrap_client_error(e, "delete", key)

    # -- Account --

    def auth(self) -> None:
        try:
            self._client.head_bucket(Bucket=self.bucket)
        except ClientError as e:
            self._wrap_client_error(e, "head bucket", self.bucket)

    def get_usage(self) -> int:
        """Total bytes stored in the bucket."""
        total = 0
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket):
                total += sum(obj.get("Size", 0) for obj in page.get("Contents", []))
        except ClientError as e:
            self._wrap_client_error(e, "list", "")
        return total

    def get_max_storage(self) -> int:
        """Bucket capacity in GB, 0 when unlimited."""
        if self.max_storage_bytes is None:
            return 0
        return self.max_storage_bytes // 1024**3

    def run_housekeeping(self) -> dict[str, Any]:
        """Delete the oldest unprotected videos until usage fits the quota.

        Each pruned video loses both its object and its record. Without a
        quota there's nothing to do.
        """
        deleted: list[str] = []
        usage = self.get_usage()
        if self.max_storage_bytes is not None and usage > self.max_storage_bytes:
            records = sorted(self._list_video_records(), key=lambda r: r["LastModified"])
            for record in records:
                if usage <= self.max_storage_bytes:
                    break
                metadata = self._read_video(record["Key"])
                if metadata.get("protected"):
                    continue
                name = str(metadata["videoName"])
                try:
                    size = self.get_object_size(name)
                except TransferError as e:
                    if e.status != 404:
                        raise
                    size = 0
                self.delete_object(name)
                self.delete_object(record["Key"])
                usage -= size + record["Size"]
                deleted.append(name)

        result: dict[str, Any] = {"deleted": deleted, "usage_bytes": usage}
        logger.info("Housekeeping results: %s", result)
        return result

    # -- Video metadata --

    def _video_key(self, name: str) -> str:
        return f"{VIDEO_PREFIX}{name}.json"

    def _list_video_records(self) -> list[dict[str, Any]]:
        records: list[dict[str, Any]] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=VIDEO_PREFIX):
                records.extend(page.get("Contents", []))
        except ClientError as e:
            self._wrap_client_error(e, "list", VIDEO_PREFIX)
        return records

    def _read_video(self, key: str) -> dict[str, Any]:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            self._wrap_client_error(e, "get", key)
        metadata: dict[str, Any] = json.loads(response["Body"].read())
        return metadata

    def _write_video(self, metadata: dict[str, Any]) -> None:
        key = self._video_key(str(metadata["videoName"]))
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=json.dumps(metadata).encode("utf-8"),
                ContentType="application/json",
            )
        except ClientError as e:
            self._wrap_client_error(e, "put", key)

    def get_state(self) -> list[dict[str, Any]]:
        return [self._read_video(record["Key"]) for record in self._list_video_records()]

    def post_video(self, metadata: dict[str, Any]) -> None:
        if not metadata.get("videoName"):
            raise TransferError("Failed to add a video to database: no videoName", status=400)
        self._write_video(metadata)

    def delete_video(self, name: str) -> None:
        self.delete_object(self._video_key(name))

    def protect_video(self, name: str, protected: bool) -> None:
        metadata = self._read_video(self._video_key(name))
        metadata["protected"] = protected
        self._write_video(metadata)

    def tag_video(self, name: str, tag: str) -> None:
        metadata = self._read_video(self._video_key(name))
        metadata["tag"] = tag
        self._write_video(metadata)
