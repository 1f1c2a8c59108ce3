"""Tests for the direct S3 signing gateway."""

from collections.abc import Generator
from pathlib import Path
from unittest.mock import MagicMock, patch

import boto3
import pytest
from botocore.exceptions import ClientError
from moto import mock_aws
from mypy_boto3_s3 import S3Client

from cloud_transfer.services import s3_gateway
from cloud_transfer.services.errors import (
    AuthorizationError,
    ClockMissingError,
    QuotaError,
    TransferError,
)
from cloud_transfer.services.s3_gateway import S3SigningGateway

BUCKET = "test-bucket"


@pytest.fixture
def s3_client(monkeypatch: pytest.MonkeyPatch) -> Generator[S3Client, None, None]:
    """A moto-backed S3 client with an empty bucket."""
    monkeypatch.setenv("AWS_ACCESS_KEY_ID", "testing")
    monkeypatch.setenv("AWS_SECRET_ACCESS_KEY", "testing")
    monkeypatch.setenv("AWS_DEFAULT_REGION", "us-east-1")
    with mock_aws():
        client: S3Client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=BUCKET)
        yield client


@pytest.fixture
def gateway(s3_client: S3Client) -> S3SigningGateway:
    return S3SigningGateway(s3_client, BUCKET, part_size=10)


def _client_error(code: str, status: int) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": code}, "ResponseMetadata": {"HTTPStatusCode": status}},
        "Operation",
    )


class TestGetAvailableProfiles:
    """Tests for get_available_profiles function."""

    def test_always_includes_default(self, tmp_path: Path) -> None:
        with patch("pathlib.Path.home", return_value=tmp_path):
            assert s3_gateway.get_available_profiles() == ["default"]

    def test_reads_credentials_and_config(self, tmp_path: Path) -> None:
        aws_dir = tmp_path / ".aws"
        aws_dir.mkdir()
        (aws_dir / "credentials").write_text("[r2]\naws_access_key_id = x\n")
        (aws_dir / "config").write_text("[profile archive]\nregion = auto\n")

        with patch("pathlib.Path.home", return_value=tmp_path):
            profiles = s3_gateway.get_available_profiles()

        assert profiles == ["archive", "default", "r2"]


class TestClock:
    """Tests for the mtime object."""

    def test_missing_clock(self, gateway: S3SigningGateway) -> None:
        with pytest.raises(ClockMissingError):
            gateway.get_clock()

    def test_set_then_get(self, gateway: S3SigningGateway, s3_client: S3Client) -> None:
        gateway.set_clock("1700000000000")

        assert gateway.get_clock() == "1700000000000"
        obj = s3_client.get_object(Bucket=BUCKET, Key="mtime")
        assert obj["ContentType"] == "text/plain"


class TestSigning:
    """Tests for presigned uploads."""

    def test_sign_put(self, gateway: S3SigningGateway) -> None:
        url = gateway.sign_put("video.mp4", 100)

        assert BUCKET in url
        assert "video.mp4" in url
        assert "Signature" in url or "X-Amz-Signature" in url

    def test_quota(self, s3_client: S3Client) -> None:
        s3_client.put_object(Bucket=BUCKET, Key="old.mp4", Body=b"x" * 100)
        gateway = S3SigningGateway(s3_client, BUCKET, max_storage_bytes=150)

        gateway.sign_put("fits.mp4", 50)
        with pytest.raises(QuotaError) as exc_info:
            gateway.sign_put("too-big.mp4", 51)
        assert exc_info.value.status == 403

    def test_create_multipart_session(self, gateway: S3SigningGateway) -> None:
        session = gateway.create_multipart_session("big.mp4", 25)

        assert session.key == "big.mp4"
        assert session.num_parts == 3
        for number, url in enumerate(session.part_urls, start=1):
            assert f"partNumber={number}" in url
            assert "uploadId=" in url

    def test_complete_multipart_session(self) -> None:
        client = MagicMock()
        client.create_multipart_upload.return_value = {"UploadId": "upload-1"}
        client.generate_presigned_url.return_value = "https://signed"
        gateway = S3SigningGateway(client, BUCKET, part_size=10)

        gateway.create_multipart_session("big.mp4", 15)
        gateway.complete_multipart_session("big.mp4", ["e1", "e2"])

        client.complete_multipart_upload.assert_called_once_with(
            Bucket=BUCKET,
            Key="big.mp4",
            UploadId="upload-1",
            MultipartUpload={
                "Parts": [
                    {"ETag": '"e1"', "PartNumber": 1},
                    {"ETag": '"e2"', "PartNumber": 2},
                ]
            },
        )

    def test_complete_without_session(self, gateway: S3SigningGateway) -> None:
        with pytest.raises(TransferError, match="No multipart upload"):
            gateway.complete_multipart_session("never-started.mp4", ["e1"])


class TestObjectsAndAccount:
    """Tests for object and bucket level operations."""

    def test_object_size_and_delete(self, gateway: S3SigningGateway, s3_client: S3Client) -> None:
        s3_client.put_object(Bucket=BUCKET, Key="video.mp4", Body=b"x" * 42)

        assert gateway.get_object_size("video.mp4") == 42
        gateway.delete_object("video.mp4")

        with pytest.raises(TransferError):
            gateway.get_object_size("video.mp4")

    def test_usage(self, gateway: S3SigningGateway, s3_client: S3Client) -> None:
        s3_client.put_object(Bucket=BUCKET, Key="a.mp4", Body=b"x" * 10)
        s3_client.put_object(Bucket=BUCKET, Key="b.mp4", Body=b"x" * 32)

        assert gateway.get_usage() == 42

    def test_auth(self, gateway: S3SigningGateway) -> None:
        gateway.auth()

    def test_auth_missing_bucket(self, s3_client: S3Client) -> None:
        with pytest.raises(TransferError):
            S3SigningGateway(s3_client, "no-such-bucket").auth()

    def test_access_denied(self) -> None:
        client = MagicMock()
        client.head_bucket.side_effect = _client_error("AccessDenied", 403)

        with pytest.raises(AuthorizationError):
            S3SigningGateway(client, BUCKET).auth()

    def test_max_storage(self, s3_client: S3Client) -> None:
        assert S3SigningGateway(s3_client, BUCKET).get_max_storage() == 0
        assert (
            S3SigningGateway(s3_client, BUCKET, max_storage_bytes=250 * 1024**3).get_max_storage()
            == 250
        )



class TestVideoMetadata:
    """Tests for video records kept under videos/."""

    def test_post_and_get_state(self, gateway: S3SigningGateway, s3_client: S3Client) -> None:
        gateway.post_video({"videoName": "a.mp4", "category": "Raids"})
        gateway.post_video({"videoName": "b.mp4", "category": "Arena"})

        state = gateway.get_state()

        assert sorted(v["videoName"] for v in state) == ["a.mp4", "b.mp4"]
        obj = s3_client.get_object(Bucket=BUCKET, Key="videos/a.mp4.json")
        assert obj["ContentType"] == "application/json"

    def test_post_without_name(self, gateway: S3SigningGateway) -> None:
        with pytest.raises(TransferError, match="videoName"):
            gateway.post_video({"category": "Raids"})

    def test_protect_and_tag(self, gateway: S3SigningGateway) -> None:
        gateway.post_video({"videoName": "a.mp4"})

        gateway.protect_video("a.mp4", True)
        gateway.tag_video("a.mp4", "wipe")

        assert gateway.get_state() == [{"videoName": "a.mp4", "protected": True, "tag": "wipe"}]

    def test_protect_unknown_video(self, gateway: S3SigningGateway) -> None:
        with pytest.raises(TransferError) as exc_info:
            gateway.protect_video("missing.mp4", True)
        assert exc_info.value.status == 404

    def test_delete_video(self, gateway: S3SigningGateway) -> None:
        gateway.post_video({"videoName": "a.mp4"})

        gateway.delete_video("a.mp4")

        assert gateway.get_state() == []

    def test_housekeeping_without_quota(
        self, gateway: S3SigningGateway, s3_client: S3Client
    ) -> None:
        s3_client.put_object(Bucket=BUCKET, Key="a.mp4", Body=b"x" * 100)
        gateway.post_video({"videoName": "a.mp4"})

        result = gateway.run_housekeeping()

        assert result["deleted"] == []
        assert gateway.get_object_size("a.mp4") == 100

    def test_housekeeping_prunes_oldest_unprotected(self, s3_client: S3Client) -> None:
        gateway = S3SigningGateway(s3_client, BUCKET, max_storage_bytes=1000)
        for name in ["old.mp4", "kept.mp4", "new.mp4"]:
            s3_client.put_object(Bucket=BUCKET, Key=name, Body=b"x" * 400)
            gateway.post_video({"videoName": name})
        gateway.protect_video("kept.mp4", True)
        records = [
            {"Key": "videos/old.mp4.json", "LastModified": 1, "Size": 30},
            {"Key": "videos/kept.mp4.json", "LastModified": 2, "Size": 30},
            {"Key": "videos/new.mp4.json", "LastModified": 3, "Size": 30},
        ]

        with patch.object(gateway, "_list_video_records", return_value=records):
            result = gateway.run_housekeeping()

        assert result["deleted"] == ["old.mp4"]
        assert result["usage_bytes"] <= 1000
        with pytest.raises(TransferError):
            gateway.get_object_size("old.mp4")
        assert gateway.get_object_size("kept.mp4") == 400
        assert gateway.get_object_size("new.mp4") == 400
