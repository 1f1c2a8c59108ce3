"""Tests for the transfer manager module."""

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from unittest.mock import MagicMock

from cloud_transfer.services.errors import TransferError
from cloud_transfer.services.transfer_manager import (
    FileTransferState,
    TransferJob,
    TransferKind,
    TransferManager,
    TransferStatus,
    get_transfer_manager,
)


def _fake_client() -> MagicMock:
    """A CloudClient stand-in whose uploads report 50% then return."""
    client = MagicMock()

    def put_file(path: str, callback: Callable[[int], None]) -> None:
        callback(50)

    client.put_file.side_effect = put_file
    return client


class TestTransferStatus:
    """Tests for TransferStatus enum."""

    def test_all_statuses_have_values(self) -> None:
        assert TransferStatus.PENDING.value == "pending"
        assert TransferStatus.TRANSFERRING.value == "transferring"
        assert TransferStatus.COMPLETED.value == "completed"
        assert TransferStatus.FAILED.value == "failed"


class TestFileTransferState:
    """Tests for FileTransferState dataclass."""

    def test_default_values(self) -> None:
        state = FileTransferState(name="a.mp4", local_path="/tmp/a.mp4")

        assert state.status == TransferStatus.PENDING
        assert state.progress == 0
        assert state.error_message == ""
        assert state.duration_seconds is None

    def test_to_dict_with_speed(self) -> None:
        start = datetime(2026, 10, 17, 12, 0, 0, tzinfo=UTC)
        state = FileTransferState(
            name="a.mp4",
            local_path="/tmp/a.mp4",
            file_size=10 * 1024 * 1024,
            status=TransferStatus.COMPLETED,
            progress=100,
            started_at=start,
            completed_at=start + timedelta(seconds=10),
        )

        result = state.to_dict()

        assert result["name"] == "a.mp4"
        assert result["status"] == "completed"
        assert result["file_size_formatted"] == "10.0 MB"
        assert result["duration_seconds"] == 10.0
        assert result["speed_mbps"] == 8.0


class TestTransferJob:
    """Tests for TransferJob dataclass."""

    def test_progress_weighted_by_size(self) -> None:
        job = TransferJob(
            job_id="j",
            kind=TransferKind.UPLOAD,
            files=[
                FileTransferState(name="a", local_path="a", file_size=300, progress=100),
                FileTransferState(name="b", local_path="b", file_size=100, progress=0),
            ],
        )

        assert job.progress_percent == 75.0
        assert job.total_bytes == 400

    def test_progress_without_sizes(self) -> None:
        job = TransferJob(
            job_id="j",
            kind=TransferKind.DOWNLOAD,
            files=[FileTransferState(name="a", local_path="a", progress=40)],
        )

        assert job.progress_percent == 40.0

    def test_empty_job(self) -> None:
        job = TransferJob(job_id="j", kind=TransferKind.UPLOAD)

        assert job.progress_percent == 0.0
        assert job.to_dict()["total_files"] == 0


class TestTransferManager:
    """Tests for TransferManager."""

    def test_create_upload_job_skips_missing(
        self, make_file: Callable[[str, int], Path], tmp_path: Path
    ) -> None:
        manager = TransferManager()
        path = make_file("a.mp4", 10)

        job = manager.create_upload_job([str(path), str(tmp_path / "missing.mp4")])

        assert [f.name for f in job.files] == ["a.mp4"]
        assert job.files[0].file_size == 10
        assert manager.get_job(job.job_id) is job
        assert job.kind == TransferKind.UPLOAD

    def test_run_upload_job(self, make_file: Callable[[str, int], Path]) -> None:
        manager = TransferManager()
        paths = [make_file("a.mp4", 10), make_file("b.mp4", 20)]
        job = manager.create_upload_job([str(p) for p in paths])
        client = _fake_client()
        snapshots: list[float] = []

        result = manager.run_job(job.job_id, client, lambda j: snapshots.append(j.progress_percent))

        assert result is job
        assert job.status == TransferStatus.COMPLETED
        assert job.files_completed == 2
        assert [c.args[0] for c in client.put_file.call_args_list] == [
            str(paths[0].absolute()),
            str(paths[1].absolute()),
        ]
        assert all(f.progress == 100 for f in job.files)
        assert snapshots[-1] == 100.0
        assert job.completed_at is not None

    def test_failed_file_does_not_stop_job(self, make_file: Callable[[str, int], Path]) -> None:
        manager = TransferManager()
        paths = [make_file("a.mp4", 10), make_file("b.mp4", 20)]
        job = manager.create_upload_job([str(p) for p in paths])
        client = MagicMock()
        client.put_file.side_effect = [TransferError("Uploading a file to the cloud failed"), None]

        manager.run_job(job.job_id, client)

        assert job.files[0].status == TransferStatus.FAILED
        assert job.files[0].error_message == "Uploading a file to the cloud failed"
        assert job.files[1].status == TransferStatus.COMPLETED
        assert job.status == TransferStatus.COMPLETED

    def test_all_failed(self, make_file: Callable[[str, int], Path]) -> None:
        manager = TransferManager()
        job = manager.create_upload_job([str(make_file("a.mp4", 10))])
        client = MagicMock()
        client.put_file.side_effect = TransferError("nope")

        manager.run_job(job.job_id, client)

        assert job.status == TransferStatus.FAILED
        assert manager.get_active_jobs() == []

    def test_run_download_job(self, tmp_path: Path) -> None:
        manager = TransferManager()
        dest = tmp_path / "downloads"
        job = manager.create_download_job("video.mp4", "https://cdn.test/video.mp4", dest)
        client = MagicMock()

        def get_as_file(key: str, url: str, directory: Path, callback: Callable[[int], None]) -> Path:
            path = Path(directory) / key
            path.write_bytes(b"abc")
            callback(100)
            return path

        client.get_as_file.side_effect = get_as_file

        manager.run_job(job.job_id, client)

        assert dest.is_dir()
        assert job.status == TransferStatus.COMPLETED
        assert job.files[0].file_size == 3
        client.get_as_file.assert_called_once()
        assert client.get_as_file.call_args.args[:3] == (
            "video.mp4",
            "https://cdn.test/video.mp4",
            dest,
        )

    def test_run_unknown_job(self) -> None:
        assert TransferManager().run_job("missing", MagicMock()) is None

    def test_active_jobs(self, make_file: Callable[[str, int], Path]) -> None:
        manager = TransferManager()
        pending = manager.create_upload_job([str(make_file("a.mp4", 10))])
        done = manager.create_upload_job([str(make_file("b.mp4", 10))])
        manager.run_job(done.job_id, _fake_client())

        assert manager.get_active_jobs() == [pending]

    def test_cleanup_old_jobs(self, make_file: Callable[[str, int], Path]) -> None:
        manager = TransferManager()
        old = manager.create_upload_job([str(make_file("a.mp4", 10))])
        manager.run_job(old.job_id, _fake_client())
        recent = manager.create_upload_job([str(make_file("b.mp4", 10))])
        manager.run_job(recent.job_id, _fake_client())
        old.completed_at = datetime.now(UTC) - timedelta(hours=2)

        assert manager.cleanup_old_jobs(max_age_seconds=3600) == 1
        assert manager.get_job(old.job_id) is None
        assert manager.get_job(recent.job_id) is recent

    def test_new_job_drops_expired_jobs(
        self, make_file: Callable[[str, int], Path], tmp_path: Path
    ) -> None:
        manager = TransferManager(job_retention_seconds=60)
        old = manager.create_upload_job([str(make_file("a.mp4", 10))])
        manager.run_job(old.job_id, _fake_client())
        old.completed_at = datetime.now(UTC) - timedelta(minutes=5)
        pending = manager.create_upload_job([str(make_file("b.mp4", 10))])

        new = manager.create_download_job("c.mp4", "https://cdn.test/c.mp4", tmp_path)

        assert set(manager.jobs) == {pending.job_id, new.job_id}

    def test_singleton(self) -> None:
        assert get_transfer_manager() is get_transfer_manager()
