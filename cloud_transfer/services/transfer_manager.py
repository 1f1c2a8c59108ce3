"""Transfer manager for running uploads and downloads as background jobs."""

import logging
import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from cloud_transfer.services.cloud_client import CloudClient
from cloud_transfer.services.log_service import get_log_service
from cloud_transfer.services.utils import format_file_size, transfer_speed_mbps

logger = logging.getLogger(__name__)


class TransferStatus(Enum):
    """Status of a transfer."""

    PENDING = "pending"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    FAILED = "failed"


class TransferKind(Enum):
    UPLOAD = "upload"
    DOWNLOAD = "download"


@dataclass
class FileTransferState:
    """State of a single file in a transfer job."""

    name: str
    local_path: str
    file_size: int = 0
    source_url: str = ""
    status: TransferStatus = TransferStatus.PENDING
    progress: int = 0
    error_message: str = ""
    started_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at and self.completed_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        duration = self.duration_seconds
        return {
            "name": self.name,
            "local_path": self.local_path,
            "file_size": self.file_size,
            "file_size_formatted": format_file_size(self.file_size),
            "status": self.status.value,
            "progress_percent": self.progress,
            "error_message": self.error_message,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_seconds": duration,
            "speed_mbps": transfer_speed_mbps(self.file_size, duration),
        }


@dataclass
class TransferJob:
    """A batch of uploads, or a single download."""

    job_id: str
    kind: TransferKind
    files: list[FileTransferState] = field(default_factory=list)
    status: TransferStatus = TransferStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    started_at: datetime | None = None
    completed_at: datetime | None = None
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def total_bytes(self) -> int:
        return sum(f.file_size for f in self.files)

    @property
    def progress_percent(self) -> float:
        """Overall progress, weighted by file size where sizes are known."""
        if not self.files:
            return 0.0
        total = self.total_bytes
        if total == 0:
            return round(sum(f.progress for f in self.files) / len(self.files), 1)
        return round(sum(f.progress * f.file_size for f in self.files) / total, 1)

    @property
    def files_completed(self) -> int:
        return sum(1 for f in self.files if f.status == TransferStatus.COMPLETED)

    @property
    def files_failed(self) -> int:
        return sum(1 for f in self.files if f.status == TransferStatus.FAILED)

    @property
    def is_finished(self) -> bool:
        return self.status in (TransferStatus.COMPLETED, TransferStatus.FAILED)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "job_id": self.job_id,
            "kind": self.kind.value,
            "status": self.status.value,
            "files": [f.to_dict() for f in self.files],
            "total_files": len(self.files),
            "files_completed": self.files_completed,
            "files_failed": self.files_failed,
            "total_bytes": self.total_bytes,
            "total_bytes_formatted": format_file_size(self.total_bytes),
            "progress_percent": self.progress_percent,
            "created_at": self.created_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }


class TransferManager:
    """Tracks transfer jobs and runs them.

    Files within one job are transferred one after another; separate jobs
    may run at the same time on their own threads. Finished jobs are
    dropped once they are older than ``job_retention_seconds``, checked
    whenever a new job is created.
    """

    def __init__(self, job_retention_seconds: int = 3600) -> None:
        self.jobs: dict[str, TransferJob] = {}
        self.job_retention_seconds = job_retention_seconds
        self._lock = threading.Lock()

    def _register(self, job: TransferJob) -> TransferJob:
        self.cleanup_old_jobs(self.job_retention_seconds)
        with self._lock:
            self.jobs[job.job_id] = job
        return job

    def create_upload_job(self, file_paths: list[str]) -> TransferJob:
        """Create an upload job; paths that don't exist are skipped."""
        job = TransferJob(job_id=str(uuid.uuid4()), kind=TransferKind.UPLOAD)
        for path_str in file_paths:
            path = Path(path_str)
            if path.is_file():
                job.files.append(
                    FileTransferState(
                        name=path.name,
                        local_path=str(path.absolute()),
                        file_size=path.stat().st_size,
                    )
                )

        get_log_service().info(
            "transfer",
            "upload_job_created",
            f"Created upload job with {len(job.files)} files",
            {"job_id": job.job_id, "total_files": len(job.files), "total_bytes": job.total_bytes},
        )
        return self._register(job)

    def create_download_job(self, key: str, url: str, dest_dir: str | Path) -> TransferJob:
        job = TransferJob(job_id=str(uuid.uuid4()), kind=TransferKind.DOWNLOAD)
        job.files.append(
            FileTransferState(name=key, local_path=str(Path(dest_dir) / key), source_url=url)
        )
        return self._register(job)

    def get_job(self, job_id: str) -> TransferJob | None:
        """Get a job by ID."""
        return self.jobs.get(job_id)

    def get_active_jobs(self) -> list[TransferJob]:
        with self._lock:
            return [job for job in self.jobs.values() if not job.is_finished]

    def run_job(
        self,
        job_id: str,
        client: CloudClient,
        progress_callback: Callable[[TransferJob], None] | None = None,
    ) -> TransferJob | None:
        """Run every file in a job through ``client``.

        A failed file is recorded and the next one still runs. The job ends
        COMPLETED if at least one file made it, FAILED otherwise.
        """
        job = self.get_job(job_id)
        if not job:
            return None

        log = get_log_service()
        job.status = TransferStatus.TRANSFERRING
        job.started_at = datetime.now(UTC)

        for file_state in job.files:
            with job.lock:
                file_state.status = TransferStatus.TRANSFERRING
                file_state.started_at = datetime.now(UTC)
            if progress_callback:
                progress_callback(job)

            def on_progress(value: int, fs: FileTransferState = file_state) -> None:
                with job.lock:
                    fs.progress = value
                if progress_callback:
                    progress_callback(job)

            try:
                if job.kind == TransferKind.UPLOAD:
                    client.put_file(file_state.local_path, on_progress)
                else:
                    dest_dir = Path(file_state.local_path).parent
                    dest_dir.mkdir(parents=True, exist_ok=True)
                    path = client.get_as_file(
                        file_state.name, file_state.source_url, dest_dir, on_progress
                    )
                    file_state.file_size = path.stat().st_size
            except Exception as e:
                logger.debug("Transfer of %s failed", file_state.name, exc_info=True)
                with job.lock:
                    file_state.status = TransferStatus.FAILED
                    file_state.error_message = str(e)
                    file_state.completed_at = datetime.now(UTC)
            else:
                with job.lock:
                    file_state.status = TransferStatus.COMPLETED
                    file_state.progress = 100
                    file_state.completed_at = datetime.now(UTC)

            if progress_callback:
                progress_callback(job)

        job.completed_at = datetime.now(UTC)
        job.status = TransferStatus.COMPLETED if job.files_completed else TransferStatus.FAILED

        log.info(
            "transfer",
            f"{job.kind.value}_job_completed",
            f"{job.kind.value.capitalize()} job finished: {job.files_completed} completed, "
            f"{job.files_failed} failed",
            {
                "job_id": job.job_id,
                "completed": job.files_completed,
                "failed": job.files_failed,
                "total_bytes": job.total_bytes,
            },
        )

        if progress_callback:
            progress_callback(job)
        return job

    def cleanup_old_jobs(self, max_age_seconds: int = 3600) -> int:
        """Remove finished jobs older than ``max_age_seconds``.

        Returns:
            Number of jobs removed
        """
        now = datetime.now(UTC)
        with self._lock:
            stale = [
                job_id
                for job_id, job in self.jobs.items()
                if job.is_finished
                and job.completed_at
                and (now - job.completed_at).total_seconds() > max_age_seconds
            ]
            for job_id in stale:
                del self.jobs[job_id]
        return len(stale)


# Module-level singleton accessor
_transfer_manager: TransferManager | None = None


def get_transfer_manager() -> TransferManager:
    """Get the singleton TransferManager instance."""
    global _transfer_manager
    if _transfer_manager is None:
        _transfer_manager = TransferManager()
    return _transfer_manager
