"""Configuration management for cloud_transfer"""

import json
import os
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import load_dotenv

if TYPE_CHECKING:
    from cloud_transfer.services.cloud_client import CloudClient

# Base directory for the project
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
ENV_FILE = BASE_DIR / ".env"
load_dotenv(ENV_FILE)

# Settings file paths
SETTINGS_FILE = Path(os.environ.get("CLOUD_TRANSFER_SETTINGS_FILE", BASE_DIR / "settings.json"))
SETTINGS_DEFAULT_FILE = BASE_DIR / "settings.default.json"
PYPROJECT_FILE = BASE_DIR / "pyproject.toml"

# Environment variable names for configuration
ENV_API_ENDPOINT = "CLOUD_TRANSFER_API_ENDPOINT"
ENV_USER = "CLOUD_TRANSFER_USER"
ENV_PASSWORD = "CLOUD_TRANSFER_PASSWORD"
ENV_BUCKET = "CLOUD_TRANSFER_BUCKET"
ENV_GATEWAY = "CLOUD_TRANSFER_GATEWAY"
ENV_AWS_PROFILE = "CLOUD_TRANSFER_AWS_PROFILE"
ENV_AWS_REGION = "CLOUD_TRANSFER_AWS_REGION"
ENV_S3_ENDPOINT_URL = "CLOUD_TRANSFER_S3_ENDPOINT_URL"

GATEWAY_BACKENDS = ("api", "s3")


def get_package_version() -> str:
    """Get the package version from pyproject.toml."""
    try:
        with open(PYPROJECT_FILE, "rb") as f:
            pyproject = tomllib.load(f)
        return str(pyproject.get("project", {}).get("version", "0.0.0"))
    except Exception:
        return "0.0.0"


class Settings:
    """Manages application settings stored in JSON format."""

    _instance: "Settings | None" = None
    _settings: dict[str, Any]

    def __new__(cls) -> "Settings":
        """Singleton pattern to ensure only one settings instance exists."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._load_settings()
        return cls._instance

    def _load_settings(self) -> None:
        """Load settings from file, with environment variables taking precedence.

        Priority order (highest to lowest):
        1. Environment variables (from .env file or system)
        2. settings.json (user-saved settings)
        3. settings.default.json (template defaults)
        4. Hardcoded defaults
        """
        from cloud_transfer.services.gateway import DEFAULT_API_ENDPOINT

        defaults: dict[str, Any] = {
            "api_endpoint": DEFAULT_API_ENDPOINT,
            "cloud_user": "",
            "cloud_password": "",
            "bucket": "",
            "gateway_backend": "api",
            "aws_profile": "default",
            "aws_region": "auto",
            "s3_endpoint_url": "",
            "max_storage_gb": 250,
            "poll_interval_seconds": 30,
            "request_timeout_seconds": 60,
            "download_directory": "downloads",
            "log_directory": "logs",
        }

        if SETTINGS_DEFAULT_FILE.exists():
            with open(SETTINGS_DEFAULT_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        if SETTINGS_FILE.exists():
            with open(SETTINGS_FILE, encoding="utf-8") as f:
                defaults.update(json.load(f))

        env_overrides = {
            "api_endpoint": os.environ.get(ENV_API_ENDPOINT),
            "cloud_user": os.environ.get(ENV_USER),
            "cloud_password": os.environ.get(ENV_PASSWORD),
            "bucket": os.environ.get(ENV_BUCKET),
            "gateway_backend": os.environ.get(ENV_GATEWAY),
            "aws_profile": os.environ.get(ENV_AWS_PROFILE),
            "aws_region": os.environ.get(ENV_AWS_REGION),
            "s3_endpoint_url": os.environ.get(ENV_S3_ENDPOINT_URL),
        }

        # Only apply non-None environment values
        for key, value in env_overrides.items():
            if value is not None:
                defaults[key] = value

        self._settings = defaults

        if not SETTINGS_FILE.exists():
            self._save_settings()

    def _save_settings(self) -> None:
        """Save current settings to file."""
        SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
        with open(SETTINGS_FILE, "w", encoding="utf-8") as f:
            json.dump(self._settings, f, indent=4)

    def get(self, key: str, default: Any = None) -> Any:
        """Get a setting value by key."""
        return self._settings.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Set a setting value and save to file."""
        self._settings[key] = value
        self._save_settings()

    def update(self, data: dict[str, Any]) -> None:
        """Update multiple settings at once."""
        self._settings.update(data)
        self._save_settings()

    def all(self) -> dict[str, Any]:
        """Get all settings as a dictionary, without the password."""
        data = self._settings.copy()
        if data.get("cloud_password"):
            data["cloud_password"] = "********"
        return data

    def reload(self) -> None:
        """Reload settings from file."""
        self._load_settings()

    @property
    def api_endpoint(self) -> str:
        return str(self._settings.get("api_endpoint", ""))

    @property
    def cloud_user(self) -> str:
        return str(self._settings.get("cloud_user", ""))

    @property
    def cloud_password(self) -> str:
        return str(self._settings.get("cloud_password", ""))

    @property
    def bucket(self) -> str:
        """Get the bucket name (one per guild)."""
        return str(self._settings.get("bucket", ""))

    @property
    def gateway_backend(self) -> str:
        return str(self._settings.get("gateway_backend", "api"))

    @property
    def aws_profile(self) -> str:
        return str(self._settings.get("aws_profile", "default"))

    @property
    def aws_region(self) -> str:
        return str(self._settings.get("aws_region", "auto"))

    @property
    def s3_endpoint_url(self) -> str:
        return str(self._settings.get("s3_endpoint_url", ""))

    @property
    def max_storage_gb(self) -> int:
        return int(self._settings.get("max_storage_gb", 250))

    @property
    def poll_interval_seconds(self) -> float:
        return float(self._settings.get("poll_interval_seconds", 30))

    @property
    def request_timeout_seconds(self) -> float:
        return float(self._settings.get("request_timeout_seconds", 60))

    @property
    def download_directory(self) -> Path:
        """Get the download directory, relative paths resolved against BASE_DIR."""
        path = Path(self._settings.get("download_directory", "downloads"))
        return path if path.is_absolute() else BASE_DIR / path

    @property
    def log_directory(self) -> Path:
        """Get the log directory, relative paths resolved against BASE_DIR."""
        path = Path(self._settings.get("log_directory", "logs"))
        return path if path.is_absolute() else BASE_DIR / path


def get_settings() -> Settings:
    """Get the singleton Settings instance."""
    return Settings()


def build_cloud_client(settings: Settings | None = None) -> "CloudClient":
    """Wire a gateway, change detector and client from settings.

    Raises:
        ValueError: If no bucket is configured or the backend is unknown
    """
    from cloud_transfer.services.change_detector import ChangeDetector
    from cloud_transfer.services.cloud_client import CloudClient
    from cloud_transfer.services.gateway import SigningGateway
    from cloud_transfer.services.s3_gateway import S3SigningGateway

    settings = settings or get_settings()
    if not settings.bucket:
        raise ValueError("Cloud bucket not configured")

    gateway: Any
    if settings.gateway_backend == "api":
        gateway = SigningGateway(
            bucket=settings.bucket,
            user=settings.cloud_user,
            password=settings.cloud_password,
            endpoint=settings.api_endpoint,
            timeout=settings.request_timeout_seconds,
        )
    elif settings.gateway_backend == "s3":
        gateway = S3SigningGateway.from_profile(
            bucket=settings.bucket,
            profile=settings.aws_profile,
            region=settings.aws_region,
            endpoint_url=settings.s3_endpoint_url or None,
            max_storage_bytes=settings.max_storage_gb * 1024**3,
        )
    else:
        raise ValueError(
            f"Unknown gateway backend {settings.gateway_backend!r}, "
            f"expected one of {', '.join(GATEWAY_BACKENDS)}"
        )

    return CloudClient(
        gateway,
        ChangeDetector(gateway),
        timeout=settings.request_timeout_seconds,
    )
