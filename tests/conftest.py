"""Pytest configuration and fixtures for the cloud_transfer tests."""

import json
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import requests
from flask import Flask
from flask.testing import FlaskClient

from cloud_transfer import config, create_app
from cloud_transfer.services import cloud_client as cloud_client_module
from cloud_transfer.services import transfer_manager as transfer_manager_module
from cloud_transfer.services.cloud_client import CloudClient
from cloud_transfer.services.gateway import SigningGateway
from cloud_transfer.services.transfer_types import MultipartSession


@pytest.fixture(autouse=True)
def isolated_settings(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[config.Settings, None, None]:
    """Point settings, logs and downloads at a temporary directory."""
    for name in (
        config.ENV_API_ENDPOINT,
        config.ENV_USER,
        config.ENV_PASSWORD,
        config.ENV_BUCKET,
        config.ENV_GATEWAY,
        config.ENV_AWS_PROFILE,
        config.ENV_AWS_REGION,
        config.ENV_S3_ENDPOINT_URL,
    ):
        monkeypatch.delenv(name, raising=False)

    settings_file = tmp_path / "settings.json"
    settings_file.write_text(
        json.dumps(
            {
                "bucket": "test-bucket",
                "cloud_user": "user",
                "cloud_password": "secret",
                "api_endpoint": "https://api.example.test",
                "log_directory": str(tmp_path / "logs"),
                "download_directory": str(tmp_path / "downloads"),
            }
        )
    )
    monkeypatch.setattr(config, "SETTINGS_FILE", settings_file)
    monkeypatch.setattr(config, "SETTINGS_DEFAULT_FILE", tmp_path / "settings.default.json")
    config.Settings._instance = None

    yield config.get_settings()

    cloud_client_module.reset_cloud_client()
    transfer_manager_module._transfer_manager = None
    config.Settings._instance = None


@pytest.fixture
def app() -> Flask:
    """Create application for testing."""
    app = create_app()
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app: Flask) -> FlaskClient:
    """Create test client."""
    return app.test_client()


def make_response(
    status: int = 200,
    text: str = "",
    headers: dict[str, str] | None = None,
    json_data: Any = None,
) -> MagicMock:
    """Build a MagicMock standing in for a requests.Response."""
    response = MagicMock(spec=requests.Response)
    response.status_code = status
    response.text = text
    response.content = text.encode()
    response.headers = headers or {}
    response.json.return_value = json_data
    response.__enter__.return_value = response
    return response


class RecordingSession:
    """Fake signed-URL session that records every PUT.

    With ``drain`` set, request bodies are read the way requests would
    read them so progress callbacks fire; otherwise only their declared
    length is recorded.
    """

    def __init__(self, drain: bool = True) -> None:
        self.drain = drain
        self.puts: list[dict[str, Any]] = []
        self.responses: list[MagicMock] = []
        self.get = MagicMock()

    def put(self, url: str, data: Any = None, headers: Any = None, **kwargs: Any) -> MagicMock:
        body: bytes | None = None
        if isinstance(data, bytes):
            body = data
        elif self.drain:
            body = b"".join(iter(data))
        self.puts.append(
            {
                "url": url,
                "body": body,
                "length": len(data),
                "headers": dict(headers or {}),
                "kwargs": kwargs,
            }
        )
        if self.responses:
            return self.responses.pop(0)
        return make_response(200, headers={"ETag": f'"etag-{len(self.puts)}"'})


@pytest.fixture
def recording_session() -> RecordingSession:
    return RecordingSession()


@pytest.fixture
def fake_gateway() -> MagicMock:
    """A SigningGateway stand-in with a clock at "100"."""
    gateway = MagicMock(spec=SigningGateway)
    gateway.sign_put.return_value = "https://objects.example.test/signed-put"
    gateway.get_clock.return_value = "100"
    gateway.create_multipart_session.side_effect = lambda key, length: MultipartSession(
        key=key, part_urls=[]
    )
    return gateway


@pytest.fixture
def make_file(tmp_path: Path) -> Callable[[str, int], Path]:
    """Factory writing a file of ``size`` patterned bytes."""

    def _make(name: str, size: int) -> Path:
        path = tmp_path / "files" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(bytes(i % 251 for i in range(size)))
        return path

    return _make


@pytest.fixture
def cloud_client(
    fake_gateway: MagicMock,
    recording_session: RecordingSession,
    monkeypatch: pytest.MonkeyPatch,
) -> CloudClient:
    """A CloudClient over the fake gateway, installed as the shared client."""
    client = CloudClient(fake_gateway, session=recording_session)  # type: ignore[arg-type]
    monkeypatch.setattr(cloud_client_module, "_cloud_client", client)
    return client
