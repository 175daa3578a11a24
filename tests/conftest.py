"""
Pytest configuration and shared fixtures.

Contains common test fixtures and setup for all test modules.
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Generator, List, Optional

import pytest
from fastapi.testclient import TestClient

from logsink.config import WorkerSettings, get_settings, reload_settings
from logsink.core.config_store import ConfigStore
from logsink.main import app
from logsink.models.log_item import LogItem, LogRequest


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2026, 10, 19, 8, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def config_dir(tmp_path: Path) -> Path:
    path = tmp_path / "config"
    path.mkdir()
    return path


@pytest.fixture
def log_root(tmp_path: Path) -> Path:
    path = tmp_path / "logs"
    path.mkdir()
    return path


@pytest.fixture
def config_store(config_dir: Path) -> ConfigStore:
    return ConfigStore(config_dir)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def worker_settings() -> WorkerSettings:
    """Worker settings with the production intervals."""
    return WorkerSettings(
        config_cache_seconds=60,
        flush_interval_seconds=30,
        rotation_interval_hours=24,
        queue_size=100,
    )


@pytest.fixture
def write_config(config_dir: Path) -> Callable[..., Path]:
    """Write <appname>.json into the config directory."""

    def _write(appname: str, **fields: Any) -> Path:
        path = config_dir / f"{appname}.json"
        path.write_text(json.dumps(fields))
        return path

    return _write


@pytest.fixture
def make_request() -> Callable[..., LogRequest]:
    """Build a LogRequest bound to the running event loop."""

    def _make(appname: str, token: str, messages: Optional[List[str]] = None) -> LogRequest:
        items = [LogItem(message=message, level="info") for message in (messages or [])]
        return LogRequest(
            appname=appname,
            token=token,
            items=items,
            reply=asyncio.get_running_loop().create_future(),
        )

    return _make


@pytest.fixture
def read_log_lines() -> Callable[[Path], List[Dict[str, Any]]]:
    """All JSON lines of every .log file in a directory, oldest file first."""

    def _read(directory: Path) -> List[Dict[str, Any]]:
        lines: List[Dict[str, Any]] = []
        for path in sorted(directory.glob("*.log")):
            for line in path.read_text().splitlines():
                lines.append(json.loads(line))
        return lines

    return _read


@pytest.fixture
def admin_token() -> str:
    return "test_admin_token_123456789abc"


@pytest.fixture
def test_client(
    monkeypatch: pytest.MonkeyPatch,
    config_dir: Path,
    log_root: Path,
    admin_token: str,
) -> Generator[TestClient, None, None]:
    """FastAPI test client pointed at temporary config and log directories."""
    monkeypatch.setenv("LOGSINK_STORAGE_CONFIG_DIR", str(config_dir))
    monkeypatch.setenv("LOGSINK_STORAGE_LOG_ROOT", str(log_root))
    monkeypatch.setenv("LOGSINK_SECURITY_ADMIN_TOKEN", admin_token)
    reload_settings()

    with TestClient(app) as client:
        yield client

    get_settings.cache_clear()


@pytest.fixture
def demo_config(write_config: Callable[..., Path]) -> Path:
    """Config record {"secret": "abc"} for app demo."""
    return write_config("demo", secret="abc")


@pytest.fixture
def auth_headers() -> Callable[[str], Dict[str, str]]:
    """Authorization headers for TestClient."""

    def _headers(token: str) -> Dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    return _headers
