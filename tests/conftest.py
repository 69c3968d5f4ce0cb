"""Shared fixtures: every test gets its own storage root."""

import pytest

from terminal_bridge.config import BridgeConfig
from terminal_bridge.session import SessionRegistry
from terminal_bridge.storage import LogStore, StoragePaths


@pytest.fixture
def log_dir(tmp_path):
    path = tmp_path / "logs"
    path.mkdir()
    return path


@pytest.fixture
def paths(log_dir):
    return StoragePaths(log_dir)


@pytest.fixture
def registry(paths):
    return SessionRegistry(paths)


@pytest.fixture
def store(paths):
    return LogStore(paths)


@pytest.fixture
def config(log_dir):
    return BridgeConfig(log_dir=str(log_dir))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from the real ~/.mcp-logs and any user overrides."""
    monkeypatch.setenv("AI_LOG_DIR", str(tmp_path / "env-logs"))
    monkeypatch.delenv("AI_KEEP_LOGS", raising=False)
    monkeypatch.delenv("AI_ORPHAN_HOURS", raising=False)
