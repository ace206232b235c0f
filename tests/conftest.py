"""Shared fixtures: a throwaway SQLite database and an isolated runtime config."""

import pytest

from postscan.db.database import configure_database
from postscan.utils import config as config_module
from postscan.utils.config import ScanConfig


@pytest.fixture
def db_url(tmp_path):
    """Point the database layer at a fresh file for the duration of a test."""
    url = f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    configure_database(url)
    yield url
    configure_database(None)


@pytest.fixture
def app_config(tmp_path, monkeypatch):
    """Keep the JSON runtime config out of the developer's data directory."""
    config_path = tmp_path / "config.json"
    monkeypatch.setattr(config_module, "get_config_path", lambda: config_path)
    monkeypatch.setattr(config_module, "_config_instance", None)
    return config_path


@pytest.fixture
def scan_config() -> ScanConfig:
    return ScanConfig(batch_delay_seconds=0, retry_delay_seconds=0)
