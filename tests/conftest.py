"""Pytest fixtures and configuration for ClientLens tests.

Provides common fixtures for configuration, database, and mocking.
"""

import os
from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from clientlens.config import CONFIG_PATH_ENV_VAR, reset_config
from clientlens.config_schema import AppConfig
from clientlens.db.store import DatabaseStore


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def sample_config_dict(data_dir: Path) -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "database": {"path": str(data_dir / "clientlens.db")},
        "retry": {
            "max_attempts": 3,
            "initial_delay_seconds": 0,
            "max_delay_seconds": 0,
        },
        "pipeline": {"batch_size": 50, "max_thread_messages": 10},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def sample_config_yaml(data_dir: Path) -> str:
    """Return a minimal valid config.yaml content."""
    return f"""
schema_version: 1

database:
  path: "{data_dir / 'clientlens.db'}"

retry:
  max_attempts: 2
  initial_delay_seconds: 0
  max_delay_seconds: 0
"""


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Point CLIENTLENS_CONFIG_PATH at the temporary config file."""
    old_value = os.environ.get(CONFIG_PATH_ENV_VAR)
    os.environ[CONFIG_PATH_ENV_VAR] = str(config_file)
    yield
    if old_value is None:
        del os.environ[CONFIG_PATH_ENV_VAR]
    else:
        os.environ[CONFIG_PATH_ENV_VAR] = old_value


@pytest.fixture
async def store(data_dir: Path) -> DatabaseStore:
    """Create and initialize a DatabaseStore on a temporary database."""
    store = DatabaseStore(data_dir / "test.db")
    await store.initialize()
    return store


@pytest.fixture
def mock_llm() -> MagicMock:
    """LLMClient stand-in whose complete() returns an empty answer."""
    llm = MagicMock()
    llm.complete = AsyncMock(return_value="")
    return llm
