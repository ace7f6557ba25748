"""Pytest fixtures and configuration for MailSense tests.

Provides common fixtures for configuration, database, and sample messages.
"""

import os
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Generator

import pytest

from mailsense.config import reset_config
from mailsense.config_schema import AppConfig
from mailsense.db.store import DatabaseStore, Message


@pytest.fixture(autouse=True)
def reset_config_singleton() -> Generator[None, None, None]:
    """Reset the config singleton before each test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture(autouse=True)
def clear_provider_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's real keys and demo flag out of the tests."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("MAILSENSE_DEMO_MODE", raising=False)


@pytest.fixture
def temp_config_dir(tmp_path: Path) -> Path:
    """Create a temporary config directory."""
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    return config_dir


@pytest.fixture
def sample_config_yaml() -> str:
    """Return a minimal valid config.yaml content."""
    return """
schema_version: 1

database:
  path: "data/test.db"

analysis:
  stale_analysis_minutes: 5
  confidence_threshold: 0.5
  default_budget_mode: "Balanced"

link_context:
  enabled: false

worker:
  concurrency: 2
  queue_size: 10
"""


@pytest.fixture
def sample_config_dict() -> dict[str, Any]:
    """Return a minimal valid config as a dictionary."""
    return {
        "schema_version": 1,
        "database": {"path": "data/test.db"},
        "analysis": {
            "stale_analysis_minutes": 5,
            "confidence_threshold": 0.5,
            "default_budget_mode": "Balanced",
        },
        "link_context": {"enabled": False},
        "worker": {"concurrency": 2, "queue_size": 10},
    }


@pytest.fixture
def sample_config(sample_config_dict: dict[str, Any]) -> AppConfig:
    """Return a minimal valid AppConfig instance."""
    return AppConfig(**sample_config_dict)


@pytest.fixture
def config_file(temp_config_dir: Path, sample_config_yaml: str) -> Path:
    """Create a temporary config file with valid content."""
    config_path = temp_config_dir / "config.yaml"
    config_path.write_text(sample_config_yaml)
    return config_path


@pytest.fixture
def set_config_env(config_file: Path) -> Generator[None, None, None]:
    """Set the MAILSENSE_CONFIG_PATH environment variable."""
    old_value = os.environ.get("MAILSENSE_CONFIG_PATH")
    os.environ["MAILSENSE_CONFIG_PATH"] = str(config_file)
    yield
    if old_value is None:
        del os.environ["MAILSENSE_CONFIG_PATH"]
    else:
        os.environ["MAILSENSE_CONFIG_PATH"] = old_value


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    """Create a temporary data directory."""
    data = tmp_path / "data"
    data.mkdir()
    return data


@pytest.fixture
def db_path(data_dir: Path) -> Path:
    return data_dir / "test.db"


@pytest.fixture
async def store(db_path: Path) -> AsyncGenerator[DatabaseStore, None]:
    """Create an initialized DatabaseStore backed by a temp file."""
    s = DatabaseStore(db_path)
    await s.initialize()
    yield s


def make_message(
    source_id: str = "msg-001",
    subject: str = "Policy renewal notice",
    body: str = "Please review the attached renewal terms.",
    from_name: str | None = "Bob Sender",
    from_address: str | None = "bob@example.com",
) -> Message:
    """Create an unsaved Message for testing."""
    return Message(
        source="test",
        source_id=source_id,
        subject=subject,
        from_name=from_name,
        from_address=from_address,
        received_at=datetime(2025, 5, 1, 9, 30, tzinfo=UTC),
        body_plain=body,
    )


@pytest.fixture
async def saved_message(store: DatabaseStore) -> Message:
    """A message already persisted in the store."""
    message = make_message()
    await store.save_message(message)
    return message
