"""Tests for configuration loading, validation, and environment overrides."""

from pathlib import Path

import pytest

from mailsense.config import get_config, load_config, validate_config_file
from mailsense.core.errors import ConfigLoadError, ConfigValidationError


class TestLoadConfig:
    """Tests for load_config()."""

    def test_loads_valid_file(self, config_file: Path) -> None:
        """Test that a valid YAML file produces the expected settings."""
        config = load_config(config_file)

        assert config.database.path == "data/test.db"
        assert config.analysis.stale_analysis_minutes == 5
        assert config.link_context.enabled is False
        assert config.worker.queue_size == 10

    def test_empty_file_uses_defaults(self, temp_config_dir: Path) -> None:
        """Test that an empty file is a valid config with every default."""
        path = temp_config_dir / "config.yaml"
        path.write_text("")

        config = load_config(path)

        assert config.analysis.default_budget_mode == "Balanced"
        assert config.analysis.confidence_threshold == 0.5
        assert config.link_context.max_links == 2
        assert config.worker.concurrency == 2

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        """Test that a missing file is a load error unless allowed."""
        with pytest.raises(ConfigLoadError, match="not found"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_file_allowed(self, tmp_path: Path) -> None:
        """Test that allow_missing falls back to defaults."""
        config = load_config(tmp_path / "nope.yaml", allow_missing=True)
        assert config.database.path == "data/mailsense.db"

    def test_invalid_yaml_raises(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("analysis: [unclosed")

        with pytest.raises(ConfigLoadError, match="Failed to parse YAML"):
            load_config(path)

    def test_non_mapping_raises(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("- just\n- a list\n")

        with pytest.raises(ConfigLoadError, match="YAML mapping"):
            load_config(path)

    def test_out_of_range_value_reports_field(self, temp_config_dir: Path) -> None:
        """Test that validation errors name the offending field."""
        path = temp_config_dir / "config.yaml"
        path.write_text("worker:\n  concurrency: 0\n")

        with pytest.raises(ConfigValidationError, match="worker.concurrency"):
            load_config(path)

    def test_invalid_budget_mode_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("analysis:\n  default_budget_mode: Lavish\n")

        with pytest.raises(ConfigValidationError):
            load_config(path)

    def test_path_traversal_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text('database:\n  path: "../elsewhere.db"\n')

        with pytest.raises(ConfigValidationError, match="traversal"):
            load_config(path)

    def test_newer_schema_version_rejected(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("schema_version: 99\n")

        with pytest.raises(ConfigValidationError, match="newer than supported"):
            load_config(path)


class TestEnvironmentOverrides:
    """Tests for environment variable handling."""

    def test_demo_mode_env_override(
        self, config_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Test that MAILSENSE_DEMO_MODE turns demo mode on."""
        monkeypatch.setenv("MAILSENSE_DEMO_MODE", "true")
        assert load_config(config_file).analysis.demo_mode is True

    def test_demo_mode_env_false(self, config_file: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAILSENSE_DEMO_MODE", "0")
        assert load_config(config_file).analysis.demo_mode is False

    def test_get_config_reads_env_path(self, set_config_env: None) -> None:
        """Test that get_config() honors MAILSENSE_CONFIG_PATH and caches."""
        first = get_config()
        assert first.database.path == "data/test.db"
        assert get_config() is first


class TestValidateConfigFile:
    """Tests for validate_config_file()."""

    def test_valid_file(self, config_file: Path) -> None:
        ok, message = validate_config_file(config_file)
        assert ok is True
        assert "schema version 1" in message

    def test_invalid_file(self, temp_config_dir: Path) -> None:
        path = temp_config_dir / "config.yaml"
        path.write_text("analysis:\n  confidence_threshold: 2.0\n")

        ok, message = validate_config_file(path)
        assert ok is False
        assert message.startswith("Validation error")
