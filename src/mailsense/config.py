"""Configuration loading for MailSense.

Settings are layered: schema defaults, then config.yaml, then environment
overrides. The result is validated by the Pydantic models in config_schema
and cached process-wide by get_config().

Environment:
    MAILSENSE_CONFIG_PATH: config file location (default config/config.yaml)
    MAILSENSE_DEMO_MODE: forces analysis.demo_mode on or off
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mailsense.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from mailsense.core.errors import ConfigLoadError, ConfigValidationError
from mailsense.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = Path("config/config.yaml")
CONFIG_PATH_ENV = "MAILSENSE_CONFIG_PATH"
DEMO_MODE_ENV = "MAILSENSE_DEMO_MODE"

_TRUTHY = frozenset({"1", "true", "yes", "on"})

# Readable phrasing for the Pydantic error types users hit most often
_ERROR_HINTS = {
    "missing": "is required",
    "extra_forbidden": "is not a recognised setting",
    "int_type": "must be an integer",
    "int_parsing": "must be an integer",
    "float_type": "must be a number",
    "float_parsing": "must be a number",
    "bool_type": "must be true or false",
    "bool_parsing": "must be true or false",
}

_lock = threading.Lock()
_cached: AppConfig | None = None


def config_path_from_env() -> Path:
    return Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)


def _describe(error: ValidationError) -> str:
    lines = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "<root>"
        hint = _ERROR_HINTS.get(item["type"], item["msg"])
        lines.append(f"  - {where}: {hint}")
    return "\n".join(lines)


def _read_mapping(path: Path) -> dict[str, Any]:
    """Parse a YAML file that must hold a mapping (an empty file counts)."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise ConfigLoadError(
            f"Configuration file not found: {path}\n"
            f"Create it or point {CONFIG_PATH_ENV} at an existing file"
        ) from e
    except OSError as e:
        raise ConfigLoadError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e

    if data is None:
        return {}
    if isinstance(data, dict):
        return data
    raise ConfigLoadError(
        f"Configuration file must be a YAML mapping, got {type(data).__name__}"
    )


def _env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    raw = os.environ.get(DEMO_MODE_ENV)
    if raw is None:
        return data
    analysis = {**(data.get("analysis") or {}), "demo_mode": raw.strip().lower() in _TRUTHY}
    return {**data, "analysis": analysis}


def _build(data: dict[str, Any], source: Path) -> AppConfig:
    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigValidationError(
            f"Configuration validation failed for {source}:\n{_describe(e)}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"{source} declares schema_version {config.schema_version}, newer than supported "
            f"version {CURRENT_SCHEMA_VERSION}. Upgrade MailSense to use this file."
        )
    return config


def load_config(path: Path | None = None, allow_missing: bool = False) -> AppConfig:
    """Read, override and validate configuration, bypassing the cache.

    Args:
        path: Config file; defaults to MAILSENSE_CONFIG_PATH or config/config.yaml
        allow_missing: Use schema defaults when the file does not exist

    Raises:
        ConfigLoadError: The file is unreadable or not a YAML mapping
        ConfigValidationError: A value fails the schema
    """
    source = path or config_path_from_env()

    if allow_missing and not source.exists():
        logger.info("config_file_missing_using_defaults", path=str(source))
        data: dict[str, Any] = {}
    else:
        data = _read_mapping(source)

    config = _build(_env_overrides(data), source)
    logger.info(
        "config_loaded",
        path=str(source),
        schema_version=config.schema_version,
        demo_mode=config.analysis.demo_mode,
        worker_concurrency=config.worker.concurrency,
    )
    return config


def get_config() -> AppConfig:
    """Return the cached configuration, loading it on first use.

    A missing file yields defaults; an invalid one raises.
    """
    global _cached
    with _lock:
        if _cached is None:
            _cached = load_config(allow_missing=True)
        return _cached


def reset_config() -> None:
    """Drop the cached configuration so the next get_config() reloads."""
    global _cached
    with _lock:
        _cached = None


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Check a config file without touching the cache.

    Returns:
        (ok, message) where message is a summary or the failure reason
    """
    try:
        config = load_config(path or config_path_from_env())
    except ConfigLoadError as e:
        return False, f"Load error: {e}"
    except ConfigValidationError as e:
        return False, f"Validation error: {e}"

    summary = [
        f"Configuration valid (schema version {config.schema_version})",
        f"  - database: {config.database.path}",
        f"  - budget mode: {config.analysis.default_budget_mode}",
        f"  - demo mode: {'on' if config.analysis.demo_mode else 'off'}",
        f"  - workers: {config.worker.concurrency} (queue {config.worker.queue_size})",
    ]
    return True, "\n".join(summary)
