"""Config loading and validation for process-map.

Loads process-map.config.json, validates required fields, applies defaults
and expands ~ in the database path. ``PROCESS_MAP_DB`` overrides db_path.
"""

import json
import os
from pathlib import Path
from typing import Any

CONFIG_FILENAME = "process-map.config.json"
DB_ENV_VAR = "PROCESS_MAP_DB"


class ConfigError(Exception):
    """Raised when configuration is invalid or missing required fields."""


REQUIRED_FIELDS = ["db_path"]

PATH_FIELDS = ["db_path"]

DEFAULTS: dict[str, Any] = {
    "host": "127.0.0.1",
    "port": 8000,
    "log_level": "INFO",
    "activity_page_size": 50,
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def load_config(config_path: str | Path | None = None) -> dict[str, Any]:
    """Load and validate process-map.config.json.

    Args:
        config_path: Path to config file. Defaults to ./process-map.config.json.

    Returns:
        Validated config dict with paths expanded and defaults applied.

    Raises:
        ConfigError: If file is missing, unreadable, or has invalid content.
    """
    if config_path is None:
        config_path = Path.cwd() / CONFIG_FILENAME
    else:
        config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigError(f"Config file not found: {config_path}")

    try:
        config = json.loads(config_path.read_text())
    except json.JSONDecodeError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}") from e
    if not isinstance(config, dict):
        raise ConfigError(f"Config in {config_path} must be a JSON object")

    env_db = os.environ.get(DB_ENV_VAR)
    if env_db:
        config["db_path"] = env_db

    _validate(config)
    _apply_defaults(config)
    _check_types(config)
    _expand_paths(config)

    return config


def _validate(config: dict[str, Any]) -> None:
    """Validate required fields are present."""
    for field in REQUIRED_FIELDS:
        if not config.get(field):
            raise ConfigError(
                f"Missing required config field: '{field}'. "
                f"Run 'process-map init' to create a starter {CONFIG_FILENAME}."
            )


def _apply_defaults(config: dict[str, Any]) -> None:
    for key, default in DEFAULTS.items():
        if key not in config:
            config[key] = default


def _check_types(config: dict[str, Any]) -> None:
    port = config["port"]
    if not isinstance(port, int) or isinstance(port, bool) or not 0 < port < 65536:
        raise ConfigError(f"'port' must be an integer between 1 and 65535, got {port!r}")

    page_size = config["activity_page_size"]
    if not isinstance(page_size, int) or isinstance(page_size, bool) or page_size < 1:
        raise ConfigError(f"'activity_page_size' must be a positive integer, got {page_size!r}")

    level = str(config["log_level"]).upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"'log_level' must be one of {', '.join(LOG_LEVELS)}, got {level!r}")
    config["log_level"] = level


def _expand_paths(config: dict[str, Any]) -> None:
    """Expand ~ in path fields to the user's home directory."""
    for field in PATH_FIELDS:
        if field in config and isinstance(config[field], str):
            config[field] = str(Path(config[field]).expanduser())


def resolve_db_path(config_path: str | Path | None = None) -> str:
    """Database path from the environment, then the config file, then the default."""
    env_db = os.environ.get(DB_ENV_VAR)
    if env_db:
        return str(Path(env_db).expanduser())
    try:
        return load_config(config_path)["db_path"]
    except ConfigError:
        return str(Path("~/.process-map/process-map.db").expanduser())
