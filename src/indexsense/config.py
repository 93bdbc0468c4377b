"""
Configuration system for IndexSense.

Implements 12-factor config principles:
- Environment variables as primary config source
- Optional JSON config file for local development
- Per-environment profiles

Usage:
    from indexsense.config import get_config

    config = get_config()
    store = JsonFileStore(config.calibration_path)
    dialect = config.dialect

Environment variables:
- INDEXSENSE_ENVIRONMENT=production
- INDEXSENSE_DIALECT=postgresql
- INDEXSENSE_CALIBRATION_FILE=~/.indexsense/calibration.json
- INDEXSENSE_CALIBRATION_KEY=indexsense_index_scoring_v1
- INDEXSENSE_MAX_CONCURRENCY=4
- INDEXSENSE_LOG_LEVEL=INFO
- INDEXSENSE_CONFIG_FILE=indexsense.json (load everything from a file instead)
"""

from __future__ import annotations

import json
import logging
import os
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from indexsense.calibration import DEFAULT_CALIBRATION_KEY
from indexsense.dialect import Dialect
from indexsense.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CALIBRATION_PATH = "~/.indexsense/calibration.json"

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class Environment(str, Enum):
    """Environment profiles with different default behaviors."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"

    @classmethod
    def from_string(cls, value: str) -> "Environment":
        """Parse environment from string, defaulting to development."""
        try:
            return cls(value.lower())
        except ValueError:
            return cls.DEVELOPMENT


class Config(BaseModel):
    """
    IndexSense configuration.

    Loaded from environment variables or an optional config file.
    """

    model_config = ConfigDict(frozen=True)

    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Current environment (development/staging/production)",
    )
    dialect: Dialect = Field(
        default=Dialect.MYSQL,
        description="SQL dialect used when a snapshot does not declare one",
    )
    calibration_path: str = Field(
        default=DEFAULT_CALIBRATION_PATH,
        description="JSON file holding persisted scoring weights",
    )
    calibration_key: str = Field(
        default=DEFAULT_CALIBRATION_KEY,
        description="Key the scoring weights are stored under",
    )
    max_concurrency: int | None = Field(
        default=None,
        ge=1,
        description="Cap on concurrent simulation calls (None = all at once)",
    )
    log_level: str = Field(
        default="WARNING",
        description="Logging level for the CLI",
    )

    @field_validator("dialect", mode="before")
    @classmethod
    def _parse_dialect(cls, value: Any) -> Dialect:
        if isinstance(value, Dialect):
            return value
        return Dialect.from_string(str(value) if value is not None else None)

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {', '.join(_LOG_LEVELS)}")
        return level

    @property
    def calibration_file(self) -> Path:
        return Path(self.calibration_path).expanduser()


def _parse_env_int(value: str | None, default: int | None) -> int | None:
    """Parse integer from environment variable."""
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Could not parse integer setting %r", value)
        return default


def load_config_from_env() -> Config:
    """Load configuration from INDEXSENSE_* environment variables."""
    config_kwargs: dict[str, Any] = {
        "environment": Environment.from_string(
            os.environ.get("INDEXSENSE_ENVIRONMENT", "development")
        ),
        "dialect": os.environ.get("INDEXSENSE_DIALECT", Dialect.MYSQL.value),
        "calibration_path": os.environ.get(
            "INDEXSENSE_CALIBRATION_FILE", DEFAULT_CALIBRATION_PATH
        ),
        "calibration_key": os.environ.get(
            "INDEXSENSE_CALIBRATION_KEY", DEFAULT_CALIBRATION_KEY
        ),
        "max_concurrency": _parse_env_int(
            os.environ.get("INDEXSENSE_MAX_CONCURRENCY"), None
        ),
        "log_level": os.environ.get("INDEXSENSE_LOG_LEVEL", "WARNING"),
    }

    try:
        return Config(**config_kwargs)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid IndexSense environment configuration: {e}") from e


def load_config_from_file(path: Path) -> Config:
    """
    Load configuration from a JSON file.

    Falls back to environment variables when the file does not exist.
    """
    if not path.exists():
        logger.warning("Config file not found: %s, using environment", path)
        return load_config_from_env()

    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError) as e:
        raise ConfigurationError(
            f"Failed to read config file {path}: {e}", config_key="INDEXSENSE_CONFIG_FILE"
        ) from e

    try:
        return Config(**data)
    except (TypeError, ValidationError) as e:
        raise ConfigurationError(
            f"Invalid config file {path}: {e}", config_key="INDEXSENSE_CONFIG_FILE"
        ) from e


@lru_cache(maxsize=1)
def get_config() -> Config:
    """
    Get the global configuration instance.

    Loads from:
    1. INDEXSENSE_CONFIG_FILE environment variable (if set)
    2. Environment variables (default)

    Result is cached for the lifetime of the process.
    """
    config_file = os.environ.get("INDEXSENSE_CONFIG_FILE")

    if config_file:
        return load_config_from_file(Path(config_file))

    return load_config_from_env()


def reset_config() -> None:
    """Reset the cached configuration (mainly for testing)."""
    get_config.cache_clear()
