"""
Configuration management and loading.

Handles engine settings from YAML files and environment variables.
"""

import logging
import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from usage_lens.storage.db import DEFAULT_DB_PATH

DB_PATH_ENV = "USAGE_LENS_DB"

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class DatabaseConfig:
    """Location of the usage store."""
    path: str = DEFAULT_DB_PATH

    def __post_init__(self):
        """Validate the path is usable."""
        if not self.path:
            raise ValueError("database.path must not be empty")


@dataclass(frozen=True)
class QueryConfig:
    """Defaults applied by the statistics façade."""
    top_n: int = 6
    kpi_days: int = 7
    heatmap_days: int = 365
    anomaly_sigma: float = 2.0

    def __post_init__(self):
        """Validate query defaults are positive."""
        if self.top_n <= 0:
            raise ValueError("queries.top_n must be > 0")
        if self.kpi_days <= 0:
            raise ValueError("queries.kpi_days must be > 0")
        if self.heatmap_days <= 0:
            raise ValueError("queries.heatmap_days must be > 0")
        if self.anomaly_sigma <= 0:
            raise ValueError("queries.anomaly_sigma must be > 0")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"

    def __post_init__(self):
        """Validate the level name."""
        if self.level.upper() not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of: {sorted(_LOG_LEVELS)}")

    @property
    def numeric_level(self) -> int:
        return getattr(logging, self.level.upper())


@dataclass(frozen=True)
class Settings:
    """Complete engine configuration."""
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queries: QueryConfig = field(default_factory=QueryConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _apply_env(settings: Settings) -> Settings:
    db_path = os.environ.get(DB_PATH_ENV)
    if db_path:
        return replace(settings, database=DatabaseConfig(path=db_path))
    return settings


def default_settings() -> Settings:
    """Settings used when no configuration file is given."""
    return _apply_env(Settings())


def load_settings(path: Optional[str] = None) -> Settings:
    """Load and validate engine settings from a YAML file.

    Unknown keys are rejected so typos do not silently fall back to defaults.
    The USAGE_LENS_DB environment variable overrides database.path.

    Args:
        path: Path to YAML configuration file; None returns the defaults

    Returns:
        Validated Settings object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return default_settings()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a mapping")

    allowed_top_keys = {'database', 'queries', 'logging'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    database_data = _section(raw_config, 'database', {'path'})
    queries_data = _section(raw_config, 'queries', {'top_n', 'kpi_days', 'heatmap_days', 'anomaly_sigma'})
    logging_data = _section(raw_config, 'logging', {'level'})

    database = DatabaseConfig(path=str(database_data.get('path', DEFAULT_DB_PATH)))

    defaults = QueryConfig()
    queries = QueryConfig(
        top_n=_int_value(queries_data, 'top_n', defaults.top_n),
        kpi_days=_int_value(queries_data, 'kpi_days', defaults.kpi_days),
        heatmap_days=_int_value(queries_data, 'heatmap_days', defaults.heatmap_days),
        anomaly_sigma=_float_value(queries_data, 'anomaly_sigma', defaults.anomaly_sigma),
    )

    level = logging_data.get('level', LoggingConfig().level)
    if not isinstance(level, str):
        raise ValueError("'logging.level' must be a string")

    return _apply_env(Settings(
        database=database,
        queries=queries,
        logging=LoggingConfig(level=level.upper()),
    ))


def _section(raw_config: Dict, name: str, allowed_keys: set) -> Dict[str, Any]:
    """Return a validated config section, empty when absent.

    Raises:
        ValueError: If the section is not a mapping or has unknown keys
    """
    data = raw_config.get(name) or {}
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown {name} keys: {unknown_keys}")
    return data


def _int_value(data: Dict, key: str, default: int) -> int:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'queries.{key}' must be an integer")
    return value


def _float_value(data: Dict, key: str, default: float) -> float:
    value = data.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"'queries.{key}' must be a number")
    return float(value)
