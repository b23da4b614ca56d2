"""
Configuration loading and validation.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

REGIONS = ("USD", "CAD", "INTL")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigValidationError(Exception):
    """Raised when configuration is invalid."""

    pass


@dataclass
class DatabaseConfig:
    """Database configuration."""

    path: str = "data/matrix_engine.db"


@dataclass
class EngineConfig:
    """Rule engine configuration."""

    regions: list[str] = field(default_factory=lambda: list(REGIONS))
    at_tolerance_pct: float = 2.5
    rsi_period: int = 14
    catalog_path: Optional[str] = None


@dataclass
class DataSourceConfig:
    """Data source configuration."""

    provider: str = "yahoo_finance"
    history_period: str = "2y"
    benchmarks: dict[str, str] = field(
        default_factory=lambda: {"USD": "SPY", "CAD": "XIC", "INTL": "ACWX"}
    )


@dataclass
class AdvancedConfig:
    """Advanced configuration."""

    log_level: str = "INFO"


@dataclass
class AppConfig:
    """Main application configuration."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    data_source: DataSourceConfig = field(default_factory=DataSourceConfig)
    advanced: AdvancedConfig = field(default_factory=AdvancedConfig)


def _substitute_env_vars(value: Any) -> Any:
    """Substitute environment variables in string values."""
    if isinstance(value, str):
        # Match ${VAR_NAME} pattern
        pattern = r"\$\{([^}]+)\}"
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.environ.get(var_name, "")
            value = value.replace(f"${{{var_name}}}", env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def _validate_regions(regions: Any) -> None:
    if not isinstance(regions, list) or not regions:
        raise ConfigValidationError("engine.regions must be a non-empty list")
    unknown = [r for r in regions if str(r).upper() not in REGIONS]
    if unknown:
        raise ConfigValidationError(
            f"Unknown regions {unknown}; expected any of {list(REGIONS)}"
        )


def _validate_config(config_dict: dict[str, Any]) -> None:
    """Validate configuration values."""
    # Check database path is provided
    db_config = config_dict.get("database") or {}
    db_path = db_config.get("path")
    if not db_path:
        raise ConfigValidationError("Database path is required")

    path = Path(db_path)
    parent = path.parent
    if db_path != ":memory:" and parent.exists() and not os.access(parent, os.W_OK):
        raise ConfigValidationError(f"Database path not writable: {parent}")

    engine = config_dict.get("engine") or {}
    if "regions" in engine:
        _validate_regions(engine["regions"])

    tolerance = engine.get("at_tolerance_pct", 2.5)
    if not isinstance(tolerance, (int, float)) or tolerance < 0:
        raise ConfigValidationError(
            f"engine.at_tolerance_pct must be a non-negative number, got {tolerance!r}"
        )

    rsi_period = engine.get("rsi_period", 14)
    if not isinstance(rsi_period, int) or rsi_period < 1:
        raise ConfigValidationError(
            f"engine.rsi_period must be a positive integer, got {rsi_period!r}"
        )

    advanced = config_dict.get("advanced") or {}
    log_level = str(advanced.get("log_level", "INFO")).upper()
    if log_level not in LOG_LEVELS:
        raise ConfigValidationError(f"Invalid log level: {log_level}")


def load_config(config_path: str) -> AppConfig:
    """
    Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        AppConfig instance

    Raises:
        ConfigValidationError: If configuration is invalid
        FileNotFoundError: If config file doesn't exist
    """
    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    # Substitute environment variables
    config_dict = _substitute_env_vars(raw_config)

    # Validate
    _validate_config(config_dict)

    database = DatabaseConfig(**config_dict.get("database", {}))

    engine_dict = dict(config_dict.get("engine") or {})
    if "regions" in engine_dict:
        engine_dict["regions"] = [str(r).upper() for r in engine_dict["regions"]]
    engine = EngineConfig(**engine_dict)

    ds_dict = dict(config_dict.get("data_source") or {})
    benchmarks = DataSourceConfig().benchmarks
    benchmarks.update(
        {str(k).upper(): str(v) for k, v in (ds_dict.pop("benchmarks", None) or {}).items()}
    )
    data_source = DataSourceConfig(benchmarks=benchmarks, **ds_dict)

    advanced_dict = dict(config_dict.get("advanced") or {})
    if "log_level" in advanced_dict:
        advanced_dict["log_level"] = str(advanced_dict["log_level"]).upper()
    advanced = AdvancedConfig(**advanced_dict)

    return AppConfig(
        database=database,
        engine=engine,
        data_source=data_source,
        advanced=advanced,
    )
