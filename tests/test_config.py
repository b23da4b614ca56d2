"""
Configuration tests.
Tests for YAML loading, environment substitution and validation.
"""

from pathlib import Path

import pytest

from matrix_engine.config import AppConfig, ConfigValidationError, load_config


def _write(tmp_path: Path, text: str) -> str:
    path = tmp_path / "config.yaml"
    path.write_text(text)
    return str(path)


class TestLoadConfig:
    """Test configuration loading."""

    def test_full_config(self, tmp_path: Path):
        path = _write(
            tmp_path,
            f"""
database:
  path: {tmp_path / "engine.db"}
engine:
  regions: [usd, cad]
  at_tolerance_pct: 1.5
  rsi_period: 9
  catalog_path: rules.yaml
data_source:
  provider: database
  history_period: 1y
  benchmarks:
    cad: XIU
advanced:
  log_level: debug
""",
        )
        config = load_config(path)

        assert config.engine.regions == ["USD", "CAD"]
        assert config.engine.at_tolerance_pct == 1.5
        assert config.engine.rsi_period == 9
        assert config.engine.catalog_path == "rules.yaml"
        assert config.data_source.provider == "database"
        assert config.data_source.history_period == "1y"
        assert config.data_source.benchmarks == {"USD": "SPY", "CAD": "XIU", "INTL": "ACWX"}
        assert config.advanced.log_level == "DEBUG"

    def test_defaults(self, tmp_path: Path):
        path = _write(tmp_path, f"database:\n  path: {tmp_path / 'engine.db'}\n")
        config = load_config(path)

        defaults = AppConfig()
        assert config.engine == defaults.engine
        assert config.data_source == defaults.data_source
        assert config.advanced.log_level == "INFO"

    def test_env_substitution(self, tmp_path: Path, monkeypatch):
        """Should substitute ${VAR} from the environment."""
        db_path = str(tmp_path / "from_env.db")
        monkeypatch.setenv("MATRIX_DB_PATH", db_path)
        path = _write(tmp_path, "database:\n  path: ${MATRIX_DB_PATH}\n")

        assert load_config(path).database.path == db_path

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.yaml"))


class TestValidation:
    """Test configuration validation errors."""

    def test_database_path_required(self, tmp_path: Path, monkeypatch):
        monkeypatch.delenv("MATRIX_DB_PATH", raising=False)
        path = _write(tmp_path, "database:\n  path: ${MATRIX_DB_PATH}\n")
        with pytest.raises(ConfigValidationError):
            load_config(path)

    @pytest.mark.parametrize(
        "engine_yaml",
        [
            "regions: [USD, EUR]",
            "regions: []",
            "at_tolerance_pct: -1",
            "rsi_period: 0",
        ],
    )
    def test_invalid_engine_settings(self, tmp_path: Path, engine_yaml):
        path = _write(
            tmp_path,
            f"database:\n  path: {tmp_path / 'engine.db'}\nengine:\n  {engine_yaml}\n",
        )
        with pytest.raises(ConfigValidationError):
            load_config(path)

    def test_invalid_log_level(self, tmp_path: Path):
        path = _write(
            tmp_path,
            f"database:\n  path: {tmp_path / 'engine.db'}\nadvanced:\n  log_level: LOUD\n",
        )
        with pytest.raises(ConfigValidationError):
            load_config(path)
