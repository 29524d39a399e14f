"""Tests for settings loading: environment, .env files, validation."""

import os
import pytest
from pathlib import Path

from aura.settings import DEFAULT_CONFIG, Settings, load_settings

_AURA_VARS = (
    "AURA_CONFIG_DIR",
    "AURA_DATA_DIR",
    "AURA_STORAGE",
    "AURA_SQLITE_PATH",
    "AURA_LOG_LEVEL",
    "AURA_LOG_FILE",
)


@pytest.fixture
def clean_env(monkeypatch):
    """Isolate os.environ so .env loading cannot leak into other tests."""
    monkeypatch.setattr(os, "environ", os.environ.copy())
    for name in _AURA_VARS:
        os.environ.pop(name, None)
    return os.environ


class TestDefaults:
    def test_default_settings(self) -> None:
        settings = Settings()
        assert settings.config_dir == DEFAULT_CONFIG
        assert settings.storage_backend == "memory"
        assert settings.log_level == "INFO"
        assert settings.resolved_sqlite_path == settings.data_dir / "aura.db"

    def test_unknown_backend(self) -> None:
        with pytest.raises(ValueError, match="storage backend"):
            Settings(storage_backend="postgres")

    def test_config_dir_holds_policy(self) -> None:
        assert (DEFAULT_CONFIG / "market_policy.json").exists()


class TestEnvironment:
    def test_reads_aura_variables(self, clean_env, tmp_path: Path) -> None:
        clean_env["AURA_STORAGE"] = "SQLite"
        clean_env["AURA_SQLITE_PATH"] = str(tmp_path / "m.db")
        clean_env["AURA_LOG_LEVEL"] = "DEBUG"
        clean_env["AURA_LOG_FILE"] = str(tmp_path / "aura.log")
        settings = load_settings(env_file=tmp_path / "missing.env")
        assert settings.storage_backend == "sqlite"
        assert settings.resolved_sqlite_path == tmp_path / "m.db"
        assert settings.log_level == "DEBUG"
        assert settings.log_file == tmp_path / "aura.log"

    def test_env_file_loaded(self, clean_env, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text(f"AURA_STORAGE=sqlite\nAURA_DATA_DIR={tmp_path}\n", encoding="utf-8")
        settings = load_settings(env_file=env_file)
        assert settings.storage_backend == "sqlite"
        assert settings.resolved_sqlite_path == tmp_path / "aura.db"

    def test_environment_beats_env_file(self, clean_env, tmp_path: Path) -> None:
        env_file = tmp_path / ".env"
        env_file.write_text("AURA_LOG_LEVEL=DEBUG\n", encoding="utf-8")
        clean_env["AURA_LOG_LEVEL"] = "WARNING"
        assert load_settings(env_file=env_file).log_level == "WARNING"
