"""Service settings: the explicit configuration handed to the assembly.

Values come from AURA_* environment variables, optionally seeded from a
.env file via python-dotenv.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


DEFAULT_CONFIG = Path(__file__).resolve().parents[2] / "config"
DEFAULT_DATA = Path(__file__).resolve().parents[2] / "data"

_BACKENDS = ("memory", "sqlite")


@dataclass(frozen=True)
class Settings:
    """Configuration for one service instance."""
    config_dir: Path = DEFAULT_CONFIG
    data_dir: Path = DEFAULT_DATA
    storage_backend: str = "memory"
    sqlite_path: Optional[Path] = None
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    def __post_init__(self) -> None:
        if self.storage_backend not in _BACKENDS:
            raise ValueError(
                f"Unknown storage backend: {self.storage_backend}. "
                f"Expected one of {list(_BACKENDS)}"
            )

    @property
    def resolved_sqlite_path(self) -> Path:
        return self.sqlite_path or (self.data_dir / "aura.db")


def load_settings(env_file: Optional[Path] = None) -> Settings:
    """Build Settings from the environment (and an optional .env file)."""
    load_dotenv(dotenv_path=env_file, override=False)
    env = os.environ

    sqlite_path = env.get("AURA_SQLITE_PATH")
    log_file = env.get("AURA_LOG_FILE")
    return Settings(
        config_dir=Path(env.get("AURA_CONFIG_DIR", str(DEFAULT_CONFIG))),
        data_dir=Path(env.get("AURA_DATA_DIR", str(DEFAULT_DATA))),
        storage_backend=env.get("AURA_STORAGE", "memory").strip().lower(),
        sqlite_path=Path(sqlite_path) if sqlite_path else None,
        log_level=env.get("AURA_LOG_LEVEL", "INFO"),
        log_file=Path(log_file) if log_file else None,
    )
