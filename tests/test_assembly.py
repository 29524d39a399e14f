"""Tests for service assembly: settings select the store, teardown closes it."""

import logging
import pytest
from pathlib import Path

from aura.assembly import build_service, build_store
from aura.persistence.memory_store import InMemoryStore
from aura.persistence.sqlite_store import SqliteStore
from aura.service import AuraService
from aura.settings import Settings

CONFIG_DIR = Path(__file__).resolve().parents[1] / "config"


@pytest.fixture(autouse=True)
def _restore_root_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestBuildStore:
    def test_memory_backend(self) -> None:
        assert isinstance(build_store(Settings()), InMemoryStore)

    def test_sqlite_backend(self, tmp_path: Path) -> None:
        store = build_store(Settings(storage_backend="sqlite", sqlite_path=tmp_path / "a.db"))
        try:
            assert isinstance(store, SqliteStore)
            assert (tmp_path / "a.db").exists()
        finally:
            store.close()


class TestBuildService:
    def test_memory_service(self) -> None:
        service = build_service(Settings(config_dir=CONFIG_DIR))
        assert isinstance(service, AuraService)
        assert service.create_session("red widgets").success
        service.close()

    def test_sqlite_service_persists(self, tmp_path: Path) -> None:
        settings = Settings(
            config_dir=CONFIG_DIR,
            storage_backend="sqlite",
            sqlite_path=tmp_path / "market.db",
        )
        service = build_service(settings)
        session_id = service.create_session("red widgets").data["session_id"]
        service.close()

        reopened = build_service(settings)
        try:
            assert reopened.get_session(session_id).data["state"] == "market_forming"
        finally:
            reopened.close()

    def test_missing_policy_fails_loud(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            build_service(Settings(config_dir=tmp_path))
