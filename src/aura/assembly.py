"""Service assembly: builds a ready AuraService from Settings.

The assembly owns initialisation (logging, policy, backing store). The
returned service owns teardown through ``AuraService.close()``.
"""

from __future__ import annotations

from typing import Optional

from aura.logging_utils import configure_logging, get_logger
from aura.persistence.memory_store import InMemoryStore
from aura.persistence.sqlite_store import SqliteStore
from aura.persistence.store import MarketStore
from aura.policy.resolver import PolicyResolver
from aura.service import AuraService
from aura.settings import Settings, load_settings

logger = get_logger(__name__)


def build_store(settings: Settings) -> MarketStore:
    """Open the backing store named by the settings."""
    if settings.storage_backend == "sqlite":
        return SqliteStore(settings.resolved_sqlite_path)
    return InMemoryStore()


def build_service(settings: Optional[Settings] = None) -> AuraService:
    """Wire a service from settings, loading them from the environment
    when none are given."""
    settings = settings or load_settings()
    configure_logging(settings)

    resolver = PolicyResolver.from_config_dir(settings.config_dir)
    store = build_store(settings)
    logger.info(
        "AURA service ready (policy %s, storage %s)",
        resolver.version, settings.storage_backend,
    )
    return AuraService(resolver, store)
