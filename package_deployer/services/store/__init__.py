"""
Entity Store Factory

Provides a single entry point for obtaining the entity store.
The rest of the application stays agnostic about which backend is used.

Usage:
    from package_deployer.services.store import get_entity_store

    store = get_entity_store()
    tenant = await store.get_tenant(tenant_id)

Environment Switching:
    - ENV_MODE=development → InMemoryEntityStore (no database)
    - ENV_MODE=staging → SqlEntityStore
    - ENV_MODE=production → SqlEntityStore
"""

import logging
from functools import lru_cache

from package_deployer.core.config import get_settings
from package_deployer.database import get_session_maker
from package_deployer.services.store.base import (
    AttributeRecord,
    BaseEntityStore,
    DuplicateEntityError,
    EdgeRecord,
    EntityRecord,
    MembershipRecord,
    StoreError,
    TenantRecord,
    TransactionLineRecord,
    TransactionRecordData,
)
from package_deployer.services.store.memory import InMemoryEntityStore
from package_deployer.services.store.sql import SqlEntityStore

logger = logging.getLogger(__name__)


@lru_cache()
def get_entity_store() -> BaseEntityStore:
    """
    Get the configured entity store instance.

    The instance is cached so every request shares one store (and, for the
    in-memory backend, one dataset).

    Returns:
        BaseEntityStore: Configured store
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Entity Store: Using InMemoryEntityStore (development mode)")
        return InMemoryEntityStore()

    logger.info(
        f"Entity Store: Using SqlEntityStore "
        f"({settings.env_mode.value} mode)"
    )
    return SqlEntityStore(get_session_maker())


def reset_entity_store() -> None:
    """
    Clear the cached store instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_entity_store.cache_clear()
    logger.debug("Entity store cache cleared")


__all__ = [
    "get_entity_store",
    "reset_entity_store",
    "BaseEntityStore",
    "InMemoryEntityStore",
    "SqlEntityStore",
    "StoreError",
    "DuplicateEntityError",
    "AttributeRecord",
    "EdgeRecord",
    "EntityRecord",
    "MembershipRecord",
    "TenantRecord",
    "TransactionLineRecord",
    "TransactionRecordData",
]
