"""
Tenant Lock Factory

Usage:
    from package_deployer.services.locks import get_tenant_lock

    async with get_tenant_lock().hold(tenant_id):
        ...

Environment Switching:
    - ENV_MODE=development → LocalTenantLock
    - ENV_MODE=staging/production → RedisTenantLock
"""

import logging
from functools import lru_cache

from package_deployer.core.config import get_settings
from package_deployer.services.locks.base import BaseTenantLock, LockUnavailableError
from package_deployer.services.locks.local import LocalTenantLock
from package_deployer.services.locks.redis_lock import RedisTenantLock

logger = logging.getLogger(__name__)


@lru_cache()
def get_tenant_lock() -> BaseTenantLock:
    """
    Get the configured tenant lock.

    Returns:
        BaseTenantLock: LocalTenantLock or RedisTenantLock
    """
    settings = get_settings()

    if settings.is_development:
        logger.info("Tenant Lock: Using LocalTenantLock (development mode)")
        return LocalTenantLock(acquire_timeout=settings.deployment_lock_timeout_seconds)

    logger.info(f"Tenant Lock: Using RedisTenantLock ({settings.env_mode.value} mode)")
    return RedisTenantLock()


def reset_tenant_lock() -> None:
    """Clear the cached lock instance."""
    get_tenant_lock.cache_clear()
    logger.debug("Tenant lock cache cleared")


__all__ = [
    "get_tenant_lock",
    "reset_tenant_lock",
    "BaseTenantLock",
    "LockUnavailableError",
    "LocalTenantLock",
    "RedisTenantLock",
]
