"""
Redis tenant lock.

Shares the deployment lock across every API worker and host. The lock
expires after `ttl_seconds` so a crashed worker cannot block a tenant
forever.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import redis.asyncio as aioredis
from redis.exceptions import LockError, RedisError

from package_deployer.core.config import get_settings
from package_deployer.services.locks.base import BaseTenantLock, LockUnavailableError

logger = logging.getLogger(__name__)


class RedisTenantLock(BaseTenantLock):
    """
    Redis-backed tenant lock.

    Args:
        client: Redis asyncio client (default: built from REDIS_URL)
        acquire_timeout: Seconds to wait for the lock
        ttl_seconds: Expiry of a held lock
    """

    KEY_PREFIX = "deploy-lock"

    def __init__(
        self,
        client: Optional[aioredis.Redis] = None,
        acquire_timeout: Optional[float] = None,
        ttl_seconds: Optional[int] = None,
    ):
        settings = get_settings()
        self.client = client or aioredis.Redis.from_url(settings.redis_url)
        self.acquire_timeout = (
            settings.deployment_lock_timeout_seconds
            if acquire_timeout is None else acquire_timeout
        )
        self.ttl_seconds = ttl_seconds or settings.deployment_lock_ttl_seconds

        logger.info(
            f"RedisTenantLock initialized "
            f"(acquire_timeout={self.acquire_timeout}s, ttl={self.ttl_seconds}s)"
        )

    @property
    def provider_name(self) -> str:
        return "redis"

    def _key(self, tenant_id: str) -> str:
        return f"{self.KEY_PREFIX}:{tenant_id}"

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self.client.lock(
            self._key(tenant_id),
            timeout=self.ttl_seconds,
            blocking=self.acquire_timeout > 0,
            blocking_timeout=self.acquire_timeout,
        )
        acquired = await lock.acquire()
        if not acquired:
            logger.warning(f"Tenant lock busy: {tenant_id}")
            raise LockUnavailableError(tenant_id, self.acquire_timeout)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError as e:
                # Expired before release; another holder may already own it
                logger.warning(f"Tenant lock for {tenant_id} expired while held: {e}")

    async def health_check(self) -> bool:
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error(f"Redis health check failed: {e}")
            return False
