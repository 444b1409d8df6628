"""
In-process tenant lock.

Only serializes deployments inside one Python process; used in development
mode and tests.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from package_deployer.services.locks.base import BaseTenantLock, LockUnavailableError

logger = logging.getLogger(__name__)


class LocalTenantLock(BaseTenantLock):
    """
    Per-tenant asyncio.Lock registry.

    A tenant's lock lives only while a caller holds or waits on it, so the
    registry does not grow with every tenant id ever seen.

    Args:
        acquire_timeout: Seconds to wait before giving up (0 = fail immediately)
    """

    def __init__(self, acquire_timeout: float = 5.0):
        self.acquire_timeout = acquire_timeout
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @property
    def provider_name(self) -> str:
        return "local"

    @property
    def tracked_tenants(self) -> int:
        return len(self._locks)

    def is_locked(self, tenant_id: str) -> bool:
        return tenant_id in self._locks and self._locks[tenant_id].locked()

    @asynccontextmanager
    async def hold(self, tenant_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(tenant_id, asyncio.Lock())
        if lock.locked() and self.acquire_timeout <= 0:
            raise LockUnavailableError(tenant_id, self.acquire_timeout)

        self._users[tenant_id] = self._users.get(tenant_id, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self.acquire_timeout or None)
            except asyncio.TimeoutError:
                logger.warning(f"Tenant lock busy: {tenant_id}")
                raise LockUnavailableError(tenant_id, self.acquire_timeout)
            try:
                yield
            finally:
                lock.release()
        finally:
            self._users[tenant_id] -= 1
            if not self._users[tenant_id]:
                del self._users[tenant_id]
                del self._locks[tenant_id]

    async def health_check(self) -> bool:
        return True
