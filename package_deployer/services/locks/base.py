"""
Tenant Lock Abstract Base Class

A tenant-scoped advisory lock held for the whole of a deployment call, so
two deployments to the same tenant never interleave their
"already deployed?" checks and writes.

Implementations:
    - LocalTenantLock: per-tenant asyncio.Lock (single process, development)
    - RedisTenantLock: Redis lock shared by every API worker
"""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager


class LockUnavailableError(Exception):
    """The tenant lock could not be acquired in time."""

    def __init__(self, tenant_id: str, timeout: float):
        self.tenant_id = tenant_id
        self.timeout = timeout
        super().__init__(
            f"Another deployment is in progress for tenant {tenant_id} "
            f"(waited {timeout:g}s)"
        )


class BaseTenantLock(ABC):
    """
    Abstract base class for tenant deployment locks.

    Example:
        >>> lock = get_tenant_lock()
        >>> async with lock.hold(tenant_id):
        ...     await deploy()
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the lock backend name (e.g., "local", "redis")."""

    @abstractmethod
    def hold(self, tenant_id: str) -> AbstractAsyncContextManager[None]:
        """
        Acquire the lock for `tenant_id` for the duration of the block.

        Raises:
            LockUnavailableError: lock not acquired within the configured timeout
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """Verify the lock backend is reachable."""
