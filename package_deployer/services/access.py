"""
User Access Assigner

Grants freshly deployed modules to tenant members after a deployment.

Only modules deployed by the current call can be granted: the caller passes
the module code -> deployed entity id map of this run's successes, and any
requested code outside it is skipped.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Sequence

from package_deployer.services.store.base import BaseEntityStore
from package_deployer.services.store.repositories import (
    AccessGrantRepository,
    TenantDirectory,
)

logger = logging.getLogger(__name__)

DEFAULT_PERMISSIONS = ["read", "write", "execute"]


@dataclass
class UserAssignment:
    """A requested grant of module codes to one user."""
    user_id: str
    role: str = "user"
    modules: list[str] = field(default_factory=list)


@dataclass
class UserGrant:
    """Modules actually granted to one user."""
    user_id: str
    granted_modules: list[str]
    permissions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "userId": self.user_id,
            "grantedModules": list(self.granted_modules),
            "permissions": list(self.permissions),
        }


class UserAccessAssigner:
    """
    Create user -> deployed-module access edges.

    Args:
        store: Shared entity store
        permissions: Permission set attached to every grant
    """

    def __init__(self, store: BaseEntityStore, permissions: Optional[Sequence[str]] = None):
        self.directory = TenantDirectory(store)
        self.grants = AccessGrantRepository(store)
        self.permissions = list(permissions or DEFAULT_PERMISSIONS)

    async def assign(
        self,
        tenant_id: str,
        assignments: Sequence[UserAssignment],
        deployed_modules: Mapping[str, str],
    ) -> list[UserGrant]:
        """
        Grant deployed modules to tenant members.

        Args:
            tenant_id: Tenant the modules were deployed into
            assignments: Requested user -> module code grants
            deployed_modules: Module code -> deployed entity id, this run only

        Returns:
            One UserGrant per user that received at least one module
        """
        results: list[UserGrant] = []

        for assignment in assignments:
            member = await self.directory.get_active_member(tenant_id, assignment.user_id)
            if member is None:
                logger.warning(
                    f"User {assignment.user_id} is not an active member of {tenant_id}, skipping"
                )
                continue

            granted: list[str] = []
            assigned_at = datetime.now(timezone.utc)
            for module_code in dict.fromkeys(assignment.modules):
                deployed_entity_id = deployed_modules.get(module_code)
                if deployed_entity_id is None:
                    logger.info(
                        f"Module {module_code} was not deployed in this run, "
                        f"not granting to {assignment.user_id}"
                    )
                    continue

                try:
                    await self.grants.grant(
                        tenant_id,
                        assignment.user_id,
                        deployed_entity_id,
                        assignment.role,
                        self.permissions,
                        assigned_at,
                    )
                except Exception as e:
                    logger.error(
                        f"Failed to grant {module_code} to {assignment.user_id}: {e}"
                    )
                    continue

                granted.append(module_code)

            if granted:
                results.append(UserGrant(
                    user_id=assignment.user_id,
                    granted_modules=granted,
                    permissions=list(self.permissions),
                ))
                logger.info(f"👤 Granted {len(granted)} module(s) to {assignment.user_id}")

        return results
