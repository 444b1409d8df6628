"""
Resource Provisioner Base Class

A provisioner owns a static table of module code -> resources and creates
those resources for a tenant the first time a module is deployed there.

Contract:
    provision(tenant_id, module_code) -> list[ResourceDescriptor]

Rules:
    - A module absent from the table yields [] (not an error)
    - Each resource is looked up by code in-tenant first and skipped if a
      complete one exists, so repeated calls are no-ops after the first
    - A resource whose attributes were not all written is completed on the
      next call
    - One resource failing or timing out is logged and skipped; the rest
      still run
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional

from package_deployer.models import EntityType
from package_deployer.services.store.base import BaseEntityStore, EntityRecord
from package_deployer.services.store.repositories import ResourceRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceSpec:
    """One row of a provisioning table."""
    code: str
    name: str
    attributes: dict[str, Any] = field(default_factory=dict)


@dataclass
class ResourceDescriptor:
    """A resource created by a provisioner."""
    kind: str
    entity_id: str
    code: str
    name: str
    created_by_module: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "entityId": self.entity_id,
            "createdByModule": self.created_by_module,
            **self.details,
        }


class BaseProvisioner(ABC):
    """
    Shared provisioning loop.

    Subclasses declare `entity_type`, `kind` and `TABLE`, and shape the
    attributes and descriptor details of each resource.

    Args:
        store: Shared entity store
        resource_timeout: Seconds allowed per resource (None = unbounded)
    """

    entity_type: ClassVar[EntityType]
    kind: ClassVar[str]
    TABLE: ClassVar[dict[str, list[ResourceSpec]]] = {}

    def __init__(self, store: BaseEntityStore, resource_timeout: Optional[float] = None):
        self.resources = ResourceRepository(store, self.entity_type)
        self.resource_timeout = resource_timeout

    def specs_for(self, module_code: str) -> list[ResourceSpec]:
        return list(self.TABLE.get(module_code, []))

    @abstractmethod
    def build_attributes(self, spec: ResourceSpec, module_code: str) -> dict[str, Any]:
        """Attributes stored on the created resource entity."""

    def describe(self, spec: ResourceSpec) -> dict[str, Any]:
        """Kind-specific fields of the returned descriptor."""
        return {}

    async def provision(self, tenant_id: str, module_code: str) -> list[ResourceDescriptor]:
        """
        Create this provisioner's resources for a module.

        Resources are written one at a time, each under `resource_timeout`,
        so a slow or failing resource only loses itself and the descriptors
        of everything written before it are still returned.

        Args:
            tenant_id: Tenant receiving the resources
            module_code: Code of the module template being deployed

        Returns:
            Descriptors of resources created or completed by this call
        """
        specs = self.specs_for(module_code)
        if not specs:
            logger.debug(f"No {self.kind} resources defined for {module_code}")
            return []

        created: list[ResourceDescriptor] = []
        for spec in specs:
            try:
                entity = await asyncio.wait_for(
                    self._ensure(tenant_id, spec, module_code),
                    timeout=self.resource_timeout,
                )
            except asyncio.TimeoutError:
                logger.error(
                    f"Timed out creating {self.kind} {spec.code} for {module_code} "
                    f"after {self.resource_timeout:g}s"
                )
                continue
            except Exception as e:
                logger.error(f"Error creating {self.kind} {spec.code} for {module_code}: {e}")
                continue

            if entity is None:
                continue
            created.append(ResourceDescriptor(
                kind=self.kind,
                entity_id=entity.id,
                code=spec.code,
                name=spec.name,
                created_by_module=module_code,
                details=self.describe(spec),
            ))

        logger.info(
            f"Provisioned {len(created)}/{len(specs)} {self.kind} resources "
            f"for {module_code}"
        )
        return created

    async def _ensure(
        self,
        tenant_id: str,
        spec: ResourceSpec,
        module_code: str,
    ) -> Optional[EntityRecord]:
        """Create or complete one resource; None when it is already complete."""
        attributes = self.build_attributes(spec, module_code)

        existing = await self.resources.find(tenant_id, spec.code)
        if existing is None:
            return await self.resources.create(tenant_id, spec.code, spec.name, attributes)

        missing = await self.resources.missing_attributes(tenant_id, existing, attributes)
        if not missing:
            logger.debug(f"{self.kind} {spec.code} already exists for {tenant_id}")
            return None

        logger.warning(
            f"Completing {self.kind} {spec.code} for {tenant_id} "
            f"({len(missing)} missing attribute(s))"
        )
        await self.resources.add_attributes(tenant_id, existing, missing)
        return existing
