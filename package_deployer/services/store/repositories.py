"""
Typed Repositories

Small, purpose-specific views over the shared entity store. Each repository
knows which entity or edge type it manages and how tenant visibility
applies to it, so the deployment code never builds raw store queries.

Visibility rule:
    A template is visible to tenant T when T owns it, or when it is
    platform-published (Visibility.PLATFORM) by the platform tenant.
    Only template reads use the platform tier; every write targets the
    requesting tenant alone.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from package_deployer.models import (
    DEPLOYED_SUFFIX,
    PACKAGE_TEMPLATE_TYPES,
    EdgeType,
    EntityType,
    TransactionStatus,
    ValueType,
    Visibility,
    deployed_code,
)
from package_deployer.services.store.base import (
    AttributeRecord,
    BaseEntityStore,
    EdgeRecord,
    EntityRecord,
    MembershipRecord,
    TenantRecord,
    TransactionLineRecord,
    TransactionRecordData,
)

logger = logging.getLogger(__name__)


def new_id() -> str:
    return str(uuid.uuid4())


def infer_value_type(value: Any) -> str:
    """Declared attribute type for a Python value."""
    if isinstance(value, bool):
        return ValueType.BOOLEAN.value
    if isinstance(value, (int, float)):
        return ValueType.NUMBER.value
    if isinstance(value, (dict, list)):
        return ValueType.JSON.value
    return ValueType.TEXT.value


class TenantDirectory:
    """Tenant and membership lookups."""

    def __init__(self, store: BaseEntityStore):
        self.store = store

    async def get_active_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        tenant = await self.store.get_tenant(tenant_id)
        if tenant is None or not tenant.is_active:
            return None
        return tenant

    async def get_active_member(self, tenant_id: str, user_id: str) -> Optional[MembershipRecord]:
        return await self.store.get_membership(tenant_id, user_id)


class TemplateCatalog:
    """
    Read-only access to package and module templates.

    Args:
        store: Shared entity store
        platform_tenant_id: Tenant whose PLATFORM templates every tenant sees
    """

    def __init__(self, store: BaseEntityStore, platform_tenant_id: str):
        self.store = store
        self.platform_tenant_id = platform_tenant_id

    def visible_scope(self, tenant_id: str) -> tuple[str, ...]:
        """Tenants whose template rows may be read on behalf of `tenant_id`."""
        if tenant_id == self.platform_tenant_id:
            return (tenant_id,)
        return (self.platform_tenant_id, tenant_id)

    def is_visible(self, entity: EntityRecord, tenant_id: str) -> bool:
        if entity.tenant_id == tenant_id:
            return True
        return (
            entity.tenant_id == self.platform_tenant_id
            and entity.visibility == Visibility.PLATFORM.value
        )

    async def get_template(
        self,
        template_id: str,
        visible_to: str,
        template_types: Sequence[str],
    ) -> Optional[EntityRecord]:
        """
        Fetch an active template of one of `template_types` visible to a tenant.

        Returns None for missing, inactive, wrongly-typed or private-to-another
        tenant templates alike, so callers cannot discover other tenants' catalogs.
        """
        entity = await self.store.get_entity(template_id, self.visible_scope(visible_to))
        if entity is None:
            return None
        if not entity.is_active or entity.entity_type not in template_types:
            return None
        if not self.is_visible(entity, visible_to):
            return None
        return entity

    async def get_module_edges(self, package_id: str, visible_to: str) -> list[EdgeRecord]:
        """Package-includes-module edges ordered by declared order."""
        return await self.store.get_edges(
            self.visible_scope(visible_to),
            EdgeType.TEMPLATE_INCLUDES_MODULE.value,
            parent_id=package_id,
        )

    async def get_modules(self, module_ids: Iterable[str], visible_to: str) -> dict[str, EntityRecord]:
        """Batch-fetch module templates by id; unknown or invisible ids are absent."""
        modules = await self.store.get_entities(module_ids, self.visible_scope(visible_to))
        return {m.id: m for m in modules if self.is_visible(m, visible_to)}

    async def get_attributes(self, template: EntityRecord) -> list[AttributeRecord]:
        return await self.store.get_attributes(template.id, (template.tenant_id,))

    async def list_packages(self, visible_to: Optional[str], include_platform: bool = True) -> list[EntityRecord]:
        """Active package templates visible to a tenant (platform ones only when no tenant)."""
        scope: list[str] = []
        if include_platform or not visible_to:
            scope.append(self.platform_tenant_id)
        if visible_to and visible_to not in scope:
            scope.append(visible_to)
        packages = await self.store.find_entities(
            scope, [t.value for t in PACKAGE_TEMPLATE_TYPES]
        )
        if visible_to:
            return [p for p in packages if self.is_visible(p, visible_to)]
        return [p for p in packages if p.visibility == Visibility.PLATFORM.value]


class DeployedModuleRepository:
    """Deployed-module entities of a tenant."""

    def __init__(self, store: BaseEntityStore):
        self.store = store

    async def find_deployed_codes(self, tenant_id: str, module_codes: Iterable[str]) -> set[str]:
        """Module codes (without suffix) that already have an active deployment."""
        derived = [deployed_code(code) for code in dict.fromkeys(module_codes)]
        if not derived:
            return set()
        existing = await self.store.find_entities(
            [tenant_id], [EntityType.DEPLOYED_MODULE.value], codes=derived
        )
        return {e.code[: -len(DEPLOYED_SUFFIX)] for e in existing}

    async def create(self, tenant_id: str, module: EntityRecord) -> EntityRecord:
        return await self.store.create_entity(EntityRecord(
            id=new_id(),
            tenant_id=tenant_id,
            entity_type=EntityType.DEPLOYED_MODULE.value,
            name=f"{module.name} - Deployed",
            code=deployed_code(module.code),
            is_active=True,
        ))

    async def add_attributes(self, tenant_id: str, attributes: Sequence[AttributeRecord]) -> None:
        await self.store.add_attributes(tenant_id, attributes)

    async def list_active(self, tenant_id: str) -> list[EntityRecord]:
        return await self.store.find_entities(
            [tenant_id], [EntityType.DEPLOYED_MODULE.value]
        )


class ResourceRepository:
    """
    Tenant-owned resources created by provisioners (accounts, workflows).

    A resource is complete once every attribute its provisioner asks for
    is stored. The entity and its attributes are two writes, so a resource
    whose attribute write failed is found again and completed by the next
    call instead of being treated as present.

    Args:
        store: Shared entity store
        entity_type: Type of the managed resources
    """

    def __init__(self, store: BaseEntityStore, entity_type: EntityType):
        self.store = store
        self.entity_type = entity_type

    async def find(self, tenant_id: str, code: str) -> Optional[EntityRecord]:
        found = await self.store.find_entities(
            [tenant_id], [self.entity_type.value], codes=[code]
        )
        return found[0] if found else None

    async def missing_attributes(
        self,
        tenant_id: str,
        entity: EntityRecord,
        attributes: dict[str, Any],
    ) -> dict[str, Any]:
        """Subset of `attributes` whose keys are not stored on the entity yet."""
        stored = {a.key for a in await self.store.get_attributes(entity.id, [tenant_id])}
        return {key: value for key, value in attributes.items() if key not in stored}

    async def create(
        self,
        tenant_id: str,
        code: str,
        name: str,
        attributes: dict[str, Any],
    ) -> EntityRecord:
        """Create the resource entity, then its attributes."""
        entity = await self.store.create_entity(EntityRecord(
            id=new_id(),
            tenant_id=tenant_id,
            entity_type=self.entity_type.value,
            name=name,
            code=code,
            is_active=True,
        ))
        await self.add_attributes(tenant_id, entity, attributes)
        return entity

    async def add_attributes(
        self,
        tenant_id: str,
        entity: EntityRecord,
        attributes: dict[str, Any],
    ) -> None:
        if not attributes:
            return
        await self.store.add_attributes(tenant_id, [
            AttributeRecord(
                entity_id=entity.id,
                key=key,
                value=serialize_value(value),
                value_type=infer_value_type(value),
            )
            for key, value in attributes.items()
        ])


class AccessGrantRepository:
    """User -> deployed-module access edges."""

    def __init__(self, store: BaseEntityStore):
        self.store = store

    async def grant(
        self,
        tenant_id: str,
        user_id: str,
        deployed_entity_id: str,
        role: str,
        permissions: list[str],
        assigned_at: datetime,
    ) -> EdgeRecord:
        return await self.store.create_edge(EdgeRecord(
            id=new_id(),
            tenant_id=tenant_id,
            edge_type=EdgeType.USER_HAS_MODULE_ACCESS.value,
            parent_id=user_id,
            child_id=deployed_entity_id,
            payload={
                "role": role,
                "assignedAt": assigned_at.isoformat(),
                "permissions": list(permissions),
            },
        ))


class DeploymentAuditLog:
    """Transaction record and lines of deployment calls."""

    def __init__(self, store: BaseEntityStore):
        self.store = store

    async def open(
        self,
        tenant_id: str,
        transaction_type: str,
        number: str,
        payload: dict[str, Any],
        created_by: Optional[str],
    ) -> TransactionRecordData:
        return await self.store.create_transaction(TransactionRecordData(
            id=new_id(),
            tenant_id=tenant_id,
            transaction_type=transaction_type,
            number=number,
            status=TransactionStatus.PROCESSING.value,
            payload=payload,
            created_by=created_by,
        ))

    async def add_line(
        self,
        transaction: TransactionRecordData,
        entity_id: str,
        order: int,
        description: str,
        payload: dict[str, Any],
    ) -> TransactionLineRecord:
        return await self.store.add_transaction_line(TransactionLineRecord(
            transaction_id=transaction.id,
            tenant_id=transaction.tenant_id,
            entity_id=entity_id,
            order=order,
            description=description,
            payload=payload,
        ))

    async def finalize(
        self,
        transaction: TransactionRecordData,
        status: TransactionStatus,
        extra_payload: dict[str, Any],
        posted_at: datetime,
    ) -> TransactionRecordData:
        """Merge `extra_payload` into the stored payload and close the record."""
        payload = {**transaction.payload, **extra_payload}
        return await self.store.update_transaction(
            transaction.id,
            transaction.tenant_id,
            status.value,
            payload,
            posted_at=posted_at,
        )

    async def get(self, transaction_id: str, tenant_id: str) -> Optional[TransactionRecordData]:
        return await self.store.get_transaction(transaction_id, tenant_id)

    async def lines(self, transaction_id: str, tenant_id: str) -> list[TransactionLineRecord]:
        return await self.store.get_transaction_lines(transaction_id, tenant_id)


def serialize_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


def deserialize_value(value: Optional[str], value_type: str) -> Any:
    """Inverse of serialize_value()."""
    if value is None:
        return None
    try:
        if value_type == ValueType.BOOLEAN.value:
            return value == "true"
        if value_type == ValueType.NUMBER.value:
            number = float(value)
            return int(number) if number.is_integer() else number
        if value_type == ValueType.JSON.value:
            return json.loads(value)
    except ValueError:
        logger.debug(f"Stored value {value!r} is not a valid {value_type}")
    return value
