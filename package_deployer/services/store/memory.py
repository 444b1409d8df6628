"""
In-Memory Entity Store Implementation

Dict-backed store used in development mode (ENV_MODE=development) to:
    - Run the complete deployment flow without PostgreSQL
    - Seed demo catalogs at startup
    - Drive tests, including failure scenarios

Behavior:
    - Enforces the same deployed-module uniqueness rule as the database index
    - Optional simulated latency per call
    - Fault injection per operation (fail_on / delay_on)
    - Records every tenant id it was asked to read or write (touched_tenants)
"""

import asyncio
import logging
import random
from collections import defaultdict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional, Sequence

from package_deployer.models import EntityType, TransactionStatus
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

logger = logging.getLogger(__name__)

# Predicate receives the positional arguments of the store call
FaultPredicate = Callable[..., bool]


class InMemoryEntityStore(BaseEntityStore):
    """
    In-memory implementation of the entity store.

    Attributes:
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
        touched_tenants: Every tenant id passed to a read or write

    Example:
        >>> store = InMemoryEntityStore()
        >>> store.add_tenant(TenantRecord(id="t-1", name="Bistro"))
        >>> store.fail_on("create_entity", lambda e: e.code == "SYS-HR-CORE-DEPLOYED")
    """

    def __init__(self, min_latency: float = 0.0, max_latency: float = 0.0):
        self.min_latency = min_latency
        self.max_latency = max_latency

        self._tenants: dict[str, TenantRecord] = {}
        self._members: dict[tuple[str, str], MembershipRecord] = {}
        self._entities: dict[str, EntityRecord] = {}
        self._attributes: dict[str, list[AttributeRecord]] = defaultdict(list)
        self._edges: list[EdgeRecord] = []
        self._transactions: dict[str, TransactionRecordData] = {}
        self._lines: list[TransactionLineRecord] = []

        self._faults: dict[str, list[tuple[Optional[FaultPredicate], Exception]]] = defaultdict(list)
        self._delays: dict[str, float] = {}
        self.touched_tenants: set[str] = set()

        logger.info(
            f"InMemoryEntityStore initialized "
            f"(latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "memory"

    # =========================================================================
    # SEEDING
    # =========================================================================

    def add_tenant(self, tenant: TenantRecord) -> TenantRecord:
        self._tenants[tenant.id] = tenant
        return tenant

    def add_member(self, member: MembershipRecord) -> MembershipRecord:
        self._members[(member.tenant_id, member.user_id)] = member
        return member

    def put_entity(self, entity: EntityRecord) -> EntityRecord:
        """Insert an entity without uniqueness checks or fault injection."""
        self._entities[entity.id] = entity
        return entity

    def put_attributes(self, attributes: Iterable[AttributeRecord]) -> None:
        for attribute in attributes:
            self._attributes[attribute.entity_id].append(attribute)

    def put_edge(self, edge: EdgeRecord) -> EdgeRecord:
        self._edges.append(edge)
        return edge

    # =========================================================================
    # FAULT INJECTION
    # =========================================================================

    def fail_on(
        self,
        operation: str,
        predicate: Optional[FaultPredicate] = None,
        error: Optional[Exception] = None,
    ) -> None:
        """
        Make `operation` raise when `predicate(*args)` is true (always if None).

        Args:
            operation: Store method name (e.g., "create_entity")
            predicate: Called with the method's positional arguments
            error: Exception to raise (default: StoreError)
        """
        self._faults[operation].append(
            (predicate, error or StoreError(f"Simulated failure in {operation}"))
        )

    def delay_on(self, operation: str, seconds: float) -> None:
        """Make `operation` sleep before running."""
        self._delays[operation] = seconds

    def clear_faults(self) -> None:
        self._faults.clear()
        self._delays.clear()

    async def _before(self, operation: str, *args: Any) -> None:
        if self.max_latency > 0:
            await asyncio.sleep(random.uniform(self.min_latency, self.max_latency))
        if operation in self._delays:
            await asyncio.sleep(self._delays[operation])
        for predicate, error in self._faults.get(operation, []):
            if predicate is None or predicate(*args):
                logger.debug(f"Simulated failure in {operation}")
                raise error

    def _touch(self, tenant_ids: Iterable[str]) -> None:
        self.touched_tenants.update(tenant_ids)

    # =========================================================================
    # TENANTS
    # =========================================================================

    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        await self._before("get_tenant", tenant_id)
        self._touch([tenant_id])
        return self._tenants.get(tenant_id)

    async def create_tenant(self, tenant: TenantRecord) -> TenantRecord:
        await self._before("create_tenant", tenant)
        self._touch([tenant.id])
        if tenant.id in self._tenants:
            raise StoreError(f"Tenant {tenant.id} already exists")
        return self.add_tenant(tenant)

    async def create_membership(self, member: MembershipRecord) -> MembershipRecord:
        await self._before("create_membership", member)
        self._touch([member.tenant_id])
        return self.add_member(member)

    async def get_membership(self, tenant_id: str, user_id: str) -> Optional[MembershipRecord]:
        await self._before("get_membership", tenant_id, user_id)
        self._touch([tenant_id])
        member = self._members.get((tenant_id, user_id))
        if member is None or not member.is_active:
            return None
        return member

    # =========================================================================
    # ENTITIES
    # =========================================================================

    async def get_entity(self, entity_id: str, tenant_ids: Sequence[str]) -> Optional[EntityRecord]:
        await self._before("get_entity", entity_id, tenant_ids)
        self._touch(tenant_ids)
        entity = self._entities.get(entity_id)
        if entity is None or entity.tenant_id not in tenant_ids:
            return None
        return entity

    async def get_entities(self, entity_ids: Iterable[str], tenant_ids: Sequence[str]) -> list[EntityRecord]:
        entity_ids = list(entity_ids)
        await self._before("get_entities", entity_ids, tenant_ids)
        self._touch(tenant_ids)
        found = []
        for entity_id in dict.fromkeys(entity_ids):
            entity = self._entities.get(entity_id)
            if entity is not None and entity.tenant_id in tenant_ids:
                found.append(entity)
        return found

    async def find_entities(
        self,
        tenant_ids: Sequence[str],
        entity_types: Sequence[str],
        codes: Optional[Iterable[str]] = None,
        active_only: bool = True,
    ) -> list[EntityRecord]:
        code_set = set(codes) if codes is not None else None
        await self._before("find_entities", tenant_ids, entity_types, code_set)
        self._touch(tenant_ids)
        return [
            e for e in self._entities.values()
            if e.tenant_id in tenant_ids
            and e.entity_type in entity_types
            and (code_set is None or e.code in code_set)
            and (e.is_active or not active_only)
        ]

    async def create_entity(self, entity: EntityRecord) -> EntityRecord:
        await self._before("create_entity", entity)
        self._touch([entity.tenant_id])
        if entity.id in self._entities:
            raise StoreError(f"Entity {entity.id} already exists")
        if entity.entity_type == EntityType.DEPLOYED_MODULE.value and entity.is_active:
            for existing in self._entities.values():
                if (
                    existing.tenant_id == entity.tenant_id
                    and existing.entity_type == entity.entity_type
                    and existing.code == entity.code
                    and existing.is_active
                ):
                    raise DuplicateEntityError(
                        f"Active deployed module {entity.code} already exists"
                    )
        self._entities[entity.id] = entity
        return entity

    # =========================================================================
    # ATTRIBUTES
    # =========================================================================

    async def get_attributes(self, entity_id: str, tenant_ids: Sequence[str]) -> list[AttributeRecord]:
        await self._before("get_attributes", entity_id, tenant_ids)
        self._touch(tenant_ids)
        entity = self._entities.get(entity_id)
        if entity is None or entity.tenant_id not in tenant_ids:
            return []
        return list(self._attributes.get(entity_id, []))

    async def add_attributes(self, tenant_id: str, attributes: Sequence[AttributeRecord]) -> None:
        await self._before("add_attributes", tenant_id, attributes)
        self._touch([tenant_id])
        for attribute in attributes:
            entity = self._entities.get(attribute.entity_id)
            if entity is None or entity.tenant_id != tenant_id:
                raise StoreError(f"Entity {attribute.entity_id} not found in tenant")
        # All-or-nothing, like a single INSERT
        for attribute in attributes:
            self._attributes[attribute.entity_id].append(attribute)

    # =========================================================================
    # RELATIONSHIPS
    # =========================================================================

    async def get_edges(
        self,
        tenant_ids: Sequence[str],
        edge_type: str,
        parent_id: Optional[str] = None,
    ) -> list[EdgeRecord]:
        await self._before("get_edges", tenant_ids, edge_type, parent_id)
        self._touch(tenant_ids)
        edges = [
            e for e in self._edges
            if e.tenant_id in tenant_ids
            and e.edge_type == edge_type
            and e.is_active
            and (parent_id is None or e.parent_id == parent_id)
        ]
        return sorted(edges, key=lambda e: e.order)

    async def create_edge(self, edge: EdgeRecord) -> EdgeRecord:
        await self._before("create_edge", edge)
        self._touch([edge.tenant_id])
        self._edges.append(edge)
        return edge

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(self, record: TransactionRecordData) -> TransactionRecordData:
        await self._before("create_transaction", record)
        self._touch([record.tenant_id])
        if record.id in self._transactions:
            raise StoreError(f"Transaction {record.id} already exists")
        if record.created_at is None:
            record = replace(record, created_at=datetime.now(timezone.utc))
        self._transactions[record.id] = record
        return record

    async def get_transaction(self, transaction_id: str, tenant_id: str) -> Optional[TransactionRecordData]:
        await self._before("get_transaction", transaction_id, tenant_id)
        self._touch([tenant_id])
        record = self._transactions.get(transaction_id)
        if record is None or record.tenant_id != tenant_id:
            return None
        return record

    async def update_transaction(
        self,
        transaction_id: str,
        tenant_id: str,
        status: str,
        payload: dict[str, Any],
        posted_at: Optional[datetime] = None,
    ) -> TransactionRecordData:
        await self._before("update_transaction", transaction_id, tenant_id, status, payload)
        self._touch([tenant_id])
        record = self._transactions.get(transaction_id)
        if record is None or record.tenant_id != tenant_id:
            raise StoreError(f"Transaction {transaction_id} not found")
        if record.status != TransactionStatus.PROCESSING.value:
            raise StoreError(f"Transaction {transaction_id} is already {record.status}")
        updated = replace(record, status=status, payload=dict(payload), posted_at=posted_at)
        self._transactions[transaction_id] = updated
        return updated

    async def add_transaction_line(self, line: TransactionLineRecord) -> TransactionLineRecord:
        await self._before("add_transaction_line", line)
        self._touch([line.tenant_id])
        record = self._transactions.get(line.transaction_id)
        if record is None or record.tenant_id != line.tenant_id:
            raise StoreError(f"Transaction {line.transaction_id} not found")
        self._lines.append(line)
        return line

    async def get_transaction_lines(self, transaction_id: str, tenant_id: str) -> list[TransactionLineRecord]:
        await self._before("get_transaction_lines", transaction_id, tenant_id)
        self._touch([tenant_id])
        lines = [
            line for line in self._lines
            if line.transaction_id == transaction_id and line.tenant_id == tenant_id
        ]
        return sorted(lines, key=lambda line: line.order)

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def health_check(self) -> bool:
        """Mock store is always healthy."""
        return True

    # =========================================================================
    # INSPECTION (tests and seed scripts)
    # =========================================================================

    def all_entities(self) -> list[EntityRecord]:
        return list(self._entities.values())

    def all_edges(self) -> list[EdgeRecord]:
        return list(self._edges)

    def all_transactions(self) -> list[TransactionRecordData]:
        return list(self._transactions.values())

    def all_lines(self) -> list[TransactionLineRecord]:
        return list(self._lines)

    def attributes_of(self, entity_id: str) -> list[AttributeRecord]:
        return list(self._attributes.get(entity_id, []))
