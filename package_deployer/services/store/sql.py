"""
SQL Entity Store Implementation

PostgreSQL-backed store used in staging and production. Every call runs in
its own session and commits on success, so a failed step never rolls back
the rows written by earlier steps of the same deployment.

Error Mapping:
    - IntegrityError on the deployed-module unique index -> DuplicateEntityError
    - Any other SQLAlchemyError -> StoreError
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from package_deployer.models import (
    Attribute,
    EntityType,
    Entity,
    RelationshipEdge,
    Tenant,
    TenantMember,
    TransactionLine,
    TransactionRecord,
    TransactionStatus,
)
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


def _entity_record(row: Entity) -> EntityRecord:
    return EntityRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        entity_type=row.entity_type,
        name=row.name,
        code=row.code,
        is_active=row.is_active,
        visibility=row.visibility,
    )


def _edge_record(row: RelationshipEdge) -> EdgeRecord:
    return EdgeRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        edge_type=row.edge_type,
        parent_id=row.parent_id,
        child_id=row.child_id,
        order=row.order,
        payload=dict(row.payload or {}),
        is_active=row.is_active,
    )


def _transaction_record(row: TransactionRecord) -> TransactionRecordData:
    return TransactionRecordData(
        id=row.id,
        tenant_id=row.tenant_id,
        transaction_type=row.transaction_type,
        number=row.number,
        status=row.status,
        payload=dict(row.payload or {}),
        created_by=row.created_by,
        created_at=row.created_at,
        posted_at=row.posted_at,
    )


def _line_record(row: TransactionLine) -> TransactionLineRecord:
    return TransactionLineRecord(
        transaction_id=row.transaction_id,
        tenant_id=row.tenant_id,
        entity_id=row.entity_id,
        order=row.order,
        description=row.description,
        payload=dict(row.payload or {}),
    )


class SqlEntityStore(BaseEntityStore):
    """
    SQLAlchemy implementation of the entity store.

    Args:
        session_maker: Async session factory (see package_deployer.database)
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self._session_maker = session_maker
        logger.info("SqlEntityStore initialized")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "postgresql"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and maps database errors."""
        async with self._session_maker() as session:
            try:
                yield session
                await session.commit()
            except (StoreError, IntegrityError):
                await session.rollback()
                raise
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(str(e)) from e

    # =========================================================================
    # TENANTS
    # =========================================================================

    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        async with self._session() as session:
            row = await session.get(Tenant, tenant_id)
            if row is None:
                return None
            return TenantRecord(id=row.id, name=row.name, is_active=row.is_active)

    async def create_tenant(self, tenant: TenantRecord) -> TenantRecord:
        try:
            async with self._session() as session:
                session.add(Tenant(id=tenant.id, name=tenant.name, is_active=tenant.is_active))
        except IntegrityError as e:
            raise StoreError(str(e.orig)) from e
        return tenant

    async def create_membership(self, member: MembershipRecord) -> MembershipRecord:
        try:
            async with self._session() as session:
                session.add(TenantMember(
                    tenant_id=member.tenant_id,
                    user_id=member.user_id,
                    role=member.role,
                    is_active=member.is_active,
                ))
        except IntegrityError as e:
            raise StoreError(str(e.orig)) from e
        return member

    async def get_membership(self, tenant_id: str, user_id: str) -> Optional[MembershipRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(TenantMember).where(
                    TenantMember.tenant_id == tenant_id,
                    TenantMember.user_id == user_id,
                    TenantMember.is_active.is_(True),
                )
            )
            row = result.scalars().first()
            if row is None:
                return None
            return MembershipRecord(
                tenant_id=row.tenant_id,
                user_id=row.user_id,
                role=row.role,
                is_active=row.is_active,
            )

    # =========================================================================
    # ENTITIES
    # =========================================================================

    async def get_entity(self, entity_id: str, tenant_ids: Sequence[str]) -> Optional[EntityRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(Entity).where(
                    Entity.id == entity_id,
                    Entity.tenant_id.in_(list(tenant_ids)),
                )
            )
            row = result.scalar_one_or_none()
            return _entity_record(row) if row else None

    async def get_entities(self, entity_ids: Iterable[str], tenant_ids: Sequence[str]) -> list[EntityRecord]:
        ids = list(dict.fromkeys(entity_ids))
        if not ids:
            return []
        async with self._session() as session:
            result = await session.execute(
                select(Entity).where(
                    Entity.id.in_(ids),
                    Entity.tenant_id.in_(list(tenant_ids)),
                )
            )
            return [_entity_record(row) for row in result.scalars().all()]

    async def find_entities(
        self,
        tenant_ids: Sequence[str],
        entity_types: Sequence[str],
        codes: Optional[Iterable[str]] = None,
        active_only: bool = True,
    ) -> list[EntityRecord]:
        query = select(Entity).where(
            Entity.tenant_id.in_(list(tenant_ids)),
            Entity.entity_type.in_(list(entity_types)),
        )
        if codes is not None:
            code_list = list(codes)
            if not code_list:
                return []
            query = query.where(Entity.code.in_(code_list))
        if active_only:
            query = query.where(Entity.is_active.is_(True))
        async with self._session() as session:
            result = await session.execute(query.order_by(Entity.name))
            return [_entity_record(row) for row in result.scalars().all()]

    async def create_entity(self, entity: EntityRecord) -> EntityRecord:
        try:
            async with self._session() as session:
                session.add(Entity(
                    id=entity.id,
                    tenant_id=entity.tenant_id,
                    entity_type=entity.entity_type,
                    name=entity.name,
                    code=entity.code,
                    is_active=entity.is_active,
                    visibility=entity.visibility,
                ))
        except IntegrityError as e:
            if entity.entity_type == EntityType.DEPLOYED_MODULE.value:
                raise DuplicateEntityError(
                    f"Active deployed module {entity.code} already exists"
                ) from e
            raise StoreError(str(e.orig)) from e
        return entity

    # =========================================================================
    # ATTRIBUTES
    # =========================================================================

    async def get_attributes(self, entity_id: str, tenant_ids: Sequence[str]) -> list[AttributeRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(Attribute)
                .where(
                    Attribute.entity_id == entity_id,
                    Attribute.tenant_id.in_(list(tenant_ids)),
                )
                .order_by(Attribute.id)
            )
            return [
                AttributeRecord(
                    entity_id=row.entity_id,
                    key=row.key,
                    value=row.value,
                    value_type=row.value_type,
                )
                for row in result.scalars().all()
            ]

    async def add_attributes(self, tenant_id: str, attributes: Sequence[AttributeRecord]) -> None:
        if not attributes:
            return
        try:
            async with self._session() as session:
                session.add_all([
                    Attribute(
                        tenant_id=tenant_id,
                        entity_id=a.entity_id,
                        key=a.key,
                        value=a.value,
                        value_type=a.value_type,
                    )
                    for a in attributes
                ])
        except IntegrityError as e:
            raise StoreError(str(e.orig)) from e

    # =========================================================================
    # RELATIONSHIPS
    # =========================================================================

    async def get_edges(
        self,
        tenant_ids: Sequence[str],
        edge_type: str,
        parent_id: Optional[str] = None,
    ) -> list[EdgeRecord]:
        query = select(RelationshipEdge).where(
            RelationshipEdge.tenant_id.in_(list(tenant_ids)),
            RelationshipEdge.edge_type == edge_type,
            RelationshipEdge.is_active.is_(True),
        )
        if parent_id is not None:
            query = query.where(RelationshipEdge.parent_id == parent_id)
        async with self._session() as session:
            result = await session.execute(query.order_by(RelationshipEdge.order))
            return [_edge_record(row) for row in result.scalars().all()]

    async def create_edge(self, edge: EdgeRecord) -> EdgeRecord:
        try:
            async with self._session() as session:
                session.add(RelationshipEdge(
                    id=edge.id,
                    tenant_id=edge.tenant_id,
                    edge_type=edge.edge_type,
                    parent_id=edge.parent_id,
                    child_id=edge.child_id,
                    order=edge.order,
                    payload=edge.payload,
                    is_active=edge.is_active,
                ))
        except IntegrityError as e:
            raise StoreError(str(e.orig)) from e
        return edge

    # =========================================================================
    # TRANSACTIONS
    # =========================================================================

    async def create_transaction(self, record: TransactionRecordData) -> TransactionRecordData:
        try:
            async with self._session() as session:
                row = TransactionRecord(
                    id=record.id,
                    tenant_id=record.tenant_id,
                    transaction_type=record.transaction_type,
                    number=record.number,
                    status=record.status,
                    payload=record.payload,
                    created_by=record.created_by,
                )
                session.add(row)
                await session.flush()
                await session.refresh(row)
                created = _transaction_record(row)
        except IntegrityError as e:
            raise StoreError(str(e.orig)) from e
        return created

    async def get_transaction(self, transaction_id: str, tenant_id: str) -> Optional[TransactionRecordData]:
        async with self._session() as session:
            result = await session.execute(
                select(TransactionRecord).where(
                    TransactionRecord.id == transaction_id,
                    TransactionRecord.tenant_id == tenant_id,
                )
            )
            row = result.scalar_one_or_none()
            return _transaction_record(row) if row else None

    async def update_transaction(
        self,
        transaction_id: str,
        tenant_id: str,
        status: str,
        payload: dict[str, Any],
        posted_at: Optional[datetime] = None,
    ) -> TransactionRecordData:
        async with self._session() as session:
            result = await session.execute(
                select(TransactionRecord)
                .where(
                    TransactionRecord.id == transaction_id,
                    TransactionRecord.tenant_id == tenant_id,
                )
                .with_for_update()
            )
            row = result.scalar_one_or_none()
            if row is None:
                raise StoreError(f"Transaction {transaction_id} not found")
            if row.status != TransactionStatus.PROCESSING.value:
                raise StoreError(f"Transaction {transaction_id} is already {row.status}")
            row.status = status
            row.payload = dict(payload)
            row.posted_at = posted_at
            await session.flush()
            return _transaction_record(row)

    async def add_transaction_line(self, line: TransactionLineRecord) -> TransactionLineRecord:
        try:
            async with self._session() as session:
                session.add(TransactionLine(
                    transaction_id=line.transaction_id,
                    tenant_id=line.tenant_id,
                    entity_id=line.entity_id,
                    order=line.order,
                    description=line.description,
                    payload=line.payload,
                ))
        except IntegrityError as e:
            raise StoreError(str(e.orig)) from e
        return line

    async def get_transaction_lines(self, transaction_id: str, tenant_id: str) -> list[TransactionLineRecord]:
        async with self._session() as session:
            result = await session.execute(
                select(TransactionLine)
                .where(
                    TransactionLine.transaction_id == transaction_id,
                    TransactionLine.tenant_id == tenant_id,
                )
                .order_by(TransactionLine.order)
            )
            return [_line_record(row) for row in result.scalars().all()]

    # =========================================================================
    # HEALTH
    # =========================================================================

    async def health_check(self) -> bool:
        try:
            async with self._session() as session:
                await session.execute(select(func.now()))
            return True
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False
