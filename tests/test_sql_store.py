"""
Tests for SqlEntityStore on SQLite (aiosqlite).

Tests cover:
1. Schema creation through init_db
2. Deployed-module partial unique index -> DuplicateEntityError
3. Tenant scoping of reads
4. Single-transition audit record updates
5. A full package deployment against the database
"""

import uuid

import pytest
import pytest_asyncio

from package_deployer.core.config import Settings
from package_deployer.database import create_engine, create_session_maker, init_db
from package_deployer.models import (
    EdgeType,
    EntityType,
    TransactionStatus,
    Visibility,
    deployed_code,
)
from package_deployer.services.deployment import (
    ConflictError,
    DeploymentOptions,
    DeploymentOrchestrator,
    DeploymentStatus,
    DeployRequest,
)
from package_deployer.services.locks import LocalTenantLock
from package_deployer.services.store import (
    AttributeRecord,
    DuplicateEntityError,
    EdgeRecord,
    EntityRecord,
    MembershipRecord,
    SqlEntityStore,
    StoreError,
    TenantRecord,
    TransactionLineRecord,
    TransactionRecordData,
)
from tests.utils import OTHER_TENANT_ID, OWNER_ID, PLATFORM_TENANT_ID, TENANT_ID


def _id() -> str:
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def sql_store(tmp_path):
    """SqlEntityStore on a throwaway SQLite file with tenants created."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(engine)
    store = SqlEntityStore(create_session_maker(engine))
    for tenant_id, name in [
        (PLATFORM_TENANT_ID, "Platform"),
        (TENANT_ID, "Bistro Uno"),
        (OTHER_TENANT_ID, "Trattoria Due"),
    ]:
        await store.create_tenant(TenantRecord(id=tenant_id, name=name))
    await store.create_membership(MembershipRecord(TENANT_ID, OWNER_ID, "owner"))
    yield store
    await engine.dispose()


def _deployed(tenant_id: str, code: str, active: bool = True) -> EntityRecord:
    return EntityRecord(
        id=_id(),
        tenant_id=tenant_id,
        entity_type=EntityType.DEPLOYED_MODULE.value,
        name=f"{code} - Deployed",
        code=deployed_code(code),
        is_active=active,
    )


def _transaction(tenant_id: str = TENANT_ID) -> TransactionRecordData:
    return TransactionRecordData(
        id=_id(),
        tenant_id=tenant_id,
        transaction_type="package_deployment",
        number=f"PKG-DEPLOY-{tenant_id[:8]}-1",
        status=TransactionStatus.PROCESSING.value,
        payload={"packageId": "pkg-1"},
        created_by=OWNER_ID,
    )


class TestTenants:

    @pytest.mark.asyncio
    async def test_get_tenant_and_membership(self, sql_store):
        tenant = await sql_store.get_tenant(TENANT_ID)

        assert tenant.name == "Bistro Uno"
        assert await sql_store.get_tenant("ghost") is None
        assert (await sql_store.get_membership(TENANT_ID, OWNER_ID)).role == "owner"
        assert await sql_store.get_membership(OTHER_TENANT_ID, OWNER_ID) is None

    @pytest.mark.asyncio
    async def test_duplicate_tenant_is_store_error(self, sql_store):
        with pytest.raises(StoreError):
            await sql_store.create_tenant(TenantRecord(id=TENANT_ID, name="Again"))


class TestEntities:

    @pytest.mark.asyncio
    async def test_second_active_deployed_module_is_rejected(self, sql_store):
        await sql_store.create_entity(_deployed(TENANT_ID, "SYS-GL-CORE"))

        with pytest.raises(DuplicateEntityError):
            await sql_store.create_entity(_deployed(TENANT_ID, "SYS-GL-CORE"))

    @pytest.mark.asyncio
    async def test_inactive_or_other_tenant_deployments_do_not_collide(self, sql_store):
        await sql_store.create_entity(_deployed(TENANT_ID, "SYS-GL-CORE", active=False))
        await sql_store.create_entity(_deployed(TENANT_ID, "SYS-GL-CORE"))
        await sql_store.create_entity(_deployed(OTHER_TENANT_ID, "SYS-GL-CORE"))

        found = await sql_store.find_entities(
            [TENANT_ID], [EntityType.DEPLOYED_MODULE.value], active_only=False
        )
        assert len(found) == 2

    @pytest.mark.asyncio
    async def test_reads_are_tenant_scoped(self, sql_store):
        entity = await sql_store.create_entity(_deployed(TENANT_ID, "SYS-HR-CORE"))
        await sql_store.add_attributes(TENANT_ID, [
            AttributeRecord(entity.id, "deployed_by", OWNER_ID),
        ])

        assert await sql_store.get_entity(entity.id, [OTHER_TENANT_ID]) is None
        assert await sql_store.get_entities([entity.id], [OTHER_TENANT_ID]) == []
        assert await sql_store.get_attributes(entity.id, [OTHER_TENANT_ID]) == []
        assert (await sql_store.get_entity(entity.id, [TENANT_ID])).code == "SYS-HR-CORE-DEPLOYED"
        attributes = await sql_store.get_attributes(entity.id, [TENANT_ID])
        assert [(a.key, a.value) for a in attributes] == [("deployed_by", OWNER_ID)]

    @pytest.mark.asyncio
    async def test_find_by_codes(self, sql_store):
        await sql_store.create_entity(_deployed(TENANT_ID, "SYS-GL-CORE"))
        await sql_store.create_entity(_deployed(TENANT_ID, "SYS-AR-MGMT"))

        found = await sql_store.find_entities(
            [TENANT_ID],
            [EntityType.DEPLOYED_MODULE.value],
            codes=[deployed_code("SYS-AR-MGMT")],
        )
        empty = await sql_store.find_entities(
            [TENANT_ID], [EntityType.DEPLOYED_MODULE.value], codes=[]
        )

        assert [e.code for e in found] == ["SYS-AR-MGMT-DEPLOYED"]
        assert empty == []

    @pytest.mark.asyncio
    async def test_edges_ordered(self, sql_store):
        for order, child in [(2, "b"), (1, "a")]:
            await sql_store.create_edge(EdgeRecord(
                id=_id(),
                tenant_id=PLATFORM_TENANT_ID,
                edge_type=EdgeType.TEMPLATE_INCLUDES_MODULE.value,
                parent_id="pkg",
                child_id=child,
                order=order,
            ))

        edges = await sql_store.get_edges(
            [PLATFORM_TENANT_ID], EdgeType.TEMPLATE_INCLUDES_MODULE.value, parent_id="pkg"
        )

        assert [e.child_id for e in edges] == ["a", "b"]


class TestTransactions:

    @pytest.mark.asyncio
    async def test_create_sets_created_at(self, sql_store):
        record = await sql_store.create_transaction(_transaction())

        assert record.created_at is not None
        assert record.status == "processing"

    @pytest.mark.asyncio
    async def test_status_transitions_once(self, sql_store):
        """A record leaves processing exactly once."""
        record = await sql_store.create_transaction(_transaction())

        updated = await sql_store.update_transaction(
            record.id, TENANT_ID, TransactionStatus.COMPLETED.value, {"done": True}
        )
        assert updated.status == "completed"
        assert updated.payload == {"done": True}

        with pytest.raises(StoreError):
            await sql_store.update_transaction(
                record.id, TENANT_ID, TransactionStatus.FAILED.value, {}
            )
        assert (await sql_store.get_transaction(record.id, TENANT_ID)).status == "completed"

    @pytest.mark.asyncio
    async def test_transaction_is_tenant_scoped(self, sql_store):
        record = await sql_store.create_transaction(_transaction())

        assert await sql_store.get_transaction(record.id, OTHER_TENANT_ID) is None
        with pytest.raises(StoreError):
            await sql_store.update_transaction(
                record.id, OTHER_TENANT_ID, TransactionStatus.COMPLETED.value, {}
            )

    @pytest.mark.asyncio
    async def test_lines_ordered(self, sql_store):
        record = await sql_store.create_transaction(_transaction())
        for order in (2, 1):
            await sql_store.add_transaction_line(TransactionLineRecord(
                transaction_id=record.id,
                tenant_id=TENANT_ID,
                entity_id=f"entity-{order}",
                order=order,
                description=f"Deploy {order}",
            ))

        lines = await sql_store.get_transaction_lines(record.id, TENANT_ID)

        assert [line.order for line in lines] == [1, 2]
        assert await sql_store.get_transaction_lines(record.id, OTHER_TENANT_ID) == []

    @pytest.mark.asyncio
    async def test_health_check(self, sql_store):
        assert await sql_store.health_check() is True


class TestDeploymentOnDatabase:

    @pytest.mark.asyncio
    async def test_package_deploys_then_conflicts(self, sql_store):
        modules = []
        for code in ("SYS-GL-CORE", "SYS-PROCURE"):
            module = await sql_store.create_entity(EntityRecord(
                id=_id(),
                tenant_id=PLATFORM_TENANT_ID,
                entity_type=EntityType.MODULE_TEMPLATE.value,
                name=code,
                code=code,
                visibility=Visibility.PLATFORM.value,
            ))
            await sql_store.add_attributes(PLATFORM_TENANT_ID, [
                AttributeRecord(module.id, "module_category", "finance"),
            ])
            modules.append(module)
        package = await sql_store.create_entity(EntityRecord(
            id=_id(),
            tenant_id=PLATFORM_TENANT_ID,
            entity_type=EntityType.PACKAGE_TEMPLATE.value,
            name="Restaurant",
            code="PKG-RESTAURANT",
            visibility=Visibility.PLATFORM.value,
        ))
        for order, module in enumerate(modules, start=1):
            await sql_store.create_edge(EdgeRecord(
                id=_id(),
                tenant_id=PLATFORM_TENANT_ID,
                edge_type=EdgeType.TEMPLATE_INCLUDES_MODULE.value,
                parent_id=package.id,
                child_id=module.id,
                order=order,
            ))

        orchestrator = DeploymentOrchestrator(
            store=sql_store,
            lock=LocalTenantLock(acquire_timeout=1),
            settings=Settings(env_mode="development", platform_tenant_id=PLATFORM_TENANT_ID),
        )
        request = DeployRequest(
            tenant_id=TENANT_ID,
            package_id=package.id,
            options=DeploymentOptions(setup_chart_of_accounts=True, create_default_workflows=True),
            actor_id=OWNER_ID,
        )

        result = await orchestrator.deploy(request)

        assert result.status == DeploymentStatus.SUCCESS
        assert result.tally.accounts_created == 4 + 2
        assert result.tally.workflows_created == 1
        record = await sql_store.get_transaction(result.transaction_id, TENANT_ID)
        assert record.status == "completed"
        assert record.payload["deploymentResult"]["modulesDeployed"] == 2
        lines = await sql_store.get_transaction_lines(result.transaction_id, TENANT_ID)
        assert [line.order for line in lines] == [1, 2]

        second = DeployRequest(tenant_id=TENANT_ID, package_id=package.id, actor_id=OWNER_ID)
        with pytest.raises(ConflictError):
            await orchestrator.deploy(second)
