"""
Tests for the chart-of-accounts and workflow provisioners.

Tests cover:
1. Static tables per module code
2. Idempotency across repeated calls
3. Per-resource failure isolation
4. Tenant scoping of look-before-write
5. Completing resources left without attributes
6. Per-resource timeouts keeping earlier resources
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from package_deployer.models import EntityType
from package_deployer.services.provisioning import (
    ChartOfAccountsProvisioner,
    WorkflowProvisioner,
)
from tests.utils import OTHER_TENANT_ID, TENANT_ID


def _of_type(store, tenant_id, entity_type):
    return [
        e for e in store.all_entities()
        if e.tenant_id == tenant_id and e.entity_type == entity_type.value
    ]


class TestChartOfAccountsProvisioner:

    @pytest.mark.asyncio
    async def test_creates_general_ledger_accounts(self, store):
        """SYS-GL-CORE gets the four core accounts with their types."""
        provisioner = ChartOfAccountsProvisioner(store)

        created = await provisioner.provision(TENANT_ID, "SYS-GL-CORE")

        assert [a.code for a in created] == ["1001000", "2001000", "3001000", "4001000"]
        assert [a.details["accountType"] for a in created] == [
            "ASSET", "LIABILITY", "EQUITY", "REVENUE",
        ]
        assert all(a.created_by_module == "SYS-GL-CORE" for a in created)

        cash = next(a for a in created if a.code == "1001000")
        attrs = {a.key: a.value for a in store.attributes_of(cash.entity_id)}
        assert attrs == {
            "account_type": "ASSET",
            "created_by_module": "SYS-GL-CORE",
            "current_balance": "0",
        }

    @pytest.mark.asyncio
    async def test_unknown_module_yields_empty_list(self, store):
        provisioner = ChartOfAccountsProvisioner(store)

        assert await provisioner.provision(TENANT_ID, "SYS-CRM-CORE") == []
        assert _of_type(store, TENANT_ID, EntityType.CHART_OF_ACCOUNT) == []

    @pytest.mark.asyncio
    async def test_second_call_creates_nothing(self, store):
        """Provisioning the same tenant+module twice creates resources once."""
        provisioner = ChartOfAccountsProvisioner(store)

        first = await provisioner.provision(TENANT_ID, "SYS-INVENTORY")
        second = await provisioner.provision(TENANT_ID, "SYS-INVENTORY")

        assert len(first) == 4
        assert second == []
        assert len(_of_type(store, TENANT_ID, EntityType.CHART_OF_ACCOUNT)) == 4

    @pytest.mark.asyncio
    async def test_existing_account_in_other_tenant_does_not_count(self, store):
        provisioner = ChartOfAccountsProvisioner(store)

        await provisioner.provision(OTHER_TENANT_ID, "SYS-AR-MGMT")
        created = await provisioner.provision(TENANT_ID, "SYS-AR-MGMT")

        assert [a.code for a in created] == ["1002000", "1002100"]
        assert all(e.tenant_id == TENANT_ID for e in _of_type(store, TENANT_ID, EntityType.CHART_OF_ACCOUNT))

    @pytest.mark.asyncio
    async def test_single_failure_does_not_abort_batch(self, store):
        """One account failing to persist is skipped; the rest are created."""
        store.fail_on("create_entity", lambda entity: entity.code == "2003000")
        provisioner = ChartOfAccountsProvisioner(store)

        created = await provisioner.provision(TENANT_ID, "SYS-HR-CORE")

        assert [a.code for a in created] == ["6002000", "6003000"]

    @pytest.mark.asyncio
    async def test_retry_fills_in_previously_failed_account(self, store):
        store.fail_on("create_entity", lambda entity: entity.code == "6001000")
        provisioner = ChartOfAccountsProvisioner(store)
        await provisioner.provision(TENANT_ID, "SYS-PROCURE")

        store.clear_faults()
        created = await provisioner.provision(TENANT_ID, "SYS-PROCURE")

        assert [a.code for a in created] == ["6001000"]

    @pytest.mark.asyncio
    async def test_retry_completes_account_left_without_attributes(self, store):
        """An account whose attribute write failed is completed, not skipped."""
        store.fail_on(
            "add_attributes",
            lambda tenant_id, attrs: any(a.value == "DIRECT_EXPENSE" for a in attrs),
        )
        provisioner = ChartOfAccountsProvisioner(store)

        first = await provisioner.provision(TENANT_ID, "SYS-PROCURE")
        assert [a.code for a in first] == ["2002000"]

        store.clear_faults()
        second = await provisioner.provision(TENANT_ID, "SYS-PROCURE")
        third = await provisioner.provision(TENANT_ID, "SYS-PROCURE")

        assert [a.code for a in second] == ["6001000"]
        assert third == []

        accounts = _of_type(store, TENANT_ID, EntityType.CHART_OF_ACCOUNT)
        assert sorted(e.code for e in accounts) == ["2002000", "6001000"]
        expense = next(e for e in accounts if e.code == "6001000")
        assert second[0].entity_id == expense.id
        attrs = {a.key: a.value for a in store.attributes_of(expense.id)}
        assert attrs == {
            "account_type": "DIRECT_EXPENSE",
            "created_by_module": "SYS-PROCURE",
            "current_balance": "0",
        }

    @pytest.mark.asyncio
    async def test_slow_account_keeps_earlier_ones(self, store):
        """A resource that times out is skipped; the ones before it are reported."""
        provisioner = ChartOfAccountsProvisioner(store, resource_timeout=0.05)
        create = provisioner.resources.create

        async def slow_revenue(tenant_id, code, name, attributes):
            if code == "4001000":
                await asyncio.sleep(1.0)
            return await create(tenant_id, code, name, attributes)

        with patch.object(provisioner.resources, "create", new=slow_revenue):
            created = await provisioner.provision(TENANT_ID, "SYS-GL-CORE")

        assert [a.code for a in created] == ["1001000", "2001000", "3001000"]

        retried = await provisioner.provision(TENANT_ID, "SYS-GL-CORE")
        assert [a.code for a in retried] == ["4001000"]


class TestWorkflowProvisioner:

    @pytest.mark.asyncio
    async def test_creates_procurement_workflow(self, store):
        provisioner = WorkflowProvisioner(store)

        created = await provisioner.provision(TENANT_ID, "SYS-PROCURE")

        assert len(created) == 1
        workflow = created[0]
        assert workflow.code == "PROC-APPROVAL"
        assert workflow.name == "Purchase Order Approval Workflow"
        assert workflow.to_dict()["steps"] == ["request", "review", "approve", "purchase"]

        attrs = {a.key: a for a in store.attributes_of(workflow.entity_id)}
        assert json.loads(attrs["workflow_steps"].value) == ["request", "review", "approve", "purchase"]
        assert attrs["workflow_steps"].value_type == "json"
        assert attrs["is_active"].value == "true"
        assert attrs["created_by_module"].value == "SYS-PROCURE"

    @pytest.mark.asyncio
    async def test_crm_has_workflow_but_no_accounts(self, store):
        workflows = await WorkflowProvisioner(store).provision(TENANT_ID, "SYS-CRM-CORE")
        accounts = await ChartOfAccountsProvisioner(store).provision(TENANT_ID, "SYS-CRM-CORE")

        assert [w.code for w in workflows] == ["LEAD-MGMT"]
        assert accounts == []

    @pytest.mark.asyncio
    async def test_second_call_creates_nothing(self, store):
        provisioner = WorkflowProvisioner(store)

        assert len(await provisioner.provision(TENANT_ID, "SYS-HR-CORE")) == 1
        assert await provisioner.provision(TENANT_ID, "SYS-HR-CORE") == []

    @pytest.mark.asyncio
    async def test_gl_core_has_no_workflows(self, store):
        assert await WorkflowProvisioner(store).provision(TENANT_ID, "SYS-GL-CORE") == []
