"""
Package Deployment Orchestrator

Installs the modules of a package template (or a single module template)
into a tenant's workspace and records the run as an auditable transaction.

Flow:
    1. Validate: tenant id present, tenant active, template visible,
       package resolves to at least one module
    2. Filter: drop modules already deployed in the tenant, then collapse
       duplicates to their first occurrence
    3. Open the deployment transaction (status "processing")
    4. For each module, in declared order:
         - create the "<code>-DEPLOYED" entity      (failure = module failed)
         - copy template attributes + provenance   (failure = warning)
         - write a transaction line                (failure = warning)
         - run the enabled provisioners            (failure = warning)
    5. Grant the deployed modules to the requested users (failure = warning)
    6. Close the transaction as "completed" or "failed" (failure = warning)

Steps 1-2 raise DeploymentError subclasses and write nothing. Once the
transaction is open, every outcome is reported through the DeploymentResult.

The whole call runs under the tenant lock, so two deployments for one tenant
never interleave.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Awaitable, Optional, TypeVar

from package_deployer.core.config import Settings, get_settings
from package_deployer.models import (
    MODULE_TEMPLATE_TYPES,
    PACKAGE_TEMPLATE_TYPES,
    TransactionStatus,
    ValueType,
)
from package_deployer.services.access import UserAccessAssigner
from package_deployer.services.deployment.errors import (
    AccessDeniedError,
    BadRequestError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from package_deployer.services.deployment.outcomes import (
    DeploymentOptions,
    DeploymentResult,
    DeploymentStatus,
    DeployModuleRequest,
    DeployRequest,
    ModuleFailure,
    ModuleOutcome,
    ModuleSuccess,
    aggregate_status,
)
from package_deployer.services.locks.base import BaseTenantLock, LockUnavailableError
from package_deployer.services.provisioning import (
    ChartOfAccountsProvisioner,
    WorkflowProvisioner,
)
from package_deployer.services.store.base import (
    AttributeRecord,
    BaseEntityStore,
    EntityRecord,
    TransactionRecordData,
)
from package_deployer.services.store.repositories import (
    DeployedModuleRepository,
    DeploymentAuditLog,
    TemplateCatalog,
    TenantDirectory,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

PACKAGE_DEPLOYMENT = "package_deployment"
MODULE_DEPLOYMENT = "module_deployment"


@dataclass
class _DeploymentPlan:
    """What survived validation and filtering."""
    template: EntityRecord
    kind: str
    transaction_type: str
    number_prefix: str
    modules: list[EntityRecord]
    total_modules: int


def _describe(error: BaseException, timeout: float) -> str:
    if isinstance(error, asyncio.TimeoutError):
        return f"timed out after {timeout:g}s"
    return str(error) or error.__class__.__name__


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeploymentOrchestrator:
    """
    Deploys package and module templates into tenants.

    Args:
        store: Shared entity store
        lock: Tenant lock serializing deployments per tenant
        settings: Application settings (defaults to get_settings())
    """

    def __init__(
        self,
        store: BaseEntityStore,
        lock: BaseTenantLock,
        settings: Optional[Settings] = None,
    ):
        settings = settings or get_settings()

        self.store = store
        self.lock = lock
        self.system_user_id = settings.system_user_id
        self.step_timeout = settings.deployment_step_timeout_seconds

        self.directory = TenantDirectory(store)
        self.catalog = TemplateCatalog(store, settings.platform_tenant_id)
        self.deployed_modules = DeployedModuleRepository(store)
        self.audit = DeploymentAuditLog(store)
        self.chart_of_accounts = ChartOfAccountsProvisioner(store, self.step_timeout)
        self.workflows = WorkflowProvisioner(store, self.step_timeout)
        self.assigner = UserAccessAssigner(store, settings.default_permissions_list)

        self._last_number_ms = 0

        logger.info(
            f"DeploymentOrchestrator initialized "
            f"(store={store.provider_name}, lock={lock.provider_name}, "
            f"step_timeout={self.step_timeout}s)"
        )

    # =========================================================================
    # ENTRY POINTS
    # =========================================================================

    async def deploy(self, request: DeployRequest) -> DeploymentResult:
        """
        Deploy a package template into a tenant.

        Raises:
            ValidationError: tenant id missing
            NotFoundError: tenant or package missing, inactive or not visible
            BadRequestError: package resolves to no modules
            ConflictError: every module already deployed, or tenant busy
        """
        tenant_id = self._require_tenant_id(request.tenant_id)
        await self._require_tenant(tenant_id)

        async with self._tenant_guard(tenant_id):
            package = await self.catalog.get_template(
                request.package_id,
                tenant_id,
                [t.value for t in PACKAGE_TEMPLATE_TYPES],
            )
            if package is None:
                raise AccessDeniedError("Package template not found or access denied")

            modules = await self._resolve_modules(package, tenant_id)
            if not modules:
                raise BadRequestError(
                    f"Package '{package.name}' has no deployable modules (empty package)"
                )

            pending = await self._pending_modules(tenant_id, modules)
            if not pending:
                raise ConflictError(
                    f"All modules of package '{package.name}' are already deployed to this tenant"
                )

            logger.info(
                f"🚀 Deploying package {package.code} to {tenant_id}: "
                f"{len(pending)}/{len(modules)} module(s)"
            )
            plan = _DeploymentPlan(
                template=package,
                kind="package",
                transaction_type=PACKAGE_DEPLOYMENT,
                number_prefix="PKG-DEPLOY",
                modules=pending,
                total_modules=len(modules),
            )
            return await self._execute(tenant_id, plan, request.options, request.actor_id)

    async def deploy_module(self, request: DeployModuleRequest) -> DeploymentResult:
        """
        Deploy a single module template into a tenant.

        Same pipeline as deploy(), with the module as a one-item package.
        """
        tenant_id = self._require_tenant_id(request.tenant_id)
        await self._require_tenant(tenant_id)

        async with self._tenant_guard(tenant_id):
            module = await self.catalog.get_template(
                request.module_id,
                tenant_id,
                [t.value for t in MODULE_TEMPLATE_TYPES],
            )
            if module is None:
                raise AccessDeniedError("Module template not found or access denied")

            already = await self.deployed_modules.find_deployed_codes(tenant_id, [module.code])
            if already:
                raise ConflictError(f"Module '{module.name}' is already deployed to this tenant")

            logger.info(f"🚀 Deploying module {module.code} to {tenant_id}")
            plan = _DeploymentPlan(
                template=module,
                kind="module",
                transaction_type=MODULE_DEPLOYMENT,
                number_prefix="DEPLOY",
                modules=[module],
                total_modules=1,
            )
            return await self._execute(tenant_id, plan, request.options, request.actor_id)

    # =========================================================================
    # VALIDATION & RESOLUTION
    # =========================================================================

    @staticmethod
    def _require_tenant_id(tenant_id: Optional[str]) -> str:
        tenant_id = (tenant_id or "").strip()
        if not tenant_id:
            raise ValidationError("tenantId is required")
        return tenant_id

    async def _require_tenant(self, tenant_id: str) -> None:
        tenant = await self.directory.get_active_tenant(tenant_id)
        if tenant is None:
            raise NotFoundError("Tenant not found or inactive")

    @asynccontextmanager
    async def _tenant_guard(self, tenant_id: str) -> AsyncIterator[None]:
        # LockUnavailableError is only raised while acquiring
        try:
            async with self.lock.hold(tenant_id):
                yield
        except LockUnavailableError:
            raise ConflictError("A deployment is already in progress for this tenant")

    async def _resolve_modules(self, package: EntityRecord, tenant_id: str) -> list[EntityRecord]:
        """Active module templates of a package in edge order; dangling edges dropped."""
        edges = await self.catalog.get_module_edges(package.id, tenant_id)
        found = await self.catalog.get_modules([e.child_id for e in edges], tenant_id)

        modules: list[EntityRecord] = []
        for edge in edges:
            module = found.get(edge.child_id)
            if module is None or not module.is_active:
                logger.warning(
                    f"Package {package.code} references missing module {edge.child_id}, skipping"
                )
                continue
            modules.append(module)
        return modules

    async def _pending_modules(self, tenant_id: str, modules: list[EntityRecord]) -> list[EntityRecord]:
        """Modules not yet deployed in the tenant, first occurrence per code."""
        deployed = await self.deployed_modules.find_deployed_codes(
            tenant_id, [m.code for m in modules]
        )
        if deployed:
            logger.info(f"Skipping already deployed modules: {sorted(deployed)}")

        pending: list[EntityRecord] = []
        seen: set[str] = set()
        for module in modules:
            if module.code in deployed or module.code in seen:
                continue
            seen.add(module.code)
            pending.append(module)
        return pending

    # =========================================================================
    # EXECUTION
    # =========================================================================

    async def _step(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.step_timeout)

    def _transaction_number(self, prefix: str, tenant_id: str) -> str:
        now_ms = max(int(time.time() * 1000), self._last_number_ms + 1)
        self._last_number_ms = now_ms
        return f"{prefix}-{tenant_id[:8]}-{now_ms}"

    async def _execute(
        self,
        tenant_id: str,
        plan: _DeploymentPlan,
        options: DeploymentOptions,
        actor_id: Optional[str],
    ) -> DeploymentResult:
        actor = actor_id or self.system_user_id
        template = plan.template

        payload: dict[str, Any] = {
            f"{plan.kind}Id": template.id,
            f"{plan.kind}Name": template.name,
            f"{plan.kind}Code": template.code,
            "totalModules": plan.total_modules,
            "modulesToDeploy": len(plan.modules),
            "options": options.to_dict(),
            "startedAt": _utcnow().isoformat(),
        }
        transaction = await self._step(self.audit.open(
            tenant_id,
            plan.transaction_type,
            self._transaction_number(plan.number_prefix, tenant_id),
            payload,
            created_by=actor,
        ))
        started = time.monotonic()

        result = DeploymentResult(
            tenant_id=tenant_id,
            template_id=template.id,
            template_name=template.name,
            template_kind=plan.kind,
            transaction_id=transaction.id,
            transaction_number=transaction.number,
        )

        try:
            line_order = 1
            for module in plan.modules:
                outcome, line_written = await self._deploy_one(
                    tenant_id, module, plan, options, actor, transaction, line_order, result
                )
                result.outcomes.append(outcome)
                if line_written:
                    line_order += 1

            tally = result.tally
            result.status = aggregate_status(tally.succeeded, tally.failed)

            if options.assign_users and result.successes:
                await self._assign_users(tenant_id, options, result)

        except Exception as e:
            logger.exception(f"Unhandled error during deployment {transaction.number}")
            result.status = DeploymentStatus.FAILED
            result.errors.append(f"Deployment aborted: {_describe(e, self.step_timeout)}")

        result.elapsed_seconds = time.monotonic() - started
        await self._finalize(transaction, result)

        icon = {"success": "✅", "partial": "⚠️", "failed": "❌"}[result.status.value]
        summary = result.summary()
        logger.info(
            f"{icon} Deployment {transaction.number} {result.status.value}: "
            f"{summary['modulesDeployed']}/{len(plan.modules)} module(s), "
            f"{len(result.warnings)} warning(s) ({result.elapsed_seconds:.2f}s)"
        )
        return result

    async def _deploy_one(
        self,
        tenant_id: str,
        module: EntityRecord,
        plan: _DeploymentPlan,
        options: DeploymentOptions,
        actor: str,
        transaction: TransactionRecordData,
        line_order: int,
        result: DeploymentResult,
    ) -> tuple[ModuleOutcome, bool]:
        """Deploy one module; returns its outcome and whether a line was written."""
        started = time.monotonic()
        logger.info(f"🛠️ Deploying module {module.code} ({module.name})")

        try:
            deployed = await self._step(self.deployed_modules.create(tenant_id, module))
        except Exception as e:
            error = _describe(e, self.step_timeout)
            logger.error(f"❌ Module {module.code} failed: {error}")
            result.errors.append(f"{module.name}: {error}")
            return ModuleFailure(
                module_id=module.id,
                code=module.code,
                name=module.name,
                elapsed_seconds=time.monotonic() - started,
                error=error,
            ), False

        try:
            await self._copy_attributes(tenant_id, module, deployed, plan, actor, transaction)
        except Exception as e:
            result.warnings.append(
                f"Failed to copy module configuration for {module.name}: "
                f"{_describe(e, self.step_timeout)}"
            )

        line_written = True
        try:
            await self._step(self.audit.add_line(
                transaction,
                deployed.id,
                line_order,
                f"Deploy {module.name}",
                {
                    "module_code": module.code,
                    "module_category": module.entity_type,
                    "deployment_status": "completed",
                },
            ))
        except Exception as e:
            line_written = False
            result.warnings.append(
                f"Failed to create transaction line for {module.name}: "
                f"{_describe(e, self.step_timeout)}"
            )

        outcome = ModuleSuccess(
            module_id=module.id,
            code=module.code,
            name=module.name,
            deployed_entity_id=deployed.id,
            elapsed_seconds=0.0,
        )

        if options.setup_chart_of_accounts:
            try:
                outcome.accounts = await self.chart_of_accounts.provision(tenant_id, module.code)
            except Exception as e:
                result.warnings.append(
                    f"Chart of accounts setup failed for {module.name}: "
                    f"{_describe(e, self.step_timeout)}"
                )

        if options.create_default_workflows:
            try:
                outcome.workflows = await self.workflows.provision(tenant_id, module.code)
            except Exception as e:
                result.warnings.append(
                    f"Workflow creation failed for {module.name}: "
                    f"{_describe(e, self.step_timeout)}"
                )

        outcome.elapsed_seconds = time.monotonic() - started
        logger.info(
            f"✅ Module {module.code} deployed "
            f"(accounts={outcome.accounts_created}, workflows={outcome.workflows_created})"
        )
        return outcome, line_written

    async def _copy_attributes(
        self,
        tenant_id: str,
        module: EntityRecord,
        deployed: EntityRecord,
        plan: _DeploymentPlan,
        actor: str,
        transaction: TransactionRecordData,
    ) -> None:
        source = await self._step(self.catalog.get_attributes(module))
        attributes = [
            AttributeRecord(
                entity_id=deployed.id,
                key=attr.key,
                value=attr.value,
                value_type=attr.value_type,
            )
            for attr in source
        ]

        provenance = {
            "deployed_at": _utcnow().isoformat(),
            "deployed_by": actor,
            "deployment_transaction_id": transaction.id,
            "source_template_id": module.id,
        }
        if plan.kind == "package":
            provenance["deployed_as_part_of_package"] = plan.template.id

        attributes.extend(
            AttributeRecord(
                entity_id=deployed.id,
                key=key,
                value=value,
                value_type=ValueType.TEXT.value,
            )
            for key, value in provenance.items()
        )
        await self._step(self.deployed_modules.add_attributes(tenant_id, attributes))

    async def _assign_users(
        self,
        tenant_id: str,
        options: DeploymentOptions,
        result: DeploymentResult,
    ) -> None:
        deployed = {s.code: s.deployed_entity_id for s in result.successes}
        try:
            result.user_assignments = await self._step(
                self.assigner.assign(tenant_id, options.assign_users, deployed)
            )
        except Exception as e:
            logger.error(f"User assignment failed: {e}")
            result.warnings.append(f"User assignment failed: {_describe(e, self.step_timeout)}")

    async def _finalize(self, transaction: TransactionRecordData, result: DeploymentResult) -> None:
        """Close the transaction record; failures only become warnings."""
        status = (
            TransactionStatus.FAILED
            if result.status == DeploymentStatus.FAILED
            else TransactionStatus.COMPLETED
        )
        finished_at = _utcnow()
        extra = {
            "finishedAt": finished_at.isoformat(),
            "deploymentResult": {
                "status": result.status.value,
                **result.summary(),
                "elapsedSeconds": round(result.elapsed_seconds, 3),
            },
        }
        try:
            await self._step(self.audit.finalize(transaction, status, extra, posted_at=finished_at))
        except Exception as e:
            logger.warning(f"⚠️ Could not finalize transaction {transaction.number}: {e}")
            result.warnings.append(
                f"Failed to update transaction status: {_describe(e, self.step_timeout)}"
            )
