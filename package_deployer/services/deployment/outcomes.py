"""
Deployment Requests, Outcomes and Results

Each module in a deployment ends as exactly one tagged outcome:
    - ModuleSuccess: the deployed-module entity was created
    - ModuleFailure: entity creation raised or timed out

The run summary is a pure fold over those outcomes, and the overall status
a pure function of the success/failure counters.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Sequence, Union

from package_deployer.services.access import UserAssignment, UserGrant
from package_deployer.services.provisioning import ResourceDescriptor


class DeploymentStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


# =============================================================================
# REQUESTS
# =============================================================================

@dataclass
class DeploymentOptions:
    """Caller-selected deployment behavior."""
    business_size: Optional[str] = None
    setup_chart_of_accounts: bool = False
    create_default_workflows: bool = False
    enable_analytics: bool = False
    assign_users: list[UserAssignment] = field(default_factory=list)
    custom_configurations: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "businessSize": self.business_size,
            "setupChartOfAccounts": self.setup_chart_of_accounts,
            "createDefaultWorkflows": self.create_default_workflows,
            "enableAnalytics": self.enable_analytics,
            "assignUsers": [
                {"userId": a.user_id, "role": a.role, "modules": list(a.modules)}
                for a in self.assign_users
            ],
            "customConfigurations": dict(self.custom_configurations),
        }


@dataclass
class DeployRequest:
    """Deploy a package template into a tenant."""
    tenant_id: Optional[str]
    package_id: str
    options: DeploymentOptions = field(default_factory=DeploymentOptions)
    actor_id: Optional[str] = None


@dataclass
class DeployModuleRequest:
    """Deploy a single module template into a tenant."""
    tenant_id: Optional[str]
    module_id: str
    options: DeploymentOptions = field(default_factory=DeploymentOptions)
    actor_id: Optional[str] = None


# =============================================================================
# PER-MODULE OUTCOMES
# =============================================================================

@dataclass
class ModuleSuccess:
    module_id: str
    code: str
    name: str
    deployed_entity_id: str
    elapsed_seconds: float
    accounts: list[ResourceDescriptor] = field(default_factory=list)
    workflows: list[ResourceDescriptor] = field(default_factory=list)

    status = DeploymentStatus.SUCCESS

    @property
    def accounts_created(self) -> int:
        return len(self.accounts)

    @property
    def workflows_created(self) -> int:
        return len(self.workflows)

    def to_dict(self) -> dict[str, Any]:
        return {
            "moduleId": self.module_id,
            "code": self.code,
            "name": self.name,
            "status": self.status.value,
            "deployedEntityId": self.deployed_entity_id,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "accountsCreated": self.accounts_created,
            "workflowsCreated": self.workflows_created,
        }


@dataclass
class ModuleFailure:
    module_id: str
    code: str
    name: str
    elapsed_seconds: float
    error: str

    status = DeploymentStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        return {
            "moduleId": self.module_id,
            "code": self.code,
            "name": self.name,
            "status": self.status.value,
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "error": self.error,
        }


ModuleOutcome = Union[ModuleSuccess, ModuleFailure]


# =============================================================================
# AGGREGATION
# =============================================================================

@dataclass(frozen=True)
class DeploymentTally:
    succeeded: int = 0
    failed: int = 0
    accounts_created: int = 0
    workflows_created: int = 0


def fold_outcomes(outcomes: Sequence[ModuleOutcome]) -> DeploymentTally:
    """Count successes, failures and provisioned resources."""
    succeeded = failed = accounts = workflows = 0
    for outcome in outcomes:
        if isinstance(outcome, ModuleSuccess):
            succeeded += 1
            accounts += outcome.accounts_created
            workflows += outcome.workflows_created
        else:
            failed += 1
    return DeploymentTally(
        succeeded=succeeded,
        failed=failed,
        accounts_created=accounts,
        workflows_created=workflows,
    )


def aggregate_status(succeeded: int, failed: int) -> DeploymentStatus:
    """
    Overall status from the two counters.

    No failures is success; failures alongside at least one success is
    partial; failures with no success is failed.
    """
    if failed == 0:
        return DeploymentStatus.SUCCESS
    if succeeded > 0:
        return DeploymentStatus.PARTIAL
    return DeploymentStatus.FAILED


# =============================================================================
# RESULT
# =============================================================================

@dataclass
class DeploymentResult:
    """Everything a deployment call reports back."""
    tenant_id: str
    template_id: str
    template_name: str
    template_kind: str = "package"
    status: DeploymentStatus = DeploymentStatus.SUCCESS
    transaction_id: Optional[str] = None
    transaction_number: Optional[str] = None
    outcomes: list[ModuleOutcome] = field(default_factory=list)
    user_assignments: list[UserGrant] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def tally(self) -> DeploymentTally:
        return fold_outcomes(self.outcomes)

    @property
    def successes(self) -> list[ModuleSuccess]:
        return [o for o in self.outcomes if isinstance(o, ModuleSuccess)]

    @property
    def created_accounts(self) -> list[ResourceDescriptor]:
        return [a for s in self.successes for a in s.accounts]

    @property
    def created_workflows(self) -> list[ResourceDescriptor]:
        return [w for s in self.successes for w in s.workflows]

    @property
    def success(self) -> bool:
        return self.status != DeploymentStatus.FAILED

    def summary(self) -> dict[str, int]:
        tally = self.tally
        return {
            "modulesDeployed": tally.succeeded,
            "modulesFailed": tally.failed,
            "accountsCreated": tally.accounts_created,
            "workflowsCreated": tally.workflows_created,
            "usersAssigned": len(self.user_assignments),
        }

    def to_dict(self) -> dict[str, Any]:
        summary = self.summary()
        return {
            "success": self.success,
            "status": self.status.value,
            "message": (
                f"Deployment {self.status.value}: "
                f"{summary['modulesDeployed']} module(s) deployed"
            ),
            "transactionId": self.transaction_id,
            "transactionNumber": self.transaction_number,
            "tenantId": self.tenant_id,
            f"{self.template_kind}Id": self.template_id,
            f"{self.template_kind}Name": self.template_name,
            "summary": summary,
            "perModuleResults": [o.to_dict() for o in self.outcomes],
            "createdAccounts": [a.to_dict() for a in self.created_accounts],
            "createdWorkflows": [w.to_dict() for w in self.created_workflows],
            "userAssignments": [g.to_dict() for g in self.user_assignments],
            "elapsedSeconds": round(self.elapsed_seconds, 3),
            "errors": list(self.errors),
            "warnings": list(self.warnings),
        }
