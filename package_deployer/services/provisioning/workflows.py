"""
Workflow Provisioner

Creates the default business workflows that ship with a module.
"""

from typing import Any

from package_deployer.models import EntityType
from package_deployer.services.provisioning.base import BaseProvisioner, ResourceSpec


def _workflow(code: str, name: str, steps: list[str]) -> ResourceSpec:
    return ResourceSpec(code=code, name=name, attributes={"steps": steps})


class WorkflowProvisioner(BaseProvisioner):
    """Provision default workflows per module."""

    entity_type = EntityType.WORKFLOW
    kind = "workflow"

    TABLE = {
        "SYS-PROCURE": [
            _workflow(
                "PROC-APPROVAL",
                "Purchase Order Approval Workflow",
                ["request", "review", "approve", "purchase"],
            ),
        ],
        "SYS-AR-MGMT": [
            _workflow(
                "AR-COLLECTION",
                "Accounts Receivable Collection Workflow",
                ["invoice", "follow_up", "collection", "write_off"],
            ),
        ],
        "SYS-HR-CORE": [
            _workflow(
                "HR-ONBOARDING",
                "Employee Onboarding Workflow",
                ["application", "background_check", "offer", "onboarding"],
            ),
        ],
        "SYS-CRM-CORE": [
            _workflow(
                "LEAD-MGMT",
                "Lead Management Workflow",
                ["lead_capture", "qualification", "nurturing", "conversion"],
            ),
        ],
    }

    def build_attributes(self, spec: ResourceSpec, module_code: str) -> dict[str, Any]:
        return {
            "workflow_steps": list(spec.attributes["steps"]),
            "created_by_module": module_code,
            "is_active": True,
        }

    def describe(self, spec: ResourceSpec) -> dict[str, Any]:
        return {"steps": list(spec.attributes["steps"])}
