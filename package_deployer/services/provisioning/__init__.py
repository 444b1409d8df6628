"""
Resource provisioners run for each deployed module when the matching
deployment option is enabled.
"""

from package_deployer.services.provisioning.base import (
    BaseProvisioner,
    ResourceDescriptor,
    ResourceSpec,
)
from package_deployer.services.provisioning.chart_of_accounts import ChartOfAccountsProvisioner
from package_deployer.services.provisioning.workflows import WorkflowProvisioner

__all__ = [
    "BaseProvisioner",
    "ResourceDescriptor",
    "ResourceSpec",
    "ChartOfAccountsProvisioner",
    "WorkflowProvisioner",
]
