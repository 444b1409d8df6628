"""
Deployment Orchestrator Factory

Usage:
    from package_deployer.services.deployment import get_orchestrator

    result = await get_orchestrator().deploy(request)
"""

import logging
from functools import lru_cache

from package_deployer.core.config import get_settings
from package_deployer.services.deployment.errors import (
    AccessDeniedError,
    BadRequestError,
    ConflictError,
    DeploymentError,
    NotFoundError,
    ValidationError,
)
from package_deployer.services.deployment.orchestrator import DeploymentOrchestrator
from package_deployer.services.deployment.outcomes import (
    DeploymentOptions,
    DeploymentResult,
    DeploymentStatus,
    DeploymentTally,
    DeployModuleRequest,
    DeployRequest,
    ModuleFailure,
    ModuleSuccess,
    aggregate_status,
    fold_outcomes,
)
from package_deployer.services.locks import get_tenant_lock
from package_deployer.services.store import get_entity_store

logger = logging.getLogger(__name__)


@lru_cache()
def get_orchestrator() -> DeploymentOrchestrator:
    """Orchestrator wired to the configured store and tenant lock."""
    return DeploymentOrchestrator(
        store=get_entity_store(),
        lock=get_tenant_lock(),
        settings=get_settings(),
    )


def reset_orchestrator() -> None:
    """Clear the cached orchestrator instance."""
    get_orchestrator.cache_clear()
    logger.debug("Orchestrator cache cleared")


__all__ = [
    "get_orchestrator",
    "reset_orchestrator",
    "DeploymentOrchestrator",
    "DeploymentError",
    "ValidationError",
    "BadRequestError",
    "NotFoundError",
    "AccessDeniedError",
    "ConflictError",
    "DeploymentOptions",
    "DeploymentResult",
    "DeploymentStatus",
    "DeploymentTally",
    "DeployModuleRequest",
    "DeployRequest",
    "ModuleFailure",
    "ModuleSuccess",
    "aggregate_status",
    "fold_outcomes",
]
