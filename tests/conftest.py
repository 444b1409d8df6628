"""
Shared pytest fixtures for all tests.

Every test runs in development mode against a fresh InMemoryEntityStore and
an in-process tenant lock; nothing here needs PostgreSQL or Redis.
"""

import os

import pytest

# Ensure test environment before the application settings are loaded
os.environ["ENV_MODE"] = "development"
os.environ.setdefault("DEBUG", "false")

from package_deployer.core.config import Settings, get_settings  # noqa: E402
from package_deployer.services.deployment import (  # noqa: E402
    DeploymentOrchestrator,
    reset_orchestrator,
)
from package_deployer.services.locks import LocalTenantLock, reset_tenant_lock  # noqa: E402
from package_deployer.services.store import InMemoryEntityStore, reset_entity_store  # noqa: E402
from tests.utils import PLATFORM_TENANT_ID, CatalogBuilder, seeded_store  # noqa: E402


# ============================================================================
# SETTINGS
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Development settings with short timeouts."""
    return Settings(
        env_mode="development",
        platform_tenant_id=PLATFORM_TENANT_ID,
        deployment_step_timeout_seconds=0.5,
        deployment_lock_timeout_seconds=0.05,
    )


@pytest.fixture(autouse=True)
def reset_cached_services():
    """Drop cached factories so no state leaks between tests."""
    get_settings.cache_clear()
    reset_entity_store()
    reset_tenant_lock()
    reset_orchestrator()
    yield
    reset_orchestrator()
    reset_tenant_lock()
    reset_entity_store()
    get_settings.cache_clear()


# ============================================================================
# STORE & COLLABORATORS
# ============================================================================


@pytest.fixture
def store() -> InMemoryEntityStore:
    """Store with tenants and members, no templates."""
    return seeded_store()


@pytest.fixture
def catalog(store: InMemoryEntityStore) -> CatalogBuilder:
    """Builder bound to the test store."""
    return CatalogBuilder(store)


@pytest.fixture
def lock(test_settings: Settings) -> LocalTenantLock:
    return LocalTenantLock(acquire_timeout=test_settings.deployment_lock_timeout_seconds)


@pytest.fixture
def orchestrator(
    store: InMemoryEntityStore,
    lock: LocalTenantLock,
    test_settings: Settings,
) -> DeploymentOrchestrator:
    return DeploymentOrchestrator(store=store, lock=lock, settings=test_settings)
