"""Test utilities."""

from tests.utils.builders import (
    CHEF_ID,
    INACTIVE_TENANT_ID,
    OTHER_TENANT_ID,
    OUTSIDER_ID,
    OWNER_ID,
    PLATFORM_TENANT_ID,
    TENANT_ID,
    CatalogBuilder,
    seeded_store,
)

__all__ = [
    "CHEF_ID",
    "INACTIVE_TENANT_ID",
    "OTHER_TENANT_ID",
    "OUTSIDER_ID",
    "OWNER_ID",
    "PLATFORM_TENANT_ID",
    "TENANT_ID",
    "CatalogBuilder",
    "seeded_store",
]
