"""
Demo Template Catalog

Platform-published module templates and one industry package, used to seed
the development store at startup and the database through
scripts/seed_catalog.py.

Module codes match the provisioning tables, so deploying the restaurant
package with setupChartOfAccounts/createDefaultWorkflows exercises both
provisioners.
"""

import logging
from typing import Optional

from package_deployer.models import EdgeType, EntityType, Visibility
from package_deployer.services.store.base import (
    AttributeRecord,
    BaseEntityStore,
    EdgeRecord,
    EntityRecord,
    MembershipRecord,
    StoreError,
    TenantRecord,
)
from package_deployer.services.store.repositories import infer_value_type, new_id, serialize_value

logger = logging.getLogger(__name__)

DEMO_TENANT_ID = "7f1c2d3e-0000-4000-8000-0000000000d1"

# code -> (name, attributes)
PLATFORM_MODULES: dict[str, tuple[str, dict]] = {
    "SYS-GL-CORE": ("General Ledger Core", {"module_category": "finance", "version": "1.0.0"}),
    "SYS-AR-MGMT": ("Accounts Receivable Management", {"module_category": "finance", "version": "1.0.0"}),
    "SYS-INVENTORY": ("Inventory Management", {"module_category": "operations", "version": "1.2.0"}),
    "SYS-PROCURE": ("Procurement", {"module_category": "operations", "version": "1.1.0"}),
    "SYS-HR-CORE": ("Human Resources Core", {"module_category": "people", "version": "1.0.0"}),
    "SYS-CRM-CORE": ("Customer Relationship Management", {"module_category": "sales", "version": "0.9.0"}),
}

RESTAURANT_PACKAGE = {
    "code": "PKG-RESTAURANT",
    "name": "Restaurant Operations Suite",
    "attributes": {
        "industry_type": "restaurant",
        "target_business_size": "small",
        "description": "Ledger, receivables, inventory, purchasing and staff for restaurants",
    },
    "modules": ["SYS-GL-CORE", "SYS-AR-MGMT", "SYS-INVENTORY", "SYS-PROCURE", "SYS-HR-CORE"],
}


async def seed_demo_catalog(
    store: BaseEntityStore,
    platform_tenant_id: str,
    demo_tenant_id: Optional[str] = DEMO_TENANT_ID,
) -> dict[str, str]:
    """
    Seed platform templates, the restaurant package and a demo tenant.

    Returns:
        Mapping of template code -> entity id (package included)
    """
    if await store.get_tenant(platform_tenant_id) is None:
        await store.create_tenant(TenantRecord(id=platform_tenant_id, name="Platform"))

    ids: dict[str, str] = {}
    existing = await store.find_entities(
        [platform_tenant_id],
        [EntityType.MODULE_TEMPLATE.value, EntityType.PACKAGE_TEMPLATE.value],
    )
    for entity in existing:
        ids[entity.code] = entity.id
    if RESTAURANT_PACKAGE["code"] in ids:
        logger.info("Demo catalog already seeded")
        return ids

    for code, (name, attributes) in PLATFORM_MODULES.items():
        module = await _create_template(
            store, platform_tenant_id, EntityType.MODULE_TEMPLATE, code, name, attributes
        )
        ids[code] = module.id

    package = await _create_template(
        store,
        platform_tenant_id,
        EntityType.PACKAGE_TEMPLATE,
        RESTAURANT_PACKAGE["code"],
        RESTAURANT_PACKAGE["name"],
        RESTAURANT_PACKAGE["attributes"],
    )
    ids[package.code] = package.id

    for order, module_code in enumerate(RESTAURANT_PACKAGE["modules"], start=1):
        await store.create_edge(EdgeRecord(
            id=new_id(),
            tenant_id=platform_tenant_id,
            edge_type=EdgeType.TEMPLATE_INCLUDES_MODULE.value,
            parent_id=package.id,
            child_id=ids[module_code],
            order=order,
            payload={"order": order, "required": True},
        ))

    if demo_tenant_id:
        try:
            await store.create_tenant(TenantRecord(id=demo_tenant_id, name="Demo Bistro"))
            await store.create_membership(MembershipRecord(
                tenant_id=demo_tenant_id, user_id="demo-owner", role="owner"
            ))
            await store.create_membership(MembershipRecord(
                tenant_id=demo_tenant_id, user_id="demo-chef", role="staff"
            ))
        except StoreError as e:
            logger.warning(f"Demo tenant not seeded: {e}")

    logger.info(f"✅ Demo catalog seeded ({len(PLATFORM_MODULES)} modules, 1 package)")
    return ids


async def _create_template(
    store: BaseEntityStore,
    tenant_id: str,
    entity_type: EntityType,
    code: str,
    name: str,
    attributes: dict,
) -> EntityRecord:
    entity = await store.create_entity(EntityRecord(
        id=new_id(),
        tenant_id=tenant_id,
        entity_type=entity_type.value,
        name=name,
        code=code,
        visibility=Visibility.PLATFORM.value,
    ))
    await store.add_attributes(tenant_id, [
        AttributeRecord(
            entity_id=entity.id,
            key=key,
            value=serialize_value(value),
            value_type=infer_value_type(value),
        )
        for key, value in attributes.items()
    ])
    return entity
