"""
Catalog Seeding Script

Creates the tables and seeds the platform module templates, the restaurant
package and the demo tenant into the configured database.
Run from project root: python scripts/seed_catalog.py

Development mode keeps its catalog in memory and seeds it at startup, so
this script is only needed for ENV_MODE=staging/production.
"""

import asyncio
import os
import sys

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from package_deployer.core.config import get_settings, setup_logging  # noqa: E402
from package_deployer.database import dispose_engine, init_db  # noqa: E402
from package_deployer.services.store import get_entity_store  # noqa: E402
from package_deployer.services.store.catalog import seed_demo_catalog  # noqa: E402


async def seed() -> dict[str, str]:
    settings = get_settings()
    store = get_entity_store()

    print("=" * 60)
    print("🌱 CATALOG SEED")
    print("=" * 60)
    print(f"🔧 Environment: {settings.env_mode.value}")
    print(f"🗄️  Store: {store.provider_name}")
    print(f"🏛️  Platform tenant: {settings.platform_tenant_id}")
    print("=" * 60)

    if settings.is_development:
        print("\n⚠️ Development mode uses an in-memory store; nothing will persist.")

    try:
        if not settings.is_development:
            await init_db()
            print("\n✅ Tables created")

        ids = await seed_demo_catalog(store, settings.platform_tenant_id)
    finally:
        if not settings.is_development:
            await dispose_engine()

    print(f"\n📦 Templates ({len(ids)}):")
    for code, entity_id in sorted(ids.items()):
        print(f"   {code:<16} {entity_id}")
    print("=" * 60)
    return ids


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
