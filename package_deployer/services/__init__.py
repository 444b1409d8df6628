"""
                        Services Module

Contains the deployment business logic. Swappable backends follow the
hybrid architecture pattern: an in-memory/local implementation for
development and a real one for staging/production.

Services:
    - store: Entity store (in-memory or PostgreSQL)
    - locks: Tenant deployment lock (asyncio or Redis)
    - provisioning: Chart of accounts and workflow provisioners
    - access: Module access grants for tenant users
    - deployment: Package/module deployment orchestrator
"""
