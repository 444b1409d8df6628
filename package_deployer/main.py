"""
FastAPI Application Entry Point

ERP Package Deployer - installs package and module templates into tenant
workspaces. Runs on an in-memory store with a seeded demo catalog in
development, and on PostgreSQL + Redis in staging/production.

Endpoints:
    - POST /api/templates/packages/deploy: Deploy a package into a tenant
    - POST /api/templates/modules/deploy: Deploy a single module into a tenant
    - GET /api/templates/packages: List package templates visible to a tenant
    - GET /api/tenants/{tenant_id}/modules: List a tenant's deployed modules
    - GET /api/tenants/{tenant_id}/deployments/{transaction_id}: Deployment audit record
    - GET /health: System health check
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from package_deployer.core.config import get_settings, setup_logging
from package_deployer.database import dispose_engine, init_db
from package_deployer.schemas import (
    DeployedModuleListResponse,
    DeployedModuleOut,
    DeploymentLineOut,
    DeploymentRecordResponse,
    ErrorResponse,
    HealthResponse,
    ModuleDeploymentRequest,
    PackageDeploymentRequest,
    PackageListResponse,
    PackageModuleOut,
    PackageOut,
)
from package_deployer.services.deployment import (
    DeploymentError,
    DeploymentOrchestrator,
    DeploymentResult,
    get_orchestrator,
)
from package_deployer.services.locks import BaseTenantLock, get_tenant_lock
from package_deployer.services.store import BaseEntityStore, get_entity_store
from package_deployer.services.store.catalog import seed_demo_catalog
from package_deployer.services.store.repositories import (
    DeployedModuleRepository,
    DeploymentAuditLog,
    TemplateCatalog,
    TenantDirectory,
    deserialize_value,
)

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    store = get_entity_store()
    lock = get_tenant_lock()
    logger.info(f"✅ Entity Store: {store.provider_name}")
    logger.info(f"✅ Tenant Lock: {lock.provider_name}")

    if settings.is_development:
        ids = await seed_demo_catalog(store, settings.platform_tenant_id)
        logger.info(f"✅ Demo catalog ready ({len(ids)} templates)")
    else:
        await init_db()
        logger.info("✅ Database initialized")

    # Validate production config
    if settings.use_real_services:
        missing = settings.validate_production_config()
        if missing:
            logger.warning(f"⚠️ Missing production config: {missing}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    if not settings.is_development:
        await dispose_engine()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Multi-tenant ERP package deployment service. Installs bundles of "
        "module templates into isolated tenant workspaces with an auditable, "
        "three-state outcome."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# =============================================================================
# DEPENDENCIES & HELPERS
# =============================================================================

def get_template_catalog(store: BaseEntityStore = Depends(get_entity_store)) -> TemplateCatalog:
    return TemplateCatalog(store, settings.platform_tenant_id)


def deployment_response(result: DeploymentResult) -> JSONResponse:
    """201 for success/partial, 500 for failed; the full result either way."""
    return JSONResponse(
        status_code=201 if result.success else 500,
        content=result.to_dict(),
    )


def deployment_failed_response(error: Exception) -> JSONResponse:
    """500 for an error that escaped the orchestrator, keeping its message."""
    return JSONResponse(
        status_code=500,
        content={"success": False, "status": "failed", "error": str(error) or error.__class__.__name__},
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"📦 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    store: BaseEntityStore = Depends(get_entity_store),
    lock: BaseTenantLock = Depends(get_tenant_lock),
) -> HealthResponse:
    """Verify the entity store and lock backend are reachable."""
    # Check entity store
    store_status = "healthy"
    try:
        if not await store.health_check():
            store_status = "unhealthy"
    except Exception as e:
        store_status = f"unhealthy: {str(e)}"
        logger.error(f"Store health check failed: {e}")

    # Check lock backend
    lock_status = "healthy"
    try:
        if not await lock.health_check():
            lock_status = "unhealthy"
    except Exception as e:
        lock_status = f"unhealthy: {str(e)}"
        logger.error(f"Lock health check failed: {e}")

    overall = "operational" if all(
        s == "healthy" for s in [store_status, lock_status]
    ) else "degraded"

    return HealthResponse(
        status=overall,
        environment=settings.env_mode.value,
        store=store_status,
        lock=lock_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# DEPLOYMENT ENDPOINTS
# =============================================================================

@app.post(
    "/api/templates/packages/deploy",
    status_code=201,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"description": "Deployment failed; full result in body"},
    },
    tags=["Deployment"],
    summary="Deploy Package Template",
)
async def deploy_package(
    body: PackageDeploymentRequest,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """
    Deploy every not-yet-deployed module of a package into a tenant.

    Returns 201 when all or some modules deployed, 500 (with the same body)
    when none did.
    """
    logger.info(f"Package deployment requested: {body.package_id} -> {body.tenant_id}")
    try:
        result = await orchestrator.deploy(body.to_request())
    except DeploymentError as e:
        logger.warning(f"Package deployment rejected ({e.status_code}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.exception(f"Package deployment failed: {e}")
        return deployment_failed_response(e)
    return deployment_response(result)


@app.post(
    "/api/templates/modules/deploy",
    status_code=201,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"description": "Deployment failed; full result in body"},
    },
    tags=["Deployment"],
    summary="Deploy Module Template",
)
async def deploy_module(
    body: ModuleDeploymentRequest,
    orchestrator: DeploymentOrchestrator = Depends(get_orchestrator),
) -> JSONResponse:
    """Deploy a single module template into a tenant."""
    logger.info(f"Module deployment requested: {body.module_id} -> {body.tenant_id}")
    try:
        result = await orchestrator.deploy_module(body.to_request())
    except DeploymentError as e:
        logger.warning(f"Module deployment rejected ({e.status_code}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message)
    except Exception as e:
        logger.exception(f"Module deployment failed: {e}")
        return deployment_failed_response(e)
    return deployment_response(result)


# =============================================================================
# CATALOG & TENANT ENDPOINTS
# =============================================================================

@app.get(
    "/api/templates/packages",
    response_model=PackageListResponse,
    tags=["Catalog"],
    summary="List Package Templates",
)
async def list_packages(
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    include_system: bool = Query(True, alias="includeSystem"),
    catalog: TemplateCatalog = Depends(get_template_catalog),
) -> PackageListResponse:
    """Package templates visible to a tenant, each with its ordered modules."""
    packages = await catalog.list_packages(tenant_id, include_platform=include_system)
    viewer = tenant_id or catalog.platform_tenant_id

    items: list[PackageOut] = []
    for package in packages:
        edges = await catalog.get_module_edges(package.id, viewer)
        modules = await catalog.get_modules([e.child_id for e in edges], viewer)
        items.append(PackageOut(
            id=package.id,
            code=package.code,
            name=package.name,
            entity_type=package.entity_type,
            is_platform=package.tenant_id == catalog.platform_tenant_id,
            modules=[
                PackageModuleOut(
                    id=modules[e.child_id].id,
                    code=modules[e.child_id].code,
                    name=modules[e.child_id].name,
                    order=e.order,
                )
                for e in edges
                if e.child_id in modules
            ],
        ))

    return PackageListResponse(packages=items, count=len(items))


@app.get(
    "/api/tenants/{tenant_id}/modules",
    response_model=DeployedModuleListResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Tenants"],
    summary="List Deployed Modules",
)
async def list_deployed_modules(
    tenant_id: str,
    store: BaseEntityStore = Depends(get_entity_store),
) -> DeployedModuleListResponse:
    """Active deployed modules of a tenant with their attributes."""
    tenant = await TenantDirectory(store).get_active_tenant(tenant_id)
    if tenant is None:
        raise HTTPException(status_code=404, detail="Tenant not found or inactive")

    modules = await DeployedModuleRepository(store).list_active(tenant_id)
    items = []
    for module in modules:
        attributes = await store.get_attributes(module.id, (tenant_id,))
        items.append(DeployedModuleOut(
            id=module.id,
            code=module.code,
            name=module.name,
            attributes={a.key: deserialize_value(a.value, a.value_type) for a in attributes},
        ))

    return DeployedModuleListResponse(tenant_id=tenant_id, modules=items, count=len(items))


@app.get(
    "/api/tenants/{tenant_id}/deployments/{transaction_id}",
    response_model=DeploymentRecordResponse,
    responses={404: {"model": ErrorResponse}},
    tags=["Tenants"],
    summary="Get Deployment Record",
)
async def get_deployment(
    tenant_id: str,
    transaction_id: str,
    store: BaseEntityStore = Depends(get_entity_store),
) -> DeploymentRecordResponse:
    """Audit record of a deployment call, with one line per deployed module."""
    audit = DeploymentAuditLog(store)
    record = await audit.get(transaction_id, tenant_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Deployment {transaction_id} not found")

    lines = await audit.lines(transaction_id, tenant_id)
    return DeploymentRecordResponse(
        transaction_id=record.id,
        transaction_number=record.number,
        transaction_type=record.transaction_type,
        status=record.status,
        payload=record.payload,
        created_by=record.created_by,
        created_at=record.created_at,
        posted_at=record.posted_at,
        lines=[
            DeploymentLineOut(
                order=line.order,
                entity_id=line.entity_id,
                description=line.description,
                payload=line.payload,
            )
            for line in lines
        ],
    )


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors as {success: false, error}."""
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies."""
    return JSONResponse(
        status_code=422,
        content={
            "success": False,
            "error": "Invalid request",
            "detail": str(exc.errors()) if settings.debug else None,
        },
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
