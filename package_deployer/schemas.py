"""
Pydantic Schemas for Request/Response Validation

The HTTP surface speaks camelCase; Python code uses snake_case field names.
Request schemas convert themselves into the orchestrator's request types.
"""

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator

from package_deployer.services.access import UserAssignment
from package_deployer.services.deployment.outcomes import (
    DeploymentOptions,
    DeployModuleRequest,
    DeployRequest,
)


# =============================================================================
# REQUEST SCHEMAS
# =============================================================================

class UserAssignmentIn(BaseModel):
    """Modules to grant to one tenant member after deployment."""
    user_id: str = Field(..., min_length=1, alias="userId")
    role: str = Field(default="user", max_length=50, examples=["manager"])
    modules: List[str] = Field(default_factory=list, examples=[["SYS-GL-CORE"]])

    class Config:
        populate_by_name = True


class DeploymentOptionsIn(BaseModel):
    """Optional deployment behavior."""
    business_size: Optional[str] = Field(
        None,
        alias="businessSize",
        examples=["small", "medium", "large", "enterprise"],
    )
    setup_chart_of_accounts: bool = Field(default=False, alias="setupChartOfAccounts")
    create_default_workflows: bool = Field(default=False, alias="createDefaultWorkflows")
    enable_analytics: bool = Field(default=False, alias="enableAnalytics")
    assign_users: List[UserAssignmentIn] = Field(default_factory=list, alias="assignUsers")
    custom_configurations: dict[str, Any] = Field(
        default_factory=dict,
        alias="customConfigurations",
    )

    class Config:
        populate_by_name = True

    @field_validator("business_size")
    @classmethod
    def validate_business_size(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.lower()
        if v not in {"small", "medium", "large", "enterprise"}:
            raise ValueError("businessSize must be small, medium, large or enterprise")
        return v

    def to_options(self) -> DeploymentOptions:
        return DeploymentOptions(
            business_size=self.business_size,
            setup_chart_of_accounts=self.setup_chart_of_accounts,
            create_default_workflows=self.create_default_workflows,
            enable_analytics=self.enable_analytics,
            assign_users=[
                UserAssignment(user_id=a.user_id, role=a.role, modules=list(a.modules))
                for a in self.assign_users
            ],
            custom_configurations=dict(self.custom_configurations),
        )


class PackageDeploymentRequest(BaseModel):
    """
    Request body of POST /api/templates/packages/deploy.

    tenantId may be omitted here; the orchestrator rejects it with 400 so
    the validation order stays in one place.
    """
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    package_id: str = Field(..., min_length=1, alias="packageId")
    options: DeploymentOptionsIn = Field(default_factory=DeploymentOptionsIn)
    actor_id: Optional[str] = Field(None, alias="actorId")

    class Config:
        populate_by_name = True

    def to_request(self) -> DeployRequest:
        return DeployRequest(
            tenant_id=self.tenant_id,
            package_id=self.package_id,
            options=self.options.to_options(),
            actor_id=self.actor_id,
        )


class ModuleDeploymentRequest(BaseModel):
    """Request body of POST /api/templates/modules/deploy."""
    tenant_id: Optional[str] = Field(None, alias="tenantId")
    module_id: str = Field(..., min_length=1, alias="moduleId")
    options: DeploymentOptionsIn = Field(default_factory=DeploymentOptionsIn)
    actor_id: Optional[str] = Field(None, alias="actorId")

    class Config:
        populate_by_name = True

    def to_request(self) -> DeployModuleRequest:
        return DeployModuleRequest(
            tenant_id=self.tenant_id,
            module_id=self.module_id,
            options=self.options.to_options(),
            actor_id=self.actor_id,
        )


# =============================================================================
# RESPONSE SCHEMAS
# =============================================================================

class PackageModuleOut(BaseModel):
    id: str
    code: str
    name: str
    order: int

    class Config:
        populate_by_name = True


class PackageOut(BaseModel):
    """A package template with its modules in deployment order."""
    id: str
    code: str
    name: str
    entity_type: str = Field(..., alias="entityType")
    is_platform: bool = Field(..., alias="isPlatform")
    modules: List[PackageModuleOut] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class PackageListResponse(BaseModel):
    success: bool = True
    packages: List[PackageOut]
    count: int


class DeployedModuleOut(BaseModel):
    id: str
    code: str
    name: str
    attributes: dict[str, Any] = Field(default_factory=dict)


class DeployedModuleListResponse(BaseModel):
    success: bool = True
    tenant_id: str = Field(..., alias="tenantId")
    modules: List[DeployedModuleOut]
    count: int

    class Config:
        populate_by_name = True


class DeploymentLineOut(BaseModel):
    order: int
    entity_id: str = Field(..., alias="entityId")
    description: str
    payload: dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True


class DeploymentRecordResponse(BaseModel):
    """Audit record of one deployment call."""
    success: bool = True
    transaction_id: str = Field(..., alias="transactionId")
    transaction_number: str = Field(..., alias="transactionNumber")
    transaction_type: str = Field(..., alias="transactionType")
    status: str
    payload: dict[str, Any]
    created_by: Optional[str] = Field(None, alias="createdBy")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    posted_at: Optional[datetime] = Field(None, alias="postedAt")
    lines: List[DeploymentLineOut] = Field(default_factory=list)

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    environment: str
    store: str
    lock: str
    timestamp: datetime
