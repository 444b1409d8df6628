"""
SQLAlchemy Database Models

Generic multi-tenant datastore used by the deployment service:
- Tenants and their members
- Typed entities with key/value attributes
- Typed, ordered relationship edges
- Transaction records and lines for the deployment audit trail

Every row carries a tenant id.
"""

import enum

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.sql import func

from package_deployer.database import Base


class EntityType(str, enum.Enum):
    """Entity types handled by the deployment flow."""
    PACKAGE_TEMPLATE = "erp_industry_template"
    CUSTOM_PACKAGE_TEMPLATE = "custom_package_template"
    MODULE_TEMPLATE = "erp_module_template"
    CUSTOM_MODULE_TEMPLATE = "custom_module_template"
    DEPLOYED_MODULE = "deployed_erp_module"
    CHART_OF_ACCOUNT = "chart_of_account"
    WORKFLOW = "business_workflow"


PACKAGE_TEMPLATE_TYPES = (EntityType.PACKAGE_TEMPLATE, EntityType.CUSTOM_PACKAGE_TEMPLATE)
MODULE_TEMPLATE_TYPES = (EntityType.MODULE_TEMPLATE, EntityType.CUSTOM_MODULE_TEMPLATE)


class EdgeType(str, enum.Enum):
    """Relationship edge types."""
    TEMPLATE_INCLUDES_MODULE = "template_includes_module"
    USER_HAS_MODULE_ACCESS = "user_has_module_access"


class TransactionStatus(str, enum.Enum):
    """Audit record status. Moves only processing -> completed|failed."""
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class Visibility(str, enum.Enum):
    """
    Template visibility tier.

    PRIVATE entities are readable by their owning tenant only. PLATFORM
    entities owned by the platform tenant are readable by every tenant.
    """
    PRIVATE = "private"
    PLATFORM = "platform"


class ValueType(str, enum.Enum):
    """Declared type of an attribute value (values are stored as text)."""
    TEXT = "text"
    NUMBER = "number"
    BOOLEAN = "boolean"
    JSON = "json"


DEPLOYED_SUFFIX = "-DEPLOYED"


def deployed_code(module_code: str) -> str:
    """Derived code of the deployed-module entity for a module template."""
    return f"{module_code}{DEPLOYED_SUFFIX}"


class Tenant(Base):
    """Isolation boundary."""
    __tablename__ = "tenants"

    id = Column(String(36), primary_key=True)
    name = Column(String(200), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Tenant {self.id} - {self.name}>"


class TenantMember(Base):
    """Membership of a user in a tenant."""
    __tablename__ = "tenant_members"
    __table_args__ = (
        Index("ix_tenant_members_tenant_user", "tenant_id", "user_id"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False)
    user_id = Column(String(36), nullable=False)
    role = Column(String(50), nullable=False, default="member")
    is_active = Column(Boolean, default=True, nullable=False)


class Entity(Base):
    """
    Generic typed record.

    Deployed modules are unique per tenant and code while active; this is
    enforced by a partial unique index rather than by the caller.
    """
    __tablename__ = "entities"
    __table_args__ = (
        Index("ix_entities_tenant_type_code", "tenant_id", "entity_type", "code"),
        Index(
            "uq_entities_active_deployed_module",
            "tenant_id",
            "code",
            unique=True,
            postgresql_where=text("entity_type = 'deployed_erp_module' AND is_active"),
            sqlite_where=text("entity_type = 'deployed_erp_module' AND is_active"),
        ),
    )

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    entity_type = Column(String(50), nullable=False)
    name = Column(String(255), nullable=False)
    code = Column(String(100), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    visibility = Column(String(20), default=Visibility.PRIVATE.value, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<Entity {self.entity_type}:{self.code} ({self.tenant_id})>"


class Attribute(Base):
    """Key/value attribute attached to an entity."""
    __tablename__ = "attributes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(36), nullable=False, index=True)
    entity_id = Column(String(36), ForeignKey("entities.id"), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(Text, nullable=True)
    value_type = Column(String(20), default=ValueType.TEXT.value, nullable=False)


class RelationshipEdge(Base):
    """Typed, ordered, directed link between two records."""
    __tablename__ = "relationship_edges"
    __table_args__ = (
        Index("ix_edges_tenant_parent_type", "tenant_id", "parent_id", "edge_type"),
    )

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(36), nullable=False)
    edge_type = Column(String(50), nullable=False)
    parent_id = Column(String(36), nullable=False)
    child_id = Column(String(36), nullable=False)
    order = Column("edge_order", Integer, nullable=False, default=0)
    payload = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, default=True, nullable=False)


class TransactionRecord(Base):
    """Audit unit for one deployment call."""
    __tablename__ = "transaction_records"

    id = Column(String(36), primary_key=True)
    tenant_id = Column(String(36), ForeignKey("tenants.id"), nullable=False, index=True)
    transaction_type = Column(String(50), nullable=False)
    number = Column(String(100), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default=TransactionStatus.PROCESSING.value)
    payload = Column(JSON, nullable=False, default=dict)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    posted_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<TransactionRecord {self.number} - {self.status}>"


class TransactionLine(Base):
    """One line per deployed-module entity created by a deployment."""
    __tablename__ = "transaction_lines"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(
        String(36), ForeignKey("transaction_records.id"), nullable=False, index=True
    )
    tenant_id = Column(String(36), nullable=False)
    entity_id = Column(String(36), nullable=False)
    order = Column("line_order", Integer, nullable=False)
    description = Column(String(255), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)
