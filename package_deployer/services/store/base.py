"""
Entity Store Abstract Base Class

Defines the contract the deployment service requires from the generic
multi-tenant datastore. Both InMemoryEntityStore and SqlEntityStore must
implement these methods, ensuring identical behavior regardless of which
backend is active.

Every read and write is tenant-scoped: callers pass the tenant id (or, for
template reads only, the tuple of tenants whose rows are visible).

Design Pattern: Strategy Pattern
    - In-memory backend for development and tests
    - PostgreSQL backend for staging and production
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence


# =============================================================================
# ERRORS
# =============================================================================

class StoreError(Exception):
    """A store operation failed."""


class DuplicateEntityError(StoreError):
    """An active deployed-module entity with the same code already exists."""


# =============================================================================
# RECORDS
# =============================================================================

@dataclass(frozen=True)
class TenantRecord:
    id: str
    name: str
    is_active: bool = True


@dataclass(frozen=True)
class MembershipRecord:
    tenant_id: str
    user_id: str
    role: str
    is_active: bool = True


@dataclass(frozen=True)
class EntityRecord:
    """Generic typed record."""
    id: str
    tenant_id: str
    entity_type: str
    name: str
    code: str
    is_active: bool = True
    visibility: str = "private"


@dataclass(frozen=True)
class AttributeRecord:
    entity_id: str
    key: str
    value: Optional[str]
    value_type: str = "text"


@dataclass(frozen=True)
class EdgeRecord:
    id: str
    tenant_id: str
    edge_type: str
    parent_id: str
    child_id: str
    order: int = 0
    payload: dict = field(default_factory=dict)
    is_active: bool = True


@dataclass(frozen=True)
class TransactionRecordData:
    id: str
    tenant_id: str
    transaction_type: str
    number: str
    status: str
    payload: dict
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    posted_at: Optional[datetime] = None


@dataclass(frozen=True)
class TransactionLineRecord:
    transaction_id: str
    tenant_id: str
    entity_id: str
    order: int
    description: str
    payload: dict = field(default_factory=dict)


# =============================================================================
# STORE CONTRACT
# =============================================================================

class BaseEntityStore(ABC):
    """
    Abstract base class for entity stores.

    Implementations never cross tenant boundaries on their own: a lookup
    only returns rows whose tenant id is in the scope the caller passed.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the backend name (e.g., "memory", "postgresql")."""

    # -- tenants --------------------------------------------------------------

    @abstractmethod
    async def get_tenant(self, tenant_id: str) -> Optional[TenantRecord]:
        """Fetch a tenant by id, active or not."""

    @abstractmethod
    async def create_tenant(self, tenant: TenantRecord) -> TenantRecord:
        """Insert a tenant."""

    @abstractmethod
    async def get_membership(self, tenant_id: str, user_id: str) -> Optional[MembershipRecord]:
        """Fetch the active membership of a user in a tenant."""

    @abstractmethod
    async def create_membership(self, member: MembershipRecord) -> MembershipRecord:
        """Insert a tenant membership."""

    # -- entities -------------------------------------------------------------

    @abstractmethod
    async def get_entity(
        self,
        entity_id: str,
        tenant_ids: Sequence[str],
    ) -> Optional[EntityRecord]:
        """Fetch one entity owned by one of `tenant_ids`."""

    @abstractmethod
    async def get_entities(
        self,
        entity_ids: Iterable[str],
        tenant_ids: Sequence[str],
    ) -> list[EntityRecord]:
        """Batch-fetch entities owned by one of `tenant_ids` (missing ids are skipped)."""

    @abstractmethod
    async def find_entities(
        self,
        tenant_ids: Sequence[str],
        entity_types: Sequence[str],
        codes: Optional[Iterable[str]] = None,
        active_only: bool = True,
    ) -> list[EntityRecord]:
        """Find entities by type and optionally by code."""

    @abstractmethod
    async def create_entity(self, entity: EntityRecord) -> EntityRecord:
        """
        Insert a new entity.

        Raises:
            DuplicateEntityError: active deployed-module code already taken
            StoreError: any other write failure
        """

    # -- attributes -----------------------------------------------------------

    @abstractmethod
    async def get_attributes(self, entity_id: str, tenant_ids: Sequence[str]) -> list[AttributeRecord]:
        """Attributes of an entity owned by one of `tenant_ids`."""

    @abstractmethod
    async def add_attributes(self, tenant_id: str, attributes: Sequence[AttributeRecord]) -> None:
        """Insert attributes for entities of `tenant_id` in one batch."""

    # -- relationships --------------------------------------------------------

    @abstractmethod
    async def get_edges(
        self,
        tenant_ids: Sequence[str],
        edge_type: str,
        parent_id: Optional[str] = None,
    ) -> list[EdgeRecord]:
        """Active edges of a type, ordered by their declared order."""

    @abstractmethod
    async def create_edge(self, edge: EdgeRecord) -> EdgeRecord:
        """Insert a relationship edge."""

    # -- transactions ---------------------------------------------------------

    @abstractmethod
    async def create_transaction(self, record: TransactionRecordData) -> TransactionRecordData:
        """Insert a transaction record."""

    @abstractmethod
    async def get_transaction(self, transaction_id: str, tenant_id: str) -> Optional[TransactionRecordData]:
        """Fetch a transaction record of a tenant."""

    @abstractmethod
    async def update_transaction(
        self,
        transaction_id: str,
        tenant_id: str,
        status: str,
        payload: dict[str, Any],
        posted_at: Optional[datetime] = None,
    ) -> TransactionRecordData:
        """Set the final status and payload of a transaction record."""

    @abstractmethod
    async def add_transaction_line(self, line: TransactionLineRecord) -> TransactionLineRecord:
        """Insert a transaction line."""

    @abstractmethod
    async def get_transaction_lines(self, transaction_id: str, tenant_id: str) -> list[TransactionLineRecord]:
        """Lines of a transaction ordered by `order`."""

    # -- health ---------------------------------------------------------------

    @abstractmethod
    async def health_check(self) -> bool:
        """
        Verify connectivity to the backend.

        Returns:
            bool: True if the store is reachable
        """
