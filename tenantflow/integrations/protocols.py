"""Collaborator contracts consumed by the onboarding workflow engine.

The engine never touches a registry, gateway or notifier directly: it calls
these protocols, and the step handlers convert any ``CollaboratorError`` they
raise into a step failure.

Implementations:
- Tenant/Account registries: SQL (tenantflow.db.repositories) and in-memory
  (tenantflow.db.memory)
- BillingGateway: StripeBillingGateway, BillingGatewayFake
- Notifier: SesNotifier, NotifierFake
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class TenantCreate:
    name: str
    plan: str
    domain: str | None = None
    trial_ends_at: datetime | None = None
    profile: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TenantRecord:
    id: uuid.UUID
    name: str
    plan: str
    domain: str | None = None
    is_active: bool = True
    trial_ends_at: datetime | None = None
    deleted_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


@dataclass(frozen=True)
class AccountCreate:
    tenant_id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    password_hash: str
    role: str = "owner"
    phone: str | None = None
    job_title: str | None = None


@dataclass(frozen=True)
class AccountRecord:
    id: uuid.UUID
    tenant_id: uuid.UUID
    email: str
    first_name: str
    last_name: str
    role: str = "owner"
    email_verified: bool = False
    deleted_at: datetime | None = None

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


@runtime_checkable
class TenantRegistry(Protocol):
    """Source of truth for tenants and their global name/domain uniqueness."""

    async def create(self, fields: TenantCreate) -> TenantRecord:
        """Create a tenant.

        Raises:
            UniquenessError: name or domain already taken by a live tenant
            RegistryError: validation/storage failure
        """
        ...

    async def find_by_name(self, name: str) -> TenantRecord | None:
        """Return the live tenant with this name (case-insensitive), if any."""
        ...

    async def find_by_domain(self, domain: str) -> TenantRecord | None:
        ...

    async def set_feature_flag(self, tenant_id: uuid.UUID, feature: str, enabled: bool) -> None:
        """Upsert one feature flag; setting the same value twice is a no-op."""
        ...

    async def soft_delete(self, tenant_id: uuid.UUID) -> None:
        ...


@runtime_checkable
class AccountRegistry(Protocol):
    """Source of truth for administrator accounts and global email uniqueness."""

    async def create(self, fields: AccountCreate) -> AccountRecord:
        """Create an account.

        Raises:
            UniquenessError: email already taken by a live account
        """
        ...

    async def find_by_email(self, email: str) -> AccountRecord | None:
        ...

    async def mark_email_verified(self, account_id: uuid.UUID) -> None:
        ...

    async def soft_delete(self, account_id: uuid.UUID) -> None:
        ...


@runtime_checkable
class BillingGateway(Protocol):
    """Creates billable profiles for paid plans."""

    async def provision(self, tenant_id: uuid.UUID, plan: str, idempotency_key: str) -> str:
        """Provision billing and return the gateway's reference.

        Calls repeated with the same ``idempotency_key`` must return the same
        reference without creating a second profile.

        Raises:
            GatewayError: on any gateway failure
        """
        ...


@runtime_checkable
class Notifier(Protocol):
    """Sends onboarding messages to the administrator."""

    async def send_verification(
        self,
        email: str,
        first_name: str,
        tenant_name: str,
        token: str,
        onboarding_id: uuid.UUID,
    ) -> None:
        """Raises DeliveryError on failure."""
        ...

    async def send_welcome(self, email: str, first_name: str, tenant_name: str) -> None:
        """Raises DeliveryError on failure."""
        ...
