"""In-memory persistence: registries, session store and unit of work.

Used by the test suite and for local development without PostgreSQL. Writes
go straight to the shared ``InMemoryDatabase`` and are recorded in an undo
log; ``rollback`` (or leaving the block without ``commit``) replays the log
backwards, so a unit of work is all-or-nothing like its SQL counterpart.
Uniqueness is enforced over live (not soft-deleted) records only.
"""

import copy
import uuid
from collections.abc import Callable
from dataclasses import replace
from datetime import UTC, datetime

from tenantflow.core.exceptions import ConcurrentModificationError, RegistryError, UniquenessError
from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import OnboardingStatus
from tenantflow.integrations.protocols import AccountCreate, AccountRecord, TenantCreate, TenantRecord


class InMemoryDatabase:
    """Shared state behind every in-memory unit of work."""

    def __init__(self):
        self.tenants: dict[uuid.UUID, TenantRecord] = {}
        self.tenant_profiles: dict[uuid.UUID, dict] = {}
        self.feature_flags: dict[tuple[uuid.UUID, str], bool] = {}
        self.accounts: dict[uuid.UUID, AccountRecord] = {}
        self.password_hashes: dict[uuid.UUID, str] = {}
        self.sessions: dict[uuid.UUID, OnboardingSession] = {}

    def live_tenants(self) -> list[TenantRecord]:
        return [t for t in self.tenants.values() if t.is_live]

    def live_accounts(self) -> list[AccountRecord]:
        return [a for a in self.accounts.values() if a.is_live]


class _UndoLog:
    def __init__(self):
        self._entries: list[Callable[[], None]] = []

    def set_item(self, mapping: dict, key, value) -> None:
        if key in mapping:
            previous = mapping[key]
            self._entries.append(lambda: mapping.__setitem__(key, previous))
        else:
            self._entries.append(lambda: mapping.pop(key, None))
        mapping[key] = value

    def undo(self) -> None:
        while self._entries:
            self._entries.pop()()

    def clear(self) -> None:
        self._entries.clear()


class InMemoryTenantRegistry:
    def __init__(self, db: InMemoryDatabase, log: _UndoLog):
        self.db = db
        self.log = log

    async def create(self, fields: TenantCreate) -> TenantRecord:
        if not fields.name or not fields.name.strip():
            raise RegistryError("Tenant name is required")
        if await self.find_by_name(fields.name):
            raise UniquenessError("name", fields.name)
        if fields.domain and await self.find_by_domain(fields.domain):
            raise UniquenessError("domain", fields.domain)

        tenant = TenantRecord(
            id=uuid.uuid4(),
            name=fields.name,
            plan=fields.plan,
            domain=fields.domain,
            trial_ends_at=fields.trial_ends_at,
        )
        self.log.set_item(self.db.tenants, tenant.id, tenant)
        self.log.set_item(
            self.db.tenant_profiles, tenant.id, {**fields.profile, "metadata": dict(fields.metadata)}
        )
        return tenant

    async def find_by_name(self, name: str) -> TenantRecord | None:
        wanted = name.strip().lower()
        return next((t for t in self.db.live_tenants() if t.name.lower() == wanted), None)

    async def find_by_domain(self, domain: str) -> TenantRecord | None:
        wanted = domain.strip().lower()
        return next(
            (t for t in self.db.live_tenants() if t.domain and t.domain.lower() == wanted),
            None,
        )

    async def set_feature_flag(self, tenant_id: uuid.UUID, feature: str, enabled: bool) -> None:
        tenant = self.db.tenants.get(tenant_id)
        if tenant is None or not tenant.is_live:
            raise RegistryError(f'Tenant with ID "{tenant_id}" not found')
        self.log.set_item(self.db.feature_flags, (tenant_id, feature), enabled)

    async def soft_delete(self, tenant_id: uuid.UUID) -> None:
        tenant = self.db.tenants.get(tenant_id)
        if tenant is None:
            raise RegistryError(f'Tenant with ID "{tenant_id}" not found')
        if tenant.is_live:
            self.log.set_item(
                self.db.tenants,
                tenant_id,
                replace(tenant, is_active=False, deleted_at=datetime.now(UTC)),
            )


class InMemoryAccountRegistry:
    def __init__(self, db: InMemoryDatabase, log: _UndoLog):
        self.db = db
        self.log = log

    async def create(self, fields: AccountCreate) -> AccountRecord:
        if await self.find_by_email(fields.email):
            raise UniquenessError("email", fields.email)
        tenant = self.db.tenants.get(fields.tenant_id)
        if tenant is None or not tenant.is_live:
            raise RegistryError(f'Tenant with ID "{fields.tenant_id}" not found')

        account = AccountRecord(
            id=uuid.uuid4(),
            tenant_id=fields.tenant_id,
            email=fields.email.lower(),
            first_name=fields.first_name,
            last_name=fields.last_name,
            role=fields.role,
        )
        self.log.set_item(self.db.accounts, account.id, account)
        self.log.set_item(self.db.password_hashes, account.id, fields.password_hash)
        return account

    async def find_by_email(self, email: str) -> AccountRecord | None:
        wanted = email.strip().lower()
        return next((a for a in self.db.live_accounts() if a.email == wanted), None)

    async def mark_email_verified(self, account_id: uuid.UUID) -> None:
        account = self.db.accounts.get(account_id)
        if account is None:
            raise RegistryError(f'Account with ID "{account_id}" not found')
        if not account.email_verified:
            self.log.set_item(self.db.accounts, account_id, replace(account, email_verified=True))

    async def soft_delete(self, account_id: uuid.UUID) -> None:
        account = self.db.accounts.get(account_id)
        if account is None:
            raise RegistryError(f'Account with ID "{account_id}" not found')
        if account.is_live:
            self.log.set_item(self.db.accounts, account_id, replace(account, deleted_at=datetime.now(UTC)))


class InMemorySessionStore:
    """Keeps detached copies so unsaved mutations never leak into the store."""

    def __init__(self, db: InMemoryDatabase, log: _UndoLog):
        self.db = db
        self.log = log

    async def add(self, session: OnboardingSession) -> None:
        session.version = 1
        self.log.set_item(self.db.sessions, session.id, copy.deepcopy(session))

    async def get(self, session_id: uuid.UUID, for_update: bool = False) -> OnboardingSession | None:
        stored = self.db.sessions.get(session_id)
        return copy.deepcopy(stored) if stored is not None else None

    async def save(self, session: OnboardingSession) -> None:
        stored = self.db.sessions.get(session.id)
        if stored is None or stored.version != session.version:
            raise ConcurrentModificationError(session.id, session.version)
        session.version += 1
        session.updated_at = session.updated_at or datetime.now(UTC)
        self.log.set_item(self.db.sessions, session.id, copy.deepcopy(session))

    async def list(
        self,
        status: OnboardingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[OnboardingSession], int]:
        rows = [s for s in self.db.sessions.values() if status is None or s.status == status]
        rows.sort(key=lambda s: s.created_at or datetime.min.replace(tzinfo=UTC), reverse=True)
        return [copy.deepcopy(s) for s in rows[offset:offset + limit]], len(rows)


class InMemoryUnitOfWork:
    def __init__(self, db: InMemoryDatabase):
        self.db = db
        self._log = _UndoLog()
        self.sessions = InMemorySessionStore(db, self._log)
        self.tenants = InMemoryTenantRegistry(db, self._log)
        self.accounts = InMemoryAccountRegistry(db, self._log)

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.rollback()

    async def commit(self) -> None:
        self._log.clear()

    async def rollback(self) -> None:
        self._log.undo()


def in_memory_uow_factory(db: InMemoryDatabase) -> Callable[[], InMemoryUnitOfWork]:
    return lambda: InMemoryUnitOfWork(db)
