"""PostgreSQL implementations of the registries, session store and unit of work.

All repositories of one ``SqlUnitOfWork`` share a single ``AsyncSession`` so
their writes commit or roll back together. Rows are mapped to the plain
dataclasses in ``tenantflow.domain`` / ``tenantflow.integrations.protocols``
before leaving this module.
"""

import uuid
from datetime import datetime, timezone

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tenantflow.core.exceptions import ConcurrentModificationError, RegistryError, UniquenessError
from tenantflow.db.models import AdminAccount, OnboardingSessionRecord, Tenant, TenantFeatureFlag
from tenantflow.domain.session import OnboardingData, OnboardingSession
from tenantflow.domain.steps import OnboardingStatus, OnboardingStep
from tenantflow.integrations.protocols import AccountCreate, AccountRecord, TenantCreate, TenantRecord

logger = structlog.get_logger(__name__)


def _tenant_record(row: Tenant) -> TenantRecord:
    return TenantRecord(
        id=row.id,
        name=row.name,
        plan=row.plan,
        domain=row.domain,
        is_active=row.is_active,
        trial_ends_at=row.trial_ends_at,
        deleted_at=row.deleted_at,
    )


def _account_record(row: AdminAccount) -> AccountRecord:
    return AccountRecord(
        id=row.id,
        tenant_id=row.tenant_id,
        email=row.email,
        first_name=row.first_name,
        last_name=row.last_name,
        role=row.role,
        email_verified=row.email_verified,
        deleted_at=row.deleted_at,
    )


class SqlTenantRegistry:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, fields: TenantCreate) -> TenantRecord:
        if await self.find_by_name(fields.name):
            raise UniquenessError("name", fields.name)
        if fields.domain and await self.find_by_domain(fields.domain):
            raise UniquenessError("domain", fields.domain)

        row = Tenant(
            name=fields.name,
            domain=fields.domain,
            plan=fields.plan,
            trial_ends_at=fields.trial_ends_at,
            profile=dict(fields.profile),
            tenant_metadata=dict(fields.metadata),
        )
        try:
            # Savepoint: a lost race on the unique index leaves the outer transaction usable
            async with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError as e:
            logger.info("tenant_unique_violation", name=fields.name, domain=fields.domain)
            raise UniquenessError("name or domain", fields.domain or fields.name) from e
        except SQLAlchemyError as e:
            logger.error("tenant_insert_failed", name=fields.name, exc_info=True)
            raise RegistryError("Failed to create tenant") from e
        return _tenant_record(row)

    async def find_by_name(self, name: str) -> TenantRecord | None:
        result = await self.session.execute(
            select(Tenant).where(
                func.lower(Tenant.name) == name.strip().lower(),
                Tenant.deleted_at.is_(None),
            )
        )
        row = result.scalar_one_or_none()
        return _tenant_record(row) if row else None

    async def find_by_domain(self, domain: str) -> TenantRecord | None:
        result = await self.session.execute(
            select(Tenant).where(
                func.lower(Tenant.domain) == domain.strip().lower(),
                Tenant.deleted_at.is_(None),
            )
        )
        row = result.scalar_one_or_none()
        return _tenant_record(row) if row else None

    async def set_feature_flag(self, tenant_id: uuid.UUID, feature: str, enabled: bool) -> None:
        result = await self.session.execute(
            select(TenantFeatureFlag).where(
                TenantFeatureFlag.tenant_id == tenant_id,
                TenantFeatureFlag.feature == feature,
            )
        )
        flag = result.scalar_one_or_none()
        if flag is None:
            self.session.add(TenantFeatureFlag(tenant_id=tenant_id, feature=feature, enabled=enabled))
        elif flag.enabled != enabled:
            flag.enabled = enabled
        try:
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error("feature_flag_write_failed", tenant_id=str(tenant_id), feature=feature, exc_info=True)
            raise RegistryError(f"Failed to set feature flag {feature}") from e

    async def soft_delete(self, tenant_id: uuid.UUID) -> None:
        row = await self.session.get(Tenant, tenant_id)
        if row is None:
            raise RegistryError(f'Tenant with ID "{tenant_id}" not found')
        if row.deleted_at is None:
            row.deleted_at = datetime.now(timezone.utc)
            row.is_active = False
            await self.session.flush()


class SqlAccountRegistry:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, fields: AccountCreate) -> AccountRecord:
        if await self.find_by_email(fields.email):
            raise UniquenessError("email", fields.email)

        row = AdminAccount(
            tenant_id=fields.tenant_id,
            email=fields.email.lower(),
            first_name=fields.first_name,
            last_name=fields.last_name,
            password_hash=fields.password_hash,
            role=fields.role,
            phone=fields.phone,
            job_title=fields.job_title,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError as e:
            raise UniquenessError("email", fields.email) from e
        except SQLAlchemyError as e:
            # Statement parameters include the password hash: keep them out of the message
            logger.error("admin_account_insert_failed", tenant_id=str(fields.tenant_id), exc_info=True)
            raise RegistryError("Failed to create admin account") from e
        return _account_record(row)

    async def find_by_email(self, email: str) -> AccountRecord | None:
        result = await self.session.execute(
            select(AdminAccount).where(
                func.lower(AdminAccount.email) == email.strip().lower(),
                AdminAccount.deleted_at.is_(None),
            )
        )
        row = result.scalar_one_or_none()
        return _account_record(row) if row else None

    async def mark_email_verified(self, account_id: uuid.UUID) -> None:
        row = await self.session.get(AdminAccount, account_id)
        if row is None:
            raise RegistryError(f'Account with ID "{account_id}" not found')
        if not row.email_verified:
            row.email_verified = True
            await self.session.flush()

    async def soft_delete(self, account_id: uuid.UUID) -> None:
        row = await self.session.get(AdminAccount, account_id)
        if row is None:
            raise RegistryError(f'Account with ID "{account_id}" not found')
        if row.deleted_at is None:
            row.deleted_at = datetime.now(timezone.utc)
            await self.session.flush()


# ── Onboarding sessions ──────────────────────────────────────────────


def _session_columns(session: OnboardingSession) -> dict:
    return {
        "current_step": session.current_step.value,
        "status": session.status.value,
        "completed_steps": [step.value for step in session.completed_steps],
        "step_data": session.step_data,
        "tenant_id": session.tenant_id,
        "admin_user_id": session.admin_user_id,
        "onboarding_data": session.onboarding_data.to_dict(),
        "verification_token_hash": session.verification_token_hash,
        "verification_token_expires_at": session.verification_token_expires_at,
        "verified_at": session.verified_at,
        "ip_address": session.ip_address,
        "user_agent": session.user_agent,
        "send_welcome_email": session.send_welcome_email,
        "auto_verify": session.auto_verify,
        "estimated_completion": session.estimated_completion,
        "next_action": session.next_action,
        "error_message": session.error_message,
        "cancellation_reason": session.cancellation_reason,
        "completed_at": session.completed_at,
        "failed_at": session.failed_at,
        "cancelled_at": session.cancelled_at,
    }


def _to_domain(row: OnboardingSessionRecord) -> OnboardingSession:
    return OnboardingSession(
        id=row.id,
        onboarding_data=OnboardingData.from_dict(row.onboarding_data),
        current_step=OnboardingStep(row.current_step),
        status=OnboardingStatus(row.status),
        completed_steps=[OnboardingStep(step) for step in row.completed_steps or []],
        step_data=dict(row.step_data or {}),
        tenant_id=row.tenant_id,
        admin_user_id=row.admin_user_id,
        verification_token_hash=row.verification_token_hash,
        verification_token_expires_at=row.verification_token_expires_at,
        verified_at=row.verified_at,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        send_welcome_email=row.send_welcome_email,
        auto_verify=row.auto_verify,
        estimated_completion=row.estimated_completion,
        next_action=row.next_action,
        error_message=row.error_message,
        cancellation_reason=row.cancellation_reason,
        created_at=row.created_at,
        updated_at=row.updated_at,
        completed_at=row.completed_at,
        failed_at=row.failed_at,
        cancelled_at=row.cancelled_at,
        version=row.version,
    )


class SqlSessionStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, session: OnboardingSession) -> None:
        session.version = 1
        self.session.add(
            OnboardingSessionRecord(
                id=session.id,
                created_at=session.created_at,
                updated_at=session.updated_at,
                version=session.version,
                **_session_columns(session),
            )
        )
        await self.session.flush()

    async def get(self, session_id: uuid.UUID, for_update: bool = False) -> OnboardingSession | None:
        stmt = select(OnboardingSessionRecord).where(OnboardingSessionRecord.id == session_id)
        if for_update:
            stmt = stmt.with_for_update()
        # populate_existing: a row cached earlier in this session must not mask the locked read
        result = await self.session.execute(stmt.execution_options(populate_existing=True))
        row = result.scalar_one_or_none()
        return _to_domain(row) if row else None

    async def save(self, session: OnboardingSession) -> None:
        now = session.updated_at or datetime.now(timezone.utc)
        result = await self.session.execute(
            update(OnboardingSessionRecord)
            .where(
                OnboardingSessionRecord.id == session.id,
                OnboardingSessionRecord.version == session.version,
            )
            .values(**_session_columns(session), updated_at=now, version=session.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConcurrentModificationError(session.id, session.version)
        session.version += 1
        session.updated_at = now

    async def list(
        self,
        status: OnboardingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[OnboardingSession], int]:
        stmt = select(OnboardingSessionRecord)
        count_stmt = select(func.count()).select_from(OnboardingSessionRecord)
        if status is not None:
            stmt = stmt.where(OnboardingSessionRecord.status == status.value)
            count_stmt = count_stmt.where(OnboardingSessionRecord.status == status.value)

        total = (await self.session.execute(count_stmt)).scalar_one()
        result = await self.session.execute(
            stmt.order_by(OnboardingSessionRecord.created_at.desc()).limit(limit).offset(offset)
        )
        return [_to_domain(row) for row in result.scalars().all()], total


class SqlUnitOfWork:
    """One ``AsyncSession`` (one transaction) shared by all repositories."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlUnitOfWork":
        self.session = self.session_factory()
        self.sessions = SqlSessionStore(self.session)
        self.tenants = SqlTenantRegistry(self.session)
        self.accounts = SqlAccountRegistry(self.session)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        try:
            await self.rollback()
        finally:
            await self.session.close()

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()


def sql_uow_factory(session_factory: async_sessionmaker[AsyncSession]):
    return lambda: SqlUnitOfWork(session_factory)
