"""OnboardingService: the external operations of the tenant onboarding flow.

Responsibilities:
- Parse and validate onboarding ids coming from callers
- Uniqueness pre-checks for a new onboarding, serialized by claim locks
- Creating the session and driving it through the WorkflowEngine
- Progress, health and admin listing reads
- Verification, resend and cancellation, delegated to the engine
"""

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from tenantflow.core.exceptions import InvalidSessionIdError, PreconditionConflictError, SessionNotFoundError
from tenantflow.core.locking import SessionLock, claim_lock_keys
from tenantflow.core.passwords import hash_password
from tenantflow.db.unit_of_work import UnitOfWorkFactory
from tenantflow.domain.session import AdminProfile, OnboardingData, OnboardingSession
from tenantflow.domain.steps import OnboardingStatus, OnboardingStep
from tenantflow.metrics.cloudwatch import emit_business_event
from tenantflow.schemas.onboarding import StartOnboardingRequest
from tenantflow.services.workflow_engine import AdvanceResult, WorkflowEngine, utcnow

logger = structlog.get_logger(__name__)


@dataclass
class HealthReport:
    onboarding_id: uuid.UUID
    status: str  # healthy | warning | error
    current_step: OnboardingStep
    issues: list[str] = field(default_factory=list)
    last_activity: datetime | None = None


def parse_onboarding_id(raw_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(raw_id, uuid.UUID):
        return raw_id
    try:
        return uuid.UUID(str(raw_id).strip())
    except ValueError:
        raise InvalidSessionIdError(str(raw_id))


def build_onboarding_data(request: StartOnboardingRequest) -> OnboardingData:
    """Freeze the start request; the admin password is hashed here and never kept in clear."""
    admin = request.admin_user
    return OnboardingData(
        tenant_name=request.name,
        admin_user=AdminProfile(
            first_name=admin.first_name,
            last_name=admin.last_name,
            email=admin.email,
            password_hash=hash_password(admin.password),
            phone=admin.phone,
            job_title=admin.job_title,
        ),
        domain=request.domain,
        description=request.description,
        industry=request.industry,
        company_size=request.company_size,
        contact_email=request.contact_email,
        contact_phone=request.contact_phone,
        address=request.address,
        city=request.city,
        state=request.state,
        postal_code=request.postal_code,
        country=request.country,
        timezone=request.timezone,
        locale=request.locale,
        currency=request.currency,
        plan=request.plan,
        requested_features=tuple(request.requested_features),
        trial_days=request.trial_days,
        metadata=dict(request.metadata),
    )


class OnboardingService:
    """Service layer for tenant onboarding."""

    def __init__(
        self,
        engine: WorkflowEngine,
        uow_factory: UnitOfWorkFactory,
        session_lock: SessionLock,
        estimated_minutes: int = 30,
        verification_stale_after: timedelta = timedelta(hours=24),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.uow_factory = uow_factory
        self.session_lock = session_lock
        self.estimated_minutes = estimated_minutes
        self.verification_stale_after = verification_stale_after
        self.clock = clock

    async def start_onboarding(
        self,
        request: StartOnboardingRequest,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> OnboardingSession:
        """Create an onboarding session and run it as far as it can go.

        The claim locks on name, domain and email are held until the first
        advance has created (or failed to create) the tenant and account, so
        two identical concurrent requests cannot both pass the pre-check.

        Raises:
            PreconditionConflictError: name, domain or admin email already taken
        """
        email = request.admin_user.email
        async with self.session_lock.hold(*claim_lock_keys(request.name, request.domain, email)):
            async with self.uow_factory() as uow:
                if await uow.tenants.find_by_name(request.name):
                    raise PreconditionConflictError(f'Tenant with name "{request.name}" already exists')
                if request.domain and await uow.tenants.find_by_domain(request.domain):
                    raise PreconditionConflictError(f'Tenant with domain "{request.domain}" already exists')
                if await uow.accounts.find_by_email(email):
                    raise PreconditionConflictError(f'User with email "{email}" already exists')

                session = OnboardingSession.start(
                    build_onboarding_data(request),
                    now=self.clock(),
                    estimated_minutes=self.estimated_minutes,
                    send_welcome_email=request.send_welcome_email,
                    auto_verify=request.auto_verify,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )
                await uow.sessions.add(session)
                await uow.commit()

            logger.info(
                "onboarding_started",
                onboarding_id=str(session.id),
                tenant_name=request.name,
                plan=request.plan,
                auto_verify=request.auto_verify,
            )
            await emit_business_event("onboarding_started", request.plan)

            result = await self.engine.advance(session.id)

        if not result.success:
            logger.warning("onboarding_start_incomplete", onboarding_id=str(session.id), error=result.error)
        return result.session

    async def get_progress(self, onboarding_id: str | uuid.UUID) -> OnboardingSession:
        """Read-only; takes no lock."""
        session_id = parse_onboarding_id(onboarding_id)
        async with self.uow_factory() as uow:
            session = await uow.sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def verify_onboarding(self, onboarding_id: str | uuid.UUID, token: str) -> AdvanceResult:
        return await self.engine.verify(parse_onboarding_id(onboarding_id), token)

    async def resend_verification(self, onboarding_id: str | uuid.UUID, email: str | None = None) -> OnboardingSession:
        return await self.engine.resend_verification(parse_onboarding_id(onboarding_id), email)

    async def cancel_onboarding(
        self,
        onboarding_id: str | uuid.UUID,
        reason: str | None = None,
        cleanup: bool = True,
    ) -> OnboardingSession:
        return await self.engine.cancel(parse_onboarding_id(onboarding_id), reason, cleanup)

    async def check_health(self, onboarding_id: str | uuid.UUID) -> HealthReport:
        session = await self.get_progress(onboarding_id)
        report = HealthReport(
            onboarding_id=session.id,
            status="healthy",
            current_step=session.current_step,
            last_activity=session.updated_at,
        )

        if session.status == OnboardingStatus.FAILED:
            report.status = "error"
            report.issues.append("Onboarding process has failed")
        elif session.status == OnboardingStatus.CANCELLED:
            report.status = "warning"
            report.issues.append("Onboarding process was cancelled")
        elif session.awaiting_verification and session.updated_at is not None:
            if self.clock() - session.updated_at > self.verification_stale_after:
                hours = int(self.verification_stale_after.total_seconds() // 3600)
                report.status = "warning"
                report.issues.append(f"Verification has been pending for more than {hours} hours")

        return report

    async def list_sessions(
        self,
        status: OnboardingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[OnboardingSession], int]:
        async with self.uow_factory() as uow:
            return await uow.sessions.list(status=status, limit=limit, offset=offset)
