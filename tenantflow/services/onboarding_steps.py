"""Step handlers for the onboarding workflow and the static step table.

Each handler receives the session and an explicit ``StepContext`` (unit of
work, collaborators, clock, policy) and returns a ``StepResult``. Handlers may
mutate the session they are given; the engine only persists it when the step
succeeds. Every handler is safe to re-run: it checks for the side effect it
would produce before producing it.
"""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import structlog

from tenantflow.core.exceptions import CollaboratorError, DeliveryError, GatewayError
from tenantflow.core.feature_flags import normalize_features
from tenantflow.db.unit_of_work import UnitOfWork
from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import TRANSITIONS, OnboardingStep
from tenantflow.domain.tokens import TokenManager
from tenantflow.integrations.protocols import AccountCreate, BillingGateway, Notifier, TenantCreate

logger = structlog.get_logger(__name__)

_PROFILE_FIELDS = (
    "description",
    "industry",
    "company_size",
    "contact_email",
    "contact_phone",
    "address",
    "city",
    "state",
    "postal_code",
    "country",
    "timezone",
    "locale",
    "currency",
)


@dataclass(frozen=True)
class StepContext:
    uow: UnitOfWork
    billing: BillingGateway
    notifier: Notifier
    tokens: TokenManager
    now: datetime
    free_plans: frozenset[str] = frozenset({"free"})
    billing_required: bool = True


@dataclass
class StepResult:
    """Outcome of one handler run.

    ``next_step`` None on success means: stay on the current step (a pause at
    verification, or the end of the workflow at completion).
    """

    success: bool
    next_step: OnboardingStep | None = None
    data: dict[str, Any] = field(default_factory=dict)
    error: str | None = None

    @classmethod
    def advance(cls, next_step: OnboardingStep, **data) -> "StepResult":
        return cls(success=True, next_step=next_step, data=data)

    @classmethod
    def stay(cls, **data) -> "StepResult":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "StepResult":
        return cls(success=False, error=error)


StepHandler = Callable[[OnboardingSession, StepContext], Awaitable[StepResult]]


# ── Handlers ─────────────────────────────────────────────────────────


async def handle_tenant_setup(session: OnboardingSession, ctx: StepContext) -> StepResult:
    if session.tenant_id is not None:
        return StepResult.advance(OnboardingStep.ADMIN_USER_CREATION)

    data = session.onboarding_data
    trial_ends_at = ctx.now + timedelta(days=data.trial_days) if data.trial_days > 0 else None
    profile = {name: getattr(data, name) for name in _PROFILE_FIELDS if getattr(data, name) is not None}

    tenant = await ctx.uow.tenants.create(
        TenantCreate(
            name=data.tenant_name,
            plan=data.plan,
            domain=data.domain,
            trial_ends_at=trial_ends_at,
            profile=profile,
            metadata={**data.metadata, "onboarding_id": str(session.id)},
        )
    )
    session.assign_tenant(tenant.id)
    return StepResult.advance(OnboardingStep.ADMIN_USER_CREATION, tenant_id=str(tenant.id))


async def handle_admin_user_creation(session: OnboardingSession, ctx: StepContext) -> StepResult:
    if session.admin_user_id is not None:
        return StepResult.advance(OnboardingStep.PLAN_SELECTION)

    admin = session.onboarding_data.admin_user
    if await ctx.uow.accounts.find_by_email(admin.email):
        return StepResult.failed(f'User with email "{admin.email}" already exists')

    account = await ctx.uow.accounts.create(
        AccountCreate(
            tenant_id=session.tenant_id,
            email=admin.email,
            first_name=admin.first_name,
            last_name=admin.last_name,
            password_hash=admin.password_hash,
            phone=admin.phone,
            job_title=admin.job_title,
        )
    )
    session.assign_admin_user(account.id)
    return StepResult.advance(OnboardingStep.PLAN_SELECTION, admin_user_id=str(account.id))


async def handle_plan_selection(session: OnboardingSession, ctx: StepContext) -> StepResult:
    plan = session.onboarding_data.plan
    requires_payment = plan not in ctx.free_plans
    next_step = OnboardingStep.PAYMENT_SETUP if requires_payment else OnboardingStep.FEATURE_CONFIGURATION
    return StepResult.advance(next_step, plan=plan, requires_payment=requires_payment)


async def handle_payment_setup(session: OnboardingSession, ctx: StepContext) -> StepResult:
    if session.step_data.get(OnboardingStep.PAYMENT_SETUP.value, {}).get("billing_reference"):
        return StepResult.advance(OnboardingStep.FEATURE_CONFIGURATION)

    plan = session.onboarding_data.plan
    try:
        reference = await ctx.billing.provision(
            session.tenant_id,
            plan,
            idempotency_key=f"onboarding-{session.id}-billing",
        )
    except GatewayError as e:
        if ctx.billing_required:
            return StepResult.failed(f"Billing setup failed: {e}")
        logger.warning("billing_setup_skipped", onboarding_id=str(session.id), plan=plan, error=str(e))
        return StepResult.advance(OnboardingStep.FEATURE_CONFIGURATION, billing_error=str(e))

    return StepResult.advance(OnboardingStep.FEATURE_CONFIGURATION, billing_reference=reference, plan=plan)


async def handle_feature_configuration(session: OnboardingSession, ctx: StepContext) -> StepResult:
    try:
        features = normalize_features(session.onboarding_data.requested_features)
    except ValueError as e:
        return StepResult.failed(str(e))

    for feature in features:
        await ctx.uow.tenants.set_feature_flag(session.tenant_id, feature.value, True)

    return StepResult.advance(
        OnboardingStep.VERIFICATION,
        configured_features=[feature.value for feature in features],
    )


async def handle_verification(session: OnboardingSession, ctx: StepContext) -> StepResult:
    if session.verified_at is None and session.auto_verify:
        session.verified_at = ctx.now

    if session.verified_at is not None:
        await ctx.uow.accounts.mark_email_verified(session.admin_user_id)
        return StepResult.advance(
            OnboardingStep.COMPLETION,
            verified_at=session.verified_at.isoformat(),
            auto_verified=session.auto_verify,
        )

    # A token is already out; resending is an explicit operation
    if session.verification_token_hash is not None:
        return StepResult.stay()

    data = session.onboarding_data
    token = ctx.tokens.issue(session, ctx.now)
    try:
        await ctx.notifier.send_verification(
            data.admin_user.email,
            data.admin_user.first_name,
            data.tenant_name,
            token,
            session.id,
        )
    except DeliveryError as e:
        return StepResult.failed(f"Failed to send verification email: {e}")

    return StepResult.stay(verification_sent_at=ctx.now.isoformat())


async def handle_completion(session: OnboardingSession, ctx: StepContext) -> StepResult:
    if not session.send_welcome_email:
        return StepResult.stay(welcome_email_sent=False)

    data = session.onboarding_data
    try:
        await ctx.notifier.send_welcome(data.admin_user.email, data.admin_user.first_name, data.tenant_name)
    except DeliveryError as e:
        # Welcome mail is a courtesy; the tenant is already fully provisioned
        logger.warning("welcome_email_failed", onboarding_id=str(session.id), error=str(e))
        return StepResult.stay(welcome_email_sent=False, welcome_email_error=str(e))

    return StepResult.stay(welcome_email_sent=True)


# ── Static step table ────────────────────────────────────────────────


@dataclass(frozen=True)
class StepDefinition:
    handler: StepHandler
    next_steps: tuple[OnboardingStep, ...]


STEP_TABLE: dict[OnboardingStep, StepDefinition] = {
    step: StepDefinition(handler=handler, next_steps=TRANSITIONS[step])
    for step, handler in (
        (OnboardingStep.TENANT_SETUP, handle_tenant_setup),
        (OnboardingStep.ADMIN_USER_CREATION, handle_admin_user_creation),
        (OnboardingStep.PLAN_SELECTION, handle_plan_selection),
        (OnboardingStep.PAYMENT_SETUP, handle_payment_setup),
        (OnboardingStep.FEATURE_CONFIGURATION, handle_feature_configuration),
        (OnboardingStep.VERIFICATION, handle_verification),
        (OnboardingStep.COMPLETION, handle_completion),
    )
}


async def run_step(session: OnboardingSession, ctx: StepContext) -> StepResult:
    """Dispatch the session's current step, converting collaborator errors to failures."""
    definition = STEP_TABLE[session.current_step]
    try:
        result = await definition.handler(session, ctx)
    except CollaboratorError as e:
        return StepResult.failed(str(e))

    if result.success and result.next_step is not None and result.next_step not in definition.next_steps:
        return StepResult.failed(
            f"Transition {session.current_step.value} -> {result.next_step.value} is not allowed"
        )
    return result
