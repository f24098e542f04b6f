"""Wiring for the onboarding service.

Collaborators fall back to their in-process fakes when their credentials are
not configured, so the service runs locally without Stripe or SES.
"""

from datetime import timedelta

import redis.asyncio as redis
import structlog

from tenantflow.core.config import Settings
from tenantflow.core.locking import SessionLock
from tenantflow.db.unit_of_work import UnitOfWorkFactory
from tenantflow.domain.tokens import TokenManager
from tenantflow.integrations.fakes import BillingGatewayFake, NotifierFake
from tenantflow.integrations.protocols import BillingGateway, Notifier
from tenantflow.services.onboarding_service import OnboardingService
from tenantflow.services.workflow_engine import WorkflowEngine

logger = structlog.get_logger(__name__)


def get_billing_gateway(settings: Settings) -> BillingGateway:
    """StripeBillingGateway when STRIPE_SECRET_KEY is set, else BillingGatewayFake."""
    if settings.stripe_secret_key:
        from tenantflow.integrations.stripe_billing import StripeBillingGateway

        return StripeBillingGateway(settings.stripe_secret_key, settings.stripe_price_map)
    logger.info("billing_gateway_fallback", gateway="BillingGatewayFake")
    return BillingGatewayFake()


def get_notifier(settings: Settings) -> Notifier:
    """SesNotifier when SES_SENDER_EMAIL is set, else NotifierFake."""
    if settings.ses_sender_email:
        from tenantflow.integrations.ses_notifier import SesNotifier

        return SesNotifier(
            sender=settings.ses_sender_email,
            frontend_url=settings.frontend_url,
            verification_path=settings.verification_path,
            region=settings.aws_region,
            token_ttl_hours=settings.verification_token_ttl_hours,
        )
    logger.info("notifier_fallback", notifier="NotifierFake")
    return NotifierFake()


def build_onboarding_service(
    settings: Settings,
    uow_factory: UnitOfWorkFactory,
    redis_client: redis.Redis,
    billing: BillingGateway | None = None,
    notifier: Notifier | None = None,
) -> OnboardingService:
    session_lock = SessionLock(
        redis_client,
        ttl=settings.session_lock_ttl_seconds,
        wait_timeout=settings.session_lock_wait_seconds,
        poll_interval=settings.session_lock_poll_interval,
    )
    engine = WorkflowEngine(
        uow_factory=uow_factory,
        billing=billing or get_billing_gateway(settings),
        notifier=notifier or get_notifier(settings),
        tokens=TokenManager(ttl=timedelta(hours=settings.verification_token_ttl_hours)),
        session_lock=session_lock,
        free_plans=frozenset(settings.free_plans),
        billing_required=settings.billing_required_for_paid_plans,
    )
    return OnboardingService(
        engine=engine,
        uow_factory=uow_factory,
        session_lock=session_lock,
        estimated_minutes=settings.onboarding_estimated_minutes,
        verification_stale_after=timedelta(hours=settings.verification_stale_hours),
    )
