"""Stripe-backed BillingGateway.

Provisioning creates a Stripe customer for the tenant and, when the plan has
a configured price, a subscription on it. Both calls carry idempotency keys
derived from the onboarding session, so a retried payment_setup step (or a
retry after a dropped connection) returns the objects created by the first
attempt instead of creating new ones.
"""

import uuid

import stripe
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from tenantflow.core.exceptions import GatewayError

logger = structlog.get_logger(__name__)

_stripe_retry = retry(
    retry=retry_if_exception_type((stripe.APIConnectionError, stripe.RateLimitError)),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    reraise=True,
    before_sleep=lambda rs: logger.warning(
        "stripe_transient_error_retrying",
        attempt=rs.attempt_number,
        sleep_seconds=rs.next_action.sleep,
    ),
)


class StripeBillingGateway:
    def __init__(self, secret_key: str, price_map: dict[str, str] | None = None):
        self.secret_key = secret_key
        self.price_map = price_map or {}

    @_stripe_retry
    async def _create_customer(self, tenant_id: uuid.UUID, plan: str, idempotency_key: str):
        return await stripe.Customer.create_async(
            metadata={"tenant_id": str(tenant_id), "plan": plan},
            idempotency_key=f"{idempotency_key}:customer",
        )

    @_stripe_retry
    async def _create_subscription(self, customer_id: str, price_id: str, tenant_id: uuid.UUID, idempotency_key: str):
        return await stripe.Subscription.create_async(
            customer=customer_id,
            items=[{"price": price_id}],
            metadata={"tenant_id": str(tenant_id)},
            idempotency_key=f"{idempotency_key}:subscription",
        )

    async def provision(self, tenant_id: uuid.UUID, plan: str, idempotency_key: str) -> str:
        stripe.api_key = self.secret_key
        try:
            customer = await self._create_customer(tenant_id, plan, idempotency_key)
            price_id = self.price_map.get(plan)
            if price_id:
                await self._create_subscription(customer.id, price_id, tenant_id, idempotency_key)
        except stripe.StripeError as e:
            logger.warning("stripe_provision_failed", tenant_id=str(tenant_id), plan=plan, error=str(e))
            raise GatewayError(e.user_message or str(e)) from e

        logger.info("stripe_customer_provisioned", tenant_id=str(tenant_id), plan=plan, customer_id=customer.id)
        return customer.id
