"""Tests for StripeBillingGateway with the Stripe SDK patched out."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe
from tenacity import wait_none

from tenantflow.core.exceptions import GatewayError
from tenantflow.integrations.stripe_billing import StripeBillingGateway

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    monkeypatch.setattr(StripeBillingGateway._create_customer.retry, "wait", wait_none())
    monkeypatch.setattr(StripeBillingGateway._create_subscription.retry, "wait", wait_none())


@pytest.fixture
def gateway():
    return StripeBillingGateway("sk_test_123", price_map={"pro": "price_pro_monthly"})


async def test_provision_creates_customer_and_subscription(gateway):
    tenant_id = uuid.uuid4()
    fake_customer = SimpleNamespace(id="cus_123")

    with (
        patch("stripe.Customer.create_async", new_callable=AsyncMock, return_value=fake_customer) as mock_customer,
        patch("stripe.Subscription.create_async", new_callable=AsyncMock) as mock_subscription,
    ):
        reference = await gateway.provision(tenant_id, "pro", idempotency_key="onboarding-abc-billing")

    assert reference == "cus_123"
    assert mock_customer.call_args.kwargs["idempotency_key"] == "onboarding-abc-billing:customer"
    assert mock_customer.call_args.kwargs["metadata"] == {"tenant_id": str(tenant_id), "plan": "pro"}
    assert mock_subscription.call_args.kwargs["items"] == [{"price": "price_pro_monthly"}]
    assert mock_subscription.call_args.kwargs["idempotency_key"] == "onboarding-abc-billing:subscription"


async def test_plan_without_price_skips_subscription(gateway):
    with (
        patch("stripe.Customer.create_async", new_callable=AsyncMock, return_value=SimpleNamespace(id="cus_9")),
        patch("stripe.Subscription.create_async", new_callable=AsyncMock) as mock_subscription,
    ):
        await gateway.provision(uuid.uuid4(), "team", idempotency_key="k")

    mock_subscription.assert_not_called()


async def test_stripe_error_becomes_gateway_error(gateway):
    declined = stripe.CardError("Your card was declined.", None, "card_declined")

    with patch("stripe.Customer.create_async", new_callable=AsyncMock, side_effect=declined):
        with pytest.raises(GatewayError, match="Your card was declined."):
            await gateway.provision(uuid.uuid4(), "pro", idempotency_key="k")


async def test_connection_errors_are_retried(gateway):
    mock_create = AsyncMock(side_effect=[stripe.APIConnectionError("connection reset"), SimpleNamespace(id="cus_7")])

    with (
        patch("stripe.Customer.create_async", mock_create),
        patch("stripe.Subscription.create_async", new_callable=AsyncMock),
    ):
        reference = await gateway.provision(uuid.uuid4(), "pro", idempotency_key="k")

    assert reference == "cus_7"
    assert mock_create.call_count == 2
    # Same idempotency key on the retry, so Stripe dedupes it
    keys = {call.kwargs["idempotency_key"] for call in mock_create.call_args_list}
    assert keys == {"k:customer"}
