"""Tests for log processors and business-event metrics."""

from unittest.mock import MagicMock, patch

import pytest
import structlog
from asgi_correlation_id.context import correlation_id

from tenantflow.core.logging import add_correlation_id, onboarding_log_context, redact_secrets
from tenantflow.metrics import cloudwatch

pytestmark = pytest.mark.unit


def test_redact_secrets_masks_tokens_and_passwords():
    event = {"event": "verification_resent", "token": "abc", "password": "p", "onboarding_id": "x"}

    result = redact_secrets(None, "info", event)

    assert result == {
        "event": "verification_resent",
        "token": "[redacted]",
        "password": "[redacted]",
        "onboarding_id": "x",
    }


def test_correlation_id_injected_when_set():
    reset = correlation_id.set("req-42")
    try:
        assert add_correlation_id(None, "info", {"event": "e"})["correlation_id"] == "req-42"
    finally:
        correlation_id.reset(reset)

    assert "correlation_id" not in add_correlation_id(None, "info", {"event": "e"})


def test_onboarding_log_context_binds_only_inside_block():
    with onboarding_log_context("0b2f6c1e-0000-4000-8000-000000000001"):
        assert structlog.contextvars.get_contextvars()["onboarding_id"] == "0b2f6c1e-0000-4000-8000-000000000001"

    assert "onboarding_id" not in structlog.contextvars.get_contextvars()


def test_put_business_event_dimensions():
    fake_client = MagicMock()

    with patch.object(cloudwatch, "_get_client", return_value=fake_client):
        cloudwatch._put_business_event("onboarding_completed", "pro")

    kwargs = fake_client.put_metric_data.call_args.kwargs
    assert kwargs["Namespace"] == "TenantFlow/Onboarding"
    assert kwargs["MetricData"][0]["Dimensions"] == [
        {"Name": "Event", "Value": "onboarding_completed"},
        {"Name": "Plan", "Value": "pro"},
    ]


def test_put_business_event_swallows_client_errors():
    fake_client = MagicMock()
    fake_client.put_metric_data.side_effect = RuntimeError("no credentials")

    with patch.object(cloudwatch, "_get_client", return_value=fake_client):
        cloudwatch._put_business_event("onboarding_failed")

    with (
        patch.object(cloudwatch, "_get_client", return_value=fake_client),
        patch.object(cloudwatch, "logger") as mock_logger,
    ):
        cloudwatch._put_business_event("onboarding_failed")

    mock_logger.warning.assert_called_once_with(
        "business_event_emit_failed", error="no credentials", event_name="onboarding_failed"
    )


async def test_emit_is_noop_when_disabled():
    with patch.object(cloudwatch, "_put_business_event") as mock_put:
        await cloudwatch.emit_business_event("onboarding_started", "free")

    mock_put.assert_not_called()
