"""SQL registry failures must not carry statement text or bound parameters."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from tenantflow.core.exceptions import RegistryError
from tenantflow.db.repositories import SqlAccountRegistry, SqlTenantRegistry
from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import OnboardingStep
from tenantflow.domain.tokens import TokenManager
from tenantflow.integrations.protocols import AccountCreate, TenantCreate
from tenantflow.services.onboarding_service import build_onboarding_data
from tenantflow.services.onboarding_steps import StepContext, run_step

pytestmark = pytest.mark.unit

SECRET_HASH = "scrypt:32768:8:1$SECRETHASH"


class _BrokenSavepoint:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        raise OperationalError(
            "INSERT INTO admin_accounts (email, password_hash) VALUES ($1, $2)",
            ("ada@acme.example.com", SECRET_HASH),
            Exception("server closed the connection unexpectedly"),
        )


def _broken_session():
    session = MagicMock()
    session.begin_nested = MagicMock(side_effect=lambda: _BrokenSavepoint())
    return session


def _leaks(message: str) -> bool:
    return any(part in message for part in ("SECRETHASH", "INSERT INTO", "[SQL", "[parameters"))


async def test_account_insert_failure_message_is_generic():
    registry = SqlAccountRegistry(_broken_session())
    registry.find_by_email = AsyncMock(return_value=None)

    with pytest.raises(RegistryError) as exc_info:
        await registry.create(
            AccountCreate(
                tenant_id=uuid.uuid4(),
                email="ada@acme.example.com",
                first_name="Ada",
                last_name="Lovelace",
                password_hash=SECRET_HASH,
            )
        )

    assert str(exc_info.value) == "Failed to create admin account"


async def test_tenant_insert_failure_message_is_generic():
    registry = SqlTenantRegistry(_broken_session())
    registry.find_by_name = AsyncMock(return_value=None)
    registry.find_by_domain = AsyncMock(return_value=None)

    with pytest.raises(RegistryError) as exc_info:
        await registry.create(TenantCreate(name="Acme Corp", plan="free", domain="acme.example.com"))

    assert not _leaks(str(exc_info.value))


async def test_failed_admin_step_records_no_sql_detail(start_request, billing, notifier, clock):
    accounts = SqlAccountRegistry(_broken_session())
    accounts.find_by_email = AsyncMock(return_value=None)
    ctx = StepContext(
        uow=SimpleNamespace(accounts=accounts),
        billing=billing,
        notifier=notifier,
        tokens=TokenManager(),
        now=clock(),
    )
    session = OnboardingSession.start(build_onboarding_data(start_request()), now=clock(), estimated_minutes=30)
    session.tenant_id = uuid.uuid4()
    session.move_to(OnboardingStep.ADMIN_USER_CREATION)

    result = await run_step(session, ctx)

    assert not result.success
    assert result.error == "Failed to create admin account"
    assert not _leaks(result.error)
