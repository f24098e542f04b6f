"""Shared test fixtures for all test groups."""

import os
from datetime import UTC, datetime, timedelta

# Set before any Settings object is built
os.environ.setdefault("JWT_SECRET", "tenantflow-test-signing-secret-0123456789abcdef")

import pytest
from fakeredis import FakeAsyncRedis

from tenantflow.core.locking import SessionLock
from tenantflow.db.memory import InMemoryDatabase, in_memory_uow_factory
from tenantflow.domain.tokens import TokenManager
from tenantflow.integrations.fakes import BillingGatewayFake, NotifierFake
from tenantflow.schemas.onboarding import StartOnboardingRequest
from tenantflow.services.onboarding_service import OnboardingService
from tenantflow.services.workflow_engine import WorkflowEngine

STRONG_PASSWORD = "Sup3r$ecret"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_start_request(**overrides) -> StartOnboardingRequest:
    """Valid start request for "Acme Corp"; override any field by keyword."""
    admin_overrides = overrides.pop("admin_user", {})
    payload = {
        "name": "Acme Corp",
        "domain": "acme.example.com",
        "plan": "free",
        "admin_user": {
            "first_name": "Ada",
            "last_name": "Lovelace",
            "email": "ada@acme.example.com",
            "password": STRONG_PASSWORD,
            **admin_overrides,
        },
    }
    payload.update(overrides)
    return StartOnboardingRequest(**payload)


@pytest.fixture
async def redis():
    """Create a fake Redis instance for testing."""
    fake_redis = FakeAsyncRedis(decode_responses=True)
    yield fake_redis
    await fake_redis.flushall()
    await fake_redis.aclose()


@pytest.fixture
def clock():
    return FrozenClock(datetime(2026, 1, 15, 10, 0, tzinfo=UTC))


@pytest.fixture
def db():
    return InMemoryDatabase()


@pytest.fixture
def uow_factory(db):
    return in_memory_uow_factory(db)


@pytest.fixture
def session_lock(redis):
    return SessionLock(redis, ttl=30, wait_timeout=2.0, poll_interval=0.01)


@pytest.fixture
def billing():
    return BillingGatewayFake()


@pytest.fixture
def notifier():
    return NotifierFake()


@pytest.fixture
def workflow_engine(uow_factory, billing, notifier, session_lock, clock):
    return WorkflowEngine(
        uow_factory=uow_factory,
        billing=billing,
        notifier=notifier,
        tokens=TokenManager(),
        session_lock=session_lock,
        clock=clock,
    )


@pytest.fixture
def service(workflow_engine, uow_factory, session_lock, clock):
    return OnboardingService(
        engine=workflow_engine,
        uow_factory=uow_factory,
        session_lock=session_lock,
        clock=clock,
    )


@pytest.fixture
def start_request():
    """Factory for valid StartOnboardingRequest objects."""
    return make_start_request
