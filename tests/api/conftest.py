"""API-specific test fixtures."""

import time
from contextlib import asynccontextmanager

import jwt as pyjwt
import pytest
from fakeredis import FakeAsyncRedis
from fastapi import FastAPI
from fastapi.testclient import TestClient

from tenantflow.db.memory import InMemoryDatabase, in_memory_uow_factory
from tenantflow.integrations.fakes import BillingGatewayFake, NotifierFake


@pytest.fixture
def api_db():
    return InMemoryDatabase()


@pytest.fixture
def api_notifier():
    return NotifierFake()


@pytest.fixture
def api_billing():
    return BillingGatewayFake()


@pytest.fixture
def api_client(api_db, api_billing, api_notifier):
    """FastAPI test client backed by in-memory persistence and fake collaborators.

    Redis and the onboarding service are created inside the TestClient's own
    event loop, in the test lifespan.
    """
    from tenantflow.api.routes import api_router
    from tenantflow.core.config import get_settings
    from tenantflow.main import register_exception_handlers
    from tenantflow.middleware.correlation import setup_correlation_middleware
    from tenantflow.services.factory import build_onboarding_service

    @asynccontextmanager
    async def test_lifespan(app: FastAPI):
        """Test lifespan - build the service in TestClient's event loop."""
        fake_redis = FakeAsyncRedis(decode_responses=True)
        app.state.onboarding_service = build_onboarding_service(
            get_settings(),
            uow_factory=in_memory_uow_factory(api_db),
            redis_client=fake_redis,
            billing=api_billing,
            notifier=api_notifier,
        )
        yield
        await fake_redis.aclose()

    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="TenantFlow - Test Client",
        version="0.1.0",
        lifespan=test_lifespan,
    )

    setup_correlation_middleware(app)

    # Exception handlers (needed for status mapping and debug_id testing)
    register_exception_handlers(app)

    app.include_router(api_router, prefix="/api")

    with TestClient(app) as client:
        yield client


def make_token(role: str = "admin", sub: str = "user_admin_1", expires_in: int = 300) -> str:
    from tenantflow.core.config import get_settings

    settings = get_settings()
    payload = {"sub": sub, "role": role, "exp": int(time.time()) + expires_in}
    return pyjwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {make_token()}"}
