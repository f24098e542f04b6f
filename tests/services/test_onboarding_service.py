"""End-to-end tests for OnboardingService against in-memory collaborators."""

import asyncio
import uuid

import pytest
from werkzeug.security import check_password_hash

from tenantflow.core.exceptions import (
    CancellationConflictError,
    CompensationError,
    DeliveryError,
    InvalidSessionIdError,
    OnboardingStateError,
    PreconditionConflictError,
    RegistryError,
    SessionNotFoundError,
    TokenExpiredError,
    TokenInvalidError,
)
from tenantflow.db.memory import InMemoryTenantRegistry
from tenantflow.domain.steps import OnboardingStatus, OnboardingStep

from tests.conftest import STRONG_PASSWORD

pytestmark = pytest.mark.unit


# ── Happy paths ──────────────────────────────────────────────────────


async def test_free_plan_with_manual_verification(service, start_request, notifier, db):
    session = await service.start_onboarding(start_request(), ip_address="203.0.113.7", user_agent="pytest")

    assert session.status == OnboardingStatus.IN_PROGRESS
    assert session.current_step == OnboardingStep.VERIFICATION
    assert session.progress_percentage == 86
    assert session.ip_address == "203.0.113.7"

    token = notifier.last_token(session.id)
    result = await service.verify_onboarding(str(session.id), token)

    assert result.success
    done = result.session
    assert done.status == OnboardingStatus.COMPLETED
    assert done.progress_percentage == 100
    assert done.completed_at is not None
    assert db.accounts[done.admin_user_id].email_verified is True
    assert [m.email for m in notifier.of_kind("welcome")] == ["ada@acme.example.com"]


async def test_paid_plan_with_auto_verify(service, start_request, billing, notifier, db):
    session = await service.start_onboarding(
        start_request(
            name="Globex",
            domain="globex.example.com",
            plan="Pro",
            auto_verify=True,
            requested_features=["Audit_Logging", "sso_integration"],
            admin_user={"email": "hank@globex.example.com"},
        )
    )

    assert session.status == OnboardingStatus.COMPLETED
    assert OnboardingStep.PAYMENT_SETUP in session.completed_steps
    assert billing.provisioned_count == 1
    assert notifier.of_kind("verification") == []
    assert db.feature_flags == {
        (session.tenant_id, "audit_logging"): True,
        (session.tenant_id, "sso_integration"): True,
    }


async def test_admin_password_is_stored_hashed(service, start_request, db):
    session = await service.start_onboarding(start_request())

    stored = db.password_hashes[session.admin_user_id]
    assert stored != STRONG_PASSWORD
    assert check_password_hash(stored, STRONG_PASSWORD)
    assert STRONG_PASSWORD not in str(session.onboarding_data.to_dict())


async def test_tenant_records_onboarding_id_in_metadata(service, start_request, db):
    session = await service.start_onboarding(start_request(metadata={"source": "partner"}))

    profile = db.tenant_profiles[session.tenant_id]
    assert profile["metadata"] == {"source": "partner", "onboarding_id": str(session.id)}


# ── Verification ─────────────────────────────────────────────────────


async def test_wrong_token_keeps_session_at_verification(service, start_request, notifier, billing):
    session = await service.start_onboarding(start_request(plan="pro"))
    assert billing.provisioned_count == 1

    with pytest.raises(TokenInvalidError):
        await service.verify_onboarding(session.id, "not-the-token")

    current = await service.get_progress(session.id)
    assert current.current_step == OnboardingStep.VERIFICATION
    assert current.verification_token_hash == session.verification_token_hash

    result = await service.verify_onboarding(session.id, notifier.last_token(session.id))
    assert result.session.status == OnboardingStatus.COMPLETED


async def test_token_replay_after_completion_is_rejected(service, start_request, notifier):
    """A replayed token hits a completed session, so the state check answers first.

    The error is OnboardingStateError rather than TokenInvalidError; both map to
    HTTP 400. Token-level single use is covered by test_token_is_single_use in
    tests/domain/test_verification_tokens.py.
    """
    session = await service.start_onboarding(start_request())
    token = notifier.last_token(session.id)
    await service.verify_onboarding(session.id, token)

    with pytest.raises(OnboardingStateError):
        await service.verify_onboarding(session.id, token)


async def test_expired_token_then_resend(service, start_request, notifier, clock):
    session = await service.start_onboarding(start_request())
    stale_token = notifier.last_token(session.id)
    clock.advance(hours=24)

    with pytest.raises(TokenExpiredError):
        await service.verify_onboarding(session.id, stale_token)

    await service.resend_verification(session.id)
    fresh_token = notifier.last_token(session.id)
    assert fresh_token != stale_token

    with pytest.raises(TokenInvalidError):
        await service.verify_onboarding(session.id, stale_token)

    result = await service.verify_onboarding(session.id, fresh_token)
    assert result.session.status == OnboardingStatus.COMPLETED


async def test_resend_to_override_address(service, start_request, notifier):
    session = await service.start_onboarding(start_request())

    await service.resend_verification(session.id, "it-admin@acme.example.com")

    assert notifier.of_kind("verification")[-1].email == "it-admin@acme.example.com"


async def test_resend_delivery_failure_keeps_previous_token(service, start_request, notifier):
    session = await service.start_onboarding(start_request())
    original_token = notifier.last_token(session.id)
    notifier.fail_verification = True

    with pytest.raises(DeliveryError):
        await service.resend_verification(session.id)

    notifier.fail_verification = False
    result = await service.verify_onboarding(session.id, original_token)
    assert result.success


async def test_resend_after_completion_is_rejected(service, start_request):
    session = await service.start_onboarding(start_request(auto_verify=True))

    with pytest.raises(OnboardingStateError):
        await service.resend_verification(session.id)


# ── Cancellation and compensation ────────────────────────────────────


async def test_cancel_with_cleanup_frees_tenant_name(service, start_request, db):
    session = await service.start_onboarding(start_request())

    cancelled = await service.cancel_onboarding(session.id, reason="Customer changed their mind")

    assert cancelled.status == OnboardingStatus.CANCELLED
    assert cancelled.cancellation_reason == "Customer changed their mind"
    assert cancelled.verification_token_hash is None
    assert not db.tenants[session.tenant_id].is_live
    assert not db.tenants[session.tenant_id].is_active
    assert not db.accounts[session.admin_user_id].is_live

    progress = await service.get_progress(session.id)
    assert progress.status == OnboardingStatus.CANCELLED

    again = await service.start_onboarding(start_request())
    assert again.id != session.id
    assert again.current_step == OnboardingStep.VERIFICATION


async def test_cancel_without_cleanup_keeps_resources(service, start_request, db):
    session = await service.start_onboarding(start_request())

    await service.cancel_onboarding(session.id, cleanup=False)

    assert db.tenants[session.tenant_id].is_live
    with pytest.raises(PreconditionConflictError):
        await service.start_onboarding(start_request())


async def test_cancel_completed_is_rejected(service, start_request):
    session = await service.start_onboarding(start_request(auto_verify=True))

    with pytest.raises(CancellationConflictError, match="Cannot cancel completed onboarding"):
        await service.cancel_onboarding(session.id)


async def test_cancel_twice_is_rejected(service, start_request):
    session = await service.start_onboarding(start_request())
    await service.cancel_onboarding(session.id)

    with pytest.raises(CancellationConflictError, match="already cancelled"):
        await service.cancel_onboarding(session.id)


async def test_cancel_failed_session_cleans_up(service, start_request, billing, db):
    billing.fail = True
    session = await service.start_onboarding(start_request(plan="pro"))
    assert session.status == OnboardingStatus.FAILED

    cancelled = await service.cancel_onboarding(session.id)

    assert cancelled.status == OnboardingStatus.CANCELLED
    assert db.live_tenants() == []
    assert db.live_accounts() == []


async def test_compensation_failure_changes_nothing(service, start_request, db, monkeypatch):
    session = await service.start_onboarding(start_request())

    async def broken_soft_delete(self, tenant_id):
        raise RegistryError("tenant store unavailable")

    monkeypatch.setattr(InMemoryTenantRegistry, "soft_delete", broken_soft_delete)

    with pytest.raises(CompensationError):
        await service.cancel_onboarding(session.id)

    assert db.accounts[session.admin_user_id].is_live
    stored = await service.get_progress(session.id)
    assert stored.status == OnboardingStatus.IN_PROGRESS
    assert stored.version == session.version


# ── Start preconditions ──────────────────────────────────────────────


@pytest.mark.parametrize(
    "overrides, message",
    [
        ({"name": "ACME corp", "domain": "other.example.com", "admin_user": {"email": "x@other.example.com"}},
         'Tenant with name "ACME corp" already exists'),
        ({"name": "Other", "domain": "ACME.example.com", "admin_user": {"email": "x@other.example.com"}},
         'Tenant with domain "acme.example.com" already exists'),
        ({"name": "Other", "domain": "other.example.com", "admin_user": {"email": "Ada@Acme.example.com"}},
         'User with email "ada@acme.example.com" already exists'),
    ],
)
async def test_duplicate_start_is_rejected(service, start_request, overrides, message):
    await service.start_onboarding(start_request())

    with pytest.raises(PreconditionConflictError) as exc_info:
        await service.start_onboarding(start_request(**overrides))

    assert str(exc_info.value) == message


async def test_concurrent_identical_starts_admit_one(service, start_request, db):
    results = await asyncio.gather(
        service.start_onboarding(start_request()),
        service.start_onboarding(start_request()),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, PreconditionConflictError)]
    sessions = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(sessions) == 1
    assert len(db.live_tenants()) == 1
    assert len(db.sessions) == 1


# ── Lookups ──────────────────────────────────────────────────────────


async def test_malformed_id_is_rejected(service):
    with pytest.raises(InvalidSessionIdError):
        await service.get_progress("not-a-uuid")


async def test_unknown_id_is_not_found(service):
    with pytest.raises(SessionNotFoundError):
        await service.get_progress(str(uuid.uuid4()))


async def test_list_sessions_filters_and_paginates(service, start_request, clock):
    first = await service.start_onboarding(start_request())
    clock.advance(minutes=1)
    second = await service.start_onboarding(
        start_request(name="Initech", domain="initech.example.com", admin_user={"email": "bill@initech.example.com"})
    )
    await service.cancel_onboarding(first.id)

    everything, total = await service.list_sessions()
    assert total == 2
    assert [s.id for s in everything] == [second.id, first.id]

    cancelled, total = await service.list_sessions(status=OnboardingStatus.CANCELLED)
    assert total == 1
    assert cancelled[0].id == first.id

    page, total = await service.list_sessions(limit=1, offset=1)
    assert total == 2
    assert [s.id for s in page] == [first.id]


# ── Health ───────────────────────────────────────────────────────────


async def test_health_of_fresh_session(service, start_request):
    session = await service.start_onboarding(start_request())

    report = await service.check_health(session.id)

    assert report.status == "healthy"
    assert report.issues == []
    assert report.current_step == OnboardingStep.VERIFICATION


async def test_health_warns_on_stale_verification(service, start_request, clock):
    session = await service.start_onboarding(start_request())
    clock.advance(hours=25)

    report = await service.check_health(session.id)

    assert report.status == "warning"
    assert report.issues == ["Verification has been pending for more than 24 hours"]


async def test_health_of_failed_session(service, start_request, billing):
    billing.fail = True
    session = await service.start_onboarding(start_request(plan="pro"))

    report = await service.check_health(session.id)

    assert report.status == "error"
    assert report.issues == ["Onboarding process has failed"]


async def test_health_of_cancelled_session(service, start_request):
    session = await service.start_onboarding(start_request())
    await service.cancel_onboarding(session.id)

    report = await service.check_health(session.id)

    assert report.status == "warning"
    assert report.issues == ["Onboarding process was cancelled"]
