"""Tenant onboarding API routes."""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from tenantflow.core.auth import AdminPrincipal, require_admin
from tenantflow.domain.steps import OnboardingStatus
from tenantflow.schemas.onboarding import (
    CancelOnboardingRequest,
    MessageResponse,
    OnboardingHealthResponse,
    OnboardingListResponse,
    OnboardingProgressResponse,
    OnboardingResponse,
    ResendVerificationRequest,
    StartOnboardingRequest,
    VerifyOnboardingRequest,
)
from tenantflow.services.onboarding_service import OnboardingService

router = APIRouter()


def get_onboarding_service(request: Request) -> OnboardingService:
    """Dependency that provides the OnboardingService built at startup.

    Override this dependency in tests via app.dependency_overrides.
    """
    service = getattr(request.app.state, "onboarding_service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Onboarding service is not ready")
    return service


def client_ip(request: Request) -> str | None:
    """Originating client address, honouring proxy headers."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else None


def _check_body_id(onboarding_id: str, body_id: str | None) -> None:
    if body_id is not None and body_id != onboarding_id:
        raise HTTPException(status_code=400, detail="Onboarding ID mismatch")


@router.post("", response_model=OnboardingResponse, status_code=status.HTTP_201_CREATED)
async def start_onboarding(
    body: StartOnboardingRequest,
    request: Request,
    service: OnboardingService = Depends(get_onboarding_service),
):
    """Start onboarding a new tenant.

    Runs every step up to email verification (or to completion when
    ``auto_verify`` is set) before responding.

    Raises:
        HTTPException(409): Tenant name, domain or admin email already exists
        HTTPException(422): Invalid request body
    """
    session = await service.start_onboarding(
        body,
        ip_address=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return OnboardingResponse.from_session(session)


@router.get("", response_model=OnboardingListResponse)
async def list_onboardings(
    status_filter: OnboardingStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    admin: AdminPrincipal = Depends(require_admin),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """List onboarding sessions, newest first. Administrators only."""
    sessions, total = await service.list_sessions(status=status_filter, limit=limit, offset=offset)
    return OnboardingListResponse(
        items=[OnboardingProgressResponse.from_session(s) for s in sessions],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/{onboarding_id}", response_model=OnboardingProgressResponse)
async def get_onboarding_progress(
    onboarding_id: str,
    service: OnboardingService = Depends(get_onboarding_service),
):
    session = await service.get_progress(onboarding_id)
    return OnboardingProgressResponse.from_session(session)


@router.post("/{onboarding_id}/verify", response_model=OnboardingResponse)
async def verify_onboarding(
    onboarding_id: str,
    body: VerifyOnboardingRequest,
    service: OnboardingService = Depends(get_onboarding_service),
):
    """Submit the emailed verification token and finish onboarding.

    Raises:
        HTTPException(400): Not at verification, already verified, or token invalid/expired
    """
    _check_body_id(onboarding_id, body.onboarding_id)
    result = await service.verify_onboarding(onboarding_id, body.verification_token)
    return OnboardingResponse.from_session(result.session)


@router.post("/{onboarding_id}/resend-verification", response_model=MessageResponse)
async def resend_verification(
    onboarding_id: str,
    body: ResendVerificationRequest | None = None,
    service: OnboardingService = Depends(get_onboarding_service),
):
    body = body or ResendVerificationRequest()
    _check_body_id(onboarding_id, body.onboarding_id)
    await service.resend_verification(onboarding_id, body.email)
    return MessageResponse(message="Verification email sent successfully")


@router.delete("/{onboarding_id}", response_model=MessageResponse)
async def cancel_onboarding(
    onboarding_id: str,
    body: CancelOnboardingRequest | None = None,
    admin: AdminPrincipal = Depends(require_admin),
    service: OnboardingService = Depends(get_onboarding_service),
):
    """Cancel an onboarding and, unless ``cleanup`` is false, soft-delete what it created.

    Administrators only.
    """
    body = body or CancelOnboardingRequest()
    _check_body_id(onboarding_id, body.onboarding_id)
    await service.cancel_onboarding(onboarding_id, body.reason, body.cleanup)
    return MessageResponse(message="Onboarding cancelled successfully")


@router.get("/{onboarding_id}/health", response_model=OnboardingHealthResponse)
async def check_onboarding_health(
    onboarding_id: str,
    service: OnboardingService = Depends(get_onboarding_service),
):
    report = await service.check_health(onboarding_id)
    return OnboardingHealthResponse(
        onboarding_id=str(report.onboarding_id),
        status=report.status,
        current_step=report.current_step,
        issues=report.issues,
        last_activity=report.last_activity,
    )
