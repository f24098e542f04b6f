"""Onboarding Pydantic schemas: API contracts for the tenant onboarding flow."""

import re
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field, field_validator

from tenantflow.core.feature_flags import normalize_features
from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import OnboardingStatus, OnboardingStep

_DOMAIN_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
_PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]+$")


# ── Requests ─────────────────────────────────────────────────────────


class AdminUserRequest(BaseModel):
    """The tenant's first administrator."""

    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    phone: str | None = Field(None, max_length=50)
    job_title: str | None = Field(None, max_length=100)
    password: str = Field(..., min_length=8, max_length=128)

    @field_validator("password")
    @classmethod
    def require_strong_password(cls, v: str) -> str:
        if not _PASSWORD_PATTERN.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number, and one special character (@$!%*?&)"
            )
        return v

    @field_validator("email")
    @classmethod
    def lowercase_email(cls, v: str) -> str:
        return v.lower()


class StartOnboardingRequest(BaseModel):
    """Request to onboard a new tenant."""

    name: str = Field(..., min_length=2, max_length=255)
    domain: str | None = Field(None, max_length=255)
    admin_user: AdminUserRequest

    description: str | None = Field(None, max_length=1000)
    industry: str | None = Field(None, max_length=100)
    company_size: str | None = Field(None, max_length=50)
    contact_email: EmailStr | None = None
    contact_phone: str | None = Field(None, max_length=50)
    address: str | None = Field(None, max_length=255)
    city: str | None = Field(None, max_length=100)
    state: str | None = Field(None, max_length=100)
    postal_code: str | None = Field(None, max_length=20)
    country: str | None = Field(None, max_length=100)
    timezone: str | None = Field(None, max_length=50)
    locale: str | None = Field(None, max_length=10)
    currency: str | None = Field(None, max_length=10)

    plan: str = Field("free", min_length=1, max_length=50)
    requested_features: list[str] = Field(default_factory=list, max_length=20)
    send_welcome_email: bool = True
    auto_verify: bool = False
    trial_days: int = Field(0, ge=0, le=365)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def reject_whitespace_only(cls, v: str) -> str:
        stripped = v.strip()
        if len(stripped) < 2:
            raise ValueError("Tenant name must be at least 2 characters")
        return stripped

    @field_validator("domain")
    @classmethod
    def validate_domain(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if not _DOMAIN_PATTERN.match(v):
            raise ValueError("Domain must be a valid domain name (e.g., example.com)")
        return v

    @field_validator("plan")
    @classmethod
    def normalize_plan(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("requested_features")
    @classmethod
    def normalize_requested_features(cls, v: list[str]) -> list[str]:
        return [feature.value for feature in normalize_features(v)]


class VerifyOnboardingRequest(BaseModel):
    onboarding_id: str | None = None
    verification_token: str = Field(..., min_length=1, max_length=256)


class ResendVerificationRequest(BaseModel):
    onboarding_id: str | None = None
    email: EmailStr | None = None


class CancelOnboardingRequest(BaseModel):
    onboarding_id: str | None = None
    reason: str | None = Field(None, max_length=500)
    cleanup: bool = True


# ── Responses ────────────────────────────────────────────────────────


class OnboardingResponse(BaseModel):
    """Returned by start and verify."""

    onboarding_id: str
    status: OnboardingStatus
    current_step: OnboardingStep
    progress_percentage: int
    next_action: str | None = None
    estimated_completion: datetime | None = None
    tenant_id: str | None = None
    admin_user_id: str | None = None

    @classmethod
    def from_session(cls, session: OnboardingSession) -> "OnboardingResponse":
        return cls(
            onboarding_id=str(session.id),
            status=session.status,
            current_step=session.current_step,
            progress_percentage=session.progress_percentage,
            next_action=session.next_action,
            estimated_completion=session.estimated_completion,
            tenant_id=str(session.tenant_id) if session.tenant_id else None,
            admin_user_id=str(session.admin_user_id) if session.admin_user_id else None,
        )


class OnboardingProgressResponse(OnboardingResponse):
    completed_steps: list[OnboardingStep]
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_session(cls, session: OnboardingSession) -> "OnboardingProgressResponse":
        return cls(
            **OnboardingResponse.from_session(session).model_dump(),
            completed_steps=list(session.completed_steps),
            error_message=session.error_message,
            created_at=session.created_at,
            updated_at=session.updated_at,
        )


class OnboardingListResponse(BaseModel):
    items: list[OnboardingProgressResponse]
    total: int
    limit: int
    offset: int


class OnboardingHealthResponse(BaseModel):
    onboarding_id: str
    status: Literal["healthy", "warning", "error"]
    current_step: OnboardingStep
    issues: list[str]
    last_activity: datetime | None = None


class MessageResponse(BaseModel):
    message: str
