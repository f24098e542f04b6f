"""Onboarding session aggregate and its immutable request snapshot.

Plain dataclasses: repositories map rows to these and the workflow engine
only ever sees these fields.
"""
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any

from tenantflow.domain.steps import (
    NEXT_ACTIONS,
    TERMINAL_STATUSES,
    OnboardingStatus,
    OnboardingStep,
    compute_progress,
    is_allowed_transition,
)


@dataclass(frozen=True)
class AdminProfile:
    first_name: str
    last_name: str
    email: str
    password_hash: str
    phone: str | None = None
    job_title: str | None = None


@dataclass(frozen=True)
class OnboardingData:
    """Snapshot of the original start request; never mutated after creation."""

    tenant_name: str
    admin_user: AdminProfile
    domain: str | None = None
    description: str | None = None
    industry: str | None = None
    company_size: str | None = None
    contact_email: str | None = None
    contact_phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None
    country: str | None = None
    timezone: str | None = None
    locale: str | None = None
    currency: str | None = None
    plan: str = "free"
    requested_features: tuple[str, ...] = ()
    trial_days: int = 0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["requested_features"] = list(self.requested_features)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OnboardingData":
        payload = dict(data)
        payload["admin_user"] = AdminProfile(**payload["admin_user"])
        payload["requested_features"] = tuple(payload.get("requested_features") or ())
        payload["metadata"] = dict(payload.get("metadata") or {})
        return cls(**payload)


@dataclass
class OnboardingSession:
    """Aggregate root of the onboarding saga."""

    id: uuid.UUID
    onboarding_data: OnboardingData
    current_step: OnboardingStep = OnboardingStep.TENANT_SETUP
    status: OnboardingStatus = OnboardingStatus.PENDING
    completed_steps: list[OnboardingStep] = field(default_factory=list)
    step_data: dict[str, dict[str, Any]] = field(default_factory=dict)

    tenant_id: uuid.UUID | None = None
    admin_user_id: uuid.UUID | None = None

    verification_token_hash: str | None = None
    verification_token_expires_at: datetime | None = None
    verified_at: datetime | None = None

    ip_address: str | None = None
    user_agent: str | None = None
    send_welcome_email: bool = True
    auto_verify: bool = False

    estimated_completion: datetime | None = None
    next_action: str | None = None
    error_message: str | None = None
    cancellation_reason: str | None = None

    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    failed_at: datetime | None = None
    cancelled_at: datetime | None = None

    version: int = 0

    @classmethod
    def start(
        cls,
        onboarding_data: OnboardingData,
        now: datetime,
        estimated_minutes: int,
        send_welcome_email: bool = True,
        auto_verify: bool = False,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> "OnboardingSession":
        return cls(
            id=uuid.uuid4(),
            onboarding_data=onboarding_data,
            status=OnboardingStatus.IN_PROGRESS,
            send_welcome_email=send_welcome_email,
            auto_verify=auto_verify,
            ip_address=ip_address,
            user_agent=user_agent,
            estimated_completion=now + timedelta(minutes=estimated_minutes),
            next_action=NEXT_ACTIONS[OnboardingStep.TENANT_SETUP],
            created_at=now,
            updated_at=now,
        )

    # ── Derived state ───────────────────────────────────────────────

    @property
    def progress_percentage(self) -> int:
        return compute_progress(self.current_step, self.status)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_completed(self) -> bool:
        return self.status == OnboardingStatus.COMPLETED

    @property
    def is_cancelled(self) -> bool:
        return self.status == OnboardingStatus.CANCELLED

    @property
    def awaiting_verification(self) -> bool:
        return (
            self.current_step == OnboardingStep.VERIFICATION
            and self.verified_at is None
            and self.verification_token_hash is not None
        )

    # ── Mutations (engine, token manager and cancellation only) ─────

    def assign_tenant(self, tenant_id: uuid.UUID) -> None:
        if self.tenant_id is not None and self.tenant_id != tenant_id:
            raise ValueError(f"Onboarding {self.id} already has tenant {self.tenant_id}")
        self.tenant_id = tenant_id

    def assign_admin_user(self, admin_user_id: uuid.UUID) -> None:
        if self.admin_user_id is not None and self.admin_user_id != admin_user_id:
            raise ValueError(f"Onboarding {self.id} already has admin user {self.admin_user_id}")
        self.admin_user_id = admin_user_id

    def add_completed_step(self, step: OnboardingStep) -> None:
        if step not in self.completed_steps:
            self.completed_steps.append(step)

    def set_step_data(self, step: OnboardingStep, data: dict[str, Any] | None) -> None:
        if data:
            self.step_data[step.value] = {**self.step_data.get(step.value, {}), **data}

    def move_to(self, next_step: OnboardingStep) -> None:
        """Record the current step as done and advance to ``next_step``."""
        if not is_allowed_transition(self.current_step, next_step):
            raise ValueError(f"Transition {self.current_step.value} -> {next_step.value} is not allowed")
        if next_step == self.current_step:
            return
        self.add_completed_step(self.current_step)
        self.current_step = next_step

    def complete(self, now: datetime) -> None:
        self.add_completed_step(OnboardingStep.COMPLETION)
        self.status = OnboardingStatus.COMPLETED
        self.completed_at = now
        self.next_action = "Onboarding completed successfully!"

    def fail(self, error: str, now: datetime) -> None:
        self.status = OnboardingStatus.FAILED
        self.error_message = error
        self.failed_at = now
        self.next_action = "Onboarding failed. Contact support or cancel and start again."

    def cancel(self, reason: str | None, now: datetime) -> None:
        self.status = OnboardingStatus.CANCELLED
        self.cancellation_reason = reason
        self.cancelled_at = now
        self.verification_token_hash = None
        self.verification_token_expires_at = None
        self.next_action = "Onboarding was cancelled"
