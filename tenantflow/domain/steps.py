"""Onboarding step/status enums, canonical order and transition table.

Pure domain logic with no external dependencies.
"""
from enum import Enum


class OnboardingStep(str, Enum):
    """Workflow steps in canonical order."""

    TENANT_SETUP = "tenant_setup"
    ADMIN_USER_CREATION = "admin_user_creation"
    PLAN_SELECTION = "plan_selection"
    PAYMENT_SETUP = "payment_setup"
    FEATURE_CONFIGURATION = "feature_configuration"
    VERIFICATION = "verification"
    COMPLETION = "completion"


class OnboardingStatus(str, Enum):
    """Session lifecycle status, orthogonal to step."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


STEP_ORDER: tuple[OnboardingStep, ...] = tuple(OnboardingStep)

TERMINAL_STATUSES = frozenset(
    {OnboardingStatus.COMPLETED, OnboardingStatus.FAILED, OnboardingStatus.CANCELLED}
)

# Allowed successors per step. VERIFICATION may stay on itself (token resend).
TRANSITIONS: dict[OnboardingStep, tuple[OnboardingStep, ...]] = {
    OnboardingStep.TENANT_SETUP: (OnboardingStep.ADMIN_USER_CREATION,),
    OnboardingStep.ADMIN_USER_CREATION: (OnboardingStep.PLAN_SELECTION,),
    OnboardingStep.PLAN_SELECTION: (
        OnboardingStep.PAYMENT_SETUP,
        OnboardingStep.FEATURE_CONFIGURATION,
    ),
    OnboardingStep.PAYMENT_SETUP: (OnboardingStep.FEATURE_CONFIGURATION,),
    OnboardingStep.FEATURE_CONFIGURATION: (OnboardingStep.VERIFICATION,),
    OnboardingStep.VERIFICATION: (OnboardingStep.VERIFICATION, OnboardingStep.COMPLETION),
    OnboardingStep.COMPLETION: (),
}

NEXT_ACTIONS: dict[OnboardingStep, str] = {
    OnboardingStep.TENANT_SETUP: "Starting tenant setup...",
    OnboardingStep.ADMIN_USER_CREATION: "Creating admin user account...",
    OnboardingStep.PLAN_SELECTION: "Configuring subscription plan...",
    OnboardingStep.PAYMENT_SETUP: "Setting up payment method...",
    OnboardingStep.FEATURE_CONFIGURATION: "Configuring features...",
    OnboardingStep.VERIFICATION: "Sending verification email...",
    OnboardingStep.COMPLETION: "Finalizing setup...",
}


def step_index(step: OnboardingStep) -> int:
    return STEP_ORDER.index(step)


def compute_progress(step: OnboardingStep, status: OnboardingStatus) -> int:
    """Compute progress (0-100) from the position of ``step`` in STEP_ORDER.

    Each step is worth 1/7 of the journey; a completed session is 100.
    Pure function -- deterministic, no side effects.
    """
    if status == OnboardingStatus.COMPLETED:
        return 100
    return round((step_index(step) + 1) / len(STEP_ORDER) * 100)


def is_allowed_transition(current: OnboardingStep, target: OnboardingStep) -> bool:
    return target in TRANSITIONS.get(current, ())
