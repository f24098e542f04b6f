class TenantFlowError(Exception):
    """Base exception for the TenantFlow application."""

    status_code = 500


# ── Caller-facing onboarding errors ──────────────────────────────────


class PreconditionConflictError(TenantFlowError):
    """Raised when tenant name/domain or admin email already exist at start."""

    status_code = 409


class InvalidSessionIdError(TenantFlowError):
    """Raised when an onboarding id is not a well-formed UUID."""

    status_code = 400

    def __init__(self, raw_id: str):
        self.raw_id = raw_id
        super().__init__(f'Invalid onboarding ID format: "{raw_id}"')


class SessionNotFoundError(TenantFlowError):
    """Raised when no onboarding session exists for the given id."""

    status_code = 404

    def __init__(self, session_id):
        self.session_id = session_id
        super().__init__(f'Onboarding with ID "{session_id}" not found')


class OnboardingStateError(TenantFlowError):
    """Raised when an operation is not valid for the session's current step or status."""

    status_code = 400


class TokenInvalidError(TenantFlowError):
    """Raised when no verification token is outstanding or the supplied one does not match."""

    status_code = 400

    def __init__(self, message: str = "Invalid verification token"):
        super().__init__(message)


class TokenExpiredError(TenantFlowError):
    """Raised when the verification token's expiry has passed."""

    status_code = 400

    def __init__(self, message: str = "Verification token has expired"):
        super().__init__(message)


class CancellationConflictError(TenantFlowError):
    """Raised when cancelling a session that is already completed or cancelled."""

    status_code = 400


class CompensationError(TenantFlowError):
    """Raised when cancellation cleanup fails; the whole cancellation is rolled back."""

    status_code = 500


class SessionBusyError(TenantFlowError):
    """Raised when the per-session lock could not be acquired in time."""

    status_code = 409


class ConcurrentModificationError(TenantFlowError):
    """Raised when a session save loses an optimistic version check."""

    status_code = 409

    def __init__(self, session_id, expected_version: int):
        self.session_id = session_id
        self.expected_version = expected_version
        super().__init__(
            f"Onboarding {session_id} was modified concurrently (expected version {expected_version})"
        )


# ── Collaborator errors (caught at the step-handler boundary) ────────


class CollaboratorError(TenantFlowError):
    """Base for errors raised by registries, gateways and notifiers."""

    status_code = 502


class UniquenessError(CollaboratorError):
    """Raised by a registry when a unique field (name, domain, email) is taken."""

    status_code = 409

    def __init__(self, field: str, value: str):
        self.field = field
        self.value = value
        super().__init__(f'A record with {field} "{value}" already exists')


class RegistryError(CollaboratorError):
    """Raised by a registry for validation or storage failures."""

    status_code = 500


class GatewayError(CollaboratorError):
    """Raised by the billing gateway."""


class DeliveryError(CollaboratorError):
    """Raised by the notifier when a message could not be sent."""
