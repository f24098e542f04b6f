"""Verification token lifecycle: issue, verify, resend.

Only a SHA-256 digest of the token is kept on the session; the raw token
exists just long enough to be handed to the notifier.
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta

from tenantflow.core.exceptions import OnboardingStateError, TokenExpiredError, TokenInvalidError
from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import NEXT_ACTIONS, OnboardingStep

TOKEN_BYTES = 32


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenManager:
    """Issues and validates time-boxed, single-use verification tokens."""

    def __init__(self, ttl: timedelta = timedelta(hours=24)):
        self.ttl = ttl

    def issue(self, session: OnboardingSession, now: datetime) -> str:
        """Generate a token, store its digest and absolute expiry on the session.

        Returns:
            The raw token, for delivery via the notifier only
        """
        token = secrets.token_hex(TOKEN_BYTES)
        session.verification_token_hash = hash_token(token)
        session.verification_token_expires_at = now + self.ttl
        session.next_action = "Please check your email and click the verification link to continue"
        return token

    def verify(self, session: OnboardingSession, supplied_token: str, now: datetime) -> None:
        """Consume the outstanding token.

        Raises:
            TokenInvalidError: No token outstanding, or the supplied one does not match
            TokenExpiredError: ``now`` is at or past the expiry instant
        """
        if not session.verification_token_hash or not supplied_token:
            raise TokenInvalidError()

        if not hmac.compare_digest(session.verification_token_hash, hash_token(supplied_token)):
            raise TokenInvalidError()

        if session.verification_token_expires_at is None or now >= session.verification_token_expires_at:
            raise TokenExpiredError()

        session.verified_at = now
        session.verification_token_hash = None
        session.verification_token_expires_at = None
        session.next_action = NEXT_ACTIONS[OnboardingStep.COMPLETION]

    def resend(self, session: OnboardingSession, now: datetime) -> str:
        """Invalidate any outstanding token and issue a fresh one."""
        ensure_verification_pending(session)
        return self.issue(session, now)


def ensure_verification_pending(session: OnboardingSession) -> None:
    """Raise unless the session is waiting at the verification step."""
    if session.is_terminal:
        raise OnboardingStateError(f"Onboarding is {session.status.value}")
    if session.current_step != OnboardingStep.VERIFICATION:
        raise OnboardingStateError("Onboarding is not in verification step")
    if session.verified_at is not None:
        raise OnboardingStateError("Onboarding is already verified")
