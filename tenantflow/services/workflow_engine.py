"""WorkflowEngine: drives onboarding sessions through the step table.

Every state change happens under the session's Redis lock, and every step
runs in its own unit of work: the registry writes a handler makes and the
session record that points at them commit together or not at all. A failed
step is rolled back and the session is then marked failed in a fresh unit of
work, so the failure itself is always persisted.

Usage:
    engine = WorkflowEngine(uow_factory, billing, notifier, TokenManager(), session_lock)
    result = await engine.advance(session_id)
"""

import uuid
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime

import structlog

from tenantflow.core.exceptions import (
    CancellationConflictError,
    CollaboratorError,
    CompensationError,
    SessionNotFoundError,
)
from tenantflow.core.logging import onboarding_log_context
from tenantflow.core.locking import SessionLock, onboarding_lock_key
from tenantflow.db.unit_of_work import UnitOfWork, UnitOfWorkFactory
from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import NEXT_ACTIONS, OnboardingStep
from tenantflow.domain.tokens import TokenManager, ensure_verification_pending
from tenantflow.integrations.protocols import BillingGateway, Notifier
from tenantflow.metrics.cloudwatch import emit_business_event
from tenantflow.services.onboarding_steps import StepContext, run_step

logger = structlog.get_logger(__name__)


def utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass
class AdvanceResult:
    session: OnboardingSession
    success: bool
    error: str | None = None


class WorkflowEngine:
    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        billing: BillingGateway,
        notifier: Notifier,
        tokens: TokenManager,
        session_lock: SessionLock,
        free_plans: frozenset[str] = frozenset({"free"}),
        billing_required: bool = True,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.uow_factory = uow_factory
        self.billing = billing
        self.notifier = notifier
        self.tokens = tokens
        self.session_lock = session_lock
        self.free_plans = free_plans
        self.billing_required = billing_required
        self.clock = clock

    async def _load(self, uow: UnitOfWork, session_id: uuid.UUID) -> OnboardingSession:
        session = await uow.sessions.get(session_id, for_update=True)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def _save(self, uow: UnitOfWork, session: OnboardingSession) -> None:
        session.updated_at = self.clock()
        await uow.sessions.save(session)

    @asynccontextmanager
    async def _exclusive(self, session_id: uuid.UUID) -> AsyncIterator[None]:
        async with self.session_lock.hold(onboarding_lock_key(session_id)):
            with onboarding_log_context(session_id):
                yield

    def _context(self, uow: UnitOfWork) -> StepContext:
        return StepContext(
            uow=uow,
            billing=self.billing,
            notifier=self.notifier,
            tokens=self.tokens,
            now=self.clock(),
            free_plans=self.free_plans,
            billing_required=self.billing_required,
        )

    # ── Driving the workflow ────────────────────────────────────────

    async def advance(self, session_id: uuid.UUID) -> AdvanceResult:
        """Run steps until the session completes, fails or pauses for verification."""
        async with self._exclusive(session_id):
            return await self._drive(session_id)

    async def _drive(self, session_id: uuid.UUID) -> AdvanceResult:
        """Step loop. Caller must hold the session lock."""
        while True:
            async with self.uow_factory() as uow:
                session = await self._load(uow, session_id)
                if session.is_terminal:
                    return AdvanceResult(
                        session,
                        success=False,
                        error=f"Onboarding is already {session.status.value}",
                    )

                step = session.current_step
                ctx = self._context(uow)
                result = await run_step(session, ctx)

                if result.success:
                    session.set_step_data(step, result.data)

                    if step == OnboardingStep.COMPLETION:
                        session.complete(ctx.now)
                        await self._save(uow, session)
                        await uow.commit()
                        logger.info("onboarding_completed", tenant_id=str(session.tenant_id))
                        await emit_business_event("onboarding_completed", session.onboarding_data.plan)
                        return AdvanceResult(session, success=True)

                    if result.next_step is None:
                        await self._save(uow, session)
                        await uow.commit()
                        logger.info("onboarding_paused_for_verification")
                        return AdvanceResult(session, success=True)

                    session.move_to(result.next_step)
                    session.next_action = NEXT_ACTIONS[result.next_step]
                    await self._save(uow, session)
                    await uow.commit()
                    logger.info(
                        "onboarding_step_completed",
                        step=step.value,
                        next_step=result.next_step.value,
                        progress=session.progress_percentage,
                    )
                    continue

                await uow.rollback()

            return await self._mark_failed(session_id, step, result.error)

    async def _mark_failed(self, session_id: uuid.UUID, step: OnboardingStep, error: str | None) -> AdvanceResult:
        message = f"Step {step.value} failed: {error or 'unknown error'}"
        async with self.uow_factory() as uow:
            session = await self._load(uow, session_id)
            session.fail(message, self.clock())
            await self._save(uow, session)
            await uow.commit()

        logger.warning("onboarding_step_failed", step=step.value, error=error)
        await emit_business_event("onboarding_failed", session.onboarding_data.plan)
        return AdvanceResult(session, success=False, error=message)

    # ── Verification ────────────────────────────────────────────────

    async def verify(self, session_id: uuid.UUID, token: str) -> AdvanceResult:
        """Consume the verification token and drive the session to completion.

        Raises:
            OnboardingStateError: not awaiting verification
            TokenInvalidError / TokenExpiredError: token rejected; session untouched
        """
        async with self._exclusive(session_id):
            async with self.uow_factory() as uow:
                session = await self._load(uow, session_id)
                ensure_verification_pending(session)
                self.tokens.verify(session, token, self.clock())
                await self._save(uow, session)
                await uow.commit()

            logger.info("onboarding_verified")
            return await self._drive(session_id)

    async def resend_verification(self, session_id: uuid.UUID, email: str | None = None) -> OnboardingSession:
        """Replace the outstanding token and send the new one.

        If delivery fails nothing is persisted and the previous token stays valid.
        """
        async with self._exclusive(session_id):
            async with self.uow_factory() as uow:
                session = await self._load(uow, session_id)
                token = self.tokens.resend(session, self.clock())
                data = session.onboarding_data
                await self.notifier.send_verification(
                    email or data.admin_user.email,
                    data.admin_user.first_name,
                    data.tenant_name,
                    token,
                    session.id,
                )
                await self._save(uow, session)
                await uow.commit()

            logger.info("verification_resent")
        return session

    # ── Cancellation ────────────────────────────────────────────────

    async def cancel(self, session_id: uuid.UUID, reason: str | None = None, cleanup: bool = True) -> OnboardingSession:
        """Cancel the session and, when ``cleanup``, soft-delete what it created.

        The state change and the compensating soft-deletes share one unit of
        work. Billing profiles and sent emails are not reversed.

        Raises:
            CancellationConflictError: session already completed or cancelled
            CompensationError: cleanup failed; nothing was changed
        """
        async with self._exclusive(session_id):
            async with self.uow_factory() as uow:
                session = await self._load(uow, session_id)
                if session.is_completed:
                    raise CancellationConflictError("Cannot cancel completed onboarding")
                if session.is_cancelled:
                    raise CancellationConflictError("Onboarding is already cancelled")

                session.cancel(reason, self.clock())
                if cleanup:
                    try:
                        if session.admin_user_id is not None:
                            await uow.accounts.soft_delete(session.admin_user_id)
                        if session.tenant_id is not None:
                            await uow.tenants.soft_delete(session.tenant_id)
                    except CollaboratorError as e:
                        logger.error("onboarding_compensation_failed", error=str(e))
                        raise CompensationError(f"Failed to clean up onboarding resources: {e}") from e

                await self._save(uow, session)
                await uow.commit()

            logger.info("onboarding_cancelled", cleanup=cleanup, reason=reason)
            await emit_business_event("onboarding_cancelled", session.onboarding_data.plan)
        return session
