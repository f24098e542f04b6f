"""Unit-of-work contract shared by the SQL and in-memory persistence layers.

One unit of work wraps one local transaction. The workflow engine opens one
per step, so a registry write and the session record that references it
commit (or roll back) together; cancellation uses one for the state change
and all compensating soft-deletes.
"""

import uuid
from collections.abc import Callable
from typing import Protocol

from tenantflow.domain.session import OnboardingSession
from tenantflow.domain.steps import OnboardingStatus
from tenantflow.integrations.protocols import AccountRegistry, TenantRegistry


class SessionStore(Protocol):
    """Durable onboarding session records, keyed by id."""

    async def add(self, session: OnboardingSession) -> None:
        ...

    async def get(self, session_id: uuid.UUID, for_update: bool = False) -> OnboardingSession | None:
        """Load a session; ``for_update`` takes a row lock where supported."""
        ...

    async def save(self, session: OnboardingSession) -> None:
        """Persist ``session`` if its stored version still equals ``session.version``.

        Increments ``session.version`` on success.

        Raises:
            ConcurrentModificationError: the record changed since it was loaded
        """
        ...

    async def list(
        self,
        status: OnboardingStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[OnboardingSession], int]:
        """Return one page of sessions (newest first) and the total count."""
        ...


class UnitOfWork(Protocol):
    sessions: SessionStore
    tenants: TenantRegistry
    accounts: AccountRegistry

    async def __aenter__(self) -> "UnitOfWork":
        ...

    async def __aexit__(self, exc_type, exc, tb) -> None:
        """Roll back anything not committed."""
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
