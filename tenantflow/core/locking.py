"""Distributed session locking: serialize workflow operations using Redis.

This module provides:
- Per-session locks so only one advance/verify/resend/cancel runs at a time
- Claim locks over several keys (tenant name, domain, admin email) at start
- Lock acquisition with bounded waiting
- Automatic lock expiration so a crashed worker never wedges a session
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from datetime import UTC, datetime

import redis.asyncio as redis
import structlog

from tenantflow.core.exceptions import SessionBusyError

logger = structlog.get_logger(__name__)


class SessionLock:
    """Manages distributed locks keyed by arbitrary strings using Redis."""

    LOCK_PREFIX = "tenantflow:lock:"
    DEFAULT_TTL = 120

    def __init__(
        self,
        redis_client: redis.Redis,
        ttl: int | None = None,
        wait_timeout: float = 30.0,
        poll_interval: float = 0.25,
    ):
        self.redis = redis_client
        self.ttl = ttl or self.DEFAULT_TTL
        self.wait_timeout = wait_timeout
        self.poll_interval = poll_interval

    def _lock_key(self, key: str) -> str:
        return f"{self.LOCK_PREFIX}{key}"

    async def acquire(self, key: str, owner: str) -> bool:
        """Attempt to acquire a lock once.

        Returns:
            True if acquired (or already held by ``owner``), False otherwise
        """
        lock_key = self._lock_key(key)
        lock_value = f"{owner}:{datetime.now(UTC).isoformat()}"
        if await self.redis.set(lock_key, lock_value, nx=True, ex=self.ttl):
            return True

        current = await self.redis.get(lock_key)
        if current and current.startswith(f"{owner}:"):
            await self.redis.expire(lock_key, self.ttl)
            return True

        return False

    async def release(self, key: str, owner: str) -> bool:
        """Release a lock if ``owner`` still holds it."""
        lock_key = self._lock_key(key)
        current = await self.redis.get(lock_key)
        if current and current.startswith(f"{owner}:"):
            await self.redis.delete(lock_key)
            return True
        return False

    async def _acquire_waiting(self, key: str, owner: str, wait: bool) -> bool:
        if not wait:
            return await self.acquire(key, owner)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.wait_timeout
        while True:
            if await self.acquire(key, owner):
                return True
            if loop.time() >= deadline:
                return False
            await asyncio.sleep(self.poll_interval)

    @asynccontextmanager
    async def hold(self, *keys: str, wait: bool = True) -> AsyncGenerator[str, None]:
        """Hold one or more locks for the duration of the block.

        Keys are acquired in sorted order so two callers claiming overlapping
        sets cannot deadlock.

        Yields:
            The owner token used for the held locks

        Raises:
            SessionBusyError: If any lock could not be acquired in time

        Example:
            async with session_lock.hold(f"onboarding:{session_id}"):
                ...
        """
        owner = uuid.uuid4().hex
        ordered = sorted(set(keys))
        acquired: list[str] = []
        try:
            for key in ordered:
                if not await self._acquire_waiting(key, owner, wait):
                    logger.warning("session_lock_busy", key=key)
                    raise SessionBusyError(
                        "Another operation is in progress for this onboarding; retry shortly"
                    )
                acquired.append(key)
            yield owner
        finally:
            for key in reversed(acquired):
                await self.release(key, owner)


def onboarding_lock_key(session_id) -> str:
    return f"onboarding:{session_id}"


def claim_lock_keys(tenant_name: str, domain: str | None, email: str) -> list[str]:
    """Claim keys guarding the uniqueness pre-check of a new onboarding."""
    keys = [f"claim:tenant:{tenant_name.strip().lower()}", f"claim:email:{email.strip().lower()}"]
    if domain:
        keys.append(f"claim:domain:{domain.strip().lower()}")
    return keys
